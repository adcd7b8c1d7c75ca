from typing import Dict, Any
from django.db import transaction
from django.db.models import Q

from stock.models import Site, Bin
from stock.services.base_service import (
    BaseService, success_response, paginate_queryset,
    ValidationError, NotFoundError, ConflictError, fetch_ref,
)


class SiteService(BaseService):
    model = Site

    @classmethod
    def serialize(cls, site: Site, include_bins: bool = False) -> Dict[str, Any]:
        data = {
            "id": str(site.id),
            "name": site.name,
            "code": site.code,
            "address": site.address,
            "is_active": site.is_active,
            "created_at": site.created_at.isoformat(),
        }
        if include_bins:
            data["bins"] = [BinService.serialize(b) for b in site.bins.filter(is_active=True)]
        return data

    @classmethod
    def list(cls, queryset=None, search: str = None, is_active: bool = None,
             page: int = 1, per_page: int = 50) -> Dict[str, Any]:
        queryset = queryset if queryset is not None else cls.model.objects.all()

        if search:
            queryset = queryset.filter(Q(name__icontains=search) | Q(code__icontains=search))
        if is_active is not None:
            queryset = queryset.filter(is_active=is_active)

        sites, pagination = paginate_queryset(queryset, page, per_page)
        return success_response({
            "sites": [cls.serialize(s) for s in sites],
            "pagination": pagination,
        })

    @classmethod
    def get(cls, site_id) -> Dict[str, Any]:
        return success_response({"site": cls.serialize(cls.get_or_404(site_id), include_bins=True)})

    @classmethod
    @transaction.atomic
    def create(cls, name: str, code: str, address: str = "", is_active: bool = True) -> Dict[str, Any]:
        if not name:
            raise ValidationError("Site name is required", "name")
        if not code:
            raise ValidationError("Site code is required", "code")
        if cls.model.objects.filter(code__iexact=code).exists():
            raise ConflictError(f"Site code '{code}' already exists", {"field": "code"})

        site = cls.model.objects.create(name=name, code=code.upper(), address=address or "", is_active=is_active)
        return success_response({"site": cls.serialize(site)}, "Site created")

    @classmethod
    @transaction.atomic
    def update(cls, site_id, **kwargs) -> Dict[str, Any]:
        site = cls.get_or_404(site_id)

        if "code" in kwargs and kwargs["code"] and kwargs["code"].upper() != site.code:
            if cls.model.objects.filter(code__iexact=kwargs["code"]).exclude(id=site.id).exists():
                raise ConflictError(f"Site code '{kwargs['code']}' already exists", {"field": "code"})
            site.code = kwargs["code"].upper()

        for field in ("name", "address", "is_active"):
            if field in kwargs:
                setattr(site, field, kwargs[field])

        if not site.name:
            raise ValidationError("Site name is required", "name")

        site.save()
        return success_response({"site": cls.serialize(site)}, "Site updated")

    @classmethod
    def main_bin(cls, site_id) -> Bin:
        """The site's main storage bin, or its first active bin when none is marked."""
        site = cls.get_or_404(site_id)
        bins = site.bins.filter(is_active=True).order_by("created_at")
        main = bins.filter(bin_type=Bin.BinType.MAIN_STORAGE).first() or bins.first()
        if main is None:
            raise NotFoundError("Main bin for site", site.name)
        return main

    @classmethod
    def get_main_bin(cls, site_id) -> Dict[str, Any]:
        return success_response({"bin": BinService.serialize(cls.main_bin(site_id))})


class BinService(BaseService):
    model = Bin

    @classmethod
    def serialize(cls, bin: Bin) -> Dict[str, Any]:
        return {
            "id": str(bin.id),
            "name": bin.name,
            "site": str(bin.site_id),
            "site_name": bin.site.name,
            "bin_type": bin.bin_type,
            "is_active": bin.is_active,
        }

    @classmethod
    def list(cls, queryset=None, site_id=None, bin_type: str = None,
             page: int = 1, per_page: int = 100) -> Dict[str, Any]:
        queryset = queryset if queryset is not None else cls.model.objects.all()
        queryset = queryset.select_related("site")

        if site_id:
            queryset = queryset.filter(site_id=site_id)
        if bin_type:
            queryset = queryset.filter(bin_type=bin_type)

        bins, pagination = paginate_queryset(queryset, page, per_page)
        return success_response({
            "bins": [cls.serialize(b) for b in bins],
            "pagination": pagination,
        })

    @classmethod
    def get(cls, bin_id) -> Dict[str, Any]:
        return success_response({"bin": cls.serialize(cls.get_or_404(bin_id))})

    @classmethod
    @transaction.atomic
    def create(cls, name: str, site: Any, bin_type: str = Bin.BinType.MAIN_STORAGE,
               is_active: bool = True) -> Dict[str, Any]:
        if not name:
            raise ValidationError("Bin name is required", "name")

        valid_types = [c[0] for c in Bin.BinType.choices]
        if bin_type not in valid_types:
            raise ValidationError(f"Invalid bin type. Valid: {valid_types}", "bin_type")

        site = fetch_ref(Site, site, "Site", "site", required=True)
        bin = cls.model.objects.create(name=name, site=site, bin_type=bin_type, is_active=is_active)
        return success_response({"bin": cls.serialize(bin)}, "Bin created")

    @classmethod
    @transaction.atomic
    def update(cls, bin_id, **kwargs) -> Dict[str, Any]:
        bin = cls.get_or_404(bin_id)

        if "bin_type" in kwargs:
            valid_types = [c[0] for c in Bin.BinType.choices]
            if kwargs["bin_type"] not in valid_types:
                raise ValidationError(f"Invalid bin type. Valid: {valid_types}", "bin_type")
            bin.bin_type = kwargs["bin_type"]

        for field in ("name", "is_active"):
            if field in kwargs:
                setattr(bin, field, kwargs[field])

        bin.save()
        return success_response({"bin": cls.serialize(bin)}, "Bin updated")
