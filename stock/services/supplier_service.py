from typing import Dict, Any
from django.db import transaction
from django.db.models import Q

from stock.models import Supplier, PurchaseOrder
from stock.services.base_service import (
    BaseService, success_response, paginate_queryset,
    ValidationError, PreconditionFailedError,
)


class SupplierService(BaseService):
    model = Supplier

    FIELDS = ("name", "contact_person", "email", "phone", "address", "is_active")

    @classmethod
    def serialize(cls, supplier: Supplier) -> Dict[str, Any]:
        return {
            "id": str(supplier.id),
            "name": supplier.name,
            "contact_person": supplier.contact_person,
            "email": supplier.email,
            "phone": supplier.phone,
            "address": supplier.address,
            "is_active": supplier.is_active,
            "created_at": supplier.created_at.isoformat(),
        }

    @classmethod
    def serialize_brief(cls, supplier: Supplier) -> Dict[str, Any]:
        return {"id": str(supplier.id), "name": supplier.name}

    @classmethod
    def list(cls, search: str = None, is_active: bool = None,
             page: int = 1, per_page: int = 50) -> Dict[str, Any]:
        queryset = cls.model.objects.all()

        if search:
            queryset = queryset.filter(
                Q(name__icontains=search) |
                Q(contact_person__icontains=search) |
                Q(email__icontains=search)
            )
        if is_active is not None:
            queryset = queryset.filter(is_active=is_active)

        suppliers, pagination = paginate_queryset(queryset, page, per_page)
        return success_response({
            "suppliers": [cls.serialize(s) for s in suppliers],
            "pagination": pagination,
        })

    @classmethod
    def get(cls, supplier_id) -> Dict[str, Any]:
        return success_response({"supplier": cls.serialize(cls.get_or_404(supplier_id))})

    @classmethod
    @transaction.atomic
    def create(cls, name: str, **kwargs) -> Dict[str, Any]:
        if not name:
            raise ValidationError("Supplier name is required", "name")

        values = {k: v for k, v in kwargs.items() if k in cls.FIELDS and v is not None}
        supplier = cls.model.objects.create(name=name, **values)
        return success_response({"supplier": cls.serialize(supplier)}, "Supplier created")

    @classmethod
    @transaction.atomic
    def update(cls, supplier_id, **kwargs) -> Dict[str, Any]:
        supplier = cls.get_or_404(supplier_id)

        for field in cls.FIELDS:
            if field in kwargs and kwargs[field] is not None:
                setattr(supplier, field, kwargs[field])

        if not supplier.name:
            raise ValidationError("Supplier name is required", "name")

        supplier.save()
        return success_response({"supplier": cls.serialize(supplier)}, "Supplier updated")

    @classmethod
    @transaction.atomic
    def deactivate(cls, supplier_id) -> Dict[str, Any]:
        supplier = cls.get_or_404(supplier_id)

        open_orders = PurchaseOrder.objects.filter(
            supplier=supplier,
            status__in=[PurchaseOrder.Status.PENDING_APPROVAL, PurchaseOrder.Status.APPROVED],
        ).count()
        if open_orders:
            raise PreconditionFailedError(
                f"Cannot deactivate supplier with {open_orders} open purchase order(s)",
                {"open_orders": open_orders}
            )

        supplier.is_active = False
        supplier.save(update_fields=["is_active", "updated_at"])
        return success_response({"supplier": cls.serialize(supplier)}, "Supplier deactivated")
