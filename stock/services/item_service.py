import logging
from typing import Dict, Any, Optional
from django.db import transaction, IntegrityError
from django.db.models import Q

from stock.models import StockItem, Category, Supplier
from stock.services.base_service import (
    BaseService, success_response, paginate_queryset,
    ValidationError, ConflictError, NotFoundError,
    to_line_decimal, decimal_str, id_str, fetch_ref,
)
from stock.services.references import resolve_ref

logger = logging.getLogger(__name__)


class StockItemService(BaseService):
    model = StockItem

    DECIMAL_FIELDS = ("unit_price", "minimum_stock_level", "reorder_quantity")

    @classmethod
    def get_by_id(cls, id: Any) -> Optional[StockItem]:
        item = super().get_by_id(id)
        if item is not None and item.is_deleted:
            return None
        return item

    @classmethod
    def serialize(cls, item: StockItem) -> Dict[str, Any]:
        return {
            "id": str(item.id),
            "sku": item.sku,
            "name": item.name,
            "category": {"id": str(item.category_id), "title": item.category.title} if item.category_id else None,
            "unit_of_measure": item.unit_of_measure,
            "unit_price": decimal_str(item.unit_price),
            "minimum_stock_level": decimal_str(item.minimum_stock_level),
            "reorder_quantity": decimal_str(item.reorder_quantity),
            "primary_supplier": id_str(item.primary_supplier_id),
            "suppliers": [str(s.id) for s in item.suppliers.all()],
            "created_at": item.created_at.isoformat(),
            "updated_at": item.updated_at.isoformat(),
        }

    @classmethod
    def serialize_brief(cls, item: StockItem) -> Dict[str, Any]:
        return {
            "id": str(item.id),
            "sku": item.sku,
            "name": item.name,
            "unit_of_measure": item.unit_of_measure,
        }

    @classmethod
    def list(cls,
             search: str = None,
             category_id: str = None,
             supplier_id: str = None,
             page: int = 1,
             per_page: int = 50) -> Dict[str, Any]:
        queryset = cls.model.objects.filter(is_deleted=False).select_related("category").prefetch_related("suppliers")

        if search:
            queryset = queryset.filter(Q(name__icontains=search) | Q(sku__icontains=search))
        if category_id:
            queryset = queryset.filter(category_id=category_id)
        if supplier_id:
            queryset = queryset.filter(Q(primary_supplier_id=supplier_id) | Q(suppliers__id=supplier_id)).distinct()

        items, pagination = paginate_queryset(queryset, page, per_page)
        return success_response({
            "items": [cls.serialize(item) for item in items],
            "pagination": pagination,
        })

    @classmethod
    def get(cls, item_id) -> Dict[str, Any]:
        return success_response({"item": cls.serialize(cls.get_or_404(item_id))})

    @classmethod
    def _check_sku(cls, sku: str, exclude_id=None):
        queryset = cls.model.objects.filter(sku__iexact=sku, is_deleted=False)
        if exclude_id:
            queryset = queryset.exclude(id=exclude_id)
        if queryset.exists():
            raise ConflictError(f"SKU '{sku}' already exists", {"field": "sku", "sku": sku})

    @classmethod
    def _resolve_suppliers(cls, refs):
        suppliers = []
        for ref in refs or []:
            supplier = fetch_ref(Supplier, ref, "Supplier")
            if supplier is not None:
                suppliers.append(supplier)
        return suppliers

    @classmethod
    @transaction.atomic
    def create(cls,
               name: str,
               sku: str,
               unit_of_measure: str = "each",
               unit_price: Any = 0,
               minimum_stock_level: Any = 0,
               reorder_quantity: Any = 0,
               category: Any = None,
               primary_supplier: Any = None,
               suppliers: list = None) -> Dict[str, Any]:
        if not name:
            raise ValidationError("Item name is required", "name")
        if not sku:
            raise ValidationError("SKU is required", "sku")
        sku = sku.strip()
        cls._check_sku(sku)

        values = {
            "unit_price": to_line_decimal(unit_price, "unit_price"),
            "minimum_stock_level": to_line_decimal(minimum_stock_level, "minimum_stock_level"),
            "reorder_quantity": to_line_decimal(reorder_quantity, "reorder_quantity"),
        }
        for field, value in values.items():
            if value < 0:
                raise ValidationError(f"{field} cannot be negative", field)

        primary = fetch_ref(Supplier, primary_supplier, "Supplier")
        assigned = cls._resolve_suppliers(suppliers)

        try:
            with transaction.atomic():
                item = cls.model.objects.create(
                    name=name,
                    sku=sku,
                    unit_of_measure=unit_of_measure or "each",
                    category=fetch_ref(Category, category, "Category"),
                    primary_supplier=primary,
                    **values,
                )
        except IntegrityError:
            raise ConflictError(f"SKU '{sku}' already exists", {"field": "sku", "sku": sku})

        if primary and primary not in assigned:
            assigned.append(primary)
        if assigned:
            item.suppliers.set(assigned)

        logger.info("Stock item %s (%s) created", item.name, item.sku)
        return success_response({"item": cls.serialize(item)}, "Stock item created")

    @classmethod
    @transaction.atomic
    def update(cls, item_id, **kwargs) -> Dict[str, Any]:
        item = cls.get_or_404(item_id)

        if "sku" in kwargs and kwargs["sku"] and kwargs["sku"].strip() != item.sku:
            cls._check_sku(kwargs["sku"].strip(), exclude_id=item.id)
            item.sku = kwargs["sku"].strip()

        if "name" in kwargs:
            if not kwargs["name"]:
                raise ValidationError("Item name is required", "name")
            item.name = kwargs["name"]

        if "unit_of_measure" in kwargs and kwargs["unit_of_measure"]:
            item.unit_of_measure = kwargs["unit_of_measure"]

        for field in cls.DECIMAL_FIELDS:
            if field in kwargs:
                value = to_line_decimal(kwargs[field], field)
                if value < 0:
                    raise ValidationError(f"{field} cannot be negative", field)
                setattr(item, field, value)

        # An unusable reference leaves the link untouched; an explicit null clears it
        if "category" in kwargs:
            if kwargs["category"] is None:
                item.category = None
            elif resolve_ref(kwargs["category"]):
                item.category = fetch_ref(Category, kwargs["category"], "Category")

        if "primary_supplier" in kwargs:
            if kwargs["primary_supplier"] is None:
                item.primary_supplier = None
            elif resolve_ref(kwargs["primary_supplier"]):
                item.primary_supplier = fetch_ref(Supplier, kwargs["primary_supplier"], "Supplier")

        try:
            with transaction.atomic():
                item.save()
        except IntegrityError:
            raise ConflictError(f"SKU '{item.sku}' already exists", {"field": "sku", "sku": item.sku})

        if "suppliers" in kwargs:
            item.suppliers.set(cls._resolve_suppliers(kwargs["suppliers"]))
        if item.primary_supplier_id and not item.suppliers.filter(id=item.primary_supplier_id).exists():
            item.suppliers.add(item.primary_supplier)

        return success_response({"item": cls.serialize(item)}, "Stock item updated")

    @classmethod
    @transaction.atomic
    def set_primary_supplier(cls, item_id, supplier: Any) -> Dict[str, Any]:
        item = cls.get_or_404(item_id)
        supplier_obj = fetch_ref(Supplier, supplier, "Supplier", "supplier", required=True)

        item.primary_supplier = supplier_obj
        item.save(update_fields=["primary_supplier", "updated_at"])
        item.suppliers.add(supplier_obj)

        logger.info("Primary supplier for %s set to %s", item.sku, supplier_obj.name)
        return success_response({"item": cls.serialize(item)}, "Primary supplier updated")

    @classmethod
    @transaction.atomic
    def delete(cls, item_id) -> Dict[str, Any]:
        item = cls.get_or_404(item_id)
        item.is_deleted = True
        item.save(update_fields=["is_deleted", "updated_at"])
        return success_response({"id": str(item.id)}, "Stock item deleted")

    @classmethod
    def require(cls, value: Any, field: str = "stock_item") -> StockItem:
        item_id = resolve_ref(value)
        if item_id is None:
            raise ValidationError("Stock item is required", field)
        item = cls.get_by_id(item_id)
        if item is None:
            raise NotFoundError("Stock item", item_id)
        return item
