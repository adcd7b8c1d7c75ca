import logging
from typing import Dict, Any, Optional, List
from decimal import Decimal
from django.conf import settings
from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from stock.models import StockLevel, StockMovement, StockItem, Bin
from stock.services.base_service import (
    BaseService, success_response, paginate_queryset,
    ValidationError, InsufficientStockError,
    to_decimal, decimal_str, id_str,
)

logger = logging.getLogger(__name__)


class StockLevelService(BaseService):
    model = StockLevel

    @classmethod
    def serialize(cls, level: StockLevel) -> Dict[str, Any]:
        return {
            "id": level.id,
            "stock_item": {
                "id": str(level.stock_item_id),
                "name": level.stock_item.name,
                "sku": level.stock_item.sku,
                "unit_of_measure": level.stock_item.unit_of_measure,
            },
            "bin": {
                "id": str(level.bin_id),
                "name": level.bin.name,
                "site": str(level.bin.site_id),
            },
            "quantity": decimal_str(level.quantity),
            "last_counted_at": level.last_counted_at.isoformat() if level.last_counted_at else None,
            "last_movement_at": level.last_movement_at.isoformat() if level.last_movement_at else None,
        }

    @classmethod
    def serialize_movement(cls, movement: StockMovement) -> Dict[str, Any]:
        return {
            "id": movement.id,
            "stock_item": str(movement.stock_item_id),
            "bin": str(movement.bin_id),
            "movement_type": movement.movement_type,
            "quantity": decimal_str(movement.quantity),
            "quantity_before": decimal_str(movement.quantity_before),
            "quantity_after": decimal_str(movement.quantity_after),
            "reference_type": movement.reference_type,
            "reference_id": movement.reference_id,
            "reference_number": movement.reference_number,
            "moved_by": id_str(movement.moved_by_id),
            "created_at": movement.created_at.isoformat(),
        }

    @classmethod
    def get_all(cls,
                site_id: str = None,
                bin_id: str = None,
                stock_item_id: str = None,
                queryset=None,
                page: int = 1,
                per_page: int = 50) -> Dict[str, Any]:
        if queryset is None:
            queryset = cls.model.objects.all()
        queryset = queryset.select_related("stock_item", "bin").filter(stock_item__is_deleted=False)

        if site_id:
            queryset = queryset.filter(bin__site_id=site_id)
        if bin_id:
            queryset = queryset.filter(bin_id=bin_id)
        if stock_item_id:
            queryset = queryset.filter(stock_item_id=stock_item_id)

        queryset = queryset.order_by("stock_item__name", "bin__name")
        levels, pagination = paginate_queryset(queryset, page, per_page)

        return success_response({
            "levels": [cls.serialize(lvl) for lvl in levels],
            "pagination": pagination
        })

    @classmethod
    def get_quantity(cls, stock_item_id, bin_id) -> Decimal:
        level = cls.model.objects.filter(stock_item_id=stock_item_id, bin_id=bin_id).first()
        return level.quantity if level else Decimal("0")

    @classmethod
    def get_site_quantity(cls, stock_item_id, site_id=None) -> Decimal:
        queryset = cls.model.objects.filter(stock_item_id=stock_item_id)
        if site_id:
            queryset = queryset.filter(bin__site_id=site_id)
        return queryset.aggregate(total=Sum("quantity"))["total"] or Decimal("0")

    @classmethod
    def allow_negative_stock(cls) -> bool:
        return bool(settings.CATERFLOW.get("ALLOW_NEGATIVE_STOCK", False))

    @classmethod
    @transaction.atomic
    def adjust(cls,
               stock_item: StockItem,
               bin: Bin,
               quantity: Decimal,
               movement_type: str,
               user=None,
               reference_type: str = "",
               reference_id: Any = None,
               reference_number: str = "",
               notes: str = "",
               counted: bool = False) -> StockMovement:
        """
        Apply a signed ``quantity`` change to the item's level in ``bin`` and
        write the matching ledger row.
        """
        valid_types = [c[0] for c in StockMovement.MovementType.choices]
        if movement_type not in valid_types:
            raise ValidationError(f"Invalid movement type. Valid: {valid_types}", "movement_type")

        quantity = to_decimal(quantity)

        level, _ = cls.model.objects.select_for_update().get_or_create(
            stock_item=stock_item,
            bin=bin,
            defaults={"quantity": Decimal("0")},
        )
        quantity_before = level.quantity
        new_quantity = quantity_before + quantity

        if quantity < 0 and new_quantity < 0 and not cls.allow_negative_stock():
            raise InsufficientStockError(stock_item.name, abs(quantity), quantity_before)

        now = timezone.now()
        level.quantity = new_quantity
        level.last_movement_at = now
        update_fields = ["quantity", "last_movement_at", "updated_at"]
        if counted:
            level.last_counted_at = now
            update_fields.append("last_counted_at")
        level.save(update_fields=update_fields)

        movement = StockMovement.objects.create(
            stock_item=stock_item,
            bin=bin,
            movement_type=movement_type,
            quantity=quantity,
            quantity_before=quantity_before,
            quantity_after=new_quantity,
            reference_type=reference_type or "",
            reference_id=str(reference_id) if reference_id else "",
            reference_number=reference_number or "",
            moved_by=user,
            notes=notes or "",
        )

        logger.debug(
            "%s %s %+f in %s (%s -> %s)",
            movement_type, stock_item.sku, quantity, bin.name, quantity_before, new_quantity
        )
        return movement

    @classmethod
    def get_movements(cls, reference_type: str = None, reference_id: Any = None,
                      stock_item_id: str = None, page: int = 1, per_page: int = 50) -> Dict[str, Any]:
        queryset = StockMovement.objects.all()
        if reference_type:
            queryset = queryset.filter(reference_type=reference_type)
        if reference_id:
            queryset = queryset.filter(reference_id=str(reference_id))
        if stock_item_id:
            queryset = queryset.filter(stock_item_id=stock_item_id)

        movements, pagination = paginate_queryset(queryset, page, per_page)
        return success_response({
            "movements": [cls.serialize_movement(m) for m in movements],
            "pagination": pagination,
        })

    @classmethod
    def order_quantity(cls, item: StockItem, current: Decimal) -> Decimal:
        if item.reorder_quantity and item.reorder_quantity > 0:
            return item.reorder_quantity
        return max(item.minimum_stock_level - current, Decimal("1"))

    @classmethod
    def find_low_stock(cls, site_id: str = None) -> List[Dict[str, Any]]:
        """
        Items whose stock (summed over the site's bins, or every bin when no
        site is given) has fallen to or below their minimum level.
        """
        items = (
            StockItem.objects
            .filter(is_deleted=False, minimum_stock_level__gt=0)
            .select_related("primary_supplier")
            .prefetch_related("suppliers")
            .order_by("name")
        )

        levels = cls.model.objects.all()
        if site_id:
            levels = levels.filter(bin__site_id=site_id)
        totals = {
            row["stock_item_id"]: row["total"]
            for row in levels.order_by().values("stock_item_id").annotate(total=Sum("quantity"))
        }

        low_stock = []
        for item in items:
            current = totals.get(item.id) or Decimal("0")
            if current > item.minimum_stock_level:
                continue

            supplier = item.primary_supplier
            if supplier is None:
                assigned = list(item.suppliers.all())
                supplier = assigned[0] if assigned else None

            low_stock.append({
                "item": item,
                "current_stock": current,
                "minimum_stock_level": item.minimum_stock_level,
                "order_quantity": cls.order_quantity(item, current),
                "supplier": supplier,
            })
        return low_stock

    @classmethod
    def get_low_stock_items(cls, site_id: str = None) -> Dict[str, Any]:
        low_stock = cls.find_low_stock(site_id)
        return success_response({
            "site": id_str(site_id),
            "items": [cls.serialize_low_stock(entry) for entry in low_stock],
            "count": len(low_stock),
        })

    @staticmethod
    def serialize_low_stock(entry: Dict[str, Any]) -> Dict[str, Any]:
        item = entry["item"]
        supplier = entry["supplier"]
        return {
            "stock_item": str(item.id),
            "sku": item.sku,
            "name": item.name,
            "unit_of_measure": item.unit_of_measure,
            "unit_price": decimal_str(item.unit_price),
            "current_stock": decimal_str(entry["current_stock"]),
            "minimum_stock_level": decimal_str(entry["minimum_stock_level"]),
            "order_quantity": decimal_str(entry["order_quantity"]),
            "supplier": {"id": str(supplier.id), "name": supplier.name} if supplier else None,
        }
