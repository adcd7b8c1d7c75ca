import logging
from typing import Dict, Any, List
from django.utils import timezone

from stock.models import StockAdjustment, AdjustedItem, Bin, StockMovement
from stock.services.base_service import (
    ValidationError, to_decimal, to_line_decimal, decimal_str, id_str, fetch_ref, parse_date_value,
)
from stock.services.item_service import StockItemService
from stock.services.level_service import StockLevelService
from stock.services.references import resolve_ref
from stock.services.workflow_service import DocumentWorkflowService

logger = logging.getLogger(__name__)


class AdjustmentService(DocumentWorkflowService):
    model = StockAdjustment
    document_type = "StockAdjustment"
    number_field = "adjustment_number"
    line_relation = "adjusted_items"
    site_lookups = ("bin__site_id",)
    select_related = ("bin", "bin__site", "adjusted_by", "approved_by")
    actions = {
        "submit": "pending-approval",
        "approve": "approved",
        "reject": "rejected",
        "cancel": "cancelled",
        "complete": "completed",
    }

    Types = StockAdjustment.AdjustmentType

    @classmethod
    def serialize_line(cls, line: AdjustedItem) -> Dict[str, Any]:
        return {
            "id": line.id,
            "stock_item": StockItemService.serialize_brief(line.stock_item),
            "adjusted_quantity": decimal_str(line.adjusted_quantity),
            "reason": line.reason,
        }

    @classmethod
    def serialize(cls, adjustment: StockAdjustment) -> Dict[str, Any]:
        return {
            "id": str(adjustment.id),
            "adjustment_number": adjustment.adjustment_number,
            "adjustment_date": adjustment.adjustment_date.isoformat(),
            "status": adjustment.status,
            "adjustment_type": adjustment.adjustment_type or None,
            "bin": (
                {"id": str(adjustment.bin_id), "name": adjustment.bin.name, "site": str(adjustment.bin.site_id)}
                if adjustment.bin_id else None
            ),
            "adjusted_by": id_str(adjustment.adjusted_by_id),
            "approved_by": id_str(adjustment.approved_by_id),
            "approved_at": adjustment.approved_at.isoformat() if adjustment.approved_at else None,
            "completed_at": adjustment.completed_at.isoformat() if adjustment.completed_at else None,
            "notes": adjustment.notes,
            "adjusted_items": [
                cls.serialize_line(line)
                for line in adjustment.adjusted_items.select_related("stock_item")
            ],
            "created_at": adjustment.created_at.isoformat(),
            "updated_at": adjustment.updated_at.isoformat(),
        }

    @classmethod
    def site_ids(cls, adjustment: StockAdjustment) -> List[str]:
        return [str(adjustment.bin.site_id)] if adjustment.bin_id else []

    @classmethod
    def _new_instance(cls, actor, data: Dict[str, Any]) -> StockAdjustment:
        return StockAdjustment(adjusted_by=actor, adjustment_date=timezone.now())

    @classmethod
    def _apply_fields(cls, adjustment: StockAdjustment, data: Dict[str, Any], actor):
        if "adjustment_date" in data:
            adjustment.adjustment_date = (
                parse_date_value(data["adjustment_date"], "adjustment_date", with_time=True)
                or adjustment.adjustment_date
            )
        if "notes" in data:
            adjustment.notes = data["notes"] or ""

        if "adjustment_type" in data and data["adjustment_type"]:
            valid_types = [c[0] for c in cls.Types.choices]
            if data["adjustment_type"] not in valid_types:
                raise ValidationError(f"Invalid adjustment type. Valid: {valid_types}", "adjustment_type")
            adjustment.adjustment_type = data["adjustment_type"]

        if "bin" in data and resolve_ref(data["bin"]):
            adjustment.bin = fetch_ref(Bin, data["bin"], "Bin")

    @classmethod
    def _replace_lines(cls, adjustment: StockAdjustment, lines: List[Dict[str, Any]], actor):
        lines = cls._lines_payload(lines, "adjusted_items")
        built = []
        for index, line in enumerate(lines):
            item = StockItemService.require(line.get("stock_item"), f"adjusted_items[{index}].stock_item")
            quantity_field = f"adjusted_items[{index}].adjusted_quantity"
            quantity = to_line_decimal(line.get("adjusted_quantity", line.get("quantity")), quantity_field)
            if quantity == 0:
                raise ValidationError("Quantity cannot be zero", quantity_field)
            built.append(AdjustedItem(
                adjustment=adjustment,
                stock_item=item,
                adjusted_quantity=quantity,
                reason=line.get("reason") or "",
                position=index,
            ))

        adjustment.adjusted_items.all().delete()
        AdjustedItem.objects.bulk_create(built)

    @classmethod
    def signed_change(cls, adjustment_type: str, quantity):
        """
        Stock change for one line: found stock adds, a count correction keeps
        its sign, every loss type removes.
        """
        quantity = to_decimal(quantity)
        if adjustment_type == cls.Types.POSITIVE_ADJUSTMENT:
            return abs(quantity)
        if adjustment_type == cls.Types.INVENTORY_CORRECTION:
            return quantity
        return -abs(quantity)

    @classmethod
    def _effect_apply_adjustment(cls, adjustment: StockAdjustment, actor, payload):
        for line in adjustment.adjusted_items.select_related("stock_item"):
            StockLevelService.adjust(
                stock_item=line.stock_item,
                bin=adjustment.bin,
                quantity=cls.signed_change(adjustment.adjustment_type, line.adjusted_quantity),
                movement_type=StockMovement.MovementType.ADJUSTMENT,
                user=actor,
                reference_type=cls.document_type,
                reference_id=adjustment.id,
                reference_number=adjustment.adjustment_number,
                notes=line.reason or adjustment.get_adjustment_type_display(),
            )
        logger.info("Adjustment %s (%s) applied to %s", adjustment.adjustment_number,
                    adjustment.adjustment_type, adjustment.bin.name)
