import logging
from typing import Dict, Any, List
from django.utils import timezone

from stock.models import InventoryCount, CountedItem, Bin, StockMovement
from stock.services.base_service import (
    ValidationError, to_line_decimal, decimal_str, id_str, fetch_ref, parse_date_value,
)
from stock.services.item_service import StockItemService
from stock.services.level_service import StockLevelService
from stock.services.references import resolve_ref
from stock.services.workflow_service import DocumentWorkflowService

logger = logging.getLogger(__name__)


class CountService(DocumentWorkflowService):
    model = InventoryCount
    document_type = "InventoryCount"
    number_field = "count_number"
    line_relation = "counted_items"
    site_lookups = ("bin__site_id",)
    select_related = ("bin", "bin__site", "counted_by", "approved_by")
    actions = {
        "submit": "pending-approval",
        "approve": "approved",
        "reject": "rejected",
        "cancel": "cancelled",
        "complete": "completed",
    }

    @classmethod
    def serialize_line(cls, line: CountedItem) -> Dict[str, Any]:
        return {
            "id": line.id,
            "stock_item": StockItemService.serialize_brief(line.stock_item),
            "counted_quantity": decimal_str(line.counted_quantity),
            "system_quantity_at_count_time": decimal_str(line.system_quantity_at_count_time),
            "variance": decimal_str(line.variance),
        }

    @classmethod
    def serialize(cls, count: InventoryCount) -> Dict[str, Any]:
        lines = list(count.counted_items.select_related("stock_item"))
        return {
            "id": str(count.id),
            "count_number": count.count_number,
            "count_date": count.count_date.isoformat(),
            "status": count.status,
            "bin": (
                {"id": str(count.bin_id), "name": count.bin.name, "site": str(count.bin.site_id)}
                if count.bin_id else None
            ),
            "counted_by": id_str(count.counted_by_id),
            "approved_by": id_str(count.approved_by_id),
            "approved_at": count.approved_at.isoformat() if count.approved_at else None,
            "completed_at": count.completed_at.isoformat() if count.completed_at else None,
            "notes": count.notes,
            "counted_items": [cls.serialize_line(line) for line in lines],
            "summary": {
                "total_items": len(lines),
                "items_with_variance": sum(1 for line in lines if line.variance != 0),
            },
            "created_at": count.created_at.isoformat(),
            "updated_at": count.updated_at.isoformat(),
        }

    @classmethod
    def site_ids(cls, count: InventoryCount) -> List[str]:
        return [str(count.bin.site_id)] if count.bin_id else []

    @classmethod
    def _new_instance(cls, actor, data: Dict[str, Any]) -> InventoryCount:
        return InventoryCount(counted_by=actor, count_date=timezone.now())

    @classmethod
    def _apply_fields(cls, count: InventoryCount, data: Dict[str, Any], actor):
        if "count_date" in data:
            count.count_date = (
                parse_date_value(data["count_date"], "count_date", with_time=True)
                or count.count_date
            )
        if "notes" in data:
            count.notes = data["notes"] or ""

        if "bin" in data and resolve_ref(data["bin"]):
            bin = fetch_ref(Bin, data["bin"], "Bin")
            if bin.id != count.bin_id:
                count.bin = bin
                count._resnapshot = True

    @classmethod
    def _replace_lines(cls, count: InventoryCount, lines: List[Dict[str, Any]], actor):
        lines = cls._lines_payload(lines, "counted_items")
        if lines and count.bin_id is None:
            raise ValidationError("Choose the bin before recording counted items", "bin")

        built = []
        for index, line in enumerate(lines):
            item = StockItemService.require(line.get("stock_item"), f"counted_items[{index}].stock_item")
            counted_field = f"counted_items[{index}].counted_quantity"
            counted = to_line_decimal(line.get("counted_quantity", line.get("quantity")), counted_field)
            if counted < 0:
                raise ValidationError("Counted quantity cannot be negative", counted_field)

            # The system quantity is always read here, never taken from the request
            system = StockLevelService.get_quantity(item.id, count.bin_id)
            variance = to_line_decimal(counted - system, f"counted_items[{index}].variance")
            built.append(CountedItem(
                count=count,
                stock_item=item,
                counted_quantity=counted,
                system_quantity_at_count_time=system,
                variance=variance,
                position=index,
            ))

        count.counted_items.all().delete()
        CountedItem.objects.bulk_create(built)

    @classmethod
    def _refresh_derived(cls, count: InventoryCount, actor):
        if not getattr(count, "_resnapshot", False):
            return
        for line in count.counted_items.all():
            system = StockLevelService.get_quantity(line.stock_item_id, count.bin_id)
            line.system_quantity_at_count_time = system
            line.variance = line.counted_quantity - system
            line.save(update_fields=["system_quantity_at_count_time", "variance"])
        count._resnapshot = False

    @classmethod
    def _effect_apply_count(cls, count: InventoryCount, actor, payload):
        corrected = 0
        for line in count.counted_items.select_related("stock_item"):
            if line.variance == 0:
                continue
            StockLevelService.adjust(
                stock_item=line.stock_item,
                bin=count.bin,
                quantity=line.variance,
                movement_type=StockMovement.MovementType.COUNT_CORRECTION,
                user=actor,
                reference_type=cls.document_type,
                reference_id=count.id,
                reference_number=count.count_number,
                counted=True,
            )
            corrected += 1
        logger.info("Count %s applied: %d correction(s) in %s", count.count_number, corrected, count.bin.name)
