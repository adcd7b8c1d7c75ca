import logging
from collections import defaultdict
from decimal import Decimal
from typing import Dict, Any, List
from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from stock.models import DispatchLog, DispatchedItem, DispatchType, Bin, StockItem, StockMovement
from stock.services.base_service import (
    BaseService, success_response, ValidationError, ConflictError,
    to_line_decimal, check_total, decimal_str, id_str, fetch_ref, parse_date_value,
)
from stock.services.item_service import StockItemService
from stock.services.level_service import StockLevelService
from stock.services.references import resolve_ref
from stock.services.totals import recalculate, cost_per_person
from stock.services.workflow_service import DocumentWorkflowService

logger = logging.getLogger(__name__)


class DispatchService(DocumentWorkflowService):
    model = DispatchLog
    document_type = "DispatchLog"
    number_field = "dispatch_number"
    line_relation = "dispatched_items"
    site_lookups = ("source_bin__site_id",)
    select_related = ("source_bin", "source_bin__site", "dispatch_type", "dispatched_by")
    actions = {
        "pending": "pending",
        "partial": "partial",
        "complete": "complete",
    }

    @classmethod
    def serialize_line(cls, line: DispatchedItem) -> Dict[str, Any]:
        return {
            "id": line.id,
            "stock_item": StockItemService.serialize_brief(line.stock_item),
            "dispatched_quantity": decimal_str(line.dispatched_quantity),
            "unit_price": decimal_str(line.unit_price),
            "total_cost": decimal_str(line.total_cost),
            "notes": line.notes,
        }

    @classmethod
    def serialize(cls, dispatch: DispatchLog) -> Dict[str, Any]:
        return {
            "id": str(dispatch.id),
            "dispatch_number": dispatch.dispatch_number,
            "dispatch_date": dispatch.dispatch_date.isoformat(),
            "dispatch_type": (
                {"id": str(dispatch.dispatch_type_id), "name": dispatch.dispatch_type.name}
                if dispatch.dispatch_type_id else None
            ),
            "source_bin": {
                "id": str(dispatch.source_bin_id),
                "name": dispatch.source_bin.name,
                "site": str(dispatch.source_bin.site_id),
            },
            "dispatched_by": id_str(dispatch.dispatched_by_id),
            "people_fed": dispatch.people_fed,
            "evidence_status": dispatch.evidence_status,
            "total_cost": decimal_str(dispatch.total_cost),
            "cost_per_person": decimal_str(dispatch.cost_per_person),
            "notes": dispatch.notes,
            "dispatched_items": [
                cls.serialize_line(line)
                for line in dispatch.dispatched_items.select_related("stock_item")
            ],
            "created_at": dispatch.created_at.isoformat(),
            "updated_at": dispatch.updated_at.isoformat(),
        }

    @classmethod
    def site_ids(cls, dispatch: DispatchLog) -> List[str]:
        return [str(dispatch.source_bin.site_id)] if dispatch.source_bin_id else []

    @classmethod
    def _new_instance(cls, actor, data: Dict[str, Any]) -> DispatchLog:
        return DispatchLog(dispatched_by=actor, dispatch_date=timezone.now())

    @classmethod
    def _apply_fields(cls, dispatch: DispatchLog, data: Dict[str, Any], actor):
        if "dispatch_date" in data:
            dispatch.dispatch_date = (
                parse_date_value(data["dispatch_date"], "dispatch_date", with_time=True)
                or dispatch.dispatch_date
            )
        if "notes" in data:
            dispatch.notes = data["notes"] or ""

        if "people_fed" in data:
            try:
                people_fed = int(data["people_fed"] or 0)
            except (TypeError, ValueError):
                raise ValidationError("people_fed must be a whole number", "people_fed")
            if people_fed < 0:
                raise ValidationError("people_fed cannot be negative", "people_fed")
            dispatch.people_fed = people_fed

        if "dispatch_type" in data:
            if data["dispatch_type"] is None:
                dispatch.dispatch_type = None
            elif resolve_ref(data["dispatch_type"]):
                dispatch.dispatch_type = fetch_ref(DispatchType, data["dispatch_type"], "Dispatch type")

        if "source_bin" in data and resolve_ref(data["source_bin"]):
            source_bin = fetch_ref(Bin, data["source_bin"], "Bin")
            if source_bin.id != dispatch.source_bin_id:
                dispatch.source_bin = source_bin
                dispatch._stock_dirty = True

        if dispatch.source_bin_id is None:
            raise ValidationError("Source bin is required", "source_bin")

    @classmethod
    def _replace_lines(cls, dispatch: DispatchLog, lines: List[Dict[str, Any]], actor):
        lines = cls._lines_payload(lines, "dispatched_items")
        built = []
        for index, line in enumerate(lines):
            item = StockItemService.require(line.get("stock_item"), f"dispatched_items[{index}].stock_item")

            quantity_field = f"dispatched_items[{index}].dispatched_quantity"
            quantity = to_line_decimal(line.get("dispatched_quantity", line.get("quantity")), quantity_field)
            if quantity < 0:
                raise ValidationError("Quantity cannot be negative", quantity_field)

            if line.get("unit_price") in (None, ""):
                unit_price = item.unit_price
            else:
                unit_price = to_line_decimal(line["unit_price"], f"dispatched_items[{index}].unit_price")
            check_total(quantity * unit_price, f"dispatched_items[{index}].total_cost")

            built.append(DispatchedItem(
                dispatch=dispatch,
                stock_item=item,
                dispatched_quantity=quantity,
                unit_price=unit_price,
                notes=line.get("notes") or "",
                position=index,
            ))

        dispatch.dispatched_items.all().delete()
        DispatchedItem.objects.bulk_create(built)
        dispatch._stock_dirty = True

    @classmethod
    def _refresh_derived(cls, dispatch: DispatchLog, actor):
        lines = list(dispatch.dispatched_items.select_related("stock_item"))
        totals = recalculate(
            {"dispatched_quantity": line.dispatched_quantity, "unit_price": line.unit_price}
            for line in lines
        )
        for line, line_total in zip(lines, totals.line_totals):
            if line.total_cost != line_total:
                line.total_cost = line_total
                line.save(update_fields=["total_cost"])

        dispatch.total_cost = check_total(totals.grand_total, "total_cost")
        dispatch.cost_per_person = cost_per_person(totals.grand_total, dispatch.people_fed)

        if getattr(dispatch, "_stock_dirty", False):
            cls._sync_stock(dispatch, lines, actor)
            dispatch._stock_dirty = False

    # ==================== STOCK ====================

    @classmethod
    def _outstanding(cls, dispatch: DispatchLog) -> Dict[tuple, Decimal]:
        """Net quantity this dispatch currently holds out of each (item, bin)."""
        rows = (
            StockMovement.objects
            .filter(reference_type=cls.document_type, reference_id=str(dispatch.id))
            .order_by()
            .values("stock_item_id", "bin_id")
            .annotate(net=Sum("quantity"))
        )
        return {(row["stock_item_id"], row["bin_id"]): row["net"] for row in rows if row["net"]}

    @classmethod
    def _release_stock(cls, dispatch: DispatchLog, actor):
        for (item_id, bin_id), net in cls._outstanding(dispatch).items():
            StockLevelService.adjust(
                stock_item=StockItem.objects.get(id=item_id),
                bin=Bin.objects.get(id=bin_id),
                quantity=-net,
                movement_type=StockMovement.MovementType.DISPATCH_REVERSAL,
                user=actor,
                reference_type=cls.document_type,
                reference_id=dispatch.id,
                reference_number=dispatch.dispatch_number,
            )

    @classmethod
    def _sync_stock(cls, dispatch: DispatchLog, lines: List[DispatchedItem], actor):
        cls._release_stock(dispatch, actor)

        required = defaultdict(Decimal)
        items = {}
        for line in lines:
            if line.dispatched_quantity > 0:
                required[line.stock_item_id] += line.dispatched_quantity
                items[line.stock_item_id] = line.stock_item

        for item_id, quantity in required.items():
            StockLevelService.adjust(
                stock_item=items[item_id],
                bin=dispatch.source_bin,
                quantity=-quantity,
                movement_type=StockMovement.MovementType.DISPATCH_OUT,
                user=actor,
                reference_type=cls.document_type,
                reference_id=dispatch.id,
                reference_number=dispatch.dispatch_number,
            )

    @classmethod
    def _before_delete(cls, dispatch: DispatchLog, actor):
        cls._release_stock(dispatch, actor)


class DispatchTypeService(BaseService):
    model = DispatchType

    @classmethod
    def serialize(cls, dispatch_type: DispatchType) -> Dict[str, Any]:
        return {
            "id": str(dispatch_type.id),
            "name": dispatch_type.name,
            "description": dispatch_type.description,
            "is_active": dispatch_type.is_active,
        }

    @classmethod
    def list(cls, include_inactive: bool = False) -> Dict[str, Any]:
        queryset = cls.model.objects.all() if include_inactive else cls.get_active()
        return success_response({"dispatch_types": [cls.serialize(t) for t in queryset]})

    @classmethod
    @transaction.atomic
    def create(cls, name: str, description: str = "") -> Dict[str, Any]:
        if not name:
            raise ValidationError("Name is required", "name")
        if cls.model.objects.filter(name__iexact=name).exists():
            raise ConflictError(f"Dispatch type '{name}' already exists", {"field": "name"})

        dispatch_type = cls.model.objects.create(name=name, description=description or "")
        return success_response({"dispatch_type": cls.serialize(dispatch_type)}, "Dispatch type created")
