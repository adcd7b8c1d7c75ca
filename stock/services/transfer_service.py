"""
Internal Transfer Service - move stock between bins, possibly across sites
"""
import logging
from typing import Dict, Any, List
from django.utils import timezone

from main.services.access_service import AccessService
from stock.models import InternalTransfer, TransferredItem, Bin, StockMovement
from stock.services.base_service import (
    ValidationError, InsufficientStockError, to_line_decimal, decimal_str, id_str, fetch_ref, parse_date_value,
)
from stock.services.item_service import StockItemService
from stock.services.level_service import StockLevelService
from stock.services.references import resolve_ref
from stock.services.workflow_service import DocumentWorkflowService

logger = logging.getLogger(__name__)


class TransferService(DocumentWorkflowService):
    model = InternalTransfer
    document_type = "InternalTransfer"
    number_field = "transfer_number"
    line_relation = "transferred_items"
    site_lookups = ("from_bin__site_id", "to_bin__site_id")
    select_related = ("from_bin", "from_bin__site", "to_bin", "to_bin__site", "transferred_by", "approved_by")
    actions = {
        "submit": "pending-approval",
        "approve": "approved",
        "reject": "rejected",
        "cancel": "cancelled",
        "complete": "completed",
    }

    # ==================== SERIALIZATION ====================

    @staticmethod
    def _bin_brief(bin):
        if bin is None:
            return None
        return {"id": str(bin.id), "name": bin.name, "site": str(bin.site_id)}

    @classmethod
    def serialize_line(cls, line: TransferredItem) -> Dict[str, Any]:
        return {
            "id": line.id,
            "stock_item": StockItemService.serialize_brief(line.stock_item),
            "transferred_quantity": decimal_str(line.transferred_quantity),
        }

    @classmethod
    def serialize(cls, transfer: InternalTransfer) -> Dict[str, Any]:
        return {
            "id": str(transfer.id),
            "transfer_number": transfer.transfer_number,
            "transfer_date": transfer.transfer_date.isoformat(),
            "status": transfer.status,
            "from_bin": cls._bin_brief(transfer.from_bin),
            "to_bin": cls._bin_brief(transfer.to_bin),
            "transferred_by": id_str(transfer.transferred_by_id),
            "approved_by": id_str(transfer.approved_by_id),
            "approved_at": transfer.approved_at.isoformat() if transfer.approved_at else None,
            "completed_by": id_str(transfer.completed_by_id),
            "completed_at": transfer.completed_at.isoformat() if transfer.completed_at else None,
            "notes": transfer.notes,
            "transferred_items": [
                cls.serialize_line(line)
                for line in transfer.transferred_items.select_related("stock_item")
            ],
            "created_at": transfer.created_at.isoformat(),
            "updated_at": transfer.updated_at.isoformat(),
        }

    # ==================== ACCESS ====================

    @classmethod
    def site_ids(cls, transfer: InternalTransfer) -> List[str]:
        sites = []
        for bin in (transfer.from_bin, transfer.to_bin):
            if bin is not None and str(bin.site_id) not in sites:
                sites.append(str(bin.site_id))
        return sites

    @classmethod
    def check_access(cls, actor, transfer: InternalTransfer):
        """A site-restricted actor may handle transfers into or out of their site."""
        AccessService.require_actor(actor)
        if actor.is_multi_site:
            return
        sites = cls.site_ids(transfer)
        if not sites or str(actor.associated_site_id) in sites:
            return
        AccessService.require_site_access(actor, sites[0])

    # ==================== EDITING ====================

    @classmethod
    def _new_instance(cls, actor, data: Dict[str, Any]) -> InternalTransfer:
        return InternalTransfer(transferred_by=actor, transfer_date=timezone.now())

    @classmethod
    def _apply_fields(cls, transfer: InternalTransfer, data: Dict[str, Any], actor):
        if "transfer_date" in data:
            transfer.transfer_date = (
                parse_date_value(data["transfer_date"], "transfer_date", with_time=True)
                or transfer.transfer_date
            )
        if "notes" in data:
            transfer.notes = data["notes"] or ""

        if "from_bin" in data and resolve_ref(data["from_bin"]):
            transfer.from_bin = fetch_ref(Bin, data["from_bin"], "Bin")
        if "to_bin" in data and resolve_ref(data["to_bin"]):
            transfer.to_bin = fetch_ref(Bin, data["to_bin"], "Bin")

        if transfer.from_bin_id and transfer.from_bin_id == transfer.to_bin_id:
            raise ValidationError("Source and destination bins must differ", "to_bin")

    @classmethod
    def _replace_lines(cls, transfer: InternalTransfer, lines: List[Dict[str, Any]], actor):
        lines = cls._lines_payload(lines, "transferred_items")
        built = []
        for index, line in enumerate(lines):
            item = StockItemService.require(line.get("stock_item"), f"transferred_items[{index}].stock_item")
            quantity_field = f"transferred_items[{index}].transferred_quantity"
            quantity = to_line_decimal(line.get("transferred_quantity", line.get("quantity")), quantity_field)
            if quantity <= 0:
                raise ValidationError("Quantity must be greater than zero", quantity_field)
            built.append(TransferredItem(
                transfer=transfer,
                stock_item=item,
                transferred_quantity=quantity,
                position=index,
            ))

        transfer.transferred_items.all().delete()
        TransferredItem.objects.bulk_create(built)

    # ==================== STOCK ====================

    @classmethod
    def _effect_move_stock(cls, transfer: InternalTransfer, actor, payload):
        lines = list(transfer.transferred_items.select_related("stock_item"))

        # Check every line first so nothing moves when one of them is short
        if not StockLevelService.allow_negative_stock():
            for line in lines:
                available = StockLevelService.get_quantity(line.stock_item_id, transfer.from_bin_id)
                if available < line.transferred_quantity:
                    raise InsufficientStockError(line.stock_item.name, line.transferred_quantity, available)

        for line in lines:
            common = dict(
                stock_item=line.stock_item,
                user=actor,
                reference_type=cls.document_type,
                reference_id=transfer.id,
                reference_number=transfer.transfer_number,
            )
            StockLevelService.adjust(
                bin=transfer.from_bin,
                quantity=-line.transferred_quantity,
                movement_type=StockMovement.MovementType.TRANSFER_OUT,
                **common,
            )
            StockLevelService.adjust(
                bin=transfer.to_bin,
                quantity=line.transferred_quantity,
                movement_type=StockMovement.MovementType.TRANSFER_IN,
                **common,
            )

        logger.info(
            "Transfer %s moved %d line(s) from %s to %s",
            transfer.transfer_number, len(lines), transfer.from_bin.name, transfer.to_bin.name
        )
