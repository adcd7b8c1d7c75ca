"""
Goods Receipt Service - book deliveries into a bin, optionally against an
approved purchase order.

A receipt may bring in only part of an order. Once the completed receipts
cover every ordered quantity the purchase order is processed.
"""
import logging
from decimal import Decimal
from typing import Dict, Any, List
from django.utils import timezone

from stock.models import GoodsReceipt, ReceivedItem, PurchaseOrder, Bin, StockMovement
from stock.services.base_service import (
    ValidationError, PreconditionFailedError,
    to_line_decimal, check_total, decimal_str, id_str, fetch_ref, parse_date_value,
)
from stock.services.item_service import StockItemService
from stock.services.level_service import StockLevelService
from stock.services.purchase_service import PurchaseOrderService
from stock.services.references import resolve_ref
from stock.services.totals import recalculate
from stock.services.workflow_service import DocumentWorkflowService

logger = logging.getLogger(__name__)


class GoodsReceiptService(DocumentWorkflowService):
    model = GoodsReceipt
    document_type = "GoodsReceipt"
    number_field = "receipt_number"
    line_relation = "received_items"
    site_lookups = ("receiving_bin__site_id", "purchase_order__site_id")
    select_related = ("purchase_order", "receiving_bin", "receiving_bin__site", "received_by")
    actions = {
        "complete": "completed",
        "cancel": "cancelled",
    }

    # ==================== SERIALIZATION ====================

    @classmethod
    def serialize_line(cls, line: ReceivedItem) -> Dict[str, Any]:
        return {
            "id": line.id,
            "stock_item": StockItemService.serialize_brief(line.stock_item),
            "ordered_quantity": decimal_str(line.ordered_quantity),
            "received_quantity": decimal_str(line.received_quantity),
            "unit_price": decimal_str(line.unit_price),
            "batch_number": line.batch_number,
            "expiry_date": line.expiry_date.isoformat() if line.expiry_date else None,
            "condition": line.condition,
        }

    @classmethod
    def serialize(cls, receipt: GoodsReceipt) -> Dict[str, Any]:
        po = receipt.purchase_order
        return {
            "id": str(receipt.id),
            "receipt_number": receipt.receipt_number,
            "receipt_date": receipt.receipt_date.isoformat(),
            "status": receipt.status,
            "purchase_order": (
                {"id": str(po.id), "po_number": po.po_number, "status": po.status}
                if po is not None else None
            ),
            "receiving_bin": (
                {"id": str(receipt.receiving_bin_id), "name": receipt.receiving_bin.name,
                 "site": str(receipt.receiving_bin.site_id)}
                if receipt.receiving_bin_id else None
            ),
            "received_by": id_str(receipt.received_by_id),
            "completed_at": receipt.completed_at.isoformat() if receipt.completed_at else None,
            "total_amount": decimal_str(receipt.total_amount),
            "notes": receipt.notes,
            "received_items": [
                cls.serialize_line(line)
                for line in receipt.received_items.select_related("stock_item")
            ],
            "created_at": receipt.created_at.isoformat(),
            "updated_at": receipt.updated_at.isoformat(),
        }

    @classmethod
    def site_ids(cls, receipt: GoodsReceipt) -> List[str]:
        if receipt.receiving_bin_id:
            return [str(receipt.receiving_bin.site_id)]
        if receipt.purchase_order_id and receipt.purchase_order.site_id:
            return [str(receipt.purchase_order.site_id)]
        return []

    # ==================== PURCHASE ORDER LINK ====================

    @staticmethod
    def _require_receivable(po: PurchaseOrder):
        if po.status != PurchaseOrder.Status.APPROVED:
            raise PreconditionFailedError(
                f"Purchase order {po.po_number} is {po.status}; only approved orders can be received",
                {"purchase_order": str(po.id), "current_status": po.status}
            )

    @classmethod
    def outstanding_lines(cls, po: PurchaseOrder) -> List[Dict[str, Any]]:
        """Receipt lines for everything still expected on ``po``."""
        outstanding = PurchaseOrderService.outstanding_quantities(po)
        lines = []
        for line in po.ordered_items.all():
            quantity = min(line.ordered_quantity, outstanding.get(line.stock_item_id, Decimal("0")))
            if quantity <= 0:
                continue
            outstanding[line.stock_item_id] -= quantity
            lines.append({
                "stock_item": str(line.stock_item_id),
                "ordered_quantity": quantity,
                "received_quantity": quantity,
                "unit_price": line.unit_price,
            })
        return lines

    # ==================== EDITING ====================

    @classmethod
    def create(cls, actor, data: Dict[str, Any]) -> Dict[str, Any]:
        data = dict(data or {})
        if not data.get(cls.line_relation) and resolve_ref(data.get("purchase_order")):
            po = fetch_ref(PurchaseOrder, data["purchase_order"], "Purchase order")
            data[cls.line_relation] = cls.outstanding_lines(po)
        return super().create(actor, data)

    @classmethod
    def _new_instance(cls, actor, data: Dict[str, Any]) -> GoodsReceipt:
        return GoodsReceipt(received_by=actor, receipt_date=timezone.now())

    @classmethod
    def _apply_fields(cls, receipt: GoodsReceipt, data: Dict[str, Any], actor):
        if "receipt_date" in data:
            receipt.receipt_date = (
                parse_date_value(data["receipt_date"], "receipt_date", with_time=True)
                or receipt.receipt_date
            )
        if "notes" in data:
            receipt.notes = data["notes"] or ""

        if "receiving_bin" in data and resolve_ref(data["receiving_bin"]):
            receipt.receiving_bin = fetch_ref(Bin, data["receiving_bin"], "Bin")

        if "purchase_order" in data and resolve_ref(data["purchase_order"]):
            po = fetch_ref(PurchaseOrder, data["purchase_order"], "Purchase order")
            cls._require_receivable(po)
            receipt.purchase_order = po
            if receipt.receiving_bin_id is None and po.receiving_bin_id:
                receipt.receiving_bin = po.receiving_bin

        po = receipt.purchase_order
        if po is not None and receipt.receiving_bin_id and receipt.receiving_bin.site_id != po.site_id:
            raise ValidationError("Receiving bin must belong to the order's site", "receiving_bin")

    @classmethod
    def _replace_lines(cls, receipt: GoodsReceipt, lines: List[Dict[str, Any]], actor):
        lines = cls._lines_payload(lines, "received_items")
        po = receipt.purchase_order

        ordered_prices, outstanding = {}, {}
        if po is not None:
            for line in po.ordered_items.all():
                ordered_prices.setdefault(line.stock_item_id, line.unit_price)
            outstanding = PurchaseOrderService.outstanding_quantities(po)

        valid_conditions = ReceivedItem.Condition.values
        built = []
        for index, line in enumerate(lines):
            prefix = f"received_items[{index}]"
            item = StockItemService.require(line.get("stock_item"), f"{prefix}.stock_item")
            if po is not None and item.id not in ordered_prices:
                raise ValidationError(f"{item.name} is not on purchase order {po.po_number}", f"{prefix}.stock_item")

            received = to_line_decimal(
                line.get("received_quantity", line.get("quantity")), f"{prefix}.received_quantity"
            )
            if received < 0:
                raise ValidationError("Quantity cannot be negative", f"{prefix}.received_quantity")
            ordered = to_line_decimal(
                line.get("ordered_quantity"), f"{prefix}.ordered_quantity",
                default=max(outstanding.get(item.id, Decimal("0")), Decimal("0")),
            )

            if line.get("unit_price") in (None, ""):
                unit_price = ordered_prices.get(item.id, item.unit_price)
            else:
                unit_price = to_line_decimal(line["unit_price"], f"{prefix}.unit_price")
            if unit_price < 0:
                raise ValidationError("Unit price cannot be negative", f"{prefix}.unit_price")
            check_total(received * unit_price, f"{prefix}.line_total")

            condition = line.get("condition") or ReceivedItem.Condition.GOOD
            if condition not in valid_conditions:
                raise ValidationError(f"Invalid condition. Valid: {valid_conditions}", f"{prefix}.condition")

            built.append(ReceivedItem(
                receipt=receipt,
                stock_item=item,
                ordered_quantity=ordered,
                received_quantity=received,
                unit_price=unit_price,
                batch_number=str(line.get("batch_number") or ""),
                expiry_date=parse_date_value(line.get("expiry_date"), f"{prefix}.expiry_date"),
                condition=condition,
                position=index,
            ))

        receipt.received_items.all().delete()
        ReceivedItem.objects.bulk_create(built)

    @classmethod
    def _refresh_derived(cls, receipt: GoodsReceipt, actor):
        totals = recalculate(
            {"quantity": line.received_quantity, "unit_price": line.unit_price}
            for line in receipt.received_items.all()
        )
        receipt.total_amount = check_total(totals.grand_total, "total_amount")

    # ==================== STOCK ====================

    @classmethod
    def _effect_receive_stock(cls, receipt: GoodsReceipt, actor, payload):
        po = None
        if receipt.purchase_order_id:
            po = PurchaseOrder.objects.select_for_update().get(id=receipt.purchase_order_id)
            cls._require_receivable(po)
            if receipt.receiving_bin.site_id != po.site_id:
                raise ValidationError("Receiving bin must belong to the order's site", "receiving_bin")

        booked = 0
        for line in receipt.received_items.select_related("stock_item"):
            if line.received_quantity <= 0:
                continue
            StockLevelService.adjust(
                stock_item=line.stock_item,
                bin=receipt.receiving_bin,
                quantity=line.received_quantity,
                movement_type=StockMovement.MovementType.RECEIPT_IN,
                user=actor,
                reference_type=cls.document_type,
                reference_id=receipt.id,
                reference_number=receipt.receipt_number,
                notes=line.batch_number,
            )
            booked += 1
        logger.info("Receipt %s booked %d line(s) into %s", receipt.receipt_number, booked, receipt.receiving_bin.name)

        if po is None:
            return

        # Saved first so the outstanding quantities count this receipt
        receipt.save()
        outstanding = PurchaseOrderService.outstanding_quantities(po)
        if all(quantity <= 0 for quantity in outstanding.values()):
            PurchaseOrderService.transition(
                actor, po.id, PurchaseOrder.Status.PROCESSED,
                {"receiving_bin": str(receipt.receiving_bin_id)},
            )
            receipt.purchase_order.refresh_from_db()
            logger.info("Purchase order %s fully received", po.po_number)
