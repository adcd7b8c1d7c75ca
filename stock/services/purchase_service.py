import logging
from collections import defaultdict
from decimal import Decimal
from typing import Dict, Any, List
from django.db.models import Sum
from django.utils import timezone

from stock.models import (
    PurchaseOrder, OrderedItem, ReceivedItem, GoodsReceipt, Site, Supplier, Bin, StockMovement,
)
from stock.services.base_service import (
    ValidationError, to_line_decimal, check_total, decimal_str, id_str, fetch_ref, parse_date_value,
)
from stock.services.item_service import StockItemService
from stock.services.level_service import StockLevelService
from stock.services.references import resolve_ref
from stock.services.site_service import SiteService
from stock.services.totals import recalculate
from stock.services.workflow_service import DocumentWorkflowService

logger = logging.getLogger(__name__)


class PurchaseOrderService(DocumentWorkflowService):
    model = PurchaseOrder
    document_type = "PurchaseOrder"
    number_field = "po_number"
    line_relation = "ordered_items"
    site_lookups = ("site_id",)
    select_related = ("site", "supplier", "ordered_by", "approved_by", "processed_by")
    actions = {
        "submit": "pending-approval",
        "approve": "approved",
        "reject": "rejected",
        "cancel": "cancelled",
        "process": "processed",
    }

    @classmethod
    def serialize_line(cls, line: OrderedItem) -> Dict[str, Any]:
        return {
            "id": line.id,
            "stock_item": StockItemService.serialize_brief(line.stock_item),
            "supplier": id_str(line.supplier_id),
            "ordered_quantity": decimal_str(line.ordered_quantity),
            "unit_price": decimal_str(line.unit_price),
            "line_total": decimal_str(line.line_total),
        }

    @classmethod
    def serialize(cls, po: PurchaseOrder) -> Dict[str, Any]:
        return {
            "id": str(po.id),
            "po_number": po.po_number,
            "order_date": po.order_date.isoformat() if po.order_date else None,
            "expected_delivery_date": po.expected_delivery_date.isoformat() if po.expected_delivery_date else None,
            "status": po.status,
            "site": {"id": str(po.site_id), "name": po.site.name} if po.site_id else None,
            "supplier": {"id": str(po.supplier_id), "name": po.supplier.name} if po.supplier_id else None,
            "total_amount": decimal_str(po.total_amount),
            "ordered_by": id_str(po.ordered_by_id),
            "approved_by": id_str(po.approved_by_id),
            "approved_at": po.approved_at.isoformat() if po.approved_at else None,
            "processed_by": id_str(po.processed_by_id),
            "processed_at": po.processed_at.isoformat() if po.processed_at else None,
            "receiving_bin": id_str(po.receiving_bin_id),
            "notes": po.notes,
            "ordered_items": [
                cls.serialize_line(line)
                for line in po.ordered_items.select_related("stock_item")
            ],
            "created_at": po.created_at.isoformat(),
            "updated_at": po.updated_at.isoformat(),
        }

    @classmethod
    def site_ids(cls, po: PurchaseOrder) -> List[str]:
        return [str(po.site_id)] if po.site_id else []

    @classmethod
    def _new_instance(cls, actor, data: Dict[str, Any]) -> PurchaseOrder:
        return PurchaseOrder(ordered_by=actor, order_date=timezone.localdate())

    @classmethod
    def _apply_fields(cls, po: PurchaseOrder, data: Dict[str, Any], actor):
        if "order_date" in data:
            po.order_date = parse_date_value(data["order_date"], "order_date") or po.order_date
        if "expected_delivery_date" in data:
            po.expected_delivery_date = parse_date_value(data["expected_delivery_date"], "expected_delivery_date")
        if "notes" in data:
            po.notes = data["notes"] or ""

        # An unusable reference leaves the link as it was
        if "site" in data and resolve_ref(data["site"]):
            po.site = fetch_ref(Site, data["site"], "Site")
        if "supplier" in data and resolve_ref(data["supplier"]):
            po.supplier = fetch_ref(Supplier, data["supplier"], "Supplier")
        if "receiving_bin" in data and resolve_ref(data["receiving_bin"]):
            po.receiving_bin = fetch_ref(Bin, data["receiving_bin"], "Bin")

    @classmethod
    def _replace_lines(cls, po: PurchaseOrder, lines: List[Dict[str, Any]], actor):
        lines = cls._lines_payload(lines, "ordered_items")
        built = []
        for index, line in enumerate(lines):
            item = StockItemService.require(line.get("stock_item"), f"ordered_items[{index}].stock_item")

            quantity_field = f"ordered_items[{index}].ordered_quantity"
            quantity = to_line_decimal(line.get("ordered_quantity", line.get("quantity")), quantity_field)
            if quantity < 0:
                raise ValidationError("Quantity cannot be negative", quantity_field)

            price_field = f"ordered_items[{index}].unit_price"
            if line.get("unit_price") in (None, ""):
                unit_price = item.unit_price
            else:
                unit_price = to_line_decimal(line["unit_price"], price_field)
            if unit_price < 0:
                raise ValidationError("Unit price cannot be negative", price_field)
            check_total(quantity * unit_price, f"ordered_items[{index}].line_total")

            supplier = fetch_ref(Supplier, line.get("supplier"), "Supplier")
            if supplier is None:
                supplier = po.supplier or item.primary_supplier

            built.append(OrderedItem(
                purchase_order=po,
                stock_item=item,
                supplier=supplier,
                ordered_quantity=quantity,
                unit_price=unit_price,
                position=index,
            ))

        po.ordered_items.all().delete()
        OrderedItem.objects.bulk_create(built)

    @classmethod
    def _refresh_derived(cls, po: PurchaseOrder, actor):
        lines = list(po.ordered_items.all())
        totals = recalculate(
            {"ordered_quantity": line.ordered_quantity, "unit_price": line.unit_price}
            for line in lines
        )
        for line, line_total in zip(lines, totals.line_totals):
            if line.line_total != line_total:
                line.line_total = line_total
                line.save(update_fields=["line_total"])
        po.total_amount = check_total(totals.grand_total, "total_amount")

        suppliers = {line.supplier_id for line in lines if line.supplier_id}
        if len(suppliers) == 1:
            po.supplier_id = suppliers.pop()
        elif suppliers:
            po.supplier = None

    @classmethod
    def _effect_stamp_processed(cls, po: PurchaseOrder, actor, payload):
        po.processed_by = actor
        po.processed_at = timezone.now()

    @classmethod
    def outstanding_quantities(cls, po: PurchaseOrder) -> Dict[Any, Decimal]:
        """Ordered minus already received (completed goods receipts), per stock item."""
        outstanding = defaultdict(Decimal)
        for line in po.ordered_items.all():
            outstanding[line.stock_item_id] += line.ordered_quantity

        received = (
            ReceivedItem.objects
            .filter(receipt__purchase_order=po, receipt__status=GoodsReceipt.Status.COMPLETED)
            .order_by()
            .values("stock_item_id")
            .annotate(total=Sum("received_quantity"))
        )
        for row in received:
            outstanding[row["stock_item_id"]] -= row["total"]
        return dict(outstanding)

    @classmethod
    def _effect_receive_goods(cls, po: PurchaseOrder, actor, payload):
        """
        Book whatever goods receipts have not yet brought in and take over the
        ordered prices.
        """
        bin = fetch_ref(Bin, payload.get("receiving_bin"), "Bin") or po.receiving_bin
        if bin is None:
            bin = SiteService.main_bin(po.site_id)
        if bin.site_id != po.site_id:
            raise ValidationError("Receiving bin must belong to the order's site", "receiving_bin")
        po.receiving_bin = bin

        outstanding = cls.outstanding_quantities(po)
        for line in po.ordered_items.select_related("stock_item"):
            if line.ordered_quantity <= 0:
                continue
            quantity = min(line.ordered_quantity, outstanding.get(line.stock_item_id, Decimal("0")))
            if quantity > 0:
                outstanding[line.stock_item_id] -= quantity
                StockLevelService.adjust(
                    stock_item=line.stock_item,
                    bin=bin,
                    quantity=quantity,
                    movement_type=StockMovement.MovementType.RECEIPT_IN,
                    user=actor,
                    reference_type=cls.document_type,
                    reference_id=po.id,
                    reference_number=po.po_number,
                )
            if line.stock_item.unit_price != line.unit_price:
                line.stock_item.unit_price = line.unit_price
                line.stock_item.save(update_fields=["unit_price", "updated_at"])

        logger.info("Goods for %s received into %s", po.po_number, bin.name)
