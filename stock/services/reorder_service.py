"""
Low stock -> draft purchase orders.

``build_draft_orders`` only groups and totals; ``ReorderService.create_orders``
persists one draft per supplier. The per-supplier creates are independent:
a failure for one supplier is reported next to the orders that did get
created, nothing is rolled back across suppliers.
"""
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Any, List, Mapping, Optional, Iterable

from django.db import DatabaseError

from main.services.access_service import AccessService
from stock.models import Site, Supplier
from stock.services.base_service import (
    ServiceError, ValidationError, success_response,
    to_decimal, decimal_str, fetch_ref,
)
from stock.services.item_service import StockItemService
from stock.services.level_service import StockLevelService
from stock.services.purchase_service import PurchaseOrderService
from stock.services.references import resolve_ref
from stock.services.totals import recalculate

logger = logging.getLogger(__name__)


@dataclass
class PurchaseOrderDraft:
    supplier: str
    ordered_items: List[Dict[str, Any]] = field(default_factory=list)
    total_amount: Decimal = Decimal("0")
    supplier_name: str = ""


def _ref_id(value: Any) -> Optional[str]:
    if value is None:
        return None
    if hasattr(value, "pk"):
        return str(value.pk)
    return resolve_ref(value)


def build_draft_orders(low_stock_items: Iterable[Mapping[str, Any]]) -> List[PurchaseOrderDraft]:
    """
    Group low-stock entries by supplier, one draft per distinct supplier in
    first-seen order.

    Entries carry ``item`` (instance or reference), ``order_quantity``,
    ``unit_price`` and ``supplier`` (instance or reference). Entries without
    a supplier fail the whole batch.
    """
    drafts: Dict[str, PurchaseOrderDraft] = {}
    unassigned = []

    for entry in low_stock_items:
        item = entry.get("item", entry.get("stock_item"))
        item_id = _ref_id(item)
        supplier = entry.get("supplier")
        supplier_id = _ref_id(supplier)

        if supplier_id is None:
            unassigned.append({
                "stock_item": item_id,
                "name": getattr(item, "name", None) or entry.get("name") or item_id,
            })
            continue

        draft = drafts.get(supplier_id)
        if draft is None:
            draft = drafts[supplier_id] = PurchaseOrderDraft(
                supplier=supplier_id,
                supplier_name=getattr(supplier, "name", ""),
            )

        unit_price = entry.get("unit_price")
        if unit_price is None and item is not None:
            unit_price = getattr(item, "unit_price", None)

        draft.ordered_items.append({
            "stock_item": item_id,
            "supplier": supplier_id,
            "ordered_quantity": to_decimal(entry.get("order_quantity")),
            "unit_price": to_decimal(unit_price),
        })

    if unassigned:
        names = ", ".join(str(entry["name"]) for entry in unassigned)
        raise ValidationError(
            f"No supplier assigned for: {names}",
            "supplier",
            {"unassigned_items": unassigned},
        )

    for draft in drafts.values():
        draft.total_amount = recalculate(draft.ordered_items).grand_total
    return list(drafts.values())


class ReorderService:

    @classmethod
    def low_stock(cls, actor, site_id=None) -> Dict[str, Any]:
        AccessService.require_actor(actor)
        if site_id is None and not actor.is_multi_site:
            site_id = actor.associated_site_id
        if site_id is not None:
            AccessService.require_site_access(actor, site_id)
            fetch_ref(Site, str(site_id), "Site")
        return StockLevelService.get_low_stock_items(site_id)

    @classmethod
    def _selected_entries(cls, selections: List[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        entries = []
        for index, selection in enumerate(selections):
            if not isinstance(selection, Mapping):
                raise ValidationError("Each selected item must be an object", f"items[{index}]")
            item = StockItemService.require(selection.get("stock_item"), f"items[{index}].stock_item")

            supplier = fetch_ref(Supplier, selection.get("supplier"), "Supplier")
            if supplier is None:
                supplier = item.primary_supplier or item.suppliers.first()

            quantity = to_decimal(selection.get("order_quantity"))
            if quantity <= 0:
                quantity = StockLevelService.order_quantity(item, Decimal("0"))

            entries.append({
                "item": item,
                "supplier": supplier,
                "order_quantity": quantity,
                "unit_price": selection.get("unit_price"),
            })
        return entries

    @classmethod
    def _drafts_for(cls, actor, site, selections) -> tuple:
        """
        With ``selections`` only the chosen items are ordered; otherwise every
        item currently at or below its minimum level at the site is.
        """
        AccessService.require_actor(actor)
        site_obj = fetch_ref(Site, site, "Site", "site", required=True)
        AccessService.require_site_access(actor, site_obj.id)

        if selections:
            entries = cls._selected_entries(selections)
        else:
            entries = StockLevelService.find_low_stock(site_obj.id)
        if not entries:
            raise ValidationError("There are no low-stock items to order", "items")
        return site_obj, build_draft_orders(entries)

    @classmethod
    def preview_orders(cls, actor, site, selections: List[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """The drafts ``create_orders`` would persist, without creating anything."""
        site_obj, drafts = cls._drafts_for(actor, site, selections)
        return success_response({
            "site": str(site_obj.id),
            "drafts": [cls.serialize_draft(draft) for draft in drafts],
        })

    @classmethod
    def create_orders(cls, actor, site, selections: List[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Materialise one draft purchase order per supplier for ``site``."""
        site_obj, drafts = cls._drafts_for(actor, site, selections)

        created, failed = [], []
        for draft in drafts:
            try:
                result = PurchaseOrderService.create(actor, {
                    "site": str(site_obj.id),
                    "supplier": draft.supplier,
                    "ordered_items": draft.ordered_items,
                    "notes": "Generated from low stock",
                })
            except (ServiceError, DatabaseError) as e:
                code = getattr(e, "code", "upstream_failure")
                message = getattr(e, "message", str(e))
                logger.warning("Low-stock order for supplier %s failed: %s", draft.supplier, message)
                failed.append({
                    "supplier": draft.supplier,
                    "supplier_name": draft.supplier_name,
                    "items": len(draft.ordered_items),
                    "error": {"code": code, "message": message},
                })
                continue

            document = result["document"]
            created.append({
                "supplier": draft.supplier,
                "supplier_name": draft.supplier_name,
                "id": document["id"],
                "po_number": document["po_number"],
                "total_amount": document["total_amount"],
                "items": len(draft.ordered_items),
            })

        logger.info(
            "Low-stock ordering for %s: %d created, %d failed",
            site_obj.name, len(created), len(failed)
        )
        return success_response(
            {"created": created, "failed": failed},
            f"{len(created)} purchase order(s) created, {len(failed)} failed"
        )

    @staticmethod
    def serialize_draft(draft: PurchaseOrderDraft) -> Dict[str, Any]:
        return {
            "supplier": draft.supplier,
            "supplier_name": draft.supplier_name,
            "ordered_items": [
                {
                    "stock_item": line["stock_item"],
                    "ordered_quantity": decimal_str(line["ordered_quantity"]),
                    "unit_price": decimal_str(line["unit_price"]),
                }
                for line in draft.ordered_items
            ],
            "total_amount": decimal_str(draft.total_amount),
        }
