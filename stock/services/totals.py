"""
Line-item arithmetic shared by purchase orders and dispatches.

Totals are always rebuilt from the full item list; nothing is maintained
incrementally. Values are kept at full Decimal precision, rounding is left
to whoever renders them.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, List, Mapping, Optional

from .base_service import to_decimal


QUANTITY_KEYS = ("quantity", "ordered_quantity", "dispatched_quantity")


@dataclass(frozen=True)
class Totals:
    line_totals: List[Decimal]
    grand_total: Decimal


def line_quantity(item: Mapping[str, Any]) -> Decimal:
    for key in QUANTITY_KEYS:
        if item.get(key) is not None:
            return to_decimal(item[key])
    return Decimal("0")


def line_total(item: Mapping[str, Any]) -> Decimal:
    return line_quantity(item) * to_decimal(item.get("unit_price"))


def recalculate(items: Iterable[Mapping[str, Any]]) -> Totals:
    line_totals = [line_total(item) for item in items or ()]
    return Totals(line_totals=line_totals, grand_total=sum(line_totals, Decimal("0")))


def cost_per_person(grand_total: Any, people_fed: Optional[int]) -> Optional[Decimal]:
    """None means "not applicable" and is distinct from a genuine zero cost."""
    if people_fed is None:
        return None
    try:
        people = int(people_fed)
    except (TypeError, ValueError):
        return None
    if people <= 0:
        return None
    return to_decimal(grand_total) / Decimal(people)
