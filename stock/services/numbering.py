"""
Human readable document numbers.

``next_number`` delegates to the generator configured in
``settings.CATERFLOW["SEQUENCE_BACKEND"]`` so a stricter implementation
(an atomic counter row, say) can replace the default without touching the
document services.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Optional

from django.apps import apps
from django.conf import settings
from django.db import DatabaseError
from django.utils import timezone
from django.utils.module_loading import import_string

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NumberFormat:
    model: str
    field: str
    prefix: str
    width: int
    daily: bool = False


NUMBER_FORMATS = {
    "PurchaseOrder": NumberFormat("stock.PurchaseOrder", "po_number", "PO", 5),
    "InternalTransfer": NumberFormat("stock.InternalTransfer", "transfer_number", "TRF", 5),
    "StockAdjustment": NumberFormat("stock.StockAdjustment", "adjustment_number", "ADJ", 5),
    "InventoryCount": NumberFormat("stock.InventoryCount", "count_number", "CNT", 5),
    "GoodsReceipt": NumberFormat("stock.GoodsReceipt", "receipt_number", "GR", 5),
    "DispatchLog": NumberFormat("stock.DispatchLog", "dispatch_number", "DL", 3, daily=True),
}


def get_format(document_type: str) -> NumberFormat:
    try:
        return NUMBER_FORMATS[document_type]
    except KeyError:
        raise ValueError(f"No number format for document type: {document_type}") from None


def _scope_date(scope_date) -> date:
    if scope_date is None:
        return timezone.localdate()
    if isinstance(scope_date, datetime):
        return timezone.localtime(scope_date).date() if timezone.is_aware(scope_date) else scope_date.date()
    return scope_date


def render(fmt: NumberFormat, sequence: int, scope_date: Optional[date] = None) -> str:
    if fmt.daily:
        return f"{fmt.prefix}-{scope_date.isoformat()}-{sequence:0{fmt.width}d}"
    return f"{fmt.prefix}-{sequence:0{fmt.width}d}"


def parse_sequence(number: str) -> Optional[int]:
    try:
        return int(str(number).split("-")[-1])
    except (TypeError, ValueError):
        return None


class SequenceGenerator:
    """Interface for document number generators."""

    def next_number(self, document_type: str, scope_date=None) -> str:
        raise NotImplementedError


class LastDocumentSequence(SequenceGenerator):
    """
    Reads the most recently created document of the type (within the day for
    daily sequences), increments its trailing number and re-renders it.

    Generation and assignment are not atomic: two concurrent creates can
    compute the same number. The unique constraint on the number column turns
    the second insert into a conflict. When the lookup itself fails a
    timestamp suffix is used instead so creation still goes ahead.
    """

    def next_number(self, document_type: str, scope_date=None) -> str:
        fmt = get_format(document_type)
        day = _scope_date(scope_date)

        try:
            last_number = self._last_number(fmt, day)
        except DatabaseError as e:
            fallback = self._timestamp_number(fmt, day)
            logger.warning(
                "Could not read last %s number, falling back to %s: %s",
                document_type, fallback, e
            )
            return fallback

        sequence = parse_sequence(last_number) if last_number else None
        if sequence is None:
            if last_number:
                logger.warning("Unparseable %s number %r, restarting sequence", document_type, last_number)
            sequence = 0
        return render(fmt, sequence + 1, day)

    def _last_number(self, fmt: NumberFormat, day: date) -> Optional[str]:
        model = apps.get_model(fmt.model)
        queryset = model.objects.all()
        if fmt.daily:
            start = timezone.make_aware(datetime.combine(day, time.min))
            queryset = queryset.filter(
                created_at__gte=start,
                created_at__lt=start + timedelta(days=1),
            )
        last = queryset.order_by("-created_at", f"-{fmt.field}").values_list(fmt.field, flat=True).first()
        return last

    def _timestamp_number(self, fmt: NumberFormat, day: date) -> str:
        stamp = str(int(timezone.now().timestamp() * 1000))
        return render(fmt, int(stamp[-fmt.width:]), day)


_generator = None
_generator_path = None


def get_generator() -> SequenceGenerator:
    global _generator, _generator_path
    path = settings.CATERFLOW["SEQUENCE_BACKEND"]
    if _generator is None or path != _generator_path:
        _generator = import_string(path)()
        _generator_path = path
    return _generator


def next_number(document_type: str, scope_date=None) -> str:
    return get_generator().next_number(document_type, scope_date)
