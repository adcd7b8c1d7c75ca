from typing import Dict, Any, Optional, List, Tuple
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from datetime import date, datetime
from django.core.exceptions import ValidationError as DjangoValidationError
from django.db.models import Model
from django.utils import timezone
from django.utils.dateparse import parse_date, parse_datetime

from .references import resolve_ref


class ServiceError(Exception):
    status_code = 500

    def __init__(self, message: str, code: str = "error", details: Dict = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)


class ValidationError(ServiceError):
    status_code = 400

    def __init__(self, message: str, field: str = None, details: Dict = None):
        details = dict(details or {})
        if field:
            details.setdefault("field", field)
        super().__init__(message, "validation_failed", details)
        self.field = field


class InsufficientStockError(ValidationError):
    def __init__(self, item_name: str, required: Decimal, available: Decimal):
        super().__init__(
            f"Insufficient stock for {item_name}: required {required}, available {available}",
            details={"item": item_name, "required": str(required), "available": str(available)}
        )
        self.code = "insufficient_stock"


class InvalidTransitionError(ServiceError):
    status_code = 403

    def __init__(self, message: str, current: str = None, requested: str = None):
        super().__init__(
            message,
            "invalid_transition",
            {"current_status": current, "requested_status": requested}
        )


class PreconditionFailedError(ServiceError):
    status_code = 403

    def __init__(self, message: str, details: Dict = None):
        super().__init__(message, "precondition_failed", details)


class NotFoundError(ServiceError):
    status_code = 404

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            f"{resource} not found: {identifier}",
            "not_found",
            {"resource": resource, "identifier": str(identifier)}
        )


class UnauthorizedError(ServiceError):
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message, "unauthorized")


class ForbiddenError(ServiceError):
    status_code = 403

    def __init__(self, message: str = "You do not have access to this resource", details: Dict = None):
        super().__init__(message, "forbidden", details)


class ConflictError(ServiceError):
    status_code = 409

    def __init__(self, message: str, details: Dict = None):
        super().__init__(message, "conflict", details)


class UpstreamError(ServiceError):
    status_code = 500

    def __init__(self, message: str = "The data store could not complete the request", details: Dict = None):
        super().__init__(message, "upstream_failure", details)


def success_response(data: Any = None, message: str = "Success") -> Dict:
    response = {"success": True, "message": message}
    if data is not None:
        if isinstance(data, dict):
            response.update(data)
        else:
            response["data"] = data
    return response


def paginate_queryset(queryset, page: int = 1, per_page: int = 20) -> Tuple[List, Dict]:
    page = max(1, page)
    per_page = min(max(1, per_page), 100)

    total = queryset.count()
    total_pages = (total + per_page - 1) // per_page

    offset = (page - 1) * per_page
    items = list(queryset[offset:offset + per_page])

    return items, {
        "page": page,
        "per_page": per_page,
        "total_items": total,
        "total_pages": total_pages,
        "has_next": page < total_pages,
        "has_prev": page > 1
    }


def to_decimal(value: Any, default: Decimal = Decimal("0")) -> Decimal:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return default
    try:
        result = Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return default
    if not result.is_finite():
        return default
    return result


# Line quantities and prices are DecimalField(max_digits=15, decimal_places=4),
# derived totals DecimalField(max_digits=23, decimal_places=8)
LINE_DECIMAL_PLACES = Decimal("0.0001")
LINE_VALUE_LIMIT = Decimal(10) ** 11
TOTAL_VALUE_LIMIT = Decimal(10) ** 15


def to_line_decimal(value: Any, field: str, default: Decimal = Decimal("0")) -> Decimal:
    """Parse a line quantity or price and make sure it fits its column."""
    result = to_decimal(value, default)
    # Range first: quantizing a huge value overflows the decimal context
    if abs(result) < LINE_VALUE_LIMIT:
        result = result.quantize(LINE_DECIMAL_PLACES, rounding=ROUND_HALF_UP)
    if abs(result) >= LINE_VALUE_LIMIT:
        raise ValidationError(
            f"{field} is too large",
            field,
            {"max_digits": 15, "decimal_places": 4}
        )
    return result


def check_total(value: Decimal, field: str) -> Decimal:
    if abs(value) >= TOTAL_VALUE_LIMIT:
        raise ValidationError(
            f"{field} is too large",
            field,
            {"max_digits": 23, "decimal_places": 8}
        )
    return value


def decimal_str(value: Optional[Decimal]) -> Optional[str]:
    """Render a Decimal for JSON without exponent notation or trailing zeros."""
    if value is None:
        return None
    normalized = Decimal(value).normalize()
    if normalized == 0:
        return "0"
    return "{:f}".format(normalized)


def id_str(value: Any) -> Optional[str]:
    return str(value) if value is not None else None


class BaseService:
    model = None

    @classmethod
    def get_by_id(cls, id: Any) -> Optional[Model]:
        if not id:
            return None
        try:
            return cls.model.objects.get(id=id)
        except (cls.model.DoesNotExist, DjangoValidationError, ValueError):
            return None

    @classmethod
    def get_or_404(cls, id: Any) -> Model:
        obj = cls.get_by_id(id)
        if not obj:
            raise NotFoundError(cls.model.__name__, id)
        return obj

    @classmethod
    def exists(cls, id: Any) -> bool:
        return cls.get_by_id(id) is not None

    @classmethod
    def get_active(cls):
        if hasattr(cls.model, 'is_active'):
            return cls.model.objects.filter(is_active=True)
        return cls.model.objects.all()


def fetch_ref(model, value: Any, label: str = None, field: str = None, required: bool = False):
    """
    Resolve a reference in any accepted shape to a model instance.

    Returns None for an absent reference unless ``required`` is set.
    """
    label = label or model.__name__
    ref_id = resolve_ref(value)
    if ref_id is None:
        if required:
            raise ValidationError(f"{label} is required", field)
        return None
    try:
        return model.objects.get(id=ref_id)
    except (model.DoesNotExist, DjangoValidationError, ValueError):
        raise NotFoundError(label, ref_id)


def parse_date_value(value: Any, field: str, with_time: bool = False):
    """Accept ISO dates or datetimes; returns None for empty input."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, datetime.min.time()) if with_time else value
    else:
        try:
            parsed = parse_datetime(str(value)) or parse_date(str(value))
        except ValueError:
            parsed = None
        if parsed is None:
            raise ValidationError(f"Invalid date for {field}: {value}", field)

    if with_time:
        if not isinstance(parsed, datetime):
            parsed = datetime.combine(parsed, datetime.min.time())
        if timezone.is_naive(parsed):
            parsed = timezone.make_aware(parsed)
        return parsed
    return parsed.date() if isinstance(parsed, datetime) else parsed
