"""
Stock Services - reference data, stock levels and the document workflow layer

Usage:
    from stock.services import StockItemService, StockLevelService

    # Create item
    result = StockItemService.create(name="Flour", sku="FLR-25", unit_price="18.50")

    # Book a movement
    StockLevelService.adjust(stock_item=item, bin=bin, quantity=Decimal("25"), ...)

The document services (purchase orders, dispatches, transfers, adjustments,
counts) and the low-stock reorder service depend on ``main.services`` for
access checks, so they are imported from their own modules rather than
re-exported here.
"""

# Base utilities
from stock.services.base_service import (
    ServiceError,
    ValidationError,
    InsufficientStockError,
    InvalidTransitionError,
    PreconditionFailedError,
    NotFoundError,
    UnauthorizedError,
    ForbiddenError,
    ConflictError,
    UpstreamError,
    success_response,
    paginate_queryset,
    to_decimal,
    decimal_str,
    BaseService,
)

# Workflow building blocks
from .references import resolve_ref, parse_reference
from .totals import recalculate, cost_per_person
from .transitions import can_transition, can_edit, can_delete, get_workflow
from .numbering import next_number

# Core entities
from .site_service import SiteService, BinService
from .supplier_service import SupplierService
from .item_service import StockItemService

# Stock operations
from .level_service import StockLevelService


__all__ = [
    # Base
    "ServiceError",
    "ValidationError",
    "InsufficientStockError",
    "InvalidTransitionError",
    "PreconditionFailedError",
    "NotFoundError",
    "UnauthorizedError",
    "ForbiddenError",
    "ConflictError",
    "UpstreamError",
    "success_response",
    "paginate_queryset",
    "to_decimal",
    "decimal_str",
    "BaseService",

    # Workflow building blocks
    "resolve_ref",
    "parse_reference",
    "recalculate",
    "cost_per_person",
    "can_transition",
    "can_edit",
    "can_delete",
    "get_workflow",
    "next_number",

    # Core
    "SiteService",
    "BinService",
    "SupplierService",
    "StockItemService",

    # Stock operations
    "StockLevelService",
]
