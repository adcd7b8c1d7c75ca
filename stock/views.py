import json
import logging

from django.db import DatabaseError
from django.http import JsonResponse
from django.views import View
from django.views.decorators.csrf import csrf_exempt
from django.utils.decorators import method_decorator

from main.models import AppUser
from main.services.access_service import AccessService
from main.services.audit_service import AuditService
from main.services.auth_service import AuthService
from stock.models import Site, Bin, StockLevel
from stock.services import (
    ServiceError, ValidationError, UnauthorizedError, UpstreamError,
    SiteService, BinService, SupplierService, StockItemService, StockLevelService,
)
from stock.services.approval_service import ApprovalService
from stock.services.dispatch_service import DispatchTypeService
from stock.services.reorder_service import ReorderService

logger = logging.getLogger(__name__)

Roles = AppUser.RoleChoices

SITE_MANAGERS = (Roles.ADMIN,)
CATALOGUE_MANAGERS = (Roles.ADMIN, Roles.PROCURER, Roles.SITE_MANAGER, Roles.STOCK_CONTROLLER)
DISPATCH_TYPE_MANAGERS = (Roles.ADMIN, Roles.SITE_MANAGER)

# Result keys that hold the written record
AUDITED_KEYS = ("document", "item", "site", "bin", "supplier", "dispatch_type")


def error_response(message: str, code: str = "error", status: int = 400, details: dict = None):
    data = {"success": False, "error": {"code": code, "message": message, "details": details or {}}}
    return JsonResponse(data, status=status)


def handle_service_error(e: Exception):
    if isinstance(e, ServiceError):
        return error_response(e.message, e.code, e.status_code, e.details)
    elif isinstance(e, DatabaseError):
        logger.error("Data store failure: %s", e)
        upstream = UpstreamError()
        return error_response(upstream.message, upstream.code, upstream.status_code)
    else:
        logger.exception("Unhandled error in stock API")
        return error_response("Internal server error", "server_error", 500)


def _bool_param(value):
    if value is None:
        return None
    return value.lower() in ("1", "true", "yes")


def _int_param(request, name, default):
    try:
        return int(request.GET.get(name, default))
    except (TypeError, ValueError):
        return default


class BaseStockView(View):
    """
    Every stock endpoint needs a bearer token. The resolved AppUser is kept on
    ``self.actor`` and is the only source of authorship stamps.
    """

    @method_decorator(csrf_exempt)
    def dispatch(self, request, *args, **kwargs):
        self.actor = AuthService.get_user_from_token(AuthService.token_from_header(request))
        if self.actor is None:
            return handle_service_error(UnauthorizedError())
        return super().dispatch(request, *args, **kwargs)

    def get_json_body(self, request):
        if not request.body:
            return {}
        try:
            data = json.loads(request.body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise ValidationError("Request body is not valid JSON", "body")
        if not isinstance(data, dict):
            raise ValidationError("Request body must be a JSON object", "body")
        return data

    def success(self, data: dict, status: int = 200):
        return JsonResponse({"success": True, **data}, status=status)

    def audited(self, action: str, document_type: str, document_id, call, description: str = ""):
        """Run ``call`` and record the outcome, successful or not."""
        try:
            result = call()
        except Exception as e:
            AuditService.record(
                action, description, document_type, document_id, self.actor.id,
                success=False, details={"error": getattr(e, "code", "server_error")},
            )
            raise

        entity = next((result[key] for key in AUDITED_KEYS if isinstance(result.get(key), dict)), {})
        AuditService.record(action, description, document_type, entity.get("id", document_id), self.actor.id)
        return result


# ==================== SITES & BINS ====================

class SiteListView(BaseStockView):
    """GET/POST /api/sites/"""

    def get(self, request):
        try:
            queryset = AccessService.scope_queryset(self.actor, Site.objects.all(), "id")
            result = SiteService.list(
                queryset=queryset,
                search=request.GET.get("search"),
                is_active=_bool_param(request.GET.get("is_active")),
                page=_int_param(request, "page", 1),
                per_page=_int_param(request, "per_page", 50),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def post(self, request):
        try:
            AccessService.require_roles(self.actor, SITE_MANAGERS, "manage sites")
            data = self.get_json_body(request)
            result = self.audited(
                "create", "Site", None,
                lambda: SiteService.create(
                    name=data.get("name"),
                    code=data.get("code"),
                    address=data.get("address", ""),
                    is_active=data.get("is_active", True),
                ),
                f"Create site {data.get('code') or ''}",
            )
            return self.success(result, 201)
        except Exception as e:
            return handle_service_error(e)


class SiteDetailView(BaseStockView):
    """GET/PATCH /api/sites/<id>/"""

    def get(self, request, site_id):
        try:
            AccessService.require_site_access(self.actor, site_id)
            return self.success(SiteService.get(site_id))
        except Exception as e:
            return handle_service_error(e)

    def patch(self, request, site_id):
        try:
            AccessService.require_roles(self.actor, SITE_MANAGERS, "manage sites")
            data = self.get_json_body(request)
            result = self.audited(
                "update", "Site", site_id,
                lambda: SiteService.update(site_id, **data),
                "Update site",
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class SiteMainBinView(BaseStockView):
    """GET /api/sites/<id>/main-bin/"""

    def get(self, request, site_id):
        try:
            AccessService.require_site_access(self.actor, site_id)
            return self.success(SiteService.get_main_bin(site_id))
        except Exception as e:
            return handle_service_error(e)


class BinListView(BaseStockView):
    """GET/POST /api/bins/"""

    def get(self, request):
        try:
            queryset = AccessService.scope_queryset(self.actor, Bin.objects.all(), "site_id")
            result = BinService.list(
                queryset=queryset,
                site_id=request.GET.get("site"),
                bin_type=request.GET.get("type"),
                page=_int_param(request, "page", 1),
                per_page=_int_param(request, "per_page", 100),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def post(self, request):
        try:
            AccessService.require_roles(self.actor, SITE_MANAGERS, "manage bins")
            data = self.get_json_body(request)
            result = self.audited(
                "create", "Bin", None,
                lambda: BinService.create(
                    name=data.get("name"),
                    site=data.get("site"),
                    bin_type=data.get("bin_type", Bin.BinType.MAIN_STORAGE),
                    is_active=data.get("is_active", True),
                ),
                f"Create bin {data.get('name') or ''}",
            )
            return self.success(result, 201)
        except Exception as e:
            return handle_service_error(e)


class BinDetailView(BaseStockView):
    """GET/PATCH /api/bins/<id>/"""

    def get(self, request, bin_id):
        try:
            result = BinService.get(bin_id)
            AccessService.require_site_access(self.actor, result["bin"]["site"])
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def patch(self, request, bin_id):
        try:
            AccessService.require_roles(self.actor, SITE_MANAGERS, "manage bins")
            data = self.get_json_body(request)
            result = self.audited(
                "update", "Bin", bin_id,
                lambda: BinService.update(bin_id, **data),
                "Update bin",
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


# ==================== SUPPLIERS ====================

class SupplierListView(BaseStockView):
    """GET/POST /api/suppliers/"""

    def get(self, request):
        try:
            result = SupplierService.list(
                search=request.GET.get("search"),
                is_active=_bool_param(request.GET.get("is_active")),
                page=_int_param(request, "page", 1),
                per_page=_int_param(request, "per_page", 50),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def post(self, request):
        try:
            AccessService.require_roles(self.actor, CATALOGUE_MANAGERS, "manage suppliers")
            data = self.get_json_body(request)
            result = self.audited(
                "create", "Supplier", None,
                lambda: SupplierService.create(**data),
                f"Create supplier {data.get('name') or ''}",
            )
            return self.success(result, 201)
        except Exception as e:
            return handle_service_error(e)


class SupplierDetailView(BaseStockView):
    """GET/PATCH/DELETE /api/suppliers/<id>/"""

    def get(self, request, supplier_id):
        try:
            return self.success(SupplierService.get(supplier_id))
        except Exception as e:
            return handle_service_error(e)

    def patch(self, request, supplier_id):
        try:
            AccessService.require_roles(self.actor, CATALOGUE_MANAGERS, "manage suppliers")
            data = self.get_json_body(request)
            result = self.audited(
                "update", "Supplier", supplier_id,
                lambda: SupplierService.update(supplier_id, **data),
                "Update supplier",
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def delete(self, request, supplier_id):
        try:
            AccessService.require_roles(self.actor, CATALOGUE_MANAGERS, "manage suppliers")
            result = self.audited(
                "delete", "Supplier", supplier_id,
                lambda: SupplierService.deactivate(supplier_id),
                "Deactivate supplier",
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


# ==================== STOCK ITEMS ====================

class StockItemListView(BaseStockView):
    """GET/POST /api/stock-items/"""

    def get(self, request):
        try:
            result = StockItemService.list(
                search=request.GET.get("search"),
                category_id=request.GET.get("category"),
                supplier_id=request.GET.get("supplier"),
                page=_int_param(request, "page", 1),
                per_page=_int_param(request, "per_page", 50),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def post(self, request):
        try:
            AccessService.require_roles(self.actor, CATALOGUE_MANAGERS, "manage stock items")
            data = self.get_json_body(request)
            result = self.audited(
                "create", "StockItem", None,
                lambda: StockItemService.create(
                    name=data.get("name"),
                    sku=data.get("sku"),
                    unit_of_measure=data.get("unit_of_measure", "each"),
                    unit_price=data.get("unit_price", 0),
                    minimum_stock_level=data.get("minimum_stock_level", 0),
                    reorder_quantity=data.get("reorder_quantity", 0),
                    category=data.get("category"),
                    primary_supplier=data.get("primary_supplier"),
                    suppliers=data.get("suppliers"),
                ),
                f"Create stock item {data.get('sku', '')}",
            )
            return self.success(result, 201)
        except Exception as e:
            return handle_service_error(e)


class StockItemDetailView(BaseStockView):
    """GET/PATCH/DELETE /api/stock-items/<id>/"""

    def get(self, request, item_id):
        try:
            return self.success(StockItemService.get(item_id))
        except Exception as e:
            return handle_service_error(e)

    def patch(self, request, item_id):
        try:
            AccessService.require_roles(self.actor, CATALOGUE_MANAGERS, "manage stock items")
            data = self.get_json_body(request)
            result = self.audited(
                "update", "StockItem", item_id,
                lambda: StockItemService.update(item_id, **data),
                "Update stock item",
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def delete(self, request, item_id):
        try:
            AccessService.require_roles(self.actor, CATALOGUE_MANAGERS, "manage stock items")
            result = self.audited(
                "delete", "StockItem", item_id,
                lambda: StockItemService.delete(item_id),
                "Delete stock item",
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class StockItemPrimarySupplierView(BaseStockView):
    """PUT /api/stock-items/<id>/primary-supplier/"""

    def put(self, request, item_id):
        try:
            AccessService.require_roles(self.actor, CATALOGUE_MANAGERS, "manage stock items")
            data = self.get_json_body(request)
            result = self.audited(
                "update", "StockItem", item_id,
                lambda: StockItemService.set_primary_supplier(item_id, data.get("supplier")),
                "Set primary supplier",
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


# ==================== STOCK LEVELS ====================

class StockLevelListView(BaseStockView):
    """GET /api/stock-levels/"""

    def get(self, request):
        try:
            queryset = AccessService.scope_queryset(self.actor, StockLevel.objects.all(), "bin__site_id")
            result = StockLevelService.get_all(
                site_id=request.GET.get("site"),
                bin_id=request.GET.get("bin"),
                stock_item_id=request.GET.get("stock_item"),
                queryset=queryset,
                page=_int_param(request, "page", 1),
                per_page=_int_param(request, "per_page", 50),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class StockMovementListView(BaseStockView):
    """GET /api/stock-movements/"""

    def get(self, request):
        try:
            result = StockLevelService.get_movements(
                reference_type=request.GET.get("reference_type"),
                reference_id=request.GET.get("reference_id"),
                stock_item_id=request.GET.get("stock_item"),
                page=_int_param(request, "page", 1),
                per_page=_int_param(request, "per_page", 50),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class DispatchTypeListView(BaseStockView):
    """GET/POST /api/dispatch-types/"""

    def get(self, request):
        try:
            include_inactive = _bool_param(request.GET.get("include_inactive")) or False
            return self.success(DispatchTypeService.list(include_inactive=include_inactive))
        except Exception as e:
            return handle_service_error(e)

    def post(self, request):
        try:
            AccessService.require_roles(self.actor, DISPATCH_TYPE_MANAGERS, "manage dispatch types")
            data = self.get_json_body(request)
            result = self.audited(
                "create", "DispatchType", None,
                lambda: DispatchTypeService.create(data.get("name"), data.get("description", "")),
                f"Create dispatch type {data.get('name') or ''}",
            )
            return self.success(result, 201)
        except Exception as e:
            return handle_service_error(e)


# ==================== WORKFLOW DOCUMENTS ====================

class DocumentListView(BaseStockView):
    """GET/POST/DELETE(?id=) for one numbered document type."""
    service = None

    def get(self, request):
        try:
            result = self.service.list(
                self.actor,
                status=request.GET.get("status"),
                site_id=request.GET.get("site"),
                page=_int_param(request, "page", 1),
                per_page=_int_param(request, "per_page", 20),
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def post(self, request):
        try:
            data = self.get_json_body(request)
            result = self.audited(
                "create", self.service.document_type, None,
                lambda: self.service.create(self.actor, data),
                f"Create {self.service.document_type}",
            )
            return self.success(result, 201)
        except Exception as e:
            return handle_service_error(e)

    def delete(self, request):
        try:
            document_id = request.GET.get("id")
            if not document_id:
                raise ValidationError("Query parameter 'id' is required", "id")
            result = self.audited(
                "delete", self.service.document_type, document_id,
                lambda: self.service.delete(self.actor, document_id),
                f"Delete {self.service.document_type}",
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class DocumentDetailView(BaseStockView):
    """GET/PATCH/DELETE /api/<resource>/<id>/"""
    service = None

    def get(self, request, document_id):
        try:
            return self.success(self.service.get(self.actor, document_id))
        except Exception as e:
            return handle_service_error(e)

    def patch(self, request, document_id):
        try:
            data = self.get_json_body(request)
            result = self.audited(
                "update", self.service.document_type, document_id,
                lambda: self.service.update(self.actor, document_id, data),
                f"Update {self.service.document_type}",
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)

    def delete(self, request, document_id):
        try:
            result = self.audited(
                "delete", self.service.document_type, document_id,
                lambda: self.service.delete(self.actor, document_id),
                f"Delete {self.service.document_type}",
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class DocumentActionView(BaseStockView):
    """POST /api/<resource>/<id>/<action>/"""
    service = None

    def post(self, request, document_id, action):
        try:
            data = self.get_json_body(request)
            result = self.audited(
                action, self.service.document_type, document_id,
                lambda: self.service.perform_action(self.actor, document_id, action, data),
                f"{action.capitalize()} {self.service.document_type}",
            )
            return self.success(result)
        except Exception as e:
            return handle_service_error(e)


class DocumentNextNumberView(BaseStockView):
    """GET /api/<resource>/next-number/"""
    service = None

    def get(self, request):
        try:
            return self.success(self.service.preview_number())
        except Exception as e:
            return handle_service_error(e)


# ==================== APPROVALS ====================

class ApprovalListView(BaseStockView):
    """GET /api/approvals/?document_type=<type>"""

    def get(self, request):
        try:
            return self.success(ApprovalService.pending(self.actor, request.GET.get("document_type")))
        except Exception as e:
            return handle_service_error(e)


# ==================== LOW STOCK ====================

class LowStockView(BaseStockView):
    """GET /api/low-stock/?site=<id>"""

    def get(self, request):
        try:
            return self.success(ReorderService.low_stock(self.actor, request.GET.get("site")))
        except Exception as e:
            return handle_service_error(e)


class LowStockOrderView(BaseStockView):
    """GET(preview)/POST /api/low-stock/orders/"""

    def get(self, request):
        try:
            return self.success(ReorderService.preview_orders(self.actor, request.GET.get("site")))
        except Exception as e:
            return handle_service_error(e)

    def post(self, request):
        try:
            data = self.get_json_body(request)
            result = ReorderService.create_orders(self.actor, data.get("site"), data.get("items"))
        except Exception as e:
            return handle_service_error(e)

        for order in result["created"]:
            AuditService.record(
                "create", f"Create PurchaseOrder {order['po_number']} from low stock",
                "PurchaseOrder", order["id"], self.actor.id,
            )
        for failure in result["failed"]:
            AuditService.record(
                "create", "Create PurchaseOrder from low stock", "PurchaseOrder", None, self.actor.id,
                success=False, details={"supplier": failure["supplier"], "error": failure["error"]["code"]},
            )

        status = 201 if result["created"] else 200
        return self.success(result, status)
