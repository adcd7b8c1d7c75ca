from django.urls import path
from . import views
from .services.adjustment_service import AdjustmentService
from .services.count_service import CountService
from .services.dispatch_service import DispatchService
from .services.purchase_service import PurchaseOrderService
from .services.receipt_service import GoodsReceiptService
from .services.transfer_service import TransferService

app_name = "stock"

DOCUMENT_RESOURCES = (
    ("purchase-orders", "po", PurchaseOrderService),
    ("dispatches", "dispatch", DispatchService),
    ("transfers", "transfer", TransferService),
    ("adjustments", "adjustment", AdjustmentService),
    ("bin-counts", "count", CountService),
    ("goods-receipts", "receipt", GoodsReceiptService),
)


def document_patterns(prefix, name, service):
    return [
        path(f"{prefix}/", views.DocumentListView.as_view(service=service), name=f"{name}-list"),
        path(f"{prefix}/next-number/", views.DocumentNextNumberView.as_view(service=service), name=f"{name}-next-number"),
        path(f"{prefix}/<uuid:document_id>/", views.DocumentDetailView.as_view(service=service), name=f"{name}-detail"),
        path(f"{prefix}/<uuid:document_id>/<str:action>/", views.DocumentActionView.as_view(service=service), name=f"{name}-action"),
    ]


urlpatterns = [
    path("sites/", views.SiteListView.as_view(), name="site-list"),
    path("sites/<uuid:site_id>/", views.SiteDetailView.as_view(), name="site-detail"),
    path("sites/<uuid:site_id>/main-bin/", views.SiteMainBinView.as_view(), name="site-main-bin"),

    path("bins/", views.BinListView.as_view(), name="bin-list"),
    path("bins/<uuid:bin_id>/", views.BinDetailView.as_view(), name="bin-detail"),

    path("suppliers/", views.SupplierListView.as_view(), name="supplier-list"),
    path("suppliers/<uuid:supplier_id>/", views.SupplierDetailView.as_view(), name="supplier-detail"),

    path("stock-items/", views.StockItemListView.as_view(), name="item-list"),
    path("stock-items/<uuid:item_id>/", views.StockItemDetailView.as_view(), name="item-detail"),
    path("stock-items/<uuid:item_id>/primary-supplier/", views.StockItemPrimarySupplierView.as_view(), name="item-primary-supplier"),

    path("stock-levels/", views.StockLevelListView.as_view(), name="level-list"),
    path("stock-movements/", views.StockMovementListView.as_view(), name="movement-list"),
    path("dispatch-types/", views.DispatchTypeListView.as_view(), name="dispatch-type-list"),

    path("low-stock/", views.LowStockView.as_view(), name="low-stock"),
    path("low-stock/orders/", views.LowStockOrderView.as_view(), name="low-stock-orders"),

    path("approvals/", views.ApprovalListView.as_view(), name="approval-list"),
]

for prefix, name, service in DOCUMENT_RESOURCES:
    urlpatterns += document_patterns(prefix, name, service)
