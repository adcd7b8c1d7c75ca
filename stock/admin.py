from django.contrib import admin
from django.utils.translation import gettext_lazy as _
from unfold.admin import ModelAdmin, TabularInline
from unfold.decorators import display
from unfold.contrib.filters.admin import RangeDateFilter, RangeDateTimeFilter, RangeNumericFilter

from .models import (
    Site, Bin, Category, Supplier, StockItem, StockLevel, StockMovement, DispatchType,
    PurchaseOrder, OrderedItem, DispatchLog, DispatchedItem,
    InternalTransfer, TransferredItem, StockAdjustment, AdjustedItem,
    InventoryCount, CountedItem, GoodsReceipt, ReceivedItem,
)

STATUS_COLORS = {
    'draft': 'info',
    'pending-approval': 'warning',
    'approved': 'primary',
    'processed': 'success',
    'completed': 'success',
    'cancelled': 'danger',
    'rejected': 'danger',
    'pending': 'warning',
    'partial': 'info',
    'complete': 'success',
}


class StatusBadgeMixin:

    @display(description=_("Status"), label=True)
    def status_badge(self, obj):
        return STATUS_COLORS.get(obj.status, 'info'), obj.get_status_display()


class BinInline(TabularInline):
    model = Bin
    extra = 0
    fields = ('name', 'bin_type', 'is_active')


@admin.register(Site)
class SiteAdmin(ModelAdmin):
    list_display = ['code', 'name', 'bin_count', 'is_active']
    list_filter = ['is_active']
    search_fields = ['name', 'code']
    inlines = [BinInline]

    @display(description=_("Bins"))
    def bin_count(self, obj):
        return obj.bins.count()


@admin.register(Bin)
class BinAdmin(ModelAdmin):
    list_display = ['name', 'site', 'bin_type', 'is_active']
    list_filter = ['site', 'bin_type', 'is_active']
    search_fields = ['name', 'site__name']


@admin.register(Category)
class CategoryAdmin(ModelAdmin):
    list_display = ['title', 'created_at']
    search_fields = ['title']


@admin.register(Supplier)
class SupplierAdmin(ModelAdmin):
    list_display = ['name', 'contact_person', 'email', 'phone', 'is_active']
    list_filter = ['is_active']
    search_fields = ['name', 'contact_person', 'email']


@admin.register(StockItem)
class StockItemAdmin(ModelAdmin):
    list_display = ['sku', 'name', 'category', 'unit_of_measure', 'unit_price',
                    'minimum_stock_level', 'primary_supplier', 'is_deleted']
    list_filter = [
        'category',
        'is_deleted',
        ('unit_price', RangeNumericFilter),
    ]
    search_fields = ['sku', 'name']
    list_filter_submit = True
    filter_horizontal = ['suppliers']


@admin.register(StockLevel)
class StockLevelAdmin(ModelAdmin):
    list_display = ['stock_item', 'bin', 'quantity', 'last_movement_at', 'last_counted_at']
    list_filter = ['bin__site', 'bin']
    search_fields = ['stock_item__name', 'stock_item__sku']
    readonly_fields = ['quantity', 'last_movement_at', 'last_counted_at']


@admin.register(StockMovement)
class StockMovementAdmin(ModelAdmin):
    list_display = ['created_at', 'movement_type', 'stock_item', 'bin', 'quantity',
                    'quantity_after', 'reference_number']
    list_filter = [
        'movement_type',
        'bin__site',
        ('created_at', RangeDateTimeFilter),
    ]
    search_fields = ['stock_item__sku', 'reference_number']
    list_filter_submit = True
    list_fullwidth = True

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False


@admin.register(DispatchType)
class DispatchTypeAdmin(ModelAdmin):
    list_display = ['name', 'is_active']
    search_fields = ['name']


# ==================== DOCUMENTS ====================

class OrderedItemInline(TabularInline):
    model = OrderedItem
    extra = 0
    fields = ('stock_item', 'supplier', 'ordered_quantity', 'unit_price', 'line_total')
    readonly_fields = ('line_total',)


@admin.register(PurchaseOrder)
class PurchaseOrderAdmin(StatusBadgeMixin, ModelAdmin):
    list_display = ['po_number', 'site', 'supplier', 'status_badge', 'total_amount', 'order_date']
    list_filter = [
        'status',
        'site',
        ('order_date', RangeDateFilter),
    ]
    search_fields = ['po_number', 'supplier__name']
    list_filter_submit = True
    list_fullwidth = True
    inlines = [OrderedItemInline]
    readonly_fields = ['po_number', 'total_amount', 'approved_by', 'approved_at',
                       'processed_by', 'processed_at', 'created_at', 'updated_at']


class DispatchedItemInline(TabularInline):
    model = DispatchedItem
    extra = 0
    fields = ('stock_item', 'dispatched_quantity', 'unit_price', 'total_cost')
    readonly_fields = ('total_cost',)


@admin.register(DispatchLog)
class DispatchLogAdmin(ModelAdmin):
    list_display = ['dispatch_number', 'dispatch_date', 'source_bin', 'people_fed',
                    'evidence_badge', 'total_cost', 'cost_per_person']
    list_filter = [
        'evidence_status',
        'dispatch_type',
        ('dispatch_date', RangeDateTimeFilter),
    ]
    search_fields = ['dispatch_number']
    list_filter_submit = True
    inlines = [DispatchedItemInline]
    readonly_fields = ['dispatch_number', 'total_cost', 'cost_per_person', 'created_at', 'updated_at']

    @display(description=_("Evidence"), label=True)
    def evidence_badge(self, obj):
        return STATUS_COLORS.get(obj.evidence_status, 'info'), obj.get_evidence_status_display()


class TransferredItemInline(TabularInline):
    model = TransferredItem
    extra = 0
    fields = ('stock_item', 'transferred_quantity')


@admin.register(InternalTransfer)
class InternalTransferAdmin(StatusBadgeMixin, ModelAdmin):
    list_display = ['transfer_number', 'from_bin', 'to_bin', 'status_badge', 'transfer_date']
    list_filter = ['status', ('transfer_date', RangeDateTimeFilter)]
    search_fields = ['transfer_number']
    list_filter_submit = True
    inlines = [TransferredItemInline]
    readonly_fields = ['transfer_number', 'approved_by', 'approved_at',
                       'completed_by', 'completed_at', 'created_at', 'updated_at']


class AdjustedItemInline(TabularInline):
    model = AdjustedItem
    extra = 0
    fields = ('stock_item', 'adjusted_quantity', 'reason')


@admin.register(StockAdjustment)
class StockAdjustmentAdmin(StatusBadgeMixin, ModelAdmin):
    list_display = ['adjustment_number', 'bin', 'adjustment_type', 'status_badge', 'adjustment_date']
    list_filter = ['status', 'adjustment_type', ('adjustment_date', RangeDateTimeFilter)]
    search_fields = ['adjustment_number']
    list_filter_submit = True
    inlines = [AdjustedItemInline]
    readonly_fields = ['adjustment_number', 'approved_by', 'approved_at', 'completed_at',
                       'created_at', 'updated_at']


class CountedItemInline(TabularInline):
    model = CountedItem
    extra = 0
    fields = ('stock_item', 'counted_quantity', 'system_quantity_at_count_time', 'variance')
    readonly_fields = ('system_quantity_at_count_time', 'variance')


@admin.register(InventoryCount)
class InventoryCountAdmin(StatusBadgeMixin, ModelAdmin):
    list_display = ['count_number', 'bin', 'status_badge', 'count_date']
    list_filter = ['status', ('count_date', RangeDateTimeFilter)]
    search_fields = ['count_number']
    list_filter_submit = True
    inlines = [CountedItemInline]
    readonly_fields = ['count_number', 'approved_by', 'approved_at', 'completed_at',
                       'created_at', 'updated_at']


class ReceivedItemInline(TabularInline):
    model = ReceivedItem
    extra = 0
    fields = ('stock_item', 'ordered_quantity', 'received_quantity', 'unit_price',
              'batch_number', 'expiry_date', 'condition')


@admin.register(GoodsReceipt)
class GoodsReceiptAdmin(StatusBadgeMixin, ModelAdmin):
    list_display = ['receipt_number', 'purchase_order', 'receiving_bin', 'status_badge',
                    'total_amount', 'receipt_date']
    list_filter = ['status', ('receipt_date', RangeDateTimeFilter)]
    search_fields = ['receipt_number', 'purchase_order__po_number']
    list_filter_submit = True
    inlines = [ReceivedItemInline]
    readonly_fields = ['receipt_number', 'total_amount', 'received_by', 'completed_at',
                       'created_at', 'updated_at']
