import uuid as uuid_lib

from django.db import models
from django.db.models import Q


class Site(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid_lib.uuid4, editable=False)
    name = models.CharField(max_length=100)
    code = models.CharField(max_length=20, unique=True)
    address = models.TextField(blank=True, default="")
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name


class Bin(models.Model):
    class BinType(models.TextChoices):
        MAIN_STORAGE = "main-storage", "Main Storage"
        OVERFLOW_STORAGE = "overflow-storage", "Overflow Storage"
        REFRIGERATOR = "refrigerator", "Refrigerator"
        FREEZER = "freezer", "Freezer"
        DISPATCH_AREA = "dispatch-area", "Dispatch Area"
        RECEIVING_AREA = "receiving-area", "Receiving Area"

    id = models.UUIDField(primary_key=True, default=uuid_lib.uuid4, editable=False)
    name = models.CharField(max_length=100)
    site = models.ForeignKey(Site, on_delete=models.PROTECT, related_name="bins")
    bin_type = models.CharField(
        max_length=20, choices=BinType.choices, default=BinType.MAIN_STORAGE
    )
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["site__name", "name"]

    def __str__(self):
        return f"{self.name} ({self.site.name})"


class Category(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid_lib.uuid4, editable=False)
    title = models.CharField(max_length=100, unique=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name_plural = "categories"
        ordering = ["title"]

    def __str__(self):
        return self.title


class Supplier(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid_lib.uuid4, editable=False)
    name = models.CharField(max_length=200)
    contact_person = models.CharField(max_length=100, blank=True, default="")
    email = models.EmailField(blank=True, default="")
    phone = models.CharField(max_length=50, blank=True, default="")
    address = models.TextField(blank=True, default="")
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name


class StockItem(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid_lib.uuid4, editable=False)
    name = models.CharField(max_length=200)
    sku = models.CharField(max_length=50)
    category = models.ForeignKey(
        Category,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="items",
    )
    unit_of_measure = models.CharField(max_length=20, default="each")
    unit_price = models.DecimalField(max_digits=15, decimal_places=4, default=0)

    # Reorder thresholds
    minimum_stock_level = models.DecimalField(max_digits=15, decimal_places=4, default=0)
    reorder_quantity = models.DecimalField(max_digits=15, decimal_places=4, default=0)

    primary_supplier = models.ForeignKey(
        Supplier,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="primary_items",
    )
    suppliers = models.ManyToManyField(Supplier, blank=True, related_name="items")

    is_deleted = models.BooleanField(default=False, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["name"]
        constraints = [
            models.UniqueConstraint(
                fields=["sku"],
                condition=Q(is_deleted=False),
                name="unique_live_stock_item_sku",
            ),
        ]

    def __str__(self):
        return f"{self.name} ({self.sku})"


class StockLevel(models.Model):
    """
    Denormalized current stock level per item per bin.
    Updated only through StockLevelService.adjust.
    """

    stock_item = models.ForeignKey(
        StockItem, on_delete=models.CASCADE, related_name="stock_levels"
    )
    bin = models.ForeignKey(Bin, on_delete=models.CASCADE, related_name="stock_levels")
    quantity = models.DecimalField(max_digits=15, decimal_places=4, default=0)
    last_counted_at = models.DateTimeField(null=True, blank=True)
    last_movement_at = models.DateTimeField(null=True, blank=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        unique_together = [("stock_item", "bin")]

    def __str__(self):
        return f"{self.stock_item.name} @ {self.bin.name}: {self.quantity}"


class StockMovement(models.Model):
    class MovementType(models.TextChoices):
        RECEIPT_IN = "receipt-in", "Goods Receipt"
        DISPATCH_OUT = "dispatch-out", "Dispatch"
        DISPATCH_REVERSAL = "dispatch-reversal", "Dispatch Reversal"
        TRANSFER_OUT = "transfer-out", "Transfer Out"
        TRANSFER_IN = "transfer-in", "Transfer In"
        ADJUSTMENT = "adjustment", "Adjustment"
        COUNT_CORRECTION = "count-correction", "Count Correction"

    stock_item = models.ForeignKey(
        StockItem, on_delete=models.PROTECT, related_name="movements"
    )
    bin = models.ForeignKey(Bin, on_delete=models.PROTECT, related_name="movements")
    movement_type = models.CharField(max_length=20, choices=MovementType.choices)
    quantity = models.DecimalField(
        max_digits=15, decimal_places=4, help_text="Signed change applied to the bin"
    )
    quantity_before = models.DecimalField(max_digits=15, decimal_places=4)
    quantity_after = models.DecimalField(max_digits=15, decimal_places=4)
    reference_type = models.CharField(max_length=30, blank=True, default="")
    reference_id = models.CharField(max_length=64, blank=True, default="")
    reference_number = models.CharField(max_length=50, blank=True, default="")
    moved_by = models.ForeignKey(
        "main.AppUser",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="+",
    )
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["reference_type", "reference_id"]),
        ]

    def __str__(self):
        return f"{self.movement_type} {self.quantity:+} {self.stock_item.name}"


class DispatchType(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid_lib.uuid4, editable=False)
    name = models.CharField(max_length=100, unique=True)
    description = models.TextField(blank=True, default="")
    is_active = models.BooleanField(default=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name


# ==================== WORKFLOW DOCUMENTS ====================


class WorkflowStatus(models.TextChoices):
    DRAFT = "draft", "Draft"
    PENDING_APPROVAL = "pending-approval", "Pending Approval"
    APPROVED = "approved", "Approved"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"
    REJECTED = "rejected", "Rejected"


class PurchaseOrder(models.Model):
    class Status(models.TextChoices):
        DRAFT = "draft", "Draft"
        PENDING_APPROVAL = "pending-approval", "Pending Approval"
        APPROVED = "approved", "Approved"
        PROCESSED = "processed", "Processed"
        CANCELLED = "cancelled", "Cancelled"
        REJECTED = "rejected", "Rejected"

    id = models.UUIDField(primary_key=True, default=uuid_lib.uuid4, editable=False)
    po_number = models.CharField(max_length=50, unique=True)
    order_date = models.DateField()
    expected_delivery_date = models.DateField(null=True, blank=True)
    status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.DRAFT
    )
    site = models.ForeignKey(
        Site, on_delete=models.PROTECT, null=True, blank=True, related_name="purchase_orders"
    )
    supplier = models.ForeignKey(
        Supplier,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="purchase_orders",
        help_text="Set when every line is ordered from the same supplier",
    )
    total_amount = models.DecimalField(max_digits=23, decimal_places=8, default=0)

    ordered_by = models.ForeignKey(
        "main.AppUser", on_delete=models.PROTECT, related_name="+"
    )
    approved_by = models.ForeignKey(
        "main.AppUser", on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    approved_at = models.DateTimeField(null=True, blank=True)
    processed_by = models.ForeignKey(
        "main.AppUser", on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    processed_at = models.DateTimeField(null=True, blank=True)
    receiving_bin = models.ForeignKey(
        Bin, on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return self.po_number


class OrderedItem(models.Model):
    purchase_order = models.ForeignKey(
        PurchaseOrder, on_delete=models.CASCADE, related_name="ordered_items"
    )
    stock_item = models.ForeignKey(StockItem, on_delete=models.PROTECT, related_name="+")
    supplier = models.ForeignKey(
        Supplier, on_delete=models.PROTECT, null=True, blank=True, related_name="+"
    )
    ordered_quantity = models.DecimalField(max_digits=15, decimal_places=4)
    unit_price = models.DecimalField(max_digits=15, decimal_places=4)
    line_total = models.DecimalField(max_digits=23, decimal_places=8, default=0)
    position = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ["position", "id"]

    def __str__(self):
        return f"{self.stock_item.name} × {self.ordered_quantity}"


class DispatchLog(models.Model):
    class EvidenceStatus(models.TextChoices):
        PENDING = "pending", "Pending"
        PARTIAL = "partial", "Partial"
        COMPLETE = "complete", "Complete"

    id = models.UUIDField(primary_key=True, default=uuid_lib.uuid4, editable=False)
    dispatch_number = models.CharField(max_length=50, unique=True)
    dispatch_date = models.DateTimeField()
    dispatch_type = models.ForeignKey(
        DispatchType, on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    source_bin = models.ForeignKey(Bin, on_delete=models.PROTECT, related_name="dispatches")
    dispatched_by = models.ForeignKey(
        "main.AppUser", on_delete=models.PROTECT, related_name="+"
    )
    people_fed = models.PositiveIntegerField(default=0)
    evidence_status = models.CharField(
        max_length=20, choices=EvidenceStatus.choices, default=EvidenceStatus.PENDING
    )
    total_cost = models.DecimalField(max_digits=23, decimal_places=8, default=0)
    cost_per_person = models.DecimalField(
        max_digits=23, decimal_places=8, null=True, blank=True,
        help_text="Null when no people were fed",
    )
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-dispatch_date"]

    def __str__(self):
        return self.dispatch_number


class DispatchedItem(models.Model):
    dispatch = models.ForeignKey(
        DispatchLog, on_delete=models.CASCADE, related_name="dispatched_items"
    )
    stock_item = models.ForeignKey(StockItem, on_delete=models.PROTECT, related_name="+")
    dispatched_quantity = models.DecimalField(max_digits=15, decimal_places=4)
    unit_price = models.DecimalField(max_digits=15, decimal_places=4)
    total_cost = models.DecimalField(max_digits=23, decimal_places=8, default=0)
    notes = models.TextField(blank=True, default="")
    position = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ["position", "id"]

    def __str__(self):
        return f"{self.stock_item.name} × {self.dispatched_quantity}"


class InternalTransfer(models.Model):
    Status = WorkflowStatus

    id = models.UUIDField(primary_key=True, default=uuid_lib.uuid4, editable=False)
    transfer_number = models.CharField(max_length=50, unique=True)
    transfer_date = models.DateTimeField()
    status = models.CharField(
        max_length=20, choices=WorkflowStatus.choices, default=WorkflowStatus.DRAFT
    )
    from_bin = models.ForeignKey(
        Bin, on_delete=models.PROTECT, null=True, blank=True, related_name="transfers_out"
    )
    to_bin = models.ForeignKey(
        Bin, on_delete=models.PROTECT, null=True, blank=True, related_name="transfers_in"
    )
    transferred_by = models.ForeignKey(
        "main.AppUser", on_delete=models.PROTECT, related_name="+"
    )
    approved_by = models.ForeignKey(
        "main.AppUser", on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    approved_at = models.DateTimeField(null=True, blank=True)
    completed_by = models.ForeignKey(
        "main.AppUser", on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    completed_at = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return self.transfer_number


class TransferredItem(models.Model):
    transfer = models.ForeignKey(
        InternalTransfer, on_delete=models.CASCADE, related_name="transferred_items"
    )
    stock_item = models.ForeignKey(StockItem, on_delete=models.PROTECT, related_name="+")
    transferred_quantity = models.DecimalField(max_digits=15, decimal_places=4)
    position = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ["position", "id"]

    def __str__(self):
        return f"{self.stock_item.name} × {self.transferred_quantity}"


class StockAdjustment(models.Model):
    Status = WorkflowStatus

    class AdjustmentType(models.TextChoices):
        LOSS = "loss", "Loss"
        WASTAGE = "wastage", "Wastage"
        EXPIRY = "expiry", "Expiry"
        DAMAGE = "damage", "Damage"
        INVENTORY_CORRECTION = "inventory-correction", "Inventory Count Correction"
        THEFT = "theft", "Theft"
        POSITIVE_ADJUSTMENT = "positive-adjustment", "Positive Adjustment (Found Stock)"

    id = models.UUIDField(primary_key=True, default=uuid_lib.uuid4, editable=False)
    adjustment_number = models.CharField(max_length=50, unique=True)
    adjustment_date = models.DateTimeField()
    status = models.CharField(
        max_length=20, choices=WorkflowStatus.choices, default=WorkflowStatus.DRAFT
    )
    bin = models.ForeignKey(
        Bin, on_delete=models.PROTECT, null=True, blank=True, related_name="adjustments"
    )
    adjustment_type = models.CharField(
        max_length=30, choices=AdjustmentType.choices, blank=True, default=""
    )
    adjusted_by = models.ForeignKey(
        "main.AppUser", on_delete=models.PROTECT, related_name="+"
    )
    approved_by = models.ForeignKey(
        "main.AppUser", on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    approved_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-created_at"]

    def __str__(self):
        return self.adjustment_number


class AdjustedItem(models.Model):
    adjustment = models.ForeignKey(
        StockAdjustment, on_delete=models.CASCADE, related_name="adjusted_items"
    )
    stock_item = models.ForeignKey(StockItem, on_delete=models.PROTECT, related_name="+")
    adjusted_quantity = models.DecimalField(max_digits=15, decimal_places=4)
    reason = models.CharField(max_length=200, blank=True, default="")
    position = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ["position", "id"]

    def __str__(self):
        return f"{self.stock_item.name} {self.adjusted_quantity:+}"


class InventoryCount(models.Model):
    Status = WorkflowStatus

    id = models.UUIDField(primary_key=True, default=uuid_lib.uuid4, editable=False)
    count_number = models.CharField(max_length=50, unique=True)
    count_date = models.DateTimeField()
    status = models.CharField(
        max_length=20, choices=WorkflowStatus.choices, default=WorkflowStatus.DRAFT
    )
    bin = models.ForeignKey(
        Bin, on_delete=models.PROTECT, null=True, blank=True, related_name="counts"
    )
    counted_by = models.ForeignKey(
        "main.AppUser", on_delete=models.PROTECT, related_name="+"
    )
    approved_by = models.ForeignKey(
        "main.AppUser", on_delete=models.SET_NULL, null=True, blank=True, related_name="+"
    )
    approved_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-count_date"]

    def __str__(self):
        return self.count_number


class CountedItem(models.Model):
    count = models.ForeignKey(
        InventoryCount, on_delete=models.CASCADE, related_name="counted_items"
    )
    stock_item = models.ForeignKey(StockItem, on_delete=models.PROTECT, related_name="+")
    counted_quantity = models.DecimalField(max_digits=15, decimal_places=4)
    system_quantity_at_count_time = models.DecimalField(max_digits=15, decimal_places=4)
    variance = models.DecimalField(max_digits=15, decimal_places=4)
    position = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ["position", "id"]

    def __str__(self):
        return f"{self.stock_item.name}: {self.counted_quantity} ({self.variance:+})"


class GoodsReceipt(models.Model):
    class Status(models.TextChoices):
        DRAFT = "draft", "Draft"
        COMPLETED = "completed", "Completed"
        CANCELLED = "cancelled", "Cancelled"

    id = models.UUIDField(primary_key=True, default=uuid_lib.uuid4, editable=False)
    receipt_number = models.CharField(max_length=50, unique=True)
    receipt_date = models.DateTimeField()
    status = models.CharField(
        max_length=20, choices=Status.choices, default=Status.DRAFT
    )
    purchase_order = models.ForeignKey(
        PurchaseOrder, on_delete=models.PROTECT, null=True, blank=True, related_name="receipts"
    )
    receiving_bin = models.ForeignKey(
        Bin, on_delete=models.PROTECT, null=True, blank=True, related_name="receipts"
    )
    received_by = models.ForeignKey(
        "main.AppUser", on_delete=models.PROTECT, related_name="+"
    )
    completed_at = models.DateTimeField(null=True, blank=True)
    total_amount = models.DecimalField(max_digits=23, decimal_places=8, default=0)
    notes = models.TextField(blank=True, default="")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        ordering = ["-receipt_date"]

    def __str__(self):
        return self.receipt_number


class ReceivedItem(models.Model):
    class Condition(models.TextChoices):
        GOOD = "good", "Good"
        DAMAGED = "damaged", "Damaged"
        SHORT_SHIPPED = "short-shipped", "Short Shipped"
        OVER_SHIPPED = "over-shipped", "Over Shipped"

    receipt = models.ForeignKey(
        GoodsReceipt, on_delete=models.CASCADE, related_name="received_items"
    )
    stock_item = models.ForeignKey(StockItem, on_delete=models.PROTECT, related_name="+")
    ordered_quantity = models.DecimalField(max_digits=15, decimal_places=4, default=0)
    received_quantity = models.DecimalField(max_digits=15, decimal_places=4)
    unit_price = models.DecimalField(max_digits=15, decimal_places=4, default=0)
    batch_number = models.CharField(max_length=100, blank=True, default="")
    expiry_date = models.DateField(null=True, blank=True)
    condition = models.CharField(
        max_length=20, choices=Condition.choices, default=Condition.GOOD
    )
    position = models.PositiveIntegerField(default=0)

    class Meta:
        ordering = ["position", "id"]

    def __str__(self):
        return f"{self.stock_item.name} × {self.received_quantity}"
