import uuid
from decimal import Decimal

from django.db import models
from django.db.models import Q
from django.utils import timezone


class Priority(models.TextChoices):
    LOW = "LOW", "Low"
    MEDIUM = "MEDIUM", "Medium"
    HIGH = "HIGH", "High"
    URGENT = "URGENT", "Urgent"


class LifecycleStatus(models.TextChoices):
    CREATED = "CREATED", "Created"
    ACCEPTED = "ACCEPTED", "Accepted"
    PLANNED = "PLANNED", "Planned"
    DELIVERED = "DELIVERED", "Delivered"


class PurchaseOrderQuerySet(models.QuerySet):
    def for_vendor(self, vendor_id):
        return self.filter(vendor_id=vendor_id)

    def with_line_items(self):
        return self.select_related("vendor").prefetch_related("line_items")

    def open(self):
        return self.exclude(status=LifecycleStatus.DELIVERED)


class PurchaseOrder(models.Model):
    class Type(models.TextChoices):
        NEW_ITEMS = "NEW_ITEMS", "New items"
        REPEAT = "REPEAT", "Repeat"

    class ClosureStatus(models.TextChoices):
        OPEN = "OPEN", "Open"
        PARTIALLY_CLOSED = "PARTIALLY_CLOSED", "Partially closed"
        CLOSED = "CLOSED", "Closed"

    Status = LifecycleStatus
    Priority = Priority

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    po_number = models.CharField(max_length=64, unique=True)
    po_date = models.DateField(default=timezone.localdate)
    priority = models.CharField(max_length=16, choices=Priority, default=Priority.MEDIUM)
    po_type = models.CharField(max_length=16, choices=Type, default=Type.NEW_ITEMS)
    vendor = models.ForeignKey("core.Vendor", on_delete=models.PROTECT, related_name="purchase_orders")
    status = models.CharField(max_length=16, choices=LifecycleStatus, default=LifecycleStatus.CREATED)
    erp_reference_id = models.CharField(max_length=128, null=True, blank=True)
    closure_status = models.CharField(max_length=32, choices=ClosureStatus, default=ClosureStatus.OPEN)
    closed_amount = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal("0"))
    closed_amount_currency = models.CharField(max_length=3, default="INR")
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = PurchaseOrderQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.CheckConstraint(condition=Q(closed_amount__gte=0), name="purchasing_po_closed_amount_non_negative"),
        ]
        indexes = [
            models.Index(fields=["vendor", "status"], name="po_vendor_status_idx"),
            models.Index(fields=["status", "created_at"], name="po_status_created_idx"),
        ]

    def __str__(self):
        return self.po_number


class LineItemQuerySet(models.QuerySet):
    def for_purchase_order(self, purchase_order_id):
        return self.filter(purchase_order_id=purchase_order_id)

    def for_vendor(self, vendor_id):
        return self.filter(purchase_order__vendor_id=vendor_id)

    def delivered(self):
        return self.filter(status=LifecycleStatus.DELIVERED)

    def delayed(self, today=None):
        today = today or timezone.localdate()
        return self.exclude(status=LifecycleStatus.DELIVERED).filter(expected_delivery_date__lt=today)


class LineItem(models.Model):
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    purchase_order = models.ForeignKey(PurchaseOrder, on_delete=models.CASCADE, related_name="line_items")
    line_number = models.PositiveIntegerField(default=1)
    product_code = models.CharField(max_length=64)
    product_name = models.CharField(max_length=255)
    quantity = models.DecimalField(max_digits=12, decimal_places=2)
    gst_percent = models.DecimalField(max_digits=5, decimal_places=2, default=Decimal("0"))
    price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0"))
    mrp = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal("0"))
    line_priority = models.CharField(max_length=16, choices=Priority, default=Priority.MEDIUM)
    expected_delivery_date = models.DateField(null=True, blank=True)
    status = models.CharField(max_length=16, choices=LifecycleStatus, default=LifecycleStatus.CREATED)
    design_code = models.CharField(max_length=64, null=True, blank=True)
    combination_code = models.CharField(max_length=64, null=True, blank=True)
    style = models.CharField(max_length=64, null=True, blank=True)
    sub_style = models.CharField(max_length=64, null=True, blank=True)
    region = models.CharField(max_length=64, null=True, blank=True)
    color = models.CharField(max_length=64, null=True, blank=True)
    sub_color = models.CharField(max_length=64, null=True, blank=True)
    polish = models.CharField(max_length=64, null=True, blank=True)
    size = models.CharField(max_length=64, null=True, blank=True)
    weight = models.DecimalField(max_digits=12, decimal_places=3, null=True, blank=True)
    received_qty = models.DecimalField(max_digits=12, decimal_places=2, null=True, blank=True)
    category = models.CharField(max_length=64, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = LineItemQuerySet.as_manager()

    class Meta:
        ordering = ["purchase_order", "line_number"]
        constraints = [
            models.CheckConstraint(condition=Q(quantity__gt=0), name="purchasing_line_item_quantity_positive"),
            models.CheckConstraint(condition=Q(gst_percent__gte=0), name="purchasing_line_item_gst_non_negative"),
            models.CheckConstraint(condition=Q(price__gte=0), name="purchasing_line_item_price_non_negative"),
            models.CheckConstraint(condition=Q(mrp__gte=0), name="purchasing_line_item_mrp_non_negative"),
        ]
        indexes = [
            models.Index(fields=["purchase_order", "line_number"], name="line_item_po_line_idx"),
            models.Index(fields=["status", "expected_delivery_date"], name="line_item_status_eta_idx"),
        ]

    def __str__(self):
        return self.reference

    @property
    def reference(self):
        return f"{self.product_code} - {self.product_name}"

    @property
    def is_delayed(self):
        if self.status == LifecycleStatus.DELIVERED or self.expected_delivery_date is None:
            return False
        return self.expected_delivery_date < timezone.localdate()


class HistoryActionType(models.TextChoices):
    PRIORITY_CHANGE = "PRIORITY_CHANGE", "Priority change"
    STATUS_CHANGE = "STATUS_CHANGE", "Status change"
    STATUS_OVERRIDE = "STATUS_OVERRIDE", "Status override"
    VENDOR_ACCEPT = "VENDOR_ACCEPT", "Vendor accept"
    DATE_CHANGE = "DATE_CHANGE", "Date change"
    CLOSURE_CHANGE = "CLOSURE_CHANGE", "Closure change"


class ImmutableHistoryError(Exception):
    pass


class HistoryEntry(models.Model):
    """Append-only record of one changed field."""

    ActionType = HistoryActionType

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    entity_id = models.UUIDField()
    action_type = models.CharField(max_length=32, choices=HistoryActionType)
    field_name = models.CharField(max_length=64)
    old_value = models.TextField(null=True, blank=True)
    new_value = models.TextField(null=True, blank=True)
    changed_by = models.ForeignKey("core.User", on_delete=models.SET_NULL, null=True, blank=True, related_name="+")
    changed_by_name = models.CharField(max_length=255, blank=True, default="")
    changed_by_role = models.CharField(max_length=32, blank=True, default="")
    created_at = models.DateTimeField(default=timezone.now, editable=False)

    class Meta:
        abstract = True

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ImmutableHistoryError("History entries cannot be modified.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ImmutableHistoryError("History entries cannot be deleted.")


class PurchaseOrderHistory(HistoryEntry):
    purchase_order = models.ForeignKey(PurchaseOrder, on_delete=models.PROTECT, related_name="history")

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["purchase_order", "created_at"], name="po_history_po_created_idx"),
        ]


class LineItemHistory(HistoryEntry):
    purchase_order = models.ForeignKey(PurchaseOrder, on_delete=models.PROTECT, related_name="line_item_history")
    line_item = models.ForeignKey(LineItem, on_delete=models.SET_NULL, null=True, blank=True, related_name="history")

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["purchase_order", "created_at"], name="li_history_po_created_idx"),
            models.Index(fields=["entity_id"], name="li_history_entity_idx"),
        ]
