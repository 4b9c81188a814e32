import uuid
from decimal import Decimal

import django.db.models.deletion
import django.utils.timezone
from django.conf import settings
from django.db import migrations, models

PRIORITY_CHOICES = [("LOW", "Low"), ("MEDIUM", "Medium"), ("HIGH", "High"), ("URGENT", "Urgent")]
STATUS_CHOICES = [
    ("CREATED", "Created"),
    ("ACCEPTED", "Accepted"),
    ("PLANNED", "Planned"),
    ("DELIVERED", "Delivered"),
]
ACTION_TYPE_CHOICES = [
    ("PRIORITY_CHANGE", "Priority change"),
    ("STATUS_CHANGE", "Status change"),
    ("STATUS_OVERRIDE", "Status override"),
    ("VENDOR_ACCEPT", "Vendor accept"),
    ("DATE_CHANGE", "Date change"),
    ("CLOSURE_CHANGE", "Closure change"),
]


def history_fields():
    return [
        ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
        ("entity_id", models.UUIDField()),
        ("action_type", models.CharField(choices=ACTION_TYPE_CHOICES, max_length=32)),
        ("field_name", models.CharField(max_length=64)),
        ("old_value", models.TextField(blank=True, null=True)),
        ("new_value", models.TextField(blank=True, null=True)),
        ("changed_by_name", models.CharField(blank=True, default="", max_length=255)),
        ("changed_by_role", models.CharField(blank=True, default="", max_length=32)),
        ("created_at", models.DateTimeField(default=django.utils.timezone.now, editable=False)),
        (
            "changed_by",
            models.ForeignKey(
                blank=True,
                null=True,
                on_delete=django.db.models.deletion.SET_NULL,
                related_name="+",
                to=settings.AUTH_USER_MODEL,
            ),
        ),
    ]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        ("core", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="PurchaseOrder",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("po_number", models.CharField(max_length=64, unique=True)),
                ("po_date", models.DateField(default=django.utils.timezone.localdate)),
                ("priority", models.CharField(choices=PRIORITY_CHOICES, default="MEDIUM", max_length=16)),
                (
                    "po_type",
                    models.CharField(
                        choices=[("NEW_ITEMS", "New items"), ("REPEAT", "Repeat")],
                        default="NEW_ITEMS",
                        max_length=16,
                    ),
                ),
                ("status", models.CharField(choices=STATUS_CHOICES, default="CREATED", max_length=16)),
                ("erp_reference_id", models.CharField(blank=True, max_length=128, null=True)),
                (
                    "closure_status",
                    models.CharField(
                        choices=[("OPEN", "Open"), ("PARTIALLY_CLOSED", "Partially closed"), ("CLOSED", "Closed")],
                        default="OPEN",
                        max_length=32,
                    ),
                ),
                ("closed_amount", models.DecimalField(decimal_places=2, default=Decimal("0"), max_digits=14)),
                ("closed_amount_currency", models.CharField(default="INR", max_length=3)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "vendor",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="purchase_orders",
                        to="core.vendor",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["vendor", "status"], name="po_vendor_status_idx"),
                    models.Index(fields=["status", "created_at"], name="po_status_created_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("closed_amount__gte", 0)),
                        name="purchasing_po_closed_amount_non_negative",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="LineItem",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("line_number", models.PositiveIntegerField(default=1)),
                ("product_code", models.CharField(max_length=64)),
                ("product_name", models.CharField(max_length=255)),
                ("quantity", models.DecimalField(decimal_places=2, max_digits=12)),
                ("gst_percent", models.DecimalField(decimal_places=2, default=Decimal("0"), max_digits=5)),
                ("price", models.DecimalField(decimal_places=2, default=Decimal("0"), max_digits=12)),
                ("mrp", models.DecimalField(decimal_places=2, default=Decimal("0"), max_digits=12)),
                ("line_priority", models.CharField(choices=PRIORITY_CHOICES, default="MEDIUM", max_length=16)),
                ("expected_delivery_date", models.DateField(blank=True, null=True)),
                ("status", models.CharField(choices=STATUS_CHOICES, default="CREATED", max_length=16)),
                ("design_code", models.CharField(blank=True, max_length=64, null=True)),
                ("combination_code", models.CharField(blank=True, max_length=64, null=True)),
                ("style", models.CharField(blank=True, max_length=64, null=True)),
                ("sub_style", models.CharField(blank=True, max_length=64, null=True)),
                ("region", models.CharField(blank=True, max_length=64, null=True)),
                ("color", models.CharField(blank=True, max_length=64, null=True)),
                ("sub_color", models.CharField(blank=True, max_length=64, null=True)),
                ("polish", models.CharField(blank=True, max_length=64, null=True)),
                ("size", models.CharField(blank=True, max_length=64, null=True)),
                ("weight", models.DecimalField(blank=True, decimal_places=3, max_digits=12, null=True)),
                ("received_qty", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("category", models.CharField(blank=True, max_length=64, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "purchase_order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="line_items",
                        to="purchasing.purchaseorder",
                    ),
                ),
            ],
            options={
                "ordering": ["purchase_order", "line_number"],
                "indexes": [
                    models.Index(fields=["purchase_order", "line_number"], name="line_item_po_line_idx"),
                    models.Index(fields=["status", "expected_delivery_date"], name="line_item_status_eta_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("quantity__gt", 0)), name="purchasing_line_item_quantity_positive"
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("gst_percent__gte", 0)), name="purchasing_line_item_gst_non_negative"
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("price__gte", 0)), name="purchasing_line_item_price_non_negative"
                    ),
                    models.CheckConstraint(
                        condition=models.Q(("mrp__gte", 0)), name="purchasing_line_item_mrp_non_negative"
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PurchaseOrderHistory",
            fields=history_fields()
            + [
                (
                    "purchase_order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="history",
                        to="purchasing.purchaseorder",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["purchase_order", "created_at"], name="po_history_po_created_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="LineItemHistory",
            fields=history_fields()
            + [
                (
                    "purchase_order",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="line_item_history",
                        to="purchasing.purchaseorder",
                    ),
                ),
                (
                    "line_item",
                    models.ForeignKey(
                        blank=True,
                        null=True,
                        on_delete=django.db.models.deletion.SET_NULL,
                        related_name="history",
                        to="purchasing.lineitem",
                    ),
                ),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["purchase_order", "created_at"], name="li_history_po_created_idx"),
                    models.Index(fields=["entity_id"], name="li_history_entity_idx"),
                ],
            },
        ),
    ]
