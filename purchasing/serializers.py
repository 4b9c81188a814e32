from rest_framework import serializers

from purchasing.models import LifecycleStatus, LineItem, Priority, PurchaseOrder


class LineItemSerializer(serializers.ModelSerializer):
    is_delayed = serializers.BooleanField(read_only=True)

    class Meta:
        model = LineItem
        fields = [
            "id",
            "purchase_order",
            "line_number",
            "product_code",
            "product_name",
            "quantity",
            "gst_percent",
            "price",
            "mrp",
            "line_priority",
            "expected_delivery_date",
            "status",
            "is_delayed",
            "design_code",
            "combination_code",
            "style",
            "sub_style",
            "region",
            "color",
            "sub_color",
            "polish",
            "size",
            "weight",
            "received_qty",
            "category",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class LineItemListSerializer(LineItemSerializer):
    po_number = serializers.CharField(source="purchase_order.po_number", read_only=True)
    vendor_id = serializers.UUIDField(source="purchase_order.vendor_id", read_only=True)
    vendor_name = serializers.CharField(source="purchase_order.vendor.name", read_only=True)

    class Meta(LineItemSerializer.Meta):
        fields = LineItemSerializer.Meta.fields + ["po_number", "vendor_id", "vendor_name"]
        read_only_fields = fields


class PurchaseOrderSerializer(serializers.ModelSerializer):
    vendor_name = serializers.CharField(source="vendor.name", read_only=True)
    vendor_code = serializers.CharField(source="vendor.code", read_only=True)
    line_items = LineItemSerializer(many=True, read_only=True)

    class Meta:
        model = PurchaseOrder
        fields = [
            "id",
            "po_number",
            "po_date",
            "priority",
            "po_type",
            "vendor",
            "vendor_name",
            "vendor_code",
            "status",
            "erp_reference_id",
            "closure_status",
            "closed_amount",
            "closed_amount_currency",
            "created_at",
            "updated_at",
            "line_items",
        ]
        read_only_fields = fields


class PurchaseOrderListSerializer(PurchaseOrderSerializer):
    line_item_count = serializers.SerializerMethodField()

    class Meta(PurchaseOrderSerializer.Meta):
        fields = [field for field in PurchaseOrderSerializer.Meta.fields if field != "line_items"] + ["line_item_count"]
        read_only_fields = fields

    def get_line_item_count(self, obj):
        return len(obj.line_items.all())


class LineItemInputSerializer(serializers.Serializer):
    product_code = serializers.CharField(max_length=64, required=False, allow_blank=True)
    product_name = serializers.CharField(max_length=255, required=False, allow_blank=True)
    quantity = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, min_value=0)
    gst_percent = serializers.DecimalField(max_digits=5, decimal_places=2, required=False, min_value=0)
    price = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, min_value=0)
    mrp = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, min_value=0)
    line_priority = serializers.ChoiceField(choices=Priority.choices, required=False)
    expected_delivery_date = serializers.DateField(required=False, allow_null=True)
    design_code = serializers.CharField(max_length=64, required=False, allow_null=True, allow_blank=True)
    combination_code = serializers.CharField(max_length=64, required=False, allow_null=True, allow_blank=True)
    style = serializers.CharField(max_length=64, required=False, allow_null=True, allow_blank=True)
    sub_style = serializers.CharField(max_length=64, required=False, allow_null=True, allow_blank=True)
    region = serializers.CharField(max_length=64, required=False, allow_null=True, allow_blank=True)
    color = serializers.CharField(max_length=64, required=False, allow_null=True, allow_blank=True)
    sub_color = serializers.CharField(max_length=64, required=False, allow_null=True, allow_blank=True)
    polish = serializers.CharField(max_length=64, required=False, allow_null=True, allow_blank=True)
    size = serializers.CharField(max_length=64, required=False, allow_null=True, allow_blank=True)
    weight = serializers.DecimalField(max_digits=12, decimal_places=3, required=False, allow_null=True)
    received_qty = serializers.DecimalField(max_digits=12, decimal_places=2, required=False, allow_null=True)
    category = serializers.CharField(max_length=64, required=False, allow_null=True, allow_blank=True)


class PurchaseOrderInputSerializer(serializers.Serializer):
    po_number = serializers.CharField(max_length=64, required=False, allow_blank=True)
    po_date = serializers.DateField(required=False)
    priority = serializers.ChoiceField(choices=Priority.choices, required=False)
    po_type = serializers.ChoiceField(choices=PurchaseOrder.Type.choices, required=False)
    vendor_id = serializers.UUIDField(required=False)
    erp_reference_id = serializers.CharField(max_length=128, required=False, allow_null=True, allow_blank=True)


class ErpPurchaseOrderSerializer(serializers.Serializer):
    po = PurchaseOrderInputSerializer(required=False)
    line_items = LineItemInputSerializer(many=True, required=False)


class PriorityUpdateSerializer(serializers.Serializer):
    priority = serializers.ChoiceField(choices=Priority.choices)
    apply_to_line_items = serializers.BooleanField(required=False, default=False)


class StatusUpdateSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=LifecycleStatus.choices)


class ClosureUpdateSerializer(serializers.Serializer):
    closure_status = serializers.ChoiceField(choices=PurchaseOrder.ClosureStatus.choices, required=False)
    closed_amount = serializers.DecimalField(max_digits=14, decimal_places=2, required=False)


class ExpectedDateUpdateSerializer(serializers.Serializer):
    expected_delivery_date = serializers.DateField()


class AcceptLineItemSerializer(serializers.Serializer):
    line_item_id = serializers.UUIDField()
    expected_delivery_date = serializers.DateField(required=False, allow_null=True)


class AcceptPurchaseOrderSerializer(serializers.Serializer):
    line_items = AcceptLineItemSerializer(many=True, required=False)


class HistoryEntrySerializer(serializers.Serializer):
    id = serializers.UUIDField()
    level = serializers.CharField()
    entity_id = serializers.UUIDField()
    purchase_order_id = serializers.UUIDField()
    po_number = serializers.CharField()
    line_item_id = serializers.UUIDField(allow_null=True)
    line_item_reference = serializers.CharField(allow_null=True)
    action_type = serializers.CharField()
    field_name = serializers.CharField()
    old_value = serializers.CharField(allow_null=True)
    new_value = serializers.CharField(allow_null=True)
    changed_by_id = serializers.UUIDField(allow_null=True)
    changed_by_name = serializers.CharField()
    changed_by_role = serializers.CharField()
    created_at = serializers.DateTimeField()
