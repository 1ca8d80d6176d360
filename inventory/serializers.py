"""Serializers for inventory domain.

Input serializers validate ledger requests; output serializers are read-only.
"""

from common.choices import MovementType
from rest_framework import serializers

from .alerts import evaluate
from .models import StockItem, StockMovement


class StockItemSerializer(serializers.ModelSerializer):
    """Read-only representation of stock for a product."""

    sku = serializers.CharField(source="product.sku", read_only=True)
    title = serializers.CharField(source="product.title", read_only=True)
    alert = serializers.SerializerMethodField(read_only=True)

    class Meta:
        model = StockItem
        fields = [
            "id",
            "product",
            "sku",
            "title",
            "track_quantity",
            "quantity",
            "low_stock_threshold",
            "allow_backorders",
            "alert",
            "updated_at",
        ]
        read_only_fields = fields

    def get_alert(self, obj) -> str | None:
        if not obj.track_quantity:
            return None
        result = evaluate(obj.quantity, obj.low_stock_threshold)
        return result.value if result else None


class StockMovementSerializer(serializers.ModelSerializer):
    """Read-only representation of stock movements."""

    product = serializers.IntegerField(source="stock_item.product_id", read_only=True)

    class Meta:
        model = StockMovement
        fields = [
            "id",
            "product",
            "stock_item",
            "movement_type",
            "quantity",
            "reason",
            "reference",
            "batch_id",
            "created_at",
        ]
        read_only_fields = fields


class HistoryMovementSerializer(StockMovementSerializer):
    running_balance = serializers.IntegerField(read_only=True)

    class Meta(StockMovementSerializer.Meta):
        fields = StockMovementSerializer.Meta.fields + ["running_balance"]
        read_only_fields = fields


class AdjustmentSerializer(serializers.Serializer):
    product_id = serializers.IntegerField()
    quantity = serializers.IntegerField()
    type = serializers.ChoiceField(choices=MovementType.choices)
    reason = serializers.CharField(max_length=200, required=False, allow_blank=True, default="")
    reference = serializers.CharField(max_length=120, required=False, allow_blank=True, default="")

    def validate_quantity(self, value):
        if value == 0:
            raise serializers.ValidationError("Quantity must be non-zero.")
        return value


class BulkAdjustmentSerializer(serializers.Serializer):
    adjustments = serializers.ListField(child=serializers.DictField(), allow_empty=False, max_length=500)


class StockLineSerializer(serializers.Serializer):
    product_id = serializers.IntegerField()
    quantity = serializers.IntegerField(min_value=1)


class ReservationSerializer(serializers.Serializer):
    items = StockLineSerializer(many=True, allow_empty=False)
    order_id = serializers.CharField(max_length=120)


class ThresholdSerializer(serializers.Serializer):
    low_stock_threshold = serializers.IntegerField(min_value=0)
    reason = serializers.CharField(max_length=200, required=False, allow_blank=True, default="")


class LowestStockSerializer(serializers.Serializer):
    product_id = serializers.IntegerField()
    sku = serializers.CharField()
    title = serializers.CharField()
    quantity = serializers.IntegerField()
    low_stock_threshold = serializers.IntegerField()
    alert = serializers.CharField(allow_null=True)


class InventoryReportSerializer(serializers.Serializer):
    total_products = serializers.IntegerField()
    in_stock = serializers.IntegerField()
    out_of_stock = serializers.IntegerField()
    low_stock = serializers.IntegerField()
    total_value = serializers.DecimalField(max_digits=18, decimal_places=2)
    low_stock_value = serializers.DecimalField(max_digits=18, decimal_places=2)
    average_stock_level = serializers.DecimalField(max_digits=18, decimal_places=2)
    recent_movements = serializers.IntegerField()
    lowest_stock = LowestStockSerializer(many=True)


# EOF
