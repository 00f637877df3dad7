"""Order DRF serializers for API input/output.

The serializer operates at the Interface layer (API Views).
Business logic lives in the Service Layer, which receives
Pydantic DTOs from ``dtos.py``.
"""

from __future__ import annotations

from decimal import Decimal

from rest_framework import serializers

from modules.orders.constants import OrderStatus, PaymentMethod
from modules.orders.models import Order, OrderItem, OrderStatusHistory

# ---------------------------------------------------------------------------
# Input Serializers
# ---------------------------------------------------------------------------


class CreateOrderItemSerializer(serializers.Serializer):
    """Validates a single requested line.  Prices come from the catalog."""

    gem_id = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1)


class ShippingAddressSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=200)
    phone = serializers.CharField(max_length=20)
    address_line1 = serializers.CharField(max_length=255)
    address_line2 = serializers.CharField(
        max_length=255, required=False, default="", allow_blank=True
    )
    city = serializers.CharField(max_length=100)
    state = serializers.CharField(max_length=100)
    postal_code = serializers.CharField(max_length=20)
    country = serializers.CharField(max_length=100)


class CreateOrderSerializer(serializers.Serializer):
    """Validates the checkout request payload."""

    items = CreateOrderItemSerializer(many=True, allow_empty=False)
    shipping_address = ShippingAddressSerializer()
    payment_method = serializers.ChoiceField(
        choices=PaymentMethod.choices, default=PaymentMethod.CASH_ON_DELIVERY
    )
    total_price = serializers.DecimalField(
        max_digits=12, decimal_places=2, min_value=0
    )


class UpdateOrderStatusSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=OrderStatus.choices)
    tracking_number = serializers.CharField(
        max_length=100, required=False, allow_blank=True, default=""
    )
    reason = serializers.CharField(required=False, allow_blank=True, default="")


class CancelOrderSerializer(serializers.Serializer):
    reason = serializers.CharField(required=False, allow_blank=True, default="")


# ---------------------------------------------------------------------------
# Output Serializers (Read)
# ---------------------------------------------------------------------------


class OrderItemSerializer(serializers.ModelSerializer):
    """Read serializer for the frozen line-item snapshot."""

    class Meta:
        model = OrderItem
        fields = [
            "id",
            "gem_id",
            "gem_name",
            "seller_id",
            "quantity",
            "unit_price",
            "tax_category",
            "tax_rate",
            "unit_price_before_tax",
            "unit_tax_amount",
            "line_total",
            "line_tax_amount",
        ]
        read_only_fields = fields


class StatusHistorySerializer(serializers.ModelSerializer):
    """Read serializer for order status history records."""

    class Meta:
        model = OrderStatusHistory
        fields = [
            "id",
            "old_status",
            "new_status",
            "old_payment_status",
            "new_payment_status",
            "notes",
            "created_at",
        ]
        read_only_fields = fields


class OrderSerializer(serializers.ModelSerializer):
    """Read serializer for orders with nested items and history."""

    items = OrderItemSerializer(many=True, read_only=True)
    status_history = StatusHistorySerializer(many=True, read_only=True)
    shipping_address = serializers.ReadOnlyField()

    class Meta:
        model = Order
        fields = [
            "id",
            "order_number",
            "user_id",
            "status",
            "payment_status",
            "payment_method",
            "total_price",
            "total_tax",
            "tax_breakdown",
            "shipping_address",
            "tracking_number",
            "cancel_reason",
            "cancelled_at",
            "provider_order_id",
            "paid_at",
            "fulfillment_blocked",
            "created_at",
            "updated_at",
            "items",
            "status_history",
        ]
        read_only_fields = fields


class OrderListSerializer(serializers.ModelSerializer):
    """Order summary: no nested relations."""

    class Meta:
        model = Order
        fields = [
            "id",
            "order_number",
            "total_price",
            "total_tax",
            "status",
            "payment_status",
            "payment_method",
            "created_at",
        ]
        read_only_fields = fields


class SellerOrderSerializer(serializers.ModelSerializer):
    """An order as one seller sees it: only that seller's lines."""

    items = OrderItemSerializer(source="seller_items", many=True, read_only=True)
    shipping_address = serializers.ReadOnlyField()
    buyer = serializers.CharField(source="user.get_username", read_only=True)
    seller_total = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            "id",
            "order_number",
            "buyer",
            "status",
            "payment_status",
            "payment_method",
            "tracking_number",
            "shipping_address",
            "fulfillment_blocked",
            "created_at",
            "seller_total",
            "items",
        ]
        read_only_fields = fields

    def get_seller_total(self, obj: Order) -> str:
        total = sum((item.line_total for item in obj.seller_items), Decimal("0.00"))
        return str(total)


class SellerOrderDetailSerializer(SellerOrderSerializer):
    """Single-order seller view, with history and cancellation details."""

    status_history = StatusHistorySerializer(many=True, read_only=True)

    class Meta(SellerOrderSerializer.Meta):
        fields = SellerOrderSerializer.Meta.fields + [
            "cancel_reason",
            "cancelled_at",
            "updated_at",
            "status_history",
        ]
        read_only_fields = fields
