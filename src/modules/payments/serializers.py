"""Payment DRF serializers."""

from __future__ import annotations

from rest_framework import serializers

from modules.orders.models import Order
from modules.orders.serializers import (
    CreateOrderItemSerializer,
    ShippingAddressSerializer,
)


class CreatePaymentIntentSerializer(serializers.Serializer):
    items = CreateOrderItemSerializer(many=True, allow_empty=False)
    shipping_address = ShippingAddressSerializer()
    total_price = serializers.DecimalField(
        max_digits=12, decimal_places=2, min_value=0
    )


class VerifyPaymentSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()
    provider_order_id = serializers.CharField(max_length=100)
    provider_payment_id = serializers.CharField(max_length=100)
    signature = serializers.CharField(max_length=255)


class PaymentStatusSerializer(serializers.ModelSerializer):
    """The buyer's view of an order's payment."""

    class Meta:
        model = Order
        fields = [
            "id",
            "order_number",
            "payment_status",
            "status",
            "provider_order_id",
            "provider_payment_id",
            "total_price",
            "created_at",
        ]
        read_only_fields = fields
