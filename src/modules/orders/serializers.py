"""Order DRF serializers for API input/output.

The serializer operates at the Interface layer (API Views).
Business logic lives in the Service Layer, which receives
Pydantic DTOs from ``dtos.py``.
"""

from __future__ import annotations

from rest_framework import serializers

from modules.orders.constants import Currency
from modules.orders.models import Order, OrderItem, OrderStatusHistory

# ---------------------------------------------------------------------------
# Input Serializers
# ---------------------------------------------------------------------------


class PlaceOrderItemSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1)


class ShippingDetailsSerializer(serializers.Serializer):
    full_name = serializers.CharField(max_length=255)
    email = serializers.EmailField(required=False, allow_blank=True)
    phone = serializers.CharField(required=False, allow_blank=True, default="")
    address = serializers.CharField()
    apartment = serializers.CharField(required=False, allow_blank=True, default="")
    city = serializers.CharField(max_length=120)
    state = serializers.CharField(required=False, allow_blank=True, default="")
    zip_code = serializers.CharField(required=False, allow_blank=True, default="")
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    delivery_date = serializers.DateField(required=False, allow_null=True)
    time_slot = serializers.CharField(required=False, allow_blank=True, default="")


class PlaceOrderSerializer(serializers.Serializer):
    """Validates the order placement payload.

    ``customer_id`` may be omitted by a user with a linked customer profile.
    """

    customer_id = serializers.UUIDField(required=False)
    items = PlaceOrderItemSerializer(many=True, allow_empty=False)
    shipping_details = ShippingDetailsSerializer(required=False)
    currency = serializers.ChoiceField(choices=Currency.choices, default=Currency.INR)
    payment_method = serializers.CharField(
        required=False, allow_blank=True, default=""
    )
    notes = serializers.CharField(required=False, default="", allow_blank=True)


class TransitionSerializer(serializers.Serializer):
    status = serializers.CharField(max_length=32)
    notes = serializers.CharField(required=False, default="", allow_blank=True)


class CancelSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, default="", allow_blank=True)


class RecordPaymentSerializer(serializers.Serializer):
    gateway_order_id = serializers.CharField(max_length=64)
    gateway_payment_id = serializers.CharField(max_length=64)
    gateway_signature = serializers.CharField(max_length=256)
    method = serializers.CharField(required=False, default="razorpay")


class UpcomingDeliveriesQuerySerializer(serializers.Serializer):
    days = serializers.IntegerField(min_value=0, max_value=90, default=7)


class DeliveryCalendarQuerySerializer(serializers.Serializer):
    year = serializers.IntegerField(min_value=2000, max_value=9999, required=False)
    month = serializers.IntegerField(min_value=1, max_value=12, required=False)


# ---------------------------------------------------------------------------
# Output Serializers (Read)
# ---------------------------------------------------------------------------


class OrderItemSerializer(serializers.ModelSerializer):
    """Read serializer for order items with the price snapshot."""

    product_name = serializers.CharField(source="product.name", read_only=True)
    product_sku = serializers.CharField(source="product.sku", read_only=True)

    class Meta:
        model = OrderItem
        fields = [
            "id",
            "product_id",
            "product_name",
            "product_sku",
            "quantity",
            "unit_price",
            "final_price",
            "subtotal",
        ]
        read_only_fields = fields


class StatusHistorySerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderStatusHistory
        fields = [
            "id",
            "old_status",
            "new_status",
            "notes",
            "created_at",
        ]
        read_only_fields = fields


class OrderSerializer(serializers.ModelSerializer):
    """Read serializer for orders with nested items and history.

    Payment signatures stay server-side.
    """

    items = OrderItemSerializer(many=True, read_only=True)
    status_history = StatusHistorySerializer(many=True, read_only=True)
    payment_details = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            "id",
            "order_number",
            "customer_id",
            "status",
            "stock_reconciled",
            "stock_reconciled_at",
            "total_amount",
            "currency",
            "shipping_details",
            "payment_details",
            "is_paid",
            "paid_at",
            "is_delivered",
            "delivered_at",
            "notes",
            "created_at",
            "updated_at",
            "items",
            "status_history",
        ]
        read_only_fields = fields

    def get_payment_details(self, obj: Order) -> dict:
        return {
            key: value
            for key, value in (obj.payment_details or {}).items()
            if key != "gateway_signature"
        }


class OrderListSerializer(serializers.ModelSerializer):
    """Lightweight serializer for order list (no nested relations)."""

    class Meta:
        model = Order
        fields = [
            "id",
            "order_number",
            "customer_id",
            "status",
            "total_amount",
            "currency",
            "is_paid",
            "is_delivered",
            "created_at",
        ]
        read_only_fields = fields


class DeliveryOrderSerializer(serializers.ModelSerializer):
    """One line on the delivery board or calendar."""

    customer_name = serializers.SerializerMethodField()
    delivery_date = serializers.SerializerMethodField()
    time_slot = serializers.SerializerMethodField()
    item_count = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            "id",
            "order_number",
            "customer_name",
            "status",
            "total_amount",
            "currency",
            "delivery_date",
            "time_slot",
            "item_count",
        ]
        read_only_fields = fields

    def get_customer_name(self, obj: Order) -> str:
        return (obj.shipping_details or {}).get("full_name") or obj.customer.name

    def get_delivery_date(self, obj: Order) -> str | None:
        return (obj.shipping_details or {}).get("delivery_date")

    def get_time_slot(self, obj: Order) -> str:
        return (obj.shipping_details or {}).get("time_slot", "")

    def get_item_count(self, obj: Order) -> int:
        return len(obj.items.all())
