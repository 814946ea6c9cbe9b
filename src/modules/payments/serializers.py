"""Payment DRF serializers."""

from __future__ import annotations

from decimal import Decimal

from rest_framework import serializers

from modules.orders.constants import Currency


class CreatePaymentOrderSerializer(serializers.Serializer):
    """Either ``order_id`` (amount taken from the order) or ``amount``."""

    order_id = serializers.UUIDField(required=False)
    amount = serializers.DecimalField(
        max_digits=12,
        decimal_places=2,
        min_value=Decimal("0.01"),
        required=False,
    )
    currency = serializers.ChoiceField(choices=Currency.choices, required=False)

    def validate(self, attrs):
        if not attrs.get("order_id") and attrs.get("amount") is None:
            raise serializers.ValidationError(
                "Provide either 'order_id' or 'amount'."
            )
        return attrs


class VerifyPaymentSerializer(serializers.Serializer):
    gateway_order_id = serializers.CharField(max_length=100)
    gateway_payment_id = serializers.CharField(max_length=100)
    gateway_signature = serializers.CharField(max_length=256)
