"""Payment gateway API views.

``create_order`` opens a gateway order for checkout; ``verify`` checks the
signature the client receives after paying.  Recording the payment on an
order is ``POST /orders/{id}/pay/``.
"""

from __future__ import annotations

from dataclasses import asdict

import structlog
from rest_framework import status
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.viewsets import GenericViewSet

from modules.orders.exceptions import OrderNotFound
from modules.orders.views import build_order_service
from modules.payments.exceptions import PaymentGatewayError
from modules.payments.serializers import (
    CreatePaymentOrderSerializer,
    VerifyPaymentSerializer,
)

logger = structlog.get_logger(__name__)


class PaymentViewSet(GenericViewSet):
    permission_classes = [IsAuthenticated]

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._service = build_order_service()

    @action(detail=False, methods=["post"], url_path="orders")
    def create_order(self, request: Request) -> Response:
        """POST /api/v1/payments/orders/"""
        serializer = CreatePaymentOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        order_id = data.get("order_id")
        if order_id is not None and not self._owns(str(order_id)):
            return Response(
                {"detail": "Order not found."},
                status=status.HTTP_404_NOT_FOUND,
            )

        try:
            gateway_order = self._service.create_payment_order(
                amount=data.get("amount"),
                currency=data.get("currency"),
                order_id=order_id,
            )
        except OrderNotFound as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_404_NOT_FOUND)
        except PaymentGatewayError as exc:
            return Response({"detail": str(exc)}, status=status.HTTP_502_BAD_GATEWAY)

        return Response(asdict(gateway_order), status=status.HTTP_201_CREATED)

    def _owns(self, order_id: str) -> bool:
        """Staff may open checkout for any order, shoppers only for their own."""
        user = self.request.user
        if user.is_staff:
            return True
        try:
            order = self._service.get_order(order_id)
        except OrderNotFound:
            return False
        return order.customer.user_id == user.pk

    @action(detail=False, methods=["post"])
    def verify(self, request: Request) -> Response:
        """POST /api/v1/payments/verify/"""
        serializer = VerifyPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        verified = self._service.verify_payment(
            data["gateway_order_id"],
            data["gateway_payment_id"],
            data["gateway_signature"],
        )
        if not verified:
            return Response(
                {"verified": False, "detail": "Payment signature verification failed."},
                status=status.HTTP_400_BAD_REQUEST,
            )
        return Response({"verified": True})
