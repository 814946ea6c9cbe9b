"""Order API views.

Exposes the ``OrderService`` via HTTP using DRF ViewSets.
Domain exceptions are caught and translated into appropriate
HTTP status codes; the view never swallows generic exceptions.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional
from uuid import UUID

import pydantic
import structlog
from django.utils import timezone
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import status
from rest_framework.decorators import action
from rest_framework.filters import OrderingFilter, SearchFilter
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.throttling import BaseThrottle
from rest_framework.viewsets import GenericViewSet

from modules.core.outbox import delivery_report
from modules.core.pagination import StandardResultsSetPagination
from modules.customers.repositories.django_repository import CustomerDjangoRepository
from modules.orders.deliveries import empty_status_counts
from modules.orders.dtos import (
    PlaceOrderDTO,
    PlaceOrderItemDTO,
    RecordPaymentDTO,
    ShippingDetailsDTO,
)
from modules.orders.exceptions import (
    CustomerNotFound,
    InactiveCustomer,
    InactiveProduct,
    InsufficientStock,
    InvalidTransition,
    OrderNotFound,
    PaymentVerificationFailed,
    ProductNotFound,
    SequenceConflict,
    TransitionConflict,
)
from modules.orders.filters import OrderFilter
from modules.orders.models import Order
from modules.orders.repositories.django_repository import OrderDjangoRepository
from modules.orders.serializers import (
    CancelSerializer,
    DeliveryCalendarQuerySerializer,
    DeliveryOrderSerializer,
    OrderListSerializer,
    OrderSerializer,
    PlaceOrderSerializer,
    RecordPaymentSerializer,
    TransitionSerializer,
    UpcomingDeliveriesQuerySerializer,
)
from modules.orders.services import OrderService
from modules.payments.exceptions import PaymentGatewayError
from modules.products.repositories.django_repository import ProductDjangoRepository

logger = structlog.get_logger(__name__)


def domain_error_response(exc: Exception) -> Response:
    """Translate a domain exception raised by ``OrderService`` into a response."""
    if isinstance(exc, InsufficientStock):
        return Response(
            {"detail": str(exc), "products": exc.shortfalls},
            status=status.HTTP_400_BAD_REQUEST,
        )
    if isinstance(exc, TransitionConflict):
        return Response({"detail": str(exc)}, status=status.HTTP_409_CONFLICT)
    if isinstance(exc, (OrderNotFound, CustomerNotFound, ProductNotFound)):
        return Response({"detail": str(exc)}, status=status.HTTP_404_NOT_FOUND)
    if isinstance(
        exc,
        (InvalidTransition, InactiveCustomer, InactiveProduct, PaymentVerificationFailed),
    ):
        return Response({"detail": str(exc)}, status=status.HTTP_400_BAD_REQUEST)
    if isinstance(exc, PaymentGatewayError):
        return Response({"detail": str(exc)}, status=status.HTTP_502_BAD_GATEWAY)
    if isinstance(exc, SequenceConflict):
        logger.error("order.sequence_exhausted", error=str(exc))
        return Response(
            {"detail": "Could not allocate an order number. Please retry."},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    raise exc


DOMAIN_ERRORS = (
    CustomerNotFound,
    InactiveCustomer,
    InactiveProduct,
    InsufficientStock,
    InvalidTransition,
    OrderNotFound,
    PaymentGatewayError,
    PaymentVerificationFailed,
    ProductNotFound,
    SequenceConflict,
)


def validation_error_response(exc: pydantic.ValidationError) -> Response:
    errors: List[Dict[str, Any]] = [
        {"loc": list(error["loc"]), "msg": error["msg"]} for error in exc.errors()
    ]
    return Response(
        {"detail": "Invalid request.", "errors": errors},
        status=status.HTTP_400_BAD_REQUEST,
    )


def build_order_service() -> OrderService:
    return OrderService(
        order_repository=OrderDjangoRepository(),
        customer_repository=CustomerDjangoRepository(),
        product_repository=ProductDjangoRepository(),
    )


STAFF_ACTIONS = {"update_status", "cancel", "upcoming_deliveries", "delivery_calendar"}

class OrderViewSet(GenericViewSet):
    """ViewSet for Order operations.

    Uses ``OrderService`` with injected repositories.  Does **not** extend
    ``ModelViewSet``: all writes go through the service/repository layer.
    Staff see every order; other users only the orders of their linked
    customer profile.  Status changes and the delivery board are staff-only.
    """

    queryset = Order.objects.none()
    filterset_class = OrderFilter
    search_fields = ["order_number", "customer__name", "customer__email"]
    ordering_fields = ["created_at", "total_amount", "status"]
    ordering = ["-created_at", "-id"]
    filter_backends = [DjangoFilterBackend, SearchFilter, OrderingFilter]

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._service = build_order_service()

    def get_permissions(self):
        if self.action in STAFF_ACTIONS:
            return [IsAdminUser()]
        return [IsAuthenticated()]

    def get_throttles(self) -> list[BaseThrottle]:
        throttle_scope: str | None
        if self.action == "create":
            throttle_scope = "order_creation"
        elif self.action in {"list", "retrieve"}:
            throttle_scope = "order_listing"
        else:
            throttle_scope = None
        self.throttle_scope = throttle_scope
        return super().get_throttles()

    def get_queryset(self):
        queryset = self._service.list_orders()
        user = self.request.user
        if not user.is_staff:
            queryset = queryset.filter(customer__user=user)
        return queryset

    def _order_response(self, order: Order, status_code: int = status.HTTP_200_OK) -> Response:
        data = dict(OrderSerializer(order).data)
        data["notifications"] = delivery_report(getattr(order, "outbox_events", []))
        return Response(data, status=status_code)

    def _visible(self, order: Order) -> bool:
        user = self.request.user
        return user.is_staff or order.customer.user_id == user.pk

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(self, request: Request) -> Response:
        """POST /api/v1/orders/

        Supports idempotency via the ``Idempotency-Key`` header.
        Returns 200 if the key was already used, 201 for new orders.
        """
        serializer = PlaceOrderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        customer_id = data.get("customer_id")
        if customer_id is None:
            customer = CustomerDjangoRepository().get_by_user(request.user.pk)
            if customer is None:
                return Response(
                    {"detail": "Field 'customer_id' is required."},
                    status=status.HTTP_400_BAD_REQUEST,
                )
            customer_id = customer.id

        try:
            dto = PlaceOrderDTO(
                customer_id=customer_id,
                items=[
                    PlaceOrderItemDTO(
                        product_id=item["product_id"], quantity=item["quantity"]
                    )
                    for item in data["items"]
                ],
                shipping_details=(
                    ShippingDetailsDTO(**data["shipping_details"])
                    if data.get("shipping_details")
                    else None
                ),
                currency=data["currency"],
                payment_method=data.get("payment_method", ""),
                notes=data.get("notes", ""),
                idempotency_key=request.headers.get("Idempotency-Key"),
            )
        except pydantic.ValidationError as exc:
            return validation_error_response(exc)

        try:
            order = self._service.place_order(dto, user=request.user)
        except DOMAIN_ERRORS as exc:
            return domain_error_response(exc)

        if getattr(order, "idempotent_replay", False):
            return self._order_response(order)
        return self._order_response(order, status.HTTP_201_CREATED)

    # ------------------------------------------------------------------
    # List / Retrieve
    # ------------------------------------------------------------------

    def list(self, request: Request) -> Response:
        """GET /api/v1/orders/

        Filtering, search and ordering come from ``filter_backends``.
        """
        queryset = self.filter_queryset(self.get_queryset())

        paginator = StandardResultsSetPagination()
        page = paginator.paginate_queryset(queryset, request)
        serializer = OrderListSerializer(page, many=True)
        return paginator.get_paginated_response(serializer.data)

    def retrieve(self, request: Request, pk: str | None = None) -> Response:
        """GET /api/v1/orders/{pk}/"""
        try:
            order = self._service.get_order(str(pk))
        except OrderNotFound:
            return Response(
                {"detail": "Order not found."},
                status=status.HTTP_404_NOT_FOUND,
            )
        if not self._visible(order):
            return Response(
                {"detail": "Order not found."},
                status=status.HTTP_404_NOT_FOUND,
            )
        return Response(OrderSerializer(order).data)

    @action(detail=False, methods=["get"], url_path="next-number")
    def next_number(self, request: Request) -> Response:
        """GET /api/v1/orders/next-number/

        A preview only: a concurrent placement may take the number first.
        """
        return Response({"order_number": self._service.next_order_number()})

    # ------------------------------------------------------------------
    # Delivery schedule
    # ------------------------------------------------------------------

    @action(detail=False, methods=["get"], url_path="upcoming-deliveries")
    def upcoming_deliveries(self, request: Request) -> Response:
        """GET /api/v1/orders/upcoming-deliveries/?days=7

        Open orders due in the next ``days`` days, grouped by urgency:
        ``critical`` (today), ``high`` (tomorrow), ``medium`` (within three
        days) and ``low``.
        """
        query = UpcomingDeliveriesQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        schedule = self._service.upcoming_deliveries(days=query.validated_data["days"])

        def entry(delivery):
            data = dict(DeliveryOrderSerializer(delivery.order).data)
            data["days_until"] = delivery.days_until
            data["urgency"] = delivery.urgency
            return data

        return Response(
            {
                "date_from": schedule.date_from.isoformat(),
                "date_to": schedule.date_to.isoformat(),
                "stats": schedule.stats(),
                "grouped": {
                    level: [entry(d) for d in group]
                    for level, group in schedule.grouped().items()
                },
            }
        )

    @action(detail=False, methods=["get"], url_path="delivery-calendar")
    def delivery_calendar(self, request: Request) -> Response:
        """GET /api/v1/orders/delivery-calendar/?year=2026&month=10

        Defaults to the current month.
        """
        query = DeliveryCalendarQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)
        today = timezone.localdate()
        year = query.validated_data.get("year", today.year)
        month = query.validated_data.get("month", today.month)

        days = self._service.delivery_calendar(year=year, month=month)
        return Response(
            {
                "year": year,
                "month": month,
                "total_orders": sum(day.count for day in days.values()),
                "days": [
                    {
                        "date": day.date.isoformat(),
                        "count": day.count,
                        "total_amount": str(day.total_amount),
                        "status_counts": {
                            **empty_status_counts(),
                            **day.status_counts,
                        },
                        "orders": DeliveryOrderSerializer(day.orders, many=True).data,
                    }
                    for day in days.values()
                ],
            }
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    @action(detail=True, methods=["put", "patch"], url_path="status")
    def update_status(self, request: Request, pk: str | None = None) -> Response:
        """PUT|PATCH /api/v1/orders/{pk}/status/"""
        serializer = TransitionSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        order_id = _parse_uuid(pk)
        if order_id is None:
            return Response(
                {"detail": "Invalid order ID format."},
                status=status.HTTP_400_BAD_REQUEST,
            )

        try:
            order = self._service.transition(
                order_id=order_id,
                target_status=serializer.validated_data["status"].strip().lower(),
                notes=serializer.validated_data["notes"],
                user=request.user,
            )
        except DOMAIN_ERRORS as exc:
            return domain_error_response(exc)

        return self._order_response(order)

    @action(detail=True, methods=["post"])
    def cancel(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/orders/{pk}/cancel/

        Cancels an order and releases its stock if it was reserved.
        """
        serializer = CancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        order_id = _parse_uuid(pk)
        if order_id is None:
            return Response(
                {"detail": "Invalid order ID format."},
                status=status.HTTP_400_BAD_REQUEST,
            )

        try:
            order = self._service.cancel_order(
                order_id=order_id,
                notes=serializer.validated_data["notes"],
                user=request.user,
            )
        except DOMAIN_ERRORS as exc:
            return domain_error_response(exc)

        return self._order_response(order)

    # ------------------------------------------------------------------
    # Payment
    # ------------------------------------------------------------------

    @action(detail=True, methods=["post"])
    def pay(self, request: Request, pk: str | None = None) -> Response:
        """POST /api/v1/orders/{pk}/pay/

        Records a gateway payment after verifying its signature.
        """
        serializer = RecordPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        order_id = _parse_uuid(pk)
        if order_id is None:
            return Response(
                {"detail": "Invalid order ID format."},
                status=status.HTTP_400_BAD_REQUEST,
            )

        try:
            order = self._service.get_order(str(order_id))
            if not self._visible(order):
                raise OrderNotFound(f"Order {order_id} not found.")
            dto = RecordPaymentDTO(**serializer.validated_data)
            order = self._service.record_payment(order_id, dto)
        except pydantic.ValidationError as exc:
            return validation_error_response(exc)
        except DOMAIN_ERRORS as exc:
            return domain_error_response(exc)

        return Response(OrderSerializer(order).data)


def _parse_uuid(value: Optional[str]) -> Optional[UUID]:
    try:
        return UUID(str(value))
    except ValueError:
        return None
