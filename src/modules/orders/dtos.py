"""Order DTOs for the Service Layer.

Framework-agnostic data transfer objects using Pydantic v2.
These are the contracts between the API layer (DRF Serializers), the
Service layer and the notification workers.  DTOs are immutable
(``frozen=True``).

- ``PlaceOrderItemDTO`` / ``ShippingDetailsDTO`` / ``PlaceOrderDTO``:
  input for order placement.
- ``RecordPaymentDTO``: gateway references for a completed payment.
- ``OrderSnapshotDTO``: the order as carried inside lifecycle events.
- ``OrderEventDTO``: an outbox payload parsed back for the fanout.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from modules.orders.constants import Currency, OrderStatus

if TYPE_CHECKING:
    from modules.orders.models import Order


# ---------------------------------------------------------------------------
# Input DTOs
# ---------------------------------------------------------------------------


class PlaceOrderItemDTO(BaseModel):
    """A single order line: the client sends ``product_id`` and ``quantity``.

    Prices are resolved by the Service Layer from the product catalog.
    """

    model_config = ConfigDict(frozen=True)

    product_id: UUID
    quantity: int

    @field_validator("quantity")
    @classmethod
    def quantity_must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Quantity must be at least 1.")
        return v


class ShippingDetailsDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    full_name: str
    email: Optional[str] = None
    phone: str = ""
    address: str
    apartment: str = ""
    city: str
    state: str = ""
    zip_code: str = ""
    notes: str = ""
    delivery_date: Optional[date] = None
    time_slot: str = ""


class PlaceOrderDTO(BaseModel):
    """Immutable DTO for order placement requests.

    Validates:
    - ``items`` must contain at least one item.
    - Each item quantity must be positive.
    - A product appears at most once.
    """

    model_config = ConfigDict(frozen=True)

    customer_id: UUID
    items: List[PlaceOrderItemDTO]
    shipping_details: Optional[ShippingDetailsDTO] = None
    currency: Currency = Currency.INR
    payment_method: str = ""
    notes: Optional[str] = ""
    idempotency_key: Optional[str] = None

    @field_validator("items")
    @classmethod
    def items_must_not_be_empty(
        cls, v: List[PlaceOrderItemDTO]
    ) -> List[PlaceOrderItemDTO]:
        if not v:
            raise ValueError("Order must have at least one item.")
        return v

    @model_validator(mode="after")
    def no_duplicate_products(self):
        product_ids = [item.product_id for item in self.items]
        if len(product_ids) != len(set(product_ids)):
            raise ValueError("Duplicate product IDs are not allowed in the same order.")
        return self


class RecordPaymentDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    gateway_order_id: str
    gateway_payment_id: str
    gateway_signature: str
    method: str = "razorpay"

    @field_validator("gateway_order_id", "gateway_payment_id", "gateway_signature")
    @classmethod
    def must_not_be_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Gateway references cannot be blank.")
        return v.strip()


# ---------------------------------------------------------------------------
# Event DTOs
# ---------------------------------------------------------------------------


class OrderLineSnapshotDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_id: UUID
    name: str
    sku: str
    quantity: int
    unit_price: Decimal
    final_price: Decimal
    subtotal: Decimal


class OrderSnapshotDTO(BaseModel):
    """What notification channels need to know about an order."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    order_number: str
    status: OrderStatus
    customer_id: UUID
    customer_name: str
    customer_email: str
    total_amount: Decimal
    currency: str
    is_paid: bool
    items: List[OrderLineSnapshotDTO]
    shipping_details: Dict[str, Any]
    created_at: datetime

    @classmethod
    def from_entity(cls, order: Order) -> OrderSnapshotDTO:
        """Build a snapshot from an Order with ``items__product`` loaded."""
        items = [
            OrderLineSnapshotDTO(
                product_id=item.product_id,
                name=item.product.name,
                sku=item.product.sku,
                quantity=item.quantity,
                unit_price=item.unit_price,
                final_price=item.final_price,
                subtotal=item.subtotal,
            )
            for item in order.items.all()
        ]
        return cls(
            id=order.id,
            order_number=order.order_number,
            status=order.status,
            customer_id=order.customer_id,
            customer_name=order.customer.name,
            customer_email=order.customer_email,
            total_amount=order.total_amount,
            currency=order.currency,
            is_paid=order.is_paid,
            items=items,
            shipping_details=order.shipping_details or {},
            created_at=order.created_at,
        )


class OrderEventDTO(BaseModel):
    """An order lifecycle event as stored in the outbox."""

    model_config = ConfigDict(frozen=True)

    event_id: UUID
    event_name: str
    aggregate_id: UUID
    occurred_on: datetime
    order_number: str
    old_status: Optional[OrderStatus] = None
    new_status: OrderStatus
    snapshot: OrderSnapshotDTO

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> OrderEventDTO:
        return cls.model_validate(payload)
