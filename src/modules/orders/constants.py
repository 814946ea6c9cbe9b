"""Order domain constants.

Status choices, the transition table of the order state machine and the
set of statuses that require the order's stock to be reserved.
"""

from django.db import models


class OrderStatus(models.TextChoices):
    PLACED = "placed", "Placed"
    CONFIRMED = "confirmed", "Confirmed"
    IN_PRODUCTION = "in_production", "In production"
    OUT_FOR_DELIVERY = "out_for_delivery", "Out for delivery"
    DELIVERED = "delivered", "Delivered"
    CANCELLED = "cancelled", "Cancelled"


class Currency(models.TextChoices):
    INR = "INR", "Indian rupee"
    USD = "USD", "US dollar"
    EUR = "EUR", "Euro"
    GBP = "GBP", "Pound sterling"


VALID_TRANSITIONS: dict[str, set[str]] = {
    OrderStatus.PLACED: {
        OrderStatus.CONFIRMED,
        OrderStatus.IN_PRODUCTION,
        OrderStatus.CANCELLED,
    },
    OrderStatus.CONFIRMED: {
        OrderStatus.IN_PRODUCTION,
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.CANCELLED,
    },
    OrderStatus.IN_PRODUCTION: {
        OrderStatus.OUT_FOR_DELIVERY,
        OrderStatus.DELIVERED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.OUT_FOR_DELIVERY: {OrderStatus.DELIVERED, OrderStatus.CANCELLED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}

TERMINAL_STATES: set[str] = {OrderStatus.DELIVERED, OrderStatus.CANCELLED}

# Entering any of these with unreconciled stock triggers the reservation.
RESERVING_STATES: set[str] = {
    OrderStatus.CONFIRMED,
    OrderStatus.IN_PRODUCTION,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
}

ORDER_NUMBER_MAX_RETRIES = 5

OUTBOX_TOPIC = "orders"
