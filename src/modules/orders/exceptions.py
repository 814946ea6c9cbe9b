"""Order domain exceptions.

Raised by the Service Layer when business rules are violated.
The API layer (Views) catches these and translates them into
appropriate HTTP responses.  Customer and product failures are
re-exported so callers can import everything from one place.
"""

from __future__ import annotations

from modules.customers.exceptions import CustomerNotFound, InactiveCustomer
from modules.products.exceptions import (
    InactiveProduct,
    InsufficientStock,
    ProductNotFound,
)

__all__ = [
    "CustomerNotFound",
    "InactiveCustomer",
    "InactiveProduct",
    "InsufficientStock",
    "InvalidTransition",
    "OrderNotFound",
    "PaymentVerificationFailed",
    "ProductNotFound",
    "SequenceConflict",
    "TransitionConflict",
]


class OrderNotFound(Exception):
    """The requested order does not exist or has been soft-deleted."""


class InvalidTransition(Exception):
    """The target status is unknown or not reachable from the current one."""

    def __init__(self, current: str, target: str, reason: str = "") -> None:
        self.current = current
        self.target = target
        message = reason or f"Cannot transition from {current} to {target}."
        super().__init__(message)


class TransitionConflict(InvalidTransition):
    """Another transition changed the order's stock reconciliation first."""


class SequenceConflict(Exception):
    """No unique order number could be allocated within the retry budget."""


class PaymentVerificationFailed(Exception):
    """The gateway signature does not match the order and payment IDs."""
