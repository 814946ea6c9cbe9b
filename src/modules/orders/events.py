"""Domain events for the order lifecycle.

Every event carries the order snapshot notification channels render from,
so the outbox payload is self-contained and never needs a read-back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from shared.domain.events import DomainEvent


@dataclass(frozen=True, kw_only=True)
class OrderLifecycleEvent(DomainEvent):
    order_number: str
    old_status: Optional[str] = None
    new_status: str
    snapshot: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, kw_only=True)
class OrderPlaced(OrderLifecycleEvent):
    """Raised when an order is placed."""


@dataclass(frozen=True, kw_only=True)
class OrderConfirmed(OrderLifecycleEvent):
    """Raised when an order's stock is reserved on confirmation."""


@dataclass(frozen=True, kw_only=True)
class OrderStatusChanged(OrderLifecycleEvent):
    """Raised for any other forward status change."""


@dataclass(frozen=True, kw_only=True)
class OrderDelivered(OrderLifecycleEvent):
    """Raised when an order reaches ``delivered``."""


@dataclass(frozen=True, kw_only=True)
class OrderCancelled(OrderLifecycleEvent):
    """Raised when an order is cancelled."""


EVENT_TITLES: Dict[str, str] = {
    "OrderPlaced": "New order received",
    "OrderConfirmed": "Order confirmed",
    "OrderStatusChanged": "Order status updated",
    "OrderDelivered": "Order delivered",
    "OrderCancelled": "Order cancelled",
}
