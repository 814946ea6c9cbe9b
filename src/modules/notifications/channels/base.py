"""Channel port and the shared message wording."""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from modules.orders.dtos import OrderEventDTO
from modules.orders.events import EVENT_TITLES


class DeliveryStatus(str, enum.Enum):
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class ChannelResult:
    channel: str
    status: DeliveryStatus
    detail: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "channel": self.channel,
            "status": self.status.value,
            "detail": self.detail,
            "error": self.error,
        }


class NotificationChannel(ABC):
    """Abstract interface for notification delivery channels."""

    name: str

    @abstractmethod
    def deliver(self, event: OrderEventDTO) -> ChannelResult:
        """Deliver *event*; raise ``NotificationChannelError`` on failure."""


def compose_message(event: OrderEventDTO) -> Tuple[str, str]:
    """Title and one-line body shared by the admin panel and push channels."""
    snapshot = event.snapshot
    title = EVENT_TITLES.get(event.event_name, "Order update")
    if event.event_name == "OrderPlaced":
        body = (
            f"Order #{event.order_number} from {snapshot.customer_name} - "
            f"{snapshot.currency} {snapshot.total_amount}"
        )
    else:
        body = (
            f"Order #{event.order_number} is now "
            f"{event.new_status.label.lower()}"
        )
    return title, body
