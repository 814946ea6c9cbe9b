"""Notification fanout.

One order event goes to every configured channel, one after another.
A channel failing (raising, timing out, or reporting ``failed``) is
recorded in the report and never stops the remaining channels; the order
transition that produced the event has already committed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import structlog
from django.db import transaction

from modules.notifications.channels import (
    AdminPanelChannel,
    ChannelResult,
    DeliveryStatus,
    EmailChannel,
    NotificationChannel,
    PushChannel,
)
from modules.orders.dtos import OrderEventDTO

logger = structlog.get_logger(__name__)


def default_channels() -> List[NotificationChannel]:
    return [AdminPanelChannel(), PushChannel(), EmailChannel()]


@dataclass(frozen=True)
class FanoutReport:
    event_id: str
    event_type: str
    channels: List[ChannelResult] = field(default_factory=list)

    @property
    def failed_channels(self) -> List[str]:
        return [
            result.channel
            for result in self.channels
            if result.status == DeliveryStatus.FAILED
        ]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "channels": [result.as_dict() for result in self.channels],
        }


class NotificationFanout:
    def __init__(self, channels: Optional[Sequence[NotificationChannel]] = None) -> None:
        self._channels = list(channels) if channels is not None else default_channels()

    def notify(self, event: OrderEventDTO) -> FanoutReport:
        log = logger.bind(
            event_id=str(event.event_id),
            event_type=event.event_name,
            order_number=event.order_number,
        )
        results: List[ChannelResult] = []
        for channel in self._channels:
            try:
                # One transaction per channel, committed before the next runs;
                # a database error in one channel must not poison the next.
                with transaction.atomic():
                    result = channel.deliver(event)
            except Exception as exc:
                log.warning(
                    "notification.channel_failed",
                    channel=channel.name,
                    error=str(exc),
                )
                result = ChannelResult(
                    channel=channel.name,
                    status=DeliveryStatus.FAILED,
                    error=str(exc) or exc.__class__.__name__,
                )
            results.append(result)

        report = FanoutReport(
            event_id=str(event.event_id),
            event_type=event.event_name,
            channels=results,
        )
        log.info(
            "notification.fanout_completed",
            statuses={result.channel: result.status.value for result in results},
        )
        return report
