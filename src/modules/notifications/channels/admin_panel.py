from __future__ import annotations

import structlog

from modules.notifications.channels.base import (
    ChannelResult,
    DeliveryStatus,
    NotificationChannel,
    compose_message,
)
from modules.notifications.models import Notification, NotificationType
from modules.orders.dtos import OrderEventDTO

logger = structlog.get_logger(__name__)


class AdminPanelChannel(NotificationChannel):
    """Broadcasts the event to the staff inbox as a ``Notification`` row."""

    name = "admin_panel"

    def deliver(self, event: OrderEventDTO) -> ChannelResult:
        title, message = compose_message(event)
        notification, created = Notification.objects.get_or_create(
            source_event_id=event.event_id,
            defaults={
                "type": NotificationType.ORDER,
                "title": title,
                "message": message,
                "target_user": None,
                "metadata": {
                    "order_id": str(event.aggregate_id),
                    "order_number": event.order_number,
                    "customer_name": event.snapshot.customer_name,
                    "amount": str(event.snapshot.total_amount),
                    "status": event.new_status.value,
                    "event_type": event.event_name,
                },
            },
        )
        logger.info(
            "notification.admin_panel_recorded",
            notification_id=str(notification.id),
            created=created,
        )
        return ChannelResult(
            channel=self.name,
            status=DeliveryStatus.SENT,
            detail={"notification_id": str(notification.id), "created": created},
        )
