from modules.notifications.channels.admin_panel import AdminPanelChannel
from modules.notifications.channels.base import (
    ChannelResult,
    DeliveryStatus,
    NotificationChannel,
)
from modules.notifications.channels.email import EmailChannel
from modules.notifications.channels.push import PushChannel

__all__ = [
    "AdminPanelChannel",
    "ChannelResult",
    "DeliveryStatus",
    "EmailChannel",
    "NotificationChannel",
    "PushChannel",
]
