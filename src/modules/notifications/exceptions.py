"""Notification exceptions.

Channel adapters raise ``NotificationChannelError``; the fanout catches it
at the channel boundary, logs it and records it in the delivery report.
It never reaches the order that triggered the notification.
"""

from __future__ import annotations


class NotificationChannelError(Exception):
    """A notification channel could not deliver a message."""

    def __init__(self, channel: str, message: str) -> None:
        self.channel = channel
        super().__init__(message)
