"""Notification inbox and push device registry.

- ``Notification``: a message shown in the admin panel.  ``target_user``
  NULL means a broadcast to every staff user.  ``source_event_id`` ties a
  notification to the outbox event that produced it, so re-delivering the
  same event never duplicates the inbox entry.
- ``DeviceToken``: a push token registered by a user's device.  Tokens the
  push provider reports as invalid are deactivated, never deleted.
"""

from __future__ import annotations

from typing import Iterable

import structlog
from django.conf import settings
from django.db import models
from django.utils import timezone

from modules.core.models import BaseModel

logger = structlog.get_logger(__name__)


class NotificationType(models.TextChoices):
    ORDER = "order", "Order"
    ADMIN = "admin", "Admin"
    SYSTEM = "system", "System"


class NotificationQuerySet(models.QuerySet):
    def visible_to(self, user) -> NotificationQuerySet:
        """Staff see broadcasts plus their own; everyone else only their own."""
        if user.is_staff:
            return self.filter(
                models.Q(target_user__isnull=True) | models.Q(target_user=user)
            )
        return self.filter(target_user=user)


class Notification(BaseModel):
    type = models.CharField(
        max_length=20,
        choices=NotificationType.choices,
        default=NotificationType.ORDER,
    )
    title = models.CharField(max_length=200)
    message = models.TextField()
    target_user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="notifications",
    )
    read = models.BooleanField(default=False)
    metadata = models.JSONField(default=dict, blank=True)
    source_event_id = models.UUIDField(null=True, blank=True, unique=True)

    objects = NotificationQuerySet.as_manager()

    class Meta:
        db_table = "notifications"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["target_user", "read"], name="notif_target_read_idx"),
        ]

    def __str__(self) -> str:
        return f"[{self.type}] {self.title}"


class DevicePlatform(models.TextChoices):
    ANDROID = "android", "Android"
    IOS = "ios", "iOS"
    WEB = "web", "Web"


class DeviceTokenManager(models.Manager):
    def register(self, owner, token: str, platform: str = DevicePlatform.ANDROID):
        """Find-or-create a token for *owner*, reactivating it if needed.

        Returns ``(device_token, created)``.
        """
        device, created = self.update_or_create(
            token=token,
            defaults={
                "owner": owner,
                "platform": platform,
                "is_active": True,
                "last_used_at": timezone.now(),
            },
        )
        logger.info(
            "device_token.registered",
            owner_id=owner.pk,
            platform=platform,
            created=created,
        )
        return device, created

    def deactivate(self, tokens: Iterable[str]) -> int:
        tokens = list(tokens)
        count = self.filter(token__in=tokens, is_active=True).update(
            is_active=False, updated_at=timezone.now()
        )
        if count:
            logger.info("device_token.deactivated", count=count)
        return count

    def active_admin_tokens(self) -> models.QuerySet:
        return self.filter(
            is_active=True,
            owner__is_staff=True,
            owner__is_active=True,
        )


class DeviceToken(BaseModel):
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="device_tokens",
    )
    token = models.CharField(max_length=255, unique=True)
    platform = models.CharField(
        max_length=10,
        choices=DevicePlatform.choices,
        default=DevicePlatform.ANDROID,
    )
    is_active = models.BooleanField(default=True)
    last_used_at = models.DateTimeField(default=timezone.now)

    objects = DeviceTokenManager()

    class Meta:
        db_table = "device_tokens"
        ordering = ["-last_used_at"]
        indexes = [
            models.Index(fields=["owner", "is_active"], name="device_owner_active_idx"),
        ]

    def __str__(self) -> str:
        return f"{self.platform} token ({'active' if self.is_active else 'inactive'})"
