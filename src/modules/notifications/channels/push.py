"""Push channel and its providers.

The channel sends one multicast per event to every active staff device.
Providers only talk to the push service; the channel owns the token
bookkeeping (deactivating invalid tokens, stamping ``last_used_at``).

Providers are selected by dotted path in ``settings.PUSH_PROVIDER``:

- ``ExpoPushProvider``: httpx client for an Expo-compatible push API.
- ``InMemoryPushProvider``: records messages in memory for development
  and tests.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Sequence

import httpx
import structlog
from django.conf import settings
from django.utils import timezone
from django.utils.module_loading import import_string

from modules.notifications.channels.base import (
    ChannelResult,
    DeliveryStatus,
    NotificationChannel,
    compose_message,
)
from modules.notifications.exceptions import NotificationChannelError
from modules.notifications.models import DeviceToken
from modules.orders.dtos import OrderEventDTO

logger = structlog.get_logger(__name__)

EXPO_BATCH_SIZE = 100
INVALID_TOKEN_ERRORS = {"DeviceNotRegistered", "InvalidCredentials"}


@dataclass(frozen=True)
class PushResult:
    sent: int
    failed: int
    invalid_tokens: List[str] = field(default_factory=list)
    failed_tokens: List[str] = field(default_factory=list)


class PushProvider(ABC):
    @abstractmethod
    def send_to_tokens(
        self,
        tokens: Sequence[str],
        title: str,
        body: str,
        data: Optional[Dict[str, str]] = None,
    ) -> PushResult:
        """Send one message to many devices.

        A failure for one token is reported in the result, never raised.
        Raise ``NotificationChannelError`` only when nothing could be sent.
        """


class ExpoPushProvider(PushProvider):
    def __init__(
        self,
        url: Optional[str] = None,
        access_token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._url = url or settings.PUSH_API_URL
        self._access_token = access_token or settings.PUSH_ACCESS_TOKEN
        self._timeout = timeout or settings.NOTIFICATION_PUSH_TIMEOUT
        self._transport = transport

    def send_to_tokens(
        self,
        tokens: Sequence[str],
        title: str,
        body: str,
        data: Optional[Dict[str, str]] = None,
    ) -> PushResult:
        headers = {"Accept": "application/json"}
        if self._access_token:
            headers["Authorization"] = f"Bearer {self._access_token}"

        sent = 0
        invalid: List[str] = []
        failed: List[str] = []
        last_error: Optional[httpx.HTTPError] = None
        lost_batches = 0
        with httpx.Client(
            timeout=self._timeout, headers=headers, transport=self._transport
        ) as client:
            for start in range(0, len(tokens), EXPO_BATCH_SIZE):
                batch = list(tokens[start : start + EXPO_BATCH_SIZE])
                try:
                    response = client.post(
                        self._url,
                        json=[
                            {
                                "to": token,
                                "title": title,
                                "body": body,
                                "data": data or {},
                                "sound": "default",
                                "priority": "high",
                            }
                            for token in batch
                        ],
                    )
                    response.raise_for_status()
                except httpx.HTTPError as exc:
                    # A lost batch only fails its own tokens.
                    logger.warning(
                        "notification.push_batch_failed",
                        batch_start=start,
                        batch_size=len(batch),
                        error=str(exc),
                    )
                    failed.extend(batch)
                    last_error = exc
                    lost_batches += 1
                    continue
                tickets = response.json().get("data", [])
                for token, ticket in zip(batch, tickets):
                    if ticket.get("status") == "ok":
                        sent += 1
                        continue
                    failed.append(token)
                    error = (ticket.get("details") or {}).get("error")
                    if error in INVALID_TOKEN_ERRORS:
                        invalid.append(token)

        if last_error is not None and lost_batches * EXPO_BATCH_SIZE >= len(tokens):
            raise NotificationChannelError(
                "push", str(last_error) or "push API unreachable"
            ) from last_error

        return PushResult(
            sent=sent,
            failed=len(failed),
            invalid_tokens=invalid,
            failed_tokens=failed,
        )


class InMemoryPushProvider(PushProvider):
    """Push provider that records messages in memory for test assertions.

    State is kept on the class so the instance built per fanout and the
    test share it.  ``invalid_tokens`` are reported back as unregistered;
    ``error`` makes every send raise.
    """

    messages: ClassVar[List[Dict[str, Any]]] = []
    invalid_tokens: ClassVar[set] = set()
    error: ClassVar[Optional[str]] = None

    @classmethod
    def reset(cls) -> None:
        cls.messages = []
        cls.invalid_tokens = set()
        cls.error = None

    def send_to_tokens(
        self,
        tokens: Sequence[str],
        title: str,
        body: str,
        data: Optional[Dict[str, str]] = None,
    ) -> PushResult:
        if self.error:
            raise NotificationChannelError("push", self.error)
        invalid = [token for token in tokens if token in self.invalid_tokens]
        delivered = [token for token in tokens if token not in self.invalid_tokens]
        for token in delivered:
            self.messages.append(
                {"token": token, "title": title, "body": body, "data": data or {}}
            )
        return PushResult(
            sent=len(delivered),
            failed=len(invalid),
            invalid_tokens=invalid,
            failed_tokens=invalid,
        )


def get_push_provider() -> PushProvider:
    return import_string(settings.PUSH_PROVIDER)()


class PushChannel(NotificationChannel):
    """Multicasts the event to every active staff device token."""

    name = "push"

    def __init__(self, provider: Optional[PushProvider] = None) -> None:
        self._provider = provider

    def deliver(self, event: OrderEventDTO) -> ChannelResult:
        tokens = list(
            DeviceToken.objects.active_admin_tokens().values_list("token", flat=True)
        )
        if not tokens:
            return ChannelResult(
                channel=self.name,
                status=DeliveryStatus.SKIPPED,
                detail={"reason": "no active device tokens"},
            )

        title, body = compose_message(event)
        provider = self._provider or get_push_provider()
        result = provider.send_to_tokens(
            tokens,
            title,
            body,
            data={
                "type": "order",
                "order_id": str(event.aggregate_id),
                "order_number": event.order_number,
                "status": event.new_status.value,
            },
        )

        deactivated = 0
        if result.invalid_tokens:
            deactivated = DeviceToken.objects.deactivate(result.invalid_tokens)
        delivered = set(tokens) - set(result.failed_tokens)
        if delivered:
            DeviceToken.objects.filter(token__in=delivered).update(
                last_used_at=timezone.now()
            )

        logger.info(
            "notification.push_sent",
            sent=result.sent,
            failed=result.failed,
            deactivated=deactivated,
        )
        return ChannelResult(
            channel=self.name,
            status=DeliveryStatus.SENT if result.sent else DeliveryStatus.FAILED,
            detail={
                "sent": result.sent,
                "failed": result.failed,
                "deactivated_tokens": deactivated,
            },
            error=None if result.sent else "no device accepted the message",
        )
