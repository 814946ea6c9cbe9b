"""Celery tasks that publish order events to the notification channels.

``publish_outbox_event`` is enqueued by ``transaction.on_commit`` for every
outbox row.  ``relay_outbox`` runs on the beat schedule and re-enqueues
rows whose first dispatch never happened (broker down, worker crash), or
whose payload failed to parse, up to ``OUTBOX_MAX_RETRIES``.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, Optional

import pydantic
import structlog
from celery import Task, shared_task
from django.conf import settings
from django.db import transaction
from django.db.models import Q
from django.utils import timezone

from modules.core.models import EventStatus, OutboxEvent
from modules.notifications.fanout import NotificationFanout
from modules.orders.dtos import OrderEventDTO

logger = structlog.get_logger(__name__)


class OutboxTask(Task):
    """Base task that logs failures with the task context."""

    def on_failure(self, exc, task_id, args, kwargs, einfo) -> None:
        logger.error(
            "outbox_task.failed",
            task=self.name,
            task_id=task_id,
            error=str(exc),
            args=args,
        )


@shared_task(base=OutboxTask, name="notifications.publish_outbox_event")
def publish_outbox_event(
    event_id: str, correlation_id: Optional[str] = None
) -> Dict[str, Any]:
    """Fan one outbox event out to every notification channel.

    The row is claimed in a short transaction and the channels run after
    it commits, each in its own transaction, so a slow push or mail
    provider never holds the outbox row lock.  Rows already published, or
    claimed by another worker inside the grace window, are skipped, so
    duplicate deliveries of the task are harmless.
    """
    log = logger.bind(outbox_event_id=event_id)
    context = {"correlation_id": correlation_id} if correlation_id else {}
    with structlog.contextvars.bound_contextvars(**context):
        claimed = _claim(event_id, log)
        if isinstance(claimed, dict):
            return claimed
        event, payload = claimed

        try:
            report = NotificationFanout().notify(payload).as_dict()
        except Exception as exc:
            with transaction.atomic():
                event.mark_as_failed(str(exc) or exc.__class__.__name__)
            log.exception("outbox.fanout_failed", event_type=event.event_type)
            raise

        with transaction.atomic():
            event.mark_as_published(report)
        log.info(
            "outbox.published",
            event_type=event.event_type,
            aggregate_id=event.aggregate_id,
        )
        return {"status": EventStatus.PUBLISHED.value, **report}


def _claim(event_id: str, log):
    """Lock the row, check it is publishable and mark it ``PROCESSING``.

    Returns ``(event, payload)`` when this worker owns the row, otherwise
    the task result to return.
    """
    grace = timezone.now() - timedelta(seconds=settings.OUTBOX_RELAY_GRACE_SECONDS)
    with transaction.atomic():
        event = (
            OutboxEvent.objects.select_for_update(skip_locked=True)
            .filter(id=event_id)
            .first()
        )
        if event is None:
            log.info("outbox.publish_skipped", reason="missing or locked")
            return {"event_id": event_id, "status": "skipped"}
        if event.status == EventStatus.PUBLISHED:
            log.info("outbox.publish_skipped", reason="already published")
            return {"event_id": event_id, "status": EventStatus.PUBLISHED.value}
        if event.status == EventStatus.PROCESSING and event.updated_at > grace:
            log.info("outbox.publish_skipped", reason="claimed by another worker")
            return {"event_id": event_id, "status": "skipped"}

        try:
            payload = OrderEventDTO.from_payload(event.payload)
        except pydantic.ValidationError as exc:
            event.mark_as_failed(f"Malformed payload: {exc.error_count()} error(s)")
            log.error(
                "outbox.payload_invalid",
                event_type=event.event_type,
                retry_count=event.retry_count,
            )
            return {"event_id": event_id, "status": EventStatus.FAILED.value}

        event.mark_as_processing()
    return event, payload


@shared_task(base=OutboxTask, name="notifications.relay_outbox")
def relay_outbox(limit: int = 100) -> Dict[str, int]:
    """Re-dispatch outbox rows that were never published.

    Picks up ``PENDING`` rows past the grace window, ``FAILED`` rows under
    the retry cap, and ``PROCESSING`` claims whose worker died mid-fanout.
    """
    grace = timezone.now() - timedelta(seconds=settings.OUTBOX_RELAY_GRACE_SECONDS)
    stale = (
        OutboxEvent.objects.filter(
            Q(status=EventStatus.PENDING, created_at__lte=grace)
            | Q(status=EventStatus.PROCESSING, updated_at__lte=grace)
            | Q(status=EventStatus.FAILED, retry_count__lt=settings.OUTBOX_MAX_RETRIES)
        )
        .order_by("created_at")
        .values_list("id", flat=True)[:limit]
    )
    dispatched = 0
    for event_id in stale:
        publish_outbox_event.delay(str(event_id))
        dispatched += 1
    if dispatched:
        logger.info("outbox.relayed", dispatched=dispatched)
    return {"dispatched": dispatched}
