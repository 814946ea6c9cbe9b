"""Transactional outbox helpers.

Domain events collected on an aggregate are written as ``OutboxEvent`` rows
inside the caller's transaction.  Publication is scheduled with
``transaction.on_commit`` so a rolled-back change never reaches a worker.
"""

from __future__ import annotations

import json
from dataclasses import asdict
from datetime import datetime
from decimal import Decimal
from functools import partial
from typing import Any, Dict, Iterable, List
from uuid import UUID

import structlog
from django.db import transaction

from modules.core.middleware import correlation_id_var
from modules.core.models import OutboxEvent
from shared.domain.events import DomainEvent

logger = structlog.get_logger(__name__)


def record_events(events: Iterable[DomainEvent], topic: str) -> List[OutboxEvent]:
    """Persist *events* as ``PENDING`` outbox rows and schedule their publication."""
    rows = [
        OutboxEvent.objects.create(
            event_type=event.event_name,
            aggregate_id=str(event.aggregate_id),
            payload=serialize_event_payload(event),
            topic=topic,
        )
        for event in events
    ]
    for row in rows:
        schedule_publication(row)
    return rows


def schedule_publication(event: OutboxEvent) -> None:
    """Enqueue the publish task once the surrounding transaction commits."""
    from modules.notifications.tasks import publish_outbox_event

    transaction.on_commit(
        partial(
            publish_outbox_event.delay,
            str(event.id),
            correlation_id=correlation_id_var.get() or None,
        ),
        robust=True,
    )
    logger.debug(
        "outbox.publication_scheduled",
        event_id=str(event.id),
        event_type=event.event_type,
    )


def serialize_event_payload(event: Any) -> Dict[str, Any]:
    data = asdict(event)
    normalized = _normalize_for_json(data)
    return json.loads(json.dumps(normalized))


def _normalize_for_json(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [_normalize_for_json(item) for item in value]
    if isinstance(value, dict):
        return {key: _normalize_for_json(val) for key, val in value.items()}
    return value


def delivery_report(events: Iterable[OutboxEvent]) -> List[Dict[str, Any]]:
    """Current publication state of *events*, for API responses.

    Read fresh from the database: when the worker runs eagerly the rows
    are already published by the time the response is built.
    """
    ids = [event.id for event in events]
    if not ids:
        return []
    rows = OutboxEvent.objects.filter(id__in=ids).order_by("created_at")
    return [
        {
            "event_id": str(row.id),
            "event_type": row.event_type,
            "status": row.status,
            "channels": (row.result or {}).get("channels", []),
        }
        for row in rows
    ]
