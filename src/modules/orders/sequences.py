"""Order number allocation.

Order numbers read ``YYMM-SSS-DD``: the month bucket, a sequence that is
monotonic within that bucket, and the day of month.  The sequence comes
from a durable counter row per bucket, advanced atomically under a row
lock, so concurrent placements in the same month never see the same value.
"""

from __future__ import annotations

from datetime import date
from typing import Optional

import structlog
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from modules.orders.models import OrderSequence

logger = structlog.get_logger(__name__)


def bucket_for(day: date) -> str:
    return f"{day:%y%m}"


def format_order_number(bucket: str, sequence: int, day: int) -> str:
    return f"{bucket}-{sequence:03d}-{day:02d}"


class SequenceAllocator:
    """Mints unique, human-readable order numbers."""

    @transaction.atomic
    def next_value(self, bucket: str) -> int:
        """Advance the counter for *bucket* and return the new value.

        The row lock is held until the caller's outermost transaction ends,
        serialising allocation per bucket.
        """
        OrderSequence.objects.select_for_update().get_or_create(bucket=bucket)
        OrderSequence.objects.filter(bucket=bucket).update(
            last_value=F("last_value") + 1
        )
        return OrderSequence.objects.values_list("last_value", flat=True).get(
            bucket=bucket
        )

    def next_order_number(self, today: Optional[date] = None) -> str:
        today = today or timezone.localdate()
        bucket = bucket_for(today)
        value = self.next_value(bucket)
        order_number = format_order_number(bucket, value, today.day)
        logger.info("order_number.allocated", bucket=bucket, order_number=order_number)
        return order_number

    def peek(self, today: Optional[date] = None) -> str:
        """Preview the next order number without consuming it."""
        today = today or timezone.localdate()
        bucket = bucket_for(today)
        current = (
            OrderSequence.objects.filter(bucket=bucket)
            .values_list("last_value", flat=True)
            .first()
        )
        return format_order_number(bucket, (current or 0) + 1, today.day)
