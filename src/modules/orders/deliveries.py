"""Delivery schedule views over ``shipping_details.delivery_date``.

Pure grouping helpers; ``OrderService`` selects the orders and these
functions arrange them for the kitchen board (upcoming deliveries by
urgency) and the monthly calendar.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from modules.orders.constants import OrderStatus
from modules.orders.models import Order

URGENCY_LEVELS = ("critical", "high", "medium", "low")


def delivery_date_of(order: Order) -> Optional[date]:
    """The promised delivery date, or ``None`` when unset or unparsable."""
    raw = (order.shipping_details or {}).get("delivery_date")
    if not raw:
        return None
    try:
        return date.fromisoformat(str(raw)[:10])
    except ValueError:
        return None


def urgency_for(days_until: int) -> str:
    if days_until <= 0:
        return "critical"
    if days_until == 1:
        return "high"
    if days_until <= 3:
        return "medium"
    return "low"


@dataclass(frozen=True)
class UpcomingDelivery:
    order: Order
    delivery_date: date
    days_until: int

    @property
    def urgency(self) -> str:
        return urgency_for(self.days_until)


@dataclass(frozen=True)
class UpcomingDeliveries:
    date_from: date
    date_to: date
    deliveries: List[UpcomingDelivery] = field(default_factory=list)

    def grouped(self) -> Dict[str, List[UpcomingDelivery]]:
        groups: Dict[str, List[UpcomingDelivery]] = {
            level: [] for level in URGENCY_LEVELS
        }
        for delivery in self.deliveries:
            groups[delivery.urgency].append(delivery)
        return groups

    def stats(self) -> Dict[str, int]:
        groups = self.grouped()
        return {
            "total": len(self.deliveries),
            "today": len(groups["critical"]),
            "tomorrow": len(groups["high"]),
            "next_3_days": len(groups["medium"]),
            "later": len(groups["low"]),
        }


def upcoming(orders: Iterable[Order], today: date, days: int) -> UpcomingDeliveries:
    """Orders due between *today* and *today + days*, soonest first."""
    until = today + timedelta(days=days)
    deliveries = []
    for order in orders:
        due = delivery_date_of(order)
        if due is None or not today <= due <= until:
            continue
        deliveries.append(
            UpcomingDelivery(order=order, delivery_date=due, days_until=(due - today).days)
        )
    deliveries.sort(key=lambda d: (d.delivery_date, d.order.order_number))
    return UpcomingDeliveries(date_from=today, date_to=until, deliveries=deliveries)


@dataclass
class CalendarDay:
    date: date
    orders: List[Order] = field(default_factory=list)
    total_amount: Decimal = Decimal("0.00")
    status_counts: Counter = field(default_factory=Counter)

    @property
    def count(self) -> int:
        return len(self.orders)

    def add(self, order: Order) -> None:
        self.orders.append(order)
        self.total_amount += order.total_amount
        self.status_counts[order.status] += 1


def calendar(orders: Iterable[Order], year: int, month: int) -> Dict[date, CalendarDay]:
    """Group the month's orders by delivery date, in date order."""
    days: Dict[date, CalendarDay] = {}
    for order in orders:
        due = delivery_date_of(order)
        if due is None or (due.year, due.month) != (year, month):
            continue
        days.setdefault(due, CalendarDay(date=due)).add(order)
    return dict(sorted(days.items()))


def empty_status_counts() -> Dict[str, int]:
    return {status: 0 for status in OrderStatus.values}
