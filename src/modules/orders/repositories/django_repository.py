"""Django ORM implementation of the Order repository.

Satisfies ``IOrderRepository`` using Django's QuerySet API.
Writes are wrapped in ``transaction.atomic()`` so the Order aggregate
(Order + OrderItems) and its outbox rows are persisted together.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Optional
from uuid import UUID

import structlog
from django.core.exceptions import ValidationError
from django.db import transaction
from django.utils import timezone

from modules.core.outbox import record_events
from modules.orders.constants import OUTBOX_TOPIC, Currency
from modules.orders.models import Order, OrderItem, OrderStatusHistory
from modules.orders.repositories.interfaces import IOrderRepository

logger = structlog.get_logger(__name__)

ORDER_RELATIONS = ("items__product", "status_history")


class OrderDjangoRepository(IOrderRepository):
    """Concrete Order repository backed by Django ORM."""

    @transaction.atomic
    def create(self, data: Dict[str, Any]) -> Order:
        order = Order(
            order_number=data["order_number"],
            customer_id=data["customer_id"],
            currency=data.get("currency", Currency.INR),
            shipping_details=data.get("shipping_details") or {},
            payment_details=data.get("payment_details") or {},
            idempotency_key=data.get("idempotency_key"),
            notes=data.get("notes", ""),
        )
        order.save()

        items = [
            OrderItem(
                order=order,
                product_id=item["product_id"],
                quantity=item["quantity"],
                unit_price=item["unit_price"],
                final_price=item["final_price"],
            )
            for item in data.get("items", [])
        ]
        total = Decimal("0.00")
        for item in items:
            item.save()
            total += item.subtotal

        order.total_amount = total
        order.save(update_fields=["total_amount"])

        logger.info(
            "order.persisted",
            order_id=str(order.id),
            order_number=order.order_number,
            item_count=len(items),
        )
        return order

    def get_by_id(self, id: str) -> Optional[Order]:
        """Retrieve an order with eager-loaded relations.

        Returns ``None`` for non-existent or invalid IDs.
        """
        try:
            return (
                Order.objects.alive()
                .select_related("customer")
                .prefetch_related(*ORDER_RELATIONS)
                .filter(id=id)
                .first()
            )
        except (ValueError, ValidationError):
            return None

    def list(self, filters: Optional[Dict[str, Any]] = None):
        """Return a queryset so the API layer can filter and paginate it."""
        queryset = (
            Order.objects.alive()
            .select_related("customer")
            .prefetch_related(*ORDER_RELATIONS)
        )
        if filters:
            queryset = queryset.filter(**filters)
        return queryset

    @transaction.atomic
    def save(self, entity: Order) -> Order:
        """Persist the order and turn its pending domain events into outbox rows.

        The created rows are exposed as ``entity.outbox_events``.
        """
        entity.save()

        events = entity.domain_events
        entity.outbox_events = record_events(events, topic=OUTBOX_TOPIC)
        entity.clear_domain_events()

        logger.info("order.saved", order_id=str(entity.id), event_count=len(events))
        return entity

    def compare_and_set_reconciled(
        self, order_id: UUID, expected: bool, value: bool
    ) -> bool:
        updated = Order.objects.filter(
            id=order_id, stock_reconciled=expected
        ).update(
            stock_reconciled=value,
            stock_reconciled_at=timezone.now() if value else None,
            updated_at=timezone.now(),
        )
        return updated == 1

    @transaction.atomic
    def add_history(
        self,
        order_id: UUID,
        status: str,
        notes: str = "",
        old_status: Optional[str] = None,
        user: Any = None,
    ) -> OrderStatusHistory:
        history = OrderStatusHistory.objects.create(
            order_id=order_id,
            old_status=old_status,
            new_status=status,
            notes=notes,
            user=user if getattr(user, "is_authenticated", False) else None,
        )
        logger.info(
            "order.history_added",
            order_id=str(order_id),
            old_status=old_status,
            new_status=status,
        )
        return history

    def get_for_update(self, id: str) -> Optional[Order]:
        """Retrieve an order with a row-level lock (SELECT FOR UPDATE).

        Only the order row itself is locked (``of=("self",)``); items are
        prefetched so the caller can build ledger lines while holding it.
        Returns ``None`` for non-existent or invalid IDs.
        """
        try:
            return (
                Order.objects.alive()
                .select_for_update(of=("self",))
                .select_related("customer")
                .prefetch_related("items__product")
                .filter(id=id)
                .first()
            )
        except (ValueError, ValidationError):
            return None

    def get_by_idempotency_key(self, key: str) -> Optional[Order]:
        return (
            Order.objects.select_related("customer")
            .prefetch_related(*ORDER_RELATIONS)
            .filter(idempotency_key=key)
            .first()
        )
