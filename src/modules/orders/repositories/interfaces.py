"""Order repository interface.

Extends ``IRepository[Order]`` with what the Order aggregate needs:
atomic creation with items, locked reads, the stock-reconciliation
compare-and-set, status history and idempotency-key look-up.

The Service Layer depends exclusively on this contract.
"""

from __future__ import annotations

from abc import abstractmethod
from typing import TYPE_CHECKING, Any, Dict, Iterable, Optional
from uuid import UUID

from modules.core.repositories.interfaces import IRepository

if TYPE_CHECKING:
    from django.contrib.auth.models import AbstractBaseUser

    from modules.orders.models import Order, OrderStatusHistory


class IOrderRepository(IRepository["Order"]):
    """Repository contract for the Order aggregate root.

    The Order aggregate includes OrderItem children and
    OrderStatusHistory records.  Mutations must be atomic.
    """

    @abstractmethod
    def create(self, data: Dict[str, Any]) -> Order:
        """Create an order with its items atomically.

        ``data`` must include ``order_number``, ``customer_id`` and ``items``
        (dicts with ``product_id``, ``quantity``, ``unit_price``,
        ``final_price``).
        """

    @abstractmethod
    def list(self, filters: Optional[Dict[str, Any]] = None) -> Iterable[Order]:
        """Return live orders matching ``filters`` (ORM lookups)."""

    @abstractmethod
    def save(self, entity: Order) -> Order:
        """Persist *entity* and record its pending domain events."""

    @abstractmethod
    def get_for_update(self, id: str) -> Optional[Order]:
        """Retrieve an order with a row-level lock."""

    @abstractmethod
    def compare_and_set_reconciled(
        self, order_id: UUID, expected: bool, value: bool
    ) -> bool:
        """Flip ``stock_reconciled`` only if it still equals *expected*.

        Returns ``False`` when another writer got there first.
        """

    @abstractmethod
    def add_history(
        self,
        order_id: UUID,
        status: str,
        notes: str = "",
        old_status: Optional[str] = None,
        user: Optional[AbstractBaseUser] = None,
    ) -> OrderStatusHistory:
        """Record a status change in the order's audit trail."""

    @abstractmethod
    def get_by_idempotency_key(self, key: str) -> Optional[Order]:
        """Retrieve an order by its idempotency key."""
