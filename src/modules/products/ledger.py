"""Inventory ledger: the only writer of ``Product.count_in_stock``.

Reservations are all-or-nothing.  Every product row in the batch is locked
(``SELECT ... FOR UPDATE``, primary-key order) and every line is checked
before any row is written; the writes themselves are conditional updates
(``count_in_stock >= qty``) so a row can never be driven negative.  Both
operations run inside ``transaction.atomic()``: nested in the caller's
transaction they become a savepoint, and a failure part-way rolls back
every decrement already applied.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, Iterable, List, Tuple
from uuid import UUID

import structlog
from django.db import transaction
from django.db.models import F
from django.utils import timezone

from modules.products.exceptions import InsufficientStock
from modules.products.models import Product

logger = structlog.get_logger(__name__)

LedgerLine = Tuple[UUID, int]


@dataclass(frozen=True)
class StockMovement:
    product_id: UUID
    delta: int
    count_in_stock: int


@dataclass(frozen=True)
class LedgerResult:
    movements: Tuple[StockMovement, ...]

    def as_dict(self) -> Dict[str, int]:
        return {str(m.product_id): m.count_in_stock for m in self.movements}


def aggregate_lines(items: Iterable[LedgerLine]) -> "OrderedDict[UUID, int]":
    """Sum quantities per product and order the result by primary key."""
    totals: Dict[UUID, int] = {}
    for product_id, quantity in items:
        if quantity < 1:
            raise ValueError(f"Quantity for product {product_id} must be positive.")
        totals[product_id] = totals.get(product_id, 0) + quantity
    return OrderedDict(sorted(totals.items(), key=lambda pair: str(pair[0])))


class InventoryLedger:
    """Atomic batch reservation and release of product stock."""

    @transaction.atomic
    def reserve(self, items: Iterable[LedgerLine], reference: str = "") -> LedgerResult:
        """Decrement stock for every line, or for none of them.

        Raises:
            InsufficientStock: at least one product (missing products count
                as having nothing available) cannot cover its quantity.
                ``shortfalls`` lists all of them.
        """
        wanted = aggregate_lines(items)
        if not wanted:
            return LedgerResult(movements=())

        log = logger.bind(reference=reference, product_count=len(wanted))

        locked = {
            product.id: product
            for product in Product.objects.select_for_update()
            .filter(id__in=list(wanted))
            .order_by("id")
        }

        shortfalls = self._shortfalls(wanted, locked)
        if shortfalls:
            log.warning("ledger.reserve_rejected", shortfalls=shortfalls)
            raise InsufficientStock(shortfalls)

        now = timezone.now()
        for product_id, quantity in wanted.items():
            updated = Product.objects.filter(
                id=product_id, count_in_stock__gte=quantity
            ).update(count_in_stock=F("count_in_stock") - quantity, updated_at=now)
            if updated != 1:
                # The row changed between the check and the write; the atomic
                # block rolls back every decrement applied so far.
                current = (
                    Product.objects.filter(id=product_id)
                    .values_list("count_in_stock", flat=True)
                    .first()
                )
                product = locked[product_id]
                raise InsufficientStock(
                    [
                        {
                            "product_id": str(product_id),
                            "sku": product.sku,
                            "requested": quantity,
                            "available": current or 0,
                        }
                    ]
                )

        result = self._result(wanted, sign=-1)
        log.info("ledger.reserved", stock=result.as_dict())
        return result

    @transaction.atomic
    def release(self, items: Iterable[LedgerLine], reference: str = "") -> LedgerResult:
        """Restore stock for every line.

        Products that no longer exist are skipped and logged; there is no
        row left to give the units back to.
        """
        wanted = aggregate_lines(items)
        if not wanted:
            return LedgerResult(movements=())

        log = logger.bind(reference=reference, product_count=len(wanted))

        existing = set(
            Product.objects.select_for_update()
            .filter(id__in=list(wanted))
            .order_by("id")
            .values_list("id", flat=True)
        )
        now = timezone.now()
        for product_id, quantity in list(wanted.items()):
            if product_id not in existing:
                log.warning("ledger.release_skipped", product_id=str(product_id))
                del wanted[product_id]
                continue
            Product.objects.filter(id=product_id).update(
                count_in_stock=F("count_in_stock") + quantity, updated_at=now
            )

        result = self._result(wanted, sign=1)
        log.info("ledger.released", stock=result.as_dict())
        return result

    @staticmethod
    def _shortfalls(
        wanted: "OrderedDict[UUID, int]", locked: Dict[UUID, Product]
    ) -> List[Dict[str, object]]:
        shortfalls = []
        for product_id, quantity in wanted.items():
            product = locked.get(product_id)
            available = product.count_in_stock if product else 0
            if available < quantity:
                shortfalls.append(
                    {
                        "product_id": str(product_id),
                        "sku": product.sku if product else "",
                        "requested": quantity,
                        "available": available,
                    }
                )
        return shortfalls

    @staticmethod
    def _result(wanted: "OrderedDict[UUID, int]", sign: int) -> LedgerResult:
        stock = dict(
            Product.objects.filter(id__in=list(wanted)).values_list(
                "id", "count_in_stock"
            )
        )
        return LedgerResult(
            movements=tuple(
                StockMovement(
                    product_id=product_id,
                    delta=sign * quantity,
                    count_in_stock=stock[product_id],
                )
                for product_id, quantity in wanted.items()
            )
        )
