"""Product and inventory exceptions.

Raised by the order service and the inventory ledger.  The API layer
(Views) catches these and translates them into HTTP responses.
"""

from __future__ import annotations

from typing import Any, Dict, List


class ProductNotFound(Exception):
    """The requested product does not exist or has been soft-deleted."""


class InactiveProduct(Exception):
    """A product referenced by an order item is inactive and cannot be sold."""


class InsufficientStock(Exception):
    """One or more products cannot cover the requested quantity.

    ``shortfalls`` lists every offending product, not only the first one,
    as dicts with ``product_id``, ``sku``, ``requested`` and ``available``.
    """

    def __init__(self, shortfalls: List[Dict[str, Any]]) -> None:
        self.shortfalls = shortfalls
        details = ", ".join(
            f"{item['sku'] or item['product_id']}: requested {item['requested']}, "
            f"available {item['available']}"
            for item in shortfalls
        )
        super().__init__(f"Insufficient stock ({details}).")
