"""Product repository interface.

Placement only needs a batch read; stock writes go through
``InventoryLedger``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Dict, Iterable
from uuid import UUID

if TYPE_CHECKING:
    from modules.products.models import Product


class IProductRepository(ABC):
    """Repository contract for the Product aggregate."""

    @abstractmethod
    def get_many(self, ids: Iterable[UUID]) -> Dict[UUID, Product]:
        """Fetch several products at once, keyed by primary key.

        Missing IDs are simply absent from the result.
        """
