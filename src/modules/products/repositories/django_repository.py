"""Django ORM implementation of the Product repository.

Read side only: stock mutations go through ``InventoryLedger``.
"""

from __future__ import annotations

from typing import Dict, Iterable
from uuid import UUID

from modules.products.models import Product
from modules.products.repositories.interfaces import IProductRepository


class ProductDjangoRepository(IProductRepository):
    """Concrete Product repository backed by Django ORM."""

    def get_many(self, ids: Iterable[UUID]) -> Dict[UUID, Product]:
        return {p.id: p for p in Product.objects.alive().filter(id__in=list(ids))}
