"""Repository base contract.

Services receive repositories through their constructors and only talk to
these interfaces; the Django implementations live next to each module's
models.  Lookups return ``None`` for a missing row so the service decides
which domain exception to raise.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class IRepository(ABC, Generic[T]):
    @abstractmethod
    def get_by_id(self, id: str) -> Optional[T]:
        """Return the live entity with primary key *id*, if any."""
