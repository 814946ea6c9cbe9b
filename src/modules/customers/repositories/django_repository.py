"""Django ORM implementation of the Customer repository.

Methods return ``None`` for missing rows instead of raising; the service
layer decides how a missing customer translates into an API response.
"""

from __future__ import annotations

from typing import Optional

from django.core.exceptions import ValidationError

from modules.customers.models import Customer
from modules.customers.repositories.interfaces import ICustomerRepository


class CustomerDjangoRepository(ICustomerRepository):
    """Concrete Customer repository backed by Django ORM."""

    def get_by_id(self, id: str) -> Optional[Customer]:
        """Return ``None`` for non-existent or malformed IDs."""
        try:
            return Customer.objects.alive().filter(id=id).first()
        except (ValueError, ValidationError):
            return None

    def get_by_user(self, user_id: int) -> Optional[Customer]:
        return Customer.objects.alive().filter(user_id=user_id).first()
