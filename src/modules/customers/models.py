"""Customer model.

Customers are the people an order is billed and shipped to.  The order
engine only reads them: an inactive customer cannot place orders, and the
email address is the fallback recipient for order notifications.
"""

from __future__ import annotations

from django.conf import settings
from django.db import models

from modules.core.models import SoftDeleteModel


class Customer(SoftDeleteModel):
    """Customer aggregate root.

    ``email`` is normalised to lowercase on save; ``unique=True`` keeps it
    globally unique regardless of soft-delete state.
    """

    name = models.CharField(max_length=255)
    email = models.EmailField(max_length=254, unique=True)
    phone = models.CharField(max_length=20, blank=True, default="")
    user = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="customer",
    )
    is_active = models.BooleanField(default=True)

    class Meta:
        db_table = "customers"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["-created_at"], name="customers_created_idx"),
            models.Index(fields=["is_active"], name="customers_active_idx"),
        ]

    def save(self, *args, **kwargs) -> None:
        if self.email:
            self.email = self.email.strip().lower()
        super().save(*args, **kwargs)

    def __str__(self) -> str:
        return f"{self.name} <{self.email}>"
