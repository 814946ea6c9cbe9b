"""Product model: the inventory projection the order engine reconciles.

Business rules implemented:
- SKU is unique and normalised to uppercase.
- Inactive products cannot be sold (enforced at service layer).
- Price must be greater than zero.
- ``count_in_stock`` can never go negative (database check constraint);
  only ``InventoryLedger`` mutates it.
- ``discount_percent`` (0-100) drives the price snapshotted on order items.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

import structlog
from django.core.exceptions import ValidationError
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models

from modules.core.models import SoftDeleteModel

logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")


class ProductStatus(models.TextChoices):
    ACTIVE = "active", "Active"
    INACTIVE = "inactive", "Inactive"


class Product(SoftDeleteModel):
    """Product aggregate root."""

    sku = models.CharField(max_length=64, unique=True)
    name = models.CharField(max_length=255)
    description = models.TextField(blank=True, default="")
    price = models.DecimalField(
        max_digits=10,
        decimal_places=2,
        validators=[MinValueValidator(Decimal("0.01"))],
    )
    discount_percent = models.PositiveSmallIntegerField(
        default=0,
        validators=[MaxValueValidator(100)],
    )
    count_in_stock = models.PositiveIntegerField(default=0)
    status = models.CharField(
        max_length=20,
        choices=ProductStatus.choices,
        default=ProductStatus.ACTIVE,
    )

    class Meta:
        db_table = "products"
        ordering = ["name"]
        indexes = [
            models.Index(fields=["status"], name="products_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(price__gt=0),
                name="products_price_positive",
            ),
            models.CheckConstraint(
                condition=models.Q(count_in_stock__gte=0),
                name="products_stock_non_negative",
            ),
            models.CheckConstraint(
                condition=models.Q(discount_percent__lte=100),
                name="products_discount_max_100",
            ),
        ]

    @property
    def is_active(self) -> bool:
        return self.status == ProductStatus.ACTIVE

    @property
    def final_price(self) -> Decimal:
        """Price after the percentage discount, rounded to cents."""
        if not self.discount_percent:
            return self.price
        factor = Decimal(100 - self.discount_percent) / Decimal(100)
        return (self.price * factor).quantize(CENT, rounding=ROUND_HALF_UP)

    def clean(self) -> None:
        super().clean()
        if self.sku:
            self.sku = self.sku.strip().upper()
        if self.price is not None and self.price <= 0:
            raise ValidationError({"price": "Price must be greater than zero."})
        if self.discount_percent is not None and self.discount_percent > 100:
            raise ValidationError(
                {"discount_percent": "Discount cannot exceed 100 percent."}
            )

    def save(self, *args, **kwargs) -> None:
        is_new = self._state.adding
        if self.sku:
            self.sku = self.sku.strip().upper()
        super().save(*args, **kwargs)
        if is_new:
            logger.info(
                "product.created",
                product_id=str(self.id),
                sku=self.sku,
                count_in_stock=self.count_in_stock,
            )

    def __str__(self) -> str:
        return f"{self.sku} - {self.name}"
