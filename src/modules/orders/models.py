"""Order, OrderItem, OrderStatusHistory and OrderSequence models.

Business rules implemented:
- Status changes are validated by ``state_machine.plan_transition``.
- Each status change generates an immutable history record.
- ``stock_reconciled`` is true exactly while the order's items are
  deducted from inventory; it only flips through a compare-and-set in the
  same transaction as the ledger mutation.
- ``order_number`` is allocated by ``SequenceAllocator`` and never changes.
- OrderItem snapshots the catalog price and the discounted price at
  placement; ``subtotal`` is always ``quantity * final_price``.
- Idempotency via ``idempotency_key`` unique constraint.
- Customer FK uses PROTECT to preserve financial history.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from django.conf import settings
from django.core.exceptions import ValidationError
from django.core.validators import MinValueValidator
from django.db import models

from modules.core.models import BaseModel, SoftDeleteModel
from modules.orders.constants import TERMINAL_STATES, Currency, OrderStatus
from shared.domain.events import DomainEventMixin


class Order(DomainEventMixin, SoftDeleteModel):
    """Order aggregate root.

    ``order_number`` (``YYMM-SSS-DD``) is the human-readable identifier;
    the UUIDv7 ``id`` is used for internal references and API lookups.

    ``idempotency_key`` is nullable: only orders created via the public API
    carry a client-provided key, and NULLs never collide in a UNIQUE column.
    """

    order_number = models.CharField(max_length=20, unique=True, editable=False)
    customer = models.ForeignKey(
        "customers.Customer",
        on_delete=models.PROTECT,
        related_name="orders",
    )
    status = models.CharField(
        max_length=20,
        choices=OrderStatus.choices,
        default=OrderStatus.PLACED,
    )
    stock_reconciled = models.BooleanField(default=False)
    stock_reconciled_at = models.DateTimeField(null=True, blank=True, default=None)
    total_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal("0.00"),
    )
    currency = models.CharField(
        max_length=3,
        choices=Currency.choices,
        default=Currency.INR,
    )
    shipping_details = models.JSONField(default=dict, blank=True)
    payment_details = models.JSONField(default=dict, blank=True)
    is_paid = models.BooleanField(default=False)
    paid_at = models.DateTimeField(null=True, blank=True, default=None)
    is_delivered = models.BooleanField(default=False)
    delivered_at = models.DateTimeField(null=True, blank=True, default=None)
    notes = models.TextField(blank=True, default="")
    idempotency_key = models.CharField(
        max_length=255,
        unique=True,
        null=True,
        blank=True,
    )

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status"], name="orders_status_idx"),
            models.Index(fields=["-created_at"], name="orders_created_idx"),
        ]

    @property
    def is_terminal(self) -> bool:
        """Return ``True`` if the order is in a terminal state."""
        return self.status in TERMINAL_STATES

    @property
    def customer_email(self) -> str:
        """Shipping email if one was given, else the customer's own address."""
        email = (self.shipping_details or {}).get("email")
        return email or self.customer.email

    def ledger_lines(self) -> list[tuple[Any, int]]:
        """``(product_id, quantity)`` pairs for ``InventoryLedger``."""
        return [(item.product_id, item.quantity) for item in self.items.all()]

    def __str__(self) -> str:
        return f"{self.order_number} ({self.status})"


class OrderItem(BaseModel):
    """Line item linking an Order to a Product.

    ``unit_price`` is the catalog price and ``final_price`` the price after
    the product's discount, both captured at placement.  They never change
    even if the product is repriced later.
    """

    order = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="items",
    )
    product = models.ForeignKey(
        "products.Product",
        on_delete=models.PROTECT,
        related_name="order_items",
    )
    quantity = models.PositiveIntegerField(
        default=1,
        validators=[MinValueValidator(1)],
    )
    unit_price = models.DecimalField(max_digits=10, decimal_places=2)
    final_price = models.DecimalField(max_digits=10, decimal_places=2)
    subtotal = models.DecimalField(max_digits=12, decimal_places=2, editable=False)

    class Meta:
        db_table = "order_items"
        ordering = ["created_at"]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gte=1),
                name="order_items_quantity_positive",
            ),
        ]

    def clean(self) -> None:
        super().clean()
        if self.quantity is not None and self.quantity < 1:
            raise ValidationError({"quantity": "Quantity must be at least 1."})

    def save(self, *args: Any, **kwargs: Any) -> None:
        if self.final_price is None:
            self.final_price = self.unit_price
        self.subtotal = self.quantity * self.final_price
        super().save(*args, **kwargs)

    def __str__(self) -> str:
        return f"{self.product} x{self.quantity} ({self.subtotal})"


class OrderStatusHistory(BaseModel):
    """Append-only audit trail for order status transitions.

    ``user`` is nullable: ``None`` means the change was performed by the
    system.  ``old_status`` is ``None`` for the placement record.
    """

    order = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="status_history",
    )
    old_status = models.CharField(  # noqa: DJ01
        max_length=20,
        choices=OrderStatus.choices,
        null=True,
        blank=True,
    )
    new_status = models.CharField(max_length=20, choices=OrderStatus.choices)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    notes = models.TextField(blank=True, default="")

    class Meta:
        db_table = "order_status_history"
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["order", "-created_at"],
                name="osh_order_created_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.order} : {self.old_status} -> {self.new_status}"


class OrderSequence(models.Model):
    """Durable per-bucket counter behind order numbers.

    One row per ``YYMM`` bucket; ``last_value`` is only ever advanced by a
    single ``UPDATE ... SET last_value = last_value + 1`` under a row lock.
    """

    bucket = models.CharField(max_length=8, unique=True)
    last_value = models.PositiveIntegerField(default=0)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = "order_sequences"

    def __str__(self) -> str:
        return f"{self.bucket}: {self.last_value}"
