"""Order service layer (Use Cases).

Orchestrates order placement, status transitions with inventory
reconciliation, and payment recording.  All write operations are atomic;
the service defines the unit-of-work boundary.

Business rules enforced:
- Customer must exist and be active; products must exist and be active.
- Order numbers come from the per-month ``SequenceAllocator``.
- Status transitions follow ``state_machine.plan_transition``.
- Stock is reserved once when an order first enters a reserving status
  and released once when a reconciled order is cancelled; the
  ``stock_reconciled`` flag flips by compare-and-set in the same
  transaction as the ledger mutation.
- Every effective status change writes a history row and an outbox event;
  re-entering the current status writes neither.
- Delivery views read ``shipping_details.delivery_date``; they never write.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple
from uuid import UUID

import structlog
from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils import timezone

from modules.orders import deliveries
from modules.orders.constants import (
    ORDER_NUMBER_MAX_RETRIES,
    TERMINAL_STATES,
    OrderStatus,
)
from modules.orders.dtos import OrderSnapshotDTO
from modules.orders.events import OrderLifecycleEvent, OrderPlaced
from modules.orders.exceptions import (
    CustomerNotFound,
    InactiveCustomer,
    InactiveProduct,
    InsufficientStock,
    InvalidTransition,
    OrderNotFound,
    PaymentVerificationFailed,
    ProductNotFound,
    SequenceConflict,
    TransitionConflict,
)
from modules.orders.models import Order
from modules.orders.sequences import SequenceAllocator
from modules.orders.state_machine import InventoryAction, plan_transition
from modules.payments.gateway import GatewayOrder, get_gateway, to_minor_units
from modules.products.ledger import InventoryLedger

if TYPE_CHECKING:
    from modules.customers.repositories.interfaces import ICustomerRepository
    from modules.orders.dtos import PlaceOrderDTO, RecordPaymentDTO
    from modules.orders.repositories.interfaces import IOrderRepository
    from modules.payments.gateway import PaymentGateway
    from modules.products.repositories.interfaces import IProductRepository

logger = structlog.get_logger(__name__)


class OrderService:
    """Application service for Order use-cases.

    Receives repositories and collaborators via constructor injection.
    """

    def __init__(
        self,
        order_repository: IOrderRepository,
        customer_repository: ICustomerRepository,
        product_repository: IProductRepository,
        ledger: Optional[InventoryLedger] = None,
        sequence_allocator: Optional[SequenceAllocator] = None,
        payment_gateway: Optional[PaymentGateway] = None,
    ) -> None:
        self._order_repo = order_repository
        self._customer_repo = customer_repository
        self._product_repo = product_repository
        self._ledger = ledger or InventoryLedger()
        self._sequences = sequence_allocator or SequenceAllocator()
        self._gateway = payment_gateway

    @property
    def gateway(self) -> PaymentGateway:
        return self._gateway or get_gateway()

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    @transaction.atomic
    def place_order(self, dto: PlaceOrderDTO, user: Any = None) -> Order:
        """Create an order in ``placed`` with unreconciled stock.

        Availability is checked against the catalog at read time only;
        nothing is deducted until the order is confirmed.

        Raises:
            CustomerNotFound / InactiveCustomer: the customer cannot buy.
            ProductNotFound / InactiveProduct: a line cannot be sold.
            InsufficientStock: a line exceeds the stock currently on hand.
            SequenceConflict: no unique order number could be allocated.
        """
        log = logger.bind(customer_id=str(dto.customer_id))
        log.info("order.placement_started", item_count=len(dto.items))

        if dto.idempotency_key:
            existing = self._order_repo.get_by_idempotency_key(dto.idempotency_key)
            if existing:
                return self._replay(existing, dto.idempotency_key, log)

        customer = self._customer_repo.get_by_id(str(dto.customer_id))
        if not customer:
            raise CustomerNotFound(f"Customer {dto.customer_id} not found.")
        if not customer.is_active:
            raise InactiveCustomer(f"Customer {dto.customer_id} is inactive.")

        products = self._product_repo.get_many(item.product_id for item in dto.items)
        repo_items = []
        shortfalls = []
        for item_dto in sorted(dto.items, key=lambda i: str(i.product_id)):
            product = products.get(item_dto.product_id)
            if not product:
                raise ProductNotFound(f"Product {item_dto.product_id} not found.")
            if not product.is_active:
                raise InactiveProduct(f"Product {item_dto.product_id} is inactive.")
            if product.count_in_stock < item_dto.quantity:
                shortfalls.append(
                    {
                        "product_id": str(product.id),
                        "sku": product.sku,
                        "requested": item_dto.quantity,
                        "available": product.count_in_stock,
                    }
                )
            repo_items.append(
                {
                    "product_id": product.id,
                    "quantity": item_dto.quantity,
                    "unit_price": product.price,
                    "final_price": product.final_price,
                }
            )
        if shortfalls:
            log.warning("order.placement_rejected", shortfalls=shortfalls)
            raise InsufficientStock(shortfalls)

        payment_details: Dict[str, Any] = {}
        if dto.payment_method:
            payment_details["method"] = dto.payment_method

        order, created = self._create_with_order_number(
            {
                "customer_id": customer.id,
                "items": repo_items,
                "currency": dto.currency,
                "shipping_details": (
                    dto.shipping_details.model_dump(mode="json")
                    if dto.shipping_details
                    else {}
                ),
                "payment_details": payment_details,
                "notes": dto.notes or "",
                "idempotency_key": dto.idempotency_key,
            },
            log,
        )
        if not created:
            return self._replay(order, dto.idempotency_key, log)

        order = self._order_repo.get_by_id(str(order.id))
        order.add_domain_event(
            self._build_event(OrderPlaced, order, old_status=None)
        )
        self._order_repo.save(order)
        self._order_repo.add_history(
            order_id=order.id,
            status=OrderStatus.PLACED,
            notes="Order placed",
            user=user,
        )

        log.info(
            "order.placed",
            order_id=str(order.id),
            order_number=order.order_number,
            total_amount=str(order.total_amount),
        )
        return self._reload(order)

    @transaction.atomic
    def transition(
        self,
        order_id: UUID,
        target_status: str,
        notes: str = "",
        user: Any = None,
    ) -> Order:
        """Move an order to *target_status*, reconciling stock on the way.

        The order row stays locked for the whole unit of work, so status,
        stock flag, ledger movements, history and outbox row commit or roll
        back together.

        Raises:
            OrderNotFound: order does not exist.
            InvalidTransition: unknown status or illegal move.
            TransitionConflict: the reconciliation flag changed underneath.
            InsufficientStock: the reservation cannot be covered.
        """
        order = self._order_repo.get_for_update(str(order_id))
        if not order:
            raise OrderNotFound(f"Order {order_id} not found.")

        log = logger.bind(
            order_id=str(order.id),
            order_number=order.order_number,
            current_status=order.status,
            target_status=target_status,
        )

        try:
            plan = plan_transition(order.status, target_status, order.stock_reconciled)
        except InvalidTransition:
            log.warning("order.invalid_transition")
            raise

        if plan.is_noop:
            log.info("order.transition_noop")
            order.outbox_events = []
            return self._reload(order)

        if plan.inventory_action is not InventoryAction.NONE:
            swapped = self._order_repo.compare_and_set_reconciled(
                order.id,
                expected=order.stock_reconciled,
                value=plan.reconciled_after,
            )
            if not swapped:
                log.warning("order.reconciliation_conflict")
                raise TransitionConflict(
                    order.status,
                    target_status,
                    "Order stock was reconciled by a concurrent update.",
                )
            lines = order.ledger_lines()
            if plan.inventory_action is InventoryAction.RESERVE:
                self._ledger.reserve(lines, reference=order.order_number)
            else:
                self._ledger.release(lines, reference=order.order_number)
            order.refresh_from_db(fields=["stock_reconciled", "stock_reconciled_at"])

        old_status = order.status
        order.status = plan.target
        if plan.target == OrderStatus.DELIVERED:
            order.is_delivered = True
            order.delivered_at = timezone.now()

        order.add_domain_event(
            self._build_event(plan.event_class, order, old_status=old_status)
        )
        self._order_repo.save(order)
        self._order_repo.add_history(
            order_id=order.id,
            status=plan.target,
            notes=notes,
            old_status=old_status,
            user=user,
        )

        log.info(
            "order.transitioned",
            new_status=plan.target,
            inventory_action=plan.inventory_action.value,
            stock_reconciled=order.stock_reconciled,
        )
        return self._reload(order)

    def cancel_order(self, order_id: UUID, notes: str = "", user: Any = None) -> Order:
        """Cancel an order, releasing its stock if it was reserved."""
        return self.transition(
            order_id,
            OrderStatus.CANCELLED,
            notes=notes or "Order cancelled",
            user=user,
        )

    def verify_payment(
        self, gateway_order_id: str, payment_id: str, signature: str
    ) -> bool:
        """Check a checkout signature without touching any order."""
        return self.gateway.verify_signature(gateway_order_id, payment_id, signature)

    @transaction.atomic
    def record_payment(self, order_id: UUID, dto: RecordPaymentDTO) -> Order:
        """Attach verified gateway references to an order and mark it paid.

        Recording the same payment twice is a no-op.

        Raises:
            OrderNotFound: order does not exist.
            InvalidTransition: the order is cancelled.
            PaymentVerificationFailed: the signature does not match.
        """
        order = self._order_repo.get_for_update(str(order_id))
        if not order:
            raise OrderNotFound(f"Order {order_id} not found.")

        log = logger.bind(order_id=str(order.id), gateway_order_id=dto.gateway_order_id)

        if order.status == OrderStatus.CANCELLED:
            raise InvalidTransition(
                order.status, "paid", "Cannot record a payment for a cancelled order."
            )

        if not self.verify_payment(
            dto.gateway_order_id, dto.gateway_payment_id, dto.gateway_signature
        ):
            log.warning("order.payment_verification_failed")
            raise PaymentVerificationFailed("Payment signature verification failed.")

        already_recorded = (
            order.is_paid
            and order.payment_details.get("gateway_payment_id") == dto.gateway_payment_id
        )
        if not already_recorded:
            order.payment_details = {
                **(order.payment_details or {}),
                "method": dto.method,
                "gateway_order_id": dto.gateway_order_id,
                "gateway_payment_id": dto.gateway_payment_id,
                "gateway_signature": dto.gateway_signature,
            }
            order.is_paid = True
            order.paid_at = timezone.now()
            order.save(update_fields=["payment_details", "is_paid", "paid_at"])
            log.info("order.paid")

        order.outbox_events = []
        return self._reload(order)

    def create_payment_order(
        self,
        amount: Optional[Decimal] = None,
        currency: Optional[str] = None,
        order_id: Optional[UUID] = None,
    ) -> GatewayOrder:
        """Open a gateway order, for a stored order or for a raw amount.

        Raises:
            OrderNotFound: *order_id* was given but does not exist.
            PaymentGatewayError: the gateway call failed.
        """
        receipt = ""
        if order_id is not None:
            order = self.get_order(str(order_id))
            amount = order.total_amount
            currency = order.currency
            receipt = order.order_number
        if amount is None:
            raise ValueError("Either an amount or an order is required.")
        return self.gateway.create_order(
            to_minor_units(amount),
            currency or settings.DEFAULT_CURRENCY,
            receipt=receipt,
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_order(self, order_id: str) -> Order:
        """Retrieve a single order by ID.

        Raises:
            OrderNotFound: if the order does not exist.
        """
        order = self._order_repo.get_by_id(order_id)
        if not order:
            raise OrderNotFound(f"Order {order_id} not found.")
        return order

    def list_orders(self, filters: Optional[Dict[str, Any]] = None):
        """Return orders, optionally filtered."""
        return self._order_repo.list(filters)

    def next_order_number(self) -> str:
        """Preview the number the next placed order will most likely get."""
        return self._sequences.peek()

    def upcoming_deliveries(
        self, days: int = 7, today: Optional[date] = None
    ) -> deliveries.UpcomingDeliveries:
        """Open orders due within *days*, grouped by urgency.

        Delivered and cancelled orders are left out; so are orders whose
        delivery date has already passed.
        """
        today = today or timezone.localdate()
        orders = self._order_repo.list(
            {
                "status__in": sorted(set(OrderStatus.values) - TERMINAL_STATES),
                "shipping_details__has_key": "delivery_date",
            }
        )
        return deliveries.upcoming(orders, today=today, days=days)

    def delivery_calendar(
        self, year: int, month: int
    ) -> Dict[date, deliveries.CalendarDay]:
        """Every order due in *year*/*month*, keyed by delivery date."""
        orders = self._order_repo.list(
            {"shipping_details__delivery_date__startswith": f"{year:04d}-{month:02d}-"}
        )
        return deliveries.calendar(orders, year=year, month=month)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _create_with_order_number(
        self, data: Dict[str, Any], log: Any
    ) -> Tuple[Order, bool]:
        """Allocate a number and persist; retry when the number is taken.

        Returns ``(order, created)``.  ``created`` is ``False`` when a
        concurrent request with the same idempotency key committed first;
        the order returned is then that request's order.
        """
        idempotency_key = data.get("idempotency_key")
        for attempt in range(1, ORDER_NUMBER_MAX_RETRIES + 1):
            order_number = self._sequences.next_order_number()
            try:
                with transaction.atomic():
                    order = self._order_repo.create(
                        {**data, "order_number": order_number}
                    )
                    return order, True
            except IntegrityError:
                if idempotency_key:
                    existing = self._order_repo.get_by_idempotency_key(idempotency_key)
                    if existing:
                        return existing, False
                if not Order.objects.filter(order_number=order_number).exists():
                    raise
                log.warning(
                    "order.number_collision",
                    order_number=order_number,
                    attempt=attempt,
                )
        raise SequenceConflict(
            f"Failed to allocate a unique order number after "
            f"{ORDER_NUMBER_MAX_RETRIES} attempts."
        )

    @staticmethod
    def _replay(order: Order, idempotency_key: str, log: Any) -> Order:
        log.info("order.idempotency_hit", order_id=str(order.id), key=idempotency_key)
        order.outbox_events = []
        order.idempotent_replay = True
        return order

    @staticmethod
    def _build_event(
        event_class: type[OrderLifecycleEvent],
        order: Order,
        old_status: Optional[str],
    ) -> OrderLifecycleEvent:
        return event_class(
            aggregate_id=order.id,
            order_number=order.order_number,
            old_status=old_status,
            new_status=order.status,
            snapshot=OrderSnapshotDTO.from_entity(order).model_dump(mode="json"),
        )

    def _reload(self, order: Order) -> Order:
        """Re-read the order with relations, keeping its outbox rows."""
        fresh = self._order_repo.get_by_id(str(order.id)) or order
        fresh.outbox_events = getattr(order, "outbox_events", [])
        return fresh
