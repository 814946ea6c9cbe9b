"""Unit tests for OrderService.

Covers:
- Placement: validation, price snapshot, number allocation, no stock moved.
- Idempotency key replay.
- Transitions: reservation on the first reserving status, release on
  cancel, no-op re-entry, rejected moves leave everything untouched.
- Reconciliation scenarios (shortfall, reserve, release).
- Payment recording.
"""

from __future__ import annotations

import hashlib
import hmac
from decimal import Decimal
from unittest import mock
from uuid import uuid4

import pytest
from django.db import IntegrityError

from modules.core.models import OutboxEvent
from modules.orders.constants import OrderStatus
from modules.orders.dtos import PlaceOrderDTO, PlaceOrderItemDTO, RecordPaymentDTO
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
from modules.orders.models import Order, OrderStatusHistory
from modules.orders.sequences import SequenceAllocator
from modules.products.models import Product

pytestmark = pytest.mark.unit


def _stock(*products: Product) -> list[int]:
    return [
        Product.objects.values_list("count_in_stock", flat=True).get(pk=p.pk)
        for p in products
    ]


def _sign(order_id: str, payment_id: str) -> str:
    return hmac.new(
        b"rzp_test_secret", f"{order_id}|{payment_id}".encode(), hashlib.sha256
    ).hexdigest()


# ===========================================================================
# place_order
# ===========================================================================


class TestPlaceOrder:
    def test_creates_placed_order(self, service, place_dto):
        order = service.place_order(place_dto)

        assert order.status == OrderStatus.PLACED
        assert order.stock_reconciled is False
        assert order.stock_reconciled_at is None
        assert order.items.count() == 2

    def test_order_number_has_bucket_sequence_and_day(self, service, place_dto):
        order = service.place_order(place_dto)
        bucket, sequence, day = order.order_number.split("-")

        assert len(bucket) == 4
        assert sequence == "001"
        assert len(day) == 2

    def test_consecutive_orders_get_distinct_numbers(self, service, place_dto, customer, cake):
        first = service.place_order(place_dto)
        second = service.place_order(
            PlaceOrderDTO(
                customer_id=customer.id,
                items=[PlaceOrderItemDTO(product_id=cake.id, quantity=1)],
            )
        )
        assert first.order_number != second.order_number
        assert second.order_number.split("-")[1] == "002"

    def test_snapshots_discounted_price(self, service, place_dto, cake):
        order = service.place_order(place_dto)
        item = order.items.get(product=cake)

        assert item.unit_price == Decimal("800.00")
        assert item.final_price == Decimal("720.00")
        assert item.subtotal == Decimal("1440.00")

    def test_total_is_sum_of_subtotals(self, service, place_dto):
        order = service.place_order(place_dto)
        # 2 * 720.00 + 1 * 300.00
        assert order.total_amount == Decimal("1740.00")

    def test_placement_does_not_touch_stock(self, service, place_dto, cake, cupcakes):
        service.place_order(place_dto)
        assert _stock(cake, cupcakes) == [10, 5]

    def test_records_placement_history(self, service, place_dto):
        order = service.place_order(place_dto)
        history = list(order.status_history.all())

        assert len(history) == 1
        assert history[0].old_status is None
        assert history[0].new_status == OrderStatus.PLACED

    def test_writes_order_placed_outbox_row(self, service, place_dto):
        order = service.place_order(place_dto)

        assert [row.event_type for row in order.outbox_events] == ["OrderPlaced"]
        row = OutboxEvent.objects.get(aggregate_id=str(order.id))
        assert row.topic == "orders"
        assert row.payload["snapshot"]["order_number"] == order.order_number

    def test_stores_shipping_and_payment_method(self, service, customer, cake):
        from modules.orders.dtos import ShippingDetailsDTO

        order = service.place_order(
            PlaceOrderDTO(
                customer_id=customer.id,
                items=[PlaceOrderItemDTO(product_id=cake.id, quantity=1)],
                shipping_details=ShippingDetailsDTO(
                    full_name="Asha Verma",
                    address="12 MG Road",
                    city="Pune",
                    delivery_date="2025-03-08",
                    time_slot="10:00-12:00",
                ),
                payment_method="cod",
            )
        )
        assert order.shipping_details["city"] == "Pune"
        assert order.shipping_details["delivery_date"] == "2025-03-08"
        assert order.payment_details == {"method": "cod"}


class TestPlaceOrderValidation:
    def test_unknown_customer(self, service, cake):
        dto = PlaceOrderDTO(
            customer_id=uuid4(),
            items=[PlaceOrderItemDTO(product_id=cake.id, quantity=1)],
        )
        with pytest.raises(CustomerNotFound):
            service.place_order(dto)

    def test_inactive_customer(self, service, inactive_customer, cake):
        dto = PlaceOrderDTO(
            customer_id=inactive_customer.id,
            items=[PlaceOrderItemDTO(product_id=cake.id, quantity=1)],
        )
        with pytest.raises(InactiveCustomer):
            service.place_order(dto)

    def test_unknown_product(self, service, customer):
        dto = PlaceOrderDTO(
            customer_id=customer.id,
            items=[PlaceOrderItemDTO(product_id=uuid4(), quantity=1)],
        )
        with pytest.raises(ProductNotFound):
            service.place_order(dto)

    def test_inactive_product(self, service, customer, retired_product):
        dto = PlaceOrderDTO(
            customer_id=customer.id,
            items=[PlaceOrderItemDTO(product_id=retired_product.id, quantity=1)],
        )
        with pytest.raises(InactiveProduct):
            service.place_order(dto)

    def test_shortfall_lists_every_product(self, service, customer, cake, cupcakes):
        dto = PlaceOrderDTO(
            customer_id=customer.id,
            items=[
                PlaceOrderItemDTO(product_id=cake.id, quantity=11),
                PlaceOrderItemDTO(product_id=cupcakes.id, quantity=6),
            ],
        )
        with pytest.raises(InsufficientStock) as exc_info:
            service.place_order(dto)

        skus = {item["sku"] for item in exc_info.value.shortfalls}
        assert skus == {"CAKE-CHOC-1KG", "CUP-VAN-6"}
        assert Order.objects.count() == 0

    def test_number_allocation_retries_on_collision(self, service, place_dto):
        taken = service.place_order(place_dto).order_number
        allocator = mock.Mock(spec=SequenceAllocator)
        allocator.next_order_number.side_effect = [taken, "2503-900-01"]
        service._sequences = allocator

        order = service.place_order(place_dto)
        assert order.order_number == "2503-900-01"

    def test_sequence_conflict_after_retry_budget(self, service, place_dto):
        taken = service.place_order(place_dto).order_number
        allocator = mock.Mock(spec=SequenceAllocator)
        allocator.next_order_number.return_value = taken
        service._sequences = allocator

        with pytest.raises(SequenceConflict):
            service.place_order(place_dto)
        assert Order.objects.count() == 1

    def test_unrelated_integrity_error_is_not_retried(self, service, place_dto):
        with mock.patch.object(
            service._order_repo, "create", side_effect=IntegrityError("boom")
        ):
            with pytest.raises(IntegrityError):
                service.place_order(place_dto)


class TestPlaceOrderIdempotency:
    def test_same_key_returns_same_order(self, service, customer, cake):
        dto = PlaceOrderDTO(
            customer_id=customer.id,
            items=[PlaceOrderItemDTO(product_id=cake.id, quantity=1)],
            idempotency_key="checkout-42",
        )
        first = service.place_order(dto)
        second = service.place_order(dto)

        assert first.id == second.id
        assert second.idempotent_replay is True
        assert second.outbox_events == []
        assert Order.objects.count() == 1
        assert OutboxEvent.objects.count() == 1

    def test_key_committed_by_a_racing_request_is_replayed(
        self, service, customer, cake
    ):
        dto = PlaceOrderDTO(
            customer_id=customer.id,
            items=[PlaceOrderItemDTO(product_id=cake.id, quantity=1)],
            idempotency_key="checkout-43",
        )
        first = service.place_order(dto)

        # The second request checks the key before the first one is visible,
        # then loses on the unique constraint.
        repo = service._order_repo
        lookup = repo.get_by_idempotency_key
        with mock.patch.object(
            repo, "get_by_idempotency_key", side_effect=[None, lookup(dto.idempotency_key)]
        ):
            second = service.place_order(dto)

        assert second.id == first.id
        assert second.idempotent_replay is True
        assert second.outbox_events == []
        assert Order.objects.count() == 1
        assert OutboxEvent.objects.count() == 1
        assert OrderStatusHistory.objects.count() == 1


# ===========================================================================
# transition
# ===========================================================================


class TestTransitionReservation:
    def test_confirm_reserves_stock(self, service, placed_order, cake, cupcakes):
        order = service.transition(placed_order.id, OrderStatus.CONFIRMED)

        assert order.status == OrderStatus.CONFIRMED
        assert order.stock_reconciled is True
        assert order.stock_reconciled_at is not None
        assert _stock(cake, cupcakes) == [8, 4]

    def test_skipping_to_production_also_reserves(self, service, placed_order, cake):
        order = service.transition(placed_order.id, OrderStatus.IN_PRODUCTION)

        assert order.stock_reconciled is True
        assert _stock(cake) == [8]

    def test_later_transitions_do_not_reserve_again(self, service, placed_order, cake):
        service.transition(placed_order.id, OrderStatus.CONFIRMED)
        service.transition(placed_order.id, OrderStatus.IN_PRODUCTION)
        service.transition(placed_order.id, OrderStatus.OUT_FOR_DELIVERY)
        order = service.transition(placed_order.id, OrderStatus.DELIVERED)

        assert order.status == OrderStatus.DELIVERED
        assert order.is_delivered is True
        assert order.delivered_at is not None
        assert _stock(cake) == [8]

    def test_transition_records_history_with_user(self, service, placed_order, staff_user):
        service.transition(
            placed_order.id, OrderStatus.CONFIRMED, notes="Baker notified", user=staff_user
        )
        entry = OrderStatusHistory.objects.get(
            order=placed_order, new_status=OrderStatus.CONFIRMED
        )

        assert entry.old_status == OrderStatus.PLACED
        assert entry.new_status == OrderStatus.CONFIRMED
        assert entry.notes == "Baker notified"
        assert entry.user == staff_user

    def test_transition_writes_event(self, service, placed_order):
        order = service.transition(placed_order.id, OrderStatus.CONFIRMED)

        assert [row.event_type for row in order.outbox_events] == ["OrderConfirmed"]
        payload = order.outbox_events[0].payload
        assert payload["old_status"] == "placed"
        assert payload["new_status"] == "confirmed"


class TestTransitionRejected:
    def test_illegal_move_changes_nothing(self, service, placed_order, cake):
        with pytest.raises(InvalidTransition):
            service.transition(placed_order.id, OrderStatus.DELIVERED)

        placed_order.refresh_from_db()
        assert placed_order.status == OrderStatus.PLACED
        assert _stock(cake) == [10]
        assert OutboxEvent.objects.count() == 1

    def test_unknown_status(self, service, placed_order):
        with pytest.raises(InvalidTransition, match="Unknown order status"):
            service.transition(placed_order.id, "shipped")

    def test_terminal_order_cannot_move(self, service, placed_order):
        service.cancel_order(placed_order.id)
        with pytest.raises(InvalidTransition):
            service.transition(placed_order.id, OrderStatus.CONFIRMED)

    def test_unknown_order(self, service):
        with pytest.raises(OrderNotFound):
            service.transition(uuid4(), OrderStatus.CONFIRMED)

    def test_reconciliation_conflict(self, service, placed_order, cake):
        with mock.patch.object(
            service._order_repo, "compare_and_set_reconciled", return_value=False
        ):
            with pytest.raises(TransitionConflict):
                service.transition(placed_order.id, OrderStatus.CONFIRMED)

        assert _stock(cake) == [10]


class TestTransitionNoop:
    def test_same_status_is_idempotent(self, service, placed_order, cake):
        service.transition(placed_order.id, OrderStatus.CONFIRMED)
        events_before = OutboxEvent.objects.count()
        history_before = OrderStatusHistory.objects.count()

        order = service.transition(placed_order.id, OrderStatus.CONFIRMED)

        assert order.status == OrderStatus.CONFIRMED
        assert order.outbox_events == []
        assert OutboxEvent.objects.count() == events_before
        assert OrderStatusHistory.objects.count() == history_before
        assert _stock(cake) == [8]

    def test_cancel_twice_releases_once(self, service, placed_order, cake):
        service.transition(placed_order.id, OrderStatus.CONFIRMED)
        service.cancel_order(placed_order.id)
        service.cancel_order(placed_order.id)

        assert _stock(cake) == [10]


class TestReconciliationScenarios:
    @pytest.fixture()
    def order(self, service, customer, cake, cupcakes):
        Product.objects.filter(pk=cake.pk).update(count_in_stock=5)
        order = service.place_order(
            PlaceOrderDTO(
                customer_id=customer.id,
                items=[
                    PlaceOrderItemDTO(product_id=cake.id, quantity=2),
                    PlaceOrderItemDTO(product_id=cupcakes.id, quantity=1),
                ],
            )
        )
        return order

    def test_shortfall_on_confirm_leaves_all_stock(self, service, order, cake, cupcakes):
        Product.objects.filter(pk=cupcakes.pk).update(count_in_stock=0)

        with pytest.raises(InsufficientStock) as exc_info:
            service.transition(order.id, OrderStatus.CONFIRMED)

        assert [item["sku"] for item in exc_info.value.shortfalls] == ["CUP-VAN-6"]
        assert _stock(cake, cupcakes) == [5, 0]
        order.refresh_from_db()
        assert order.status == OrderStatus.PLACED
        assert order.stock_reconciled is False

    def test_confirm_reserves_every_line(self, service, order, cake, cupcakes):
        Product.objects.filter(pk=cupcakes.pk).update(count_in_stock=3)

        confirmed = service.transition(order.id, OrderStatus.CONFIRMED)

        assert _stock(cake, cupcakes) == [3, 2]
        assert confirmed.stock_reconciled is True

    def test_cancel_restores_every_line(self, service, order, cake, cupcakes):
        Product.objects.filter(pk=cupcakes.pk).update(count_in_stock=3)
        service.transition(order.id, OrderStatus.CONFIRMED)

        cancelled = service.cancel_order(order.id)

        assert _stock(cake, cupcakes) == [5, 3]
        assert cancelled.status == OrderStatus.CANCELLED
        assert cancelled.stock_reconciled is False
        assert cancelled.stock_reconciled_at is None

    def test_cancel_before_confirm_moves_no_stock(self, service, order, cake, cupcakes):
        service.cancel_order(order.id)
        assert _stock(cake, cupcakes) == [5, 5]


# ===========================================================================
# Payments
# ===========================================================================


class TestRecordPayment:
    def test_verified_payment_marks_order_paid(self, service, placed_order):
        dto = RecordPaymentDTO(
            gateway_order_id="order_A1",
            gateway_payment_id="pay_B2",
            gateway_signature=_sign("order_A1", "pay_B2"),
        )
        order = service.record_payment(placed_order.id, dto)

        assert order.is_paid is True
        assert order.paid_at is not None
        assert order.payment_details["gateway_payment_id"] == "pay_B2"

    def test_bad_signature_rejected(self, service, placed_order):
        dto = RecordPaymentDTO(
            gateway_order_id="order_A1",
            gateway_payment_id="pay_B2",
            gateway_signature="forged",
        )
        with pytest.raises(PaymentVerificationFailed):
            service.record_payment(placed_order.id, dto)

        placed_order.refresh_from_db()
        assert placed_order.is_paid is False

    def test_recording_twice_keeps_first_timestamp(self, service, placed_order):
        dto = RecordPaymentDTO(
            gateway_order_id="order_A1",
            gateway_payment_id="pay_B2",
            gateway_signature=_sign("order_A1", "pay_B2"),
        )
        first = service.record_payment(placed_order.id, dto)
        second = service.record_payment(placed_order.id, dto)

        assert second.paid_at == first.paid_at

    def test_cancelled_order_cannot_be_paid(self, service, placed_order):
        service.cancel_order(placed_order.id)
        dto = RecordPaymentDTO(
            gateway_order_id="order_A1",
            gateway_payment_id="pay_B2",
            gateway_signature=_sign("order_A1", "pay_B2"),
        )
        with pytest.raises(InvalidTransition):
            service.record_payment(placed_order.id, dto)

    def test_payment_order_uses_order_total(self, service, placed_order):
        fake = mock.Mock()
        service._gateway = fake

        service.create_payment_order(order_id=placed_order.id)

        fake.create_order.assert_called_once_with(
            174000, "INR", receipt=placed_order.order_number
        )


class TestQueries:
    def test_get_order_not_found(self, service):
        with pytest.raises(OrderNotFound):
            service.get_order(str(uuid4()))

    def test_next_order_number_is_a_preview(self, service, placed_order):
        preview = service.next_order_number()
        assert preview.split("-")[1] == "002"
        assert service.next_order_number() == preview
