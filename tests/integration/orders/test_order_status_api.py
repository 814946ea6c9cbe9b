"""Integration tests for status transitions and cancellation over HTTP.

Covers:
- Staff-only access.
- Stock reservation on confirm and release on cancel.
- 400 for illegal or unknown statuses, 409 for reconciliation conflicts.
- Same-status requests return 200 without new history or events.
"""

from __future__ import annotations

from unittest import mock
from uuid import uuid4

import pytest

from modules.core.models import OutboxEvent
from modules.orders.models import OrderStatusHistory

pytestmark = pytest.mark.integration


def _status_url(order) -> str:
    return f"/api/v1/orders/{order.id}/status/"


def _cancel_url(order) -> str:
    return f"/api/v1/orders/{order.id}/cancel/"


class TestUpdateStatus:
    def test_confirm_reserves_stock(self, staff_client, placed_order, cake, cupcakes):
        response = staff_client.patch(
            _status_url(placed_order), {"status": "confirmed"}, format="json"
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "confirmed"
        assert data["stock_reconciled"] is True
        assert data["notifications"][0]["event_type"] == "OrderConfirmed"
        cake.refresh_from_db()
        cupcakes.refresh_from_db()
        assert (cake.count_in_stock, cupcakes.count_in_stock) == (8, 4)

    def test_status_is_case_insensitive(self, staff_client, placed_order):
        response = staff_client.put(
            _status_url(placed_order), {"status": " In_Production "}, format="json"
        )
        assert response.status_code == 200
        assert response.json()["status"] == "in_production"

    def test_history_records_staff_user(self, staff_client, staff_user, placed_order):
        staff_client.patch(
            _status_url(placed_order),
            {"status": "confirmed", "notes": "Called the customer"},
            format="json",
        )
        entry = OrderStatusHistory.objects.get(order=placed_order, new_status="confirmed")
        assert entry.user == staff_user
        assert entry.notes == "Called the customer"

    def test_full_lifecycle(self, staff_client, placed_order, cake):
        for target in ("confirmed", "in_production", "out_for_delivery", "delivered"):
            response = staff_client.patch(
                _status_url(placed_order), {"status": target}, format="json"
            )
            assert response.status_code == 200, response.json()

        data = response.json()
        assert data["is_delivered"] is True
        assert data["delivered_at"] is not None
        cake.refresh_from_db()
        assert cake.count_in_stock == 8

    def test_shopper_cannot_change_status(self, shopper_client, placed_order):
        response = shopper_client.patch(
            _status_url(placed_order), {"status": "confirmed"}, format="json"
        )
        assert response.status_code == 403


class TestUpdateStatusRejected:
    def test_illegal_transition_is_400(self, staff_client, placed_order, cake):
        response = staff_client.patch(
            _status_url(placed_order), {"status": "delivered"}, format="json"
        )

        assert response.status_code == 400
        assert "placed" in response.json()["detail"]
        cake.refresh_from_db()
        assert cake.count_in_stock == 10

    def test_unknown_status_is_400(self, staff_client, placed_order):
        response = staff_client.patch(
            _status_url(placed_order), {"status": "shipped"}, format="json"
        )
        assert response.status_code == 400

    def test_missing_status_is_400(self, staff_client, placed_order):
        response = staff_client.patch(_status_url(placed_order), {}, format="json")
        assert response.status_code == 400

    def test_shortfall_on_confirm_is_400(self, staff_client, placed_order, cupcakes):
        cupcakes.count_in_stock = 0
        cupcakes.save(update_fields=["count_in_stock"])

        response = staff_client.patch(
            _status_url(placed_order), {"status": "confirmed"}, format="json"
        )

        assert response.status_code == 400
        assert response.json()["products"][0]["sku"] == "CUP-VAN-6"

    def test_reconciliation_conflict_is_409(self, staff_client, placed_order):
        with mock.patch(
            "modules.orders.repositories.django_repository."
            "OrderDjangoRepository.compare_and_set_reconciled",
            return_value=False,
        ):
            response = staff_client.patch(
                _status_url(placed_order), {"status": "confirmed"}, format="json"
            )
        assert response.status_code == 409

    def test_unknown_order_is_404(self, staff_client):
        response = staff_client.patch(
            f"/api/v1/orders/{uuid4()}/status/", {"status": "confirmed"}, format="json"
        )
        assert response.status_code == 404

    def test_malformed_id_is_400(self, staff_client):
        response = staff_client.patch(
            "/api/v1/orders/not-a-uuid/status/", {"status": "confirmed"}, format="json"
        )
        assert response.status_code == 400


class TestSameStatus:
    def test_reentry_is_a_quiet_200(self, staff_client, placed_order, cake):
        staff_client.patch(_status_url(placed_order), {"status": "confirmed"}, format="json")
        events = OutboxEvent.objects.count()
        history = OrderStatusHistory.objects.count()

        response = staff_client.patch(
            _status_url(placed_order), {"status": "confirmed"}, format="json"
        )

        assert response.status_code == 200
        assert response.json()["notifications"] == []
        assert OutboxEvent.objects.count() == events
        assert OrderStatusHistory.objects.count() == history
        cake.refresh_from_db()
        assert cake.count_in_stock == 8


class TestCancel:
    def test_cancel_releases_reserved_stock(self, staff_client, placed_order, cake):
        staff_client.patch(_status_url(placed_order), {"status": "confirmed"}, format="json")

        response = staff_client.post(
            _cancel_url(placed_order), {"notes": "Customer called"}, format="json"
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "cancelled"
        assert data["stock_reconciled"] is False
        cake.refresh_from_db()
        assert cake.count_in_stock == 10

    def test_cancel_delivered_order_is_400(self, staff_client, service, placed_order):
        for target in ("in_production", "delivered"):
            service.transition(placed_order.id, target)

        response = staff_client.post(_cancel_url(placed_order), {}, format="json")
        assert response.status_code == 400

    def test_shopper_cannot_cancel(self, shopper_client, placed_order):
        response = shopper_client.post(_cancel_url(placed_order), {}, format="json")
        assert response.status_code == 403
