"""Integration tests for the delivery board and calendar endpoints."""

from __future__ import annotations

from datetime import date

import pytest
from freezegun import freeze_time

from modules.orders.dtos import PlaceOrderDTO, PlaceOrderItemDTO, ShippingDetailsDTO

pytestmark = pytest.mark.integration

UPCOMING_URL = "/api/v1/orders/upcoming-deliveries/"
CALENDAR_URL = "/api/v1/orders/delivery-calendar/"


@pytest.fixture()
def due_orders(service, customer, cake):
    def _place(due: date, slot: str):
        return service.place_order(
            PlaceOrderDTO(
                customer_id=customer.id,
                items=[PlaceOrderItemDTO(product_id=cake.id, quantity=1)],
                shipping_details=ShippingDetailsDTO(
                    full_name="Asha Verma",
                    address="12 MG Road",
                    city="Pune",
                    delivery_date=due,
                    time_slot=slot,
                ),
            )
        )

    return [
        _place(date(2026, 10, 19), "16:00-18:00"),
        _place(date(2026, 10, 20), "10:00-12:00"),
        _place(date(2026, 10, 30), "10:00-12:00"),
    ]


@freeze_time("2026-10-19 08:00:00")
class TestUpcomingDeliveries:
    def test_grouped_by_urgency(self, staff_client, due_orders):
        response = staff_client.get(UPCOMING_URL)

        assert response.status_code == 200
        data = response.json()
        assert data["date_from"] == "2026-10-19"
        assert data["date_to"] == "2026-10-26"
        assert data["stats"] == {
            "total": 2,
            "today": 1,
            "tomorrow": 1,
            "next_3_days": 0,
            "later": 0,
        }
        today = data["grouped"]["critical"][0]
        assert today["order_number"] == due_orders[0].order_number
        assert today["time_slot"] == "16:00-18:00"
        assert today["customer_name"] == "Asha Verma"
        assert today["days_until"] == 0
        assert today["item_count"] == 1

    def test_days_widens_the_window(self, staff_client, due_orders):
        response = staff_client.get(UPCOMING_URL, {"days": 14})
        assert response.json()["stats"]["total"] == 3

    def test_invalid_days_is_400(self, staff_client):
        response = staff_client.get(UPCOMING_URL, {"days": "-1"})
        assert response.status_code == 400

    def test_staff_only(self, shopper_client):
        assert shopper_client.get(UPCOMING_URL).status_code == 403


@freeze_time("2026-10-19 08:00:00")
class TestDeliveryCalendar:
    def test_defaults_to_current_month(self, staff_client, due_orders):
        response = staff_client.get(CALENDAR_URL)

        assert response.status_code == 200
        data = response.json()
        assert (data["year"], data["month"]) == (2026, 10)
        assert data["total_orders"] == 3
        assert [day["date"] for day in data["days"]] == [
            "2026-10-19",
            "2026-10-20",
            "2026-10-30",
        ]
        first = data["days"][0]
        assert first["count"] == 1
        assert first["total_amount"] == str(due_orders[0].total_amount)
        assert first["status_counts"]["placed"] == 1
        assert first["status_counts"]["cancelled"] == 0

    def test_other_month_is_empty(self, staff_client, due_orders):
        response = staff_client.get(CALENDAR_URL, {"year": 2026, "month": 11})

        assert response.json()["days"] == []
        assert response.json()["total_orders"] == 0

    def test_invalid_month_is_400(self, staff_client):
        response = staff_client.get(CALENDAR_URL, {"month": 13})
        assert response.status_code == 400

    def test_staff_only(self, shopper_client):
        assert shopper_client.get(CALENDAR_URL).status_code == 403
