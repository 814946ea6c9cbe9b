"""Integration tests for the checkout endpoints under /api/v1/payments/."""

from __future__ import annotations

import hashlib
import hmac
import json
from uuid import uuid4

import httpx
import pytest

from modules.payments.gateway import RazorpayGateway, set_gateway

pytestmark = pytest.mark.integration

CREATE_URL = "/api/v1/payments/orders/"
VERIFY_URL = "/api/v1/payments/verify/"


@pytest.fixture()
def gateway_requests():
    """Install a gateway whose HTTP calls are answered in-process."""
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        seen.append(body)
        return httpx.Response(
            200,
            json={
                "id": "order_Px9",
                "amount": body["amount"],
                "currency": body["currency"],
                "receipt": body["receipt"],
                "status": "created",
            },
        )

    set_gateway(
        RazorpayGateway(
            key_id="rzp_test_key",
            key_secret="rzp_test_secret",
            transport=httpx.MockTransport(handler),
        )
    )
    return seen


@pytest.fixture()
def gateway_down():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    set_gateway(
        RazorpayGateway(
            key_id="rzp_test_key",
            key_secret="rzp_test_secret",
            transport=httpx.MockTransport(handler),
        )
    )


class TestCreatePaymentOrder:
    def test_for_stored_order(self, shopper_client, placed_order, gateway_requests):
        response = shopper_client.post(
            CREATE_URL, {"order_id": str(placed_order.id)}, format="json"
        )

        assert response.status_code == 201
        assert response.json() == {
            "id": "order_Px9",
            "amount": 174000,
            "currency": "INR",
            "receipt": placed_order.order_number,
            "status": "created",
        }

    def test_for_raw_amount_uses_default_currency(self, shopper_client, gateway_requests):
        response = shopper_client.post(CREATE_URL, {"amount": "499.50"}, format="json")

        assert response.status_code == 201
        assert gateway_requests == [{"amount": 49950, "currency": "INR", "receipt": ""}]

    def test_explicit_currency(self, shopper_client, gateway_requests):
        shopper_client.post(
            CREATE_URL, {"amount": "20.00", "currency": "USD"}, format="json"
        )
        assert gateway_requests[0]["currency"] == "USD"

    def test_requires_order_or_amount(self, shopper_client, gateway_requests):
        response = shopper_client.post(CREATE_URL, {}, format="json")

        assert response.status_code == 400
        assert gateway_requests == []

    def test_unknown_order_is_404(self, shopper_client, gateway_requests):
        response = shopper_client.post(
            CREATE_URL, {"order_id": str(uuid4())}, format="json"
        )
        assert response.status_code == 404

    def test_another_customers_order_is_404(
        self, api_client, django_user_model, placed_order, gateway_requests
    ):
        stranger = django_user_model.objects.create_user(
            username="stranger", password="testpass123"
        )
        api_client.force_authenticate(user=stranger)

        response = api_client.post(
            CREATE_URL, {"order_id": str(placed_order.id)}, format="json"
        )

        assert response.status_code == 404
        assert response.json() == {"detail": "Order not found."}
        assert gateway_requests == []

    def test_staff_may_open_checkout_for_any_order(
        self, staff_client, placed_order, gateway_requests
    ):
        response = staff_client.post(
            CREATE_URL, {"order_id": str(placed_order.id)}, format="json"
        )

        assert response.status_code == 201
        assert gateway_requests[0]["receipt"] == placed_order.order_number

    def test_gateway_outage_is_502(self, shopper_client, gateway_down):
        response = shopper_client.post(CREATE_URL, {"amount": "100.00"}, format="json")

        assert response.status_code == 502
        assert response.json()["detail"] == "Payment gateway is unreachable."

    def test_requires_authentication(self, api_client):
        response = api_client.post(CREATE_URL, {"amount": "100.00"}, format="json")
        assert response.status_code == 401


class TestVerifyPayment:
    def _signature(self, order_id: str, payment_id: str) -> str:
        return hmac.new(
            b"rzp_test_secret", f"{order_id}|{payment_id}".encode(), hashlib.sha256
        ).hexdigest()

    def test_valid_signature(self, shopper_client):
        response = shopper_client.post(
            VERIFY_URL,
            {
                "gateway_order_id": "order_Px9",
                "gateway_payment_id": "pay_Px9",
                "gateway_signature": self._signature("order_Px9", "pay_Px9"),
            },
            format="json",
        )

        assert response.status_code == 200
        assert response.json() == {"verified": True}

    def test_tampered_signature(self, shopper_client):
        response = shopper_client.post(
            VERIFY_URL,
            {
                "gateway_order_id": "order_Px9",
                "gateway_payment_id": "pay_OTHER",
                "gateway_signature": self._signature("order_Px9", "pay_Px9"),
            },
            format="json",
        )

        assert response.status_code == 400
        assert response.json()["verified"] is False
