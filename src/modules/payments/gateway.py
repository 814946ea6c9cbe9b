"""Payment gateway port and its Razorpay-compatible adapter.

Only two operations matter to the order engine: opening a gateway order
for the amount due, and checking the signature the client hands back
after checkout.  ``get_gateway`` builds the adapter from settings; tests
swap it with ``set_gateway``.
"""

from __future__ import annotations

import hashlib
import hmac
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import httpx
import structlog
from django.conf import settings

from modules.payments.exceptions import PaymentGatewayError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class GatewayOrder:
    id: str
    amount: int
    currency: str
    receipt: str = ""
    status: str = "created"


def to_minor_units(amount: Decimal) -> int:
    """Convert a major-unit amount (rupees, dollars) into paise/cents."""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaymentGateway(ABC):
    """Abstract payment gateway interface."""

    @abstractmethod
    def create_order(
        self, amount_minor_units: int, currency: str, receipt: str = ""
    ) -> GatewayOrder:
        """Open a gateway order the client can pay against."""

    @abstractmethod
    def verify_signature(
        self, gateway_order_id: str, payment_id: str, signature: str
    ) -> bool:
        """Check that *signature* was issued by the gateway for this payment."""


class RazorpayGateway(PaymentGateway):
    """Razorpay REST adapter.

    Signatures are ``HMAC-SHA256(key_secret, "<order_id>|<payment_id>")``
    as a hex digest.
    """

    def __init__(
        self,
        key_id: str,
        key_secret: str,
        base_url: str = "https://api.razorpay.com",
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self._key_id = key_id
        self._key_secret = key_secret
        self._base_url = base_url
        self._timeout = timeout
        self._transport = transport

    def create_order(
        self, amount_minor_units: int, currency: str, receipt: str = ""
    ) -> GatewayOrder:
        if amount_minor_units < 1:
            raise PaymentGatewayError("Amount must be at least one minor unit.")

        log = logger.bind(amount=amount_minor_units, currency=currency, receipt=receipt)
        try:
            with httpx.Client(
                base_url=self._base_url,
                auth=(self._key_id, self._key_secret),
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                response = client.post(
                    "/v1/orders",
                    json={
                        "amount": amount_minor_units,
                        "currency": currency,
                        "receipt": receipt,
                    },
                )
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPStatusError as exc:
            log.error(
                "payment_gateway.order_rejected",
                status_code=exc.response.status_code,
            )
            raise PaymentGatewayError(
                f"Gateway rejected the order ({exc.response.status_code})."
            ) from exc
        except httpx.HTTPError as exc:
            log.error("payment_gateway.unreachable", error=str(exc))
            raise PaymentGatewayError("Payment gateway is unreachable.") from exc

        order = GatewayOrder(
            id=body["id"],
            amount=body.get("amount", amount_minor_units),
            currency=body.get("currency", currency),
            receipt=body.get("receipt") or receipt,
            status=body.get("status", "created"),
        )
        log.info("payment_gateway.order_created", gateway_order_id=order.id)
        return order

    def verify_signature(
        self, gateway_order_id: str, payment_id: str, signature: str
    ) -> bool:
        if not (gateway_order_id and payment_id and signature):
            return False
        expected = hmac.new(
            self._key_secret.encode(),
            f"{gateway_order_id}|{payment_id}".encode(),
            hashlib.sha256,
        ).hexdigest()
        verified = hmac.compare_digest(expected, signature)
        logger.info(
            "payment_gateway.signature_checked",
            gateway_order_id=gateway_order_id,
            verified=verified,
        )
        return verified


_current_gateway: Optional[PaymentGateway] = None


def get_gateway() -> PaymentGateway:
    """Return the active gateway, building the Razorpay adapter on first use."""
    global _current_gateway
    if _current_gateway is None:
        _current_gateway = RazorpayGateway(
            key_id=settings.PAYMENT_GATEWAY_KEY_ID,
            key_secret=settings.PAYMENT_GATEWAY_KEY_SECRET,
            base_url=settings.PAYMENT_GATEWAY_URL,
            timeout=settings.PAYMENT_GATEWAY_TIMEOUT,
        )
    return _current_gateway


def set_gateway(gateway: Optional[PaymentGateway]) -> None:
    """Override the active gateway; ``None`` resets to the configured one."""
    global _current_gateway
    _current_gateway = gateway
