"""Payment gateway exceptions."""

from __future__ import annotations


class PaymentGatewayError(Exception):
    """The gateway could not be reached or rejected the request."""
