"""Customer domain exceptions.

Raised by the order service when the customer referenced by an order
cannot buy.  The API layer translates them into HTTP responses.
"""

from __future__ import annotations


class CustomerNotFound(Exception):
    """The requested customer does not exist or has been soft-deleted."""


class InactiveCustomer(Exception):
    """The customer is inactive and cannot place orders."""
