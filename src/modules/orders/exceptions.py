"""Order domain exceptions.

Raised by the Service Layer when business rules are violated.
The API layer (Views) catches these and translates them into
HTTP responses through ``modules.core.exceptions.error_response``.
"""

from __future__ import annotations

from rest_framework import status

from modules.core.exceptions import DomainError


class OrderNotFound(DomainError):
    """The requested order does not exist."""

    status_code = status.HTTP_404_NOT_FOUND
    default_code = "order_not_found"
    default_detail = "Order not found."


class InvalidTransition(DomainError):
    """A status change the state machine does not allow."""

    default_code = "invalid_transition"
    default_detail = "Invalid status transition."


class DuplicateOrderNumber(DomainError):
    """Order number collided on every retry."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_code = "duplicate_order_number"
    default_detail = "Could not allocate an order number, please retry."
