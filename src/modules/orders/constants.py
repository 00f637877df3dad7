"""Order domain constants.

Fulfilment ``status`` and ``payment_status`` are two independent state
machines over the same order.  Stored values are lowercase; they are
part of the API contract.
"""

from django.db import models


class OrderStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    SHIPPED = "shipped", "Shipped"
    DELIVERED = "delivered", "Delivered"
    CANCELLED = "cancelled", "Cancelled"


class PaymentStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"
    REFUNDED = "refunded", "Refunded"


class PaymentMethod(models.TextChoices):
    CASH_ON_DELIVERY = "COD", "Cash on delivery"
    ONLINE = "ONLINE", "Online"


# Transitions a seller may perform on an order containing their items.
# Admins may perform these too, without the ownership check.
SELLER_TRANSITIONS: dict[str, set[str]] = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: set(),
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}

TERMINAL_STATES: set[str] = {OrderStatus.DELIVERED, OrderStatus.CANCELLED}

# Only an admin may mark delivered, from any non-terminal state.
ADMIN_ONLY_STATES: set[str] = {OrderStatus.DELIVERED}

BUYER_NON_CANCELLABLE: set[str] = {
    OrderStatus.SHIPPED,
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
}

# Payment states from which a verified capture may still complete the order.
PAYABLE_STATES: set[str] = {PaymentStatus.PENDING, PaymentStatus.FAILED}

# Unpaid ONLINE orders in these payment states are purged once stale.
PURGEABLE_PAYMENT_STATES: set[str] = {PaymentStatus.PENDING, PaymentStatus.FAILED}

ORDER_NUMBER_PREFIX = "ORD"
ORDER_NUMBER_DIGITS = 6
ORDER_NUMBER_MAX_RETRIES = 5

TOTAL_PRICE_TOLERANCE = "0.01"
