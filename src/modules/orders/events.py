"""Domain events for the Orders bounded context."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from shared.domain.events import DomainEvent


@dataclass(frozen=True)
class OrderCreated(DomainEvent):
    """Raised when a checkout persists a new order."""

    order_number: str = ""
    payment_method: str = ""
    total_price: str = "0.00"
    user_id: Optional[int] = None


@dataclass(frozen=True)
class OrderPaid(DomainEvent):
    """Raised once per order, by whichever payment channel won the claim."""

    order_number: str = ""
    provider_payment_id: str = ""
    stock_committed: bool = False
    fulfillment_blocked: bool = False


@dataclass(frozen=True)
class OrderPaymentFailed(DomainEvent):
    order_number: str = ""
    reason: str = ""


@dataclass(frozen=True)
class OrderStatusChanged(DomainEvent):
    """Raised when the fulfilment status changes (except cancellation)."""

    old_status: str = ""
    new_status: str = ""


@dataclass(frozen=True)
class OrderCancelled(DomainEvent):
    order_number: str = ""
    reason: str = ""
    stock_restored: bool = False


@dataclass(frozen=True)
class OrderRefunded(DomainEvent):
    order_number: str = ""
