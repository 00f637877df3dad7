"""Order DTOs for the Service Layer.

Framework-agnostic data transfer objects using Pydantic v2.
These are the contracts between the API layer (DRF Serializers)
and the Service layer.  DTOs are immutable (``frozen=True``).

- ``ShippingAddressDTO``: structured postal address, all parts but
  ``address_line2`` required and non-blank.
- ``CreateOrderItemDTO``: one requested ``(gem_id, quantity)``.
- ``CreateOrderDTO``: checkout input with the client-declared total.
- ``UpdateOrderStatusDTO``: seller/admin status change.
- ``OrderSummaryDTO``: the compact order shape returned by checkout
  and payment endpoints.
- ``SellerStatsDTO``: per-seller counts and revenue.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from modules.orders.constants import OrderStatus, PaymentMethod

if TYPE_CHECKING:
    from modules.orders.models import Order


# ---------------------------------------------------------------------------
# Input DTOs
# ---------------------------------------------------------------------------


class ShippingAddressDTO(BaseModel):
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=200)
    phone: str = Field(min_length=1, max_length=20)
    address_line1: str = Field(min_length=1, max_length=255)
    address_line2: str = Field(default="", max_length=255)
    city: str = Field(min_length=1, max_length=100)
    state: str = Field(min_length=1, max_length=100)
    postal_code: str = Field(min_length=1, max_length=20)
    country: str = Field(min_length=1, max_length=100)


class CreateOrderItemDTO(BaseModel):
    """A requested line.  The price is never taken from the client."""

    model_config = ConfigDict(frozen=True)

    gem_id: UUID
    quantity: int

    @field_validator("quantity")
    @classmethod
    def quantity_must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Quantity must be at least 1.")
        return v


class CreateOrderDTO(BaseModel):
    """Immutable DTO for checkout requests.

    Validates:
    - ``items`` must contain at least one item, without repeated gems.
    - ``total_price`` is non-negative; it is compared against the
      server-side total by the service.
    """

    model_config = ConfigDict(frozen=True)

    items: List[CreateOrderItemDTO]
    shipping_address: ShippingAddressDTO
    payment_method: PaymentMethod = PaymentMethod.CASH_ON_DELIVERY
    total_price: Decimal = Field(ge=0)

    @field_validator("items")
    @classmethod
    def items_must_not_be_empty(
        cls, v: List[CreateOrderItemDTO]
    ) -> List[CreateOrderItemDTO]:
        if not v:
            raise ValueError("Order must have at least one item.")
        return v

    @model_validator(mode="after")
    def no_duplicate_gems(self):
        gem_ids = [item.gem_id for item in self.items]
        if len(gem_ids) != len(set(gem_ids)):
            raise ValueError("Duplicate gem IDs are not allowed in the same order.")
        return self


class UpdateOrderStatusDTO(BaseModel):
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    status: OrderStatus
    tracking_number: Optional[str] = None
    reason: Optional[str] = None


# ---------------------------------------------------------------------------
# Output DTOs
# ---------------------------------------------------------------------------


class OrderSummaryDTO(BaseModel):
    """Immutable DTO for the order summary returned to buyers."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    order_number: str
    total_price: Decimal
    total_tax: Decimal
    status: str
    payment_status: str
    payment_method: str
    created_at: datetime

    @classmethod
    def from_entity(cls, order: Order) -> OrderSummaryDTO:
        return cls(
            id=order.id,
            order_number=order.order_number,
            total_price=order.total_price,
            total_tax=order.total_tax,
            status=order.status,
            payment_status=order.payment_status,
            payment_method=order.payment_method,
            created_at=order.created_at,
        )


class SellerStatsDTO(BaseModel):
    """Counts are of orders containing the seller's items; revenue only
    sums the seller's own line totals and skips cancelled orders."""

    model_config = ConfigDict(frozen=True)

    total_orders: int = 0
    pending_orders: int = 0
    processing_orders: int = 0
    shipped_orders: int = 0
    delivered_orders: int = 0
    cancelled_orders: int = 0
    total_revenue: Decimal = Decimal("0.00")
    pending_revenue: Decimal = Decimal("0.00")
    completed_revenue: Decimal = Decimal("0.00")
