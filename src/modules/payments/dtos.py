"""Payment DTOs (Pydantic v2, immutable)."""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, List
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from modules.orders.constants import PaymentMethod
from modules.orders.dtos import CreateOrderDTO, CreateOrderItemDTO, ShippingAddressDTO


class CreatePaymentIntentDTO(BaseModel):
    """Checkout input for an ONLINE order."""

    model_config = ConfigDict(frozen=True)

    items: List[CreateOrderItemDTO]
    shipping_address: ShippingAddressDTO
    total_price: Decimal = Field(ge=0)

    def to_order_dto(self) -> CreateOrderDTO:
        return CreateOrderDTO(
            items=self.items,
            shipping_address=self.shipping_address,
            payment_method=PaymentMethod.ONLINE,
            total_price=self.total_price,
        )


class VerifyPaymentDTO(BaseModel):
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    order_id: UUID
    provider_order_id: str = Field(min_length=1)
    provider_payment_id: str = Field(min_length=1)
    signature: str = Field(min_length=1)


class PaymentIntentDTO(BaseModel):
    """Result of ``create_payment_intent``: the order plus the provider order."""

    model_config = ConfigDict(frozen=True)

    order: Any
    provider_order: Dict[str, Any]
    key_id: str
