"""Catalog (inventory) domain exceptions."""

from __future__ import annotations

from rest_framework import status

from modules.core.exceptions import DomainError


class ItemUnavailable(DomainError):
    """A requested gem is missing, not for sale, or short of stock at checkout."""

    status_code = status.HTTP_409_CONFLICT
    default_code = "item_unavailable"
    default_detail = "Item is not available or has insufficient stock."


class InsufficientStock(DomainError):
    """The conditional stock debit found fewer units than requested."""

    status_code = status.HTTP_409_CONFLICT
    default_code = "insufficient_stock"
    default_detail = "Insufficient stock."

    def __init__(self, gem_id=None, requested: int = 0, detail=None) -> None:
        self.gem_id = gem_id
        self.requested = requested
        super().__init__(
            detail or f"Insufficient stock for gem {gem_id}: requested {requested}.",
            attr="items",
        )
