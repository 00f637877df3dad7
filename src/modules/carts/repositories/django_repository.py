from __future__ import annotations

from typing import Any

import structlog

from modules.carts.models import CartItem
from modules.carts.repositories.interfaces import ICartRepository

logger = structlog.get_logger(__name__)


class CartDjangoRepository(ICartRepository):
    def clear(self, user_id: Any) -> int:
        """Idempotent: clearing an empty or missing cart removes nothing."""
        removed, _ = CartItem.objects.filter(cart__user_id=user_id).delete()
        logger.info("cart.cleared", user_id=user_id, removed=removed)
        return removed
