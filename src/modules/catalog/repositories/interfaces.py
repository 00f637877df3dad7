"""Inventory ledger interface.

The order lifecycle controller only ever touches gem stock through
these three operations.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from modules.catalog.models import Gem


class IGemLedger(ABC):
    @abstractmethod
    def get_item(self, gem_id: Any) -> Optional[Gem]:
        """Current price, stock, seller and tax category of a gem."""

    @abstractmethod
    def reserve_and_debit(self, gem_id: Any, quantity: int) -> None:
        """Atomically take *quantity* units out of stock into sales.

        Raises:
            InsufficientStock: fewer than *quantity* units were left.
        """

    @abstractmethod
    def restore(self, gem_id: Any, quantity: int) -> None:
        """Put *quantity* units back into stock; never fails."""
