"""Order repository interface.

Extends ``IRepository[Order]`` with what the Order aggregate needs:
atomic creation with a sequential order number, status history, and
the compare-and-set payment updates that make the paid effect
exactly-once.

The Service Layer depends exclusively on this contract (DIP).
"""

from __future__ import annotations

from abc import abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, Iterable, Optional

from modules.core.repositories.interfaces import IRepository

if TYPE_CHECKING:
    from modules.orders.models import Order, OrderStatusHistory


class IOrderRepository(IRepository["Order"]):
    """Repository contract for the Order aggregate root."""

    @abstractmethod
    def create_pending(self, data: Dict[str, Any]) -> Order:
        """Assign the next order number and insert order + items atomically.

        Raises:
            DuplicateOrderNumber: every retry collided.
        """

    @abstractmethod
    def get_for_update(self, id: Any) -> Optional[Order]:
        """Retrieve an order with a row-level lock, items prefetched."""

    @abstractmethod
    def get_for_seller(self, id: Any, seller_id: Any) -> Optional[Order]:
        """Retrieve an order with only *seller_id*'s lines as ``seller_items``."""

    @abstractmethod
    def add_history(
        self,
        order: Order,
        *,
        old_status: Optional[str],
        old_payment_status: Optional[str] = None,
        notes: str = "",
        user_id: Any = None,
    ) -> OrderStatusHistory:
        """Record the order's current state against the given old state."""

    @abstractmethod
    def update_status(self, order: Order, new_status: str, **fields: Any) -> Order:
        """Set ``status`` (and any extra fields) on a locked order."""

    @abstractmethod
    def update_payment_fields(self, order_id: Any, **fields: Any) -> int:
        """Write provider linkage fields without touching the state machine."""

    @abstractmethod
    def claim_payment_completion(
        self, order_id: Any, provider_payment_id: str, signature: str = ""
    ) -> bool:
        """PENDING/FAILED -> COMPLETED in one statement; ``True`` if this caller won."""

    @abstractmethod
    def mark_payment_failed(self, order_id: Any) -> bool:
        """PENDING -> FAILED in one statement; never overwrites COMPLETED."""

    @abstractmethod
    def mark_payment_refunded(self, order_id: Any) -> bool:
        """COMPLETED -> REFUNDED in one statement."""

    @abstractmethod
    def find_by_provider_order_id(self, provider_order_id: str) -> Optional[Order]:
        """Resolve an order from the provider's order id."""

    @abstractmethod
    def purge_stale_online(
        self, older_than: Optional[datetime], user_id: Any = None
    ) -> int:
        """Delete unpaid, uncommitted ONLINE orders created before *older_than*.

        ``None`` means no age limit.  Returns the number of orders deleted.
        """

    @abstractmethod
    def list_for_seller(
        self, seller_id: Any, filters: Optional[Dict[str, Any]] = None
    ) -> Iterable[Order]:
        """Orders containing the seller's items, with only those items attached."""

    @abstractmethod
    def seller_totals(self, seller_id: Any) -> Iterable[Dict[str, Any]]:
        """Per-status order counts and revenue of the seller's line items."""
