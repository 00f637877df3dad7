"""Order service layer (Use Cases).

Orchestrates checkout, fulfilment transitions, cancellation and the
payment effects shared by the client callback and the provider webhook.
Every write runs in a transaction; the service defines the unit-of-work
boundary.

Business rules enforced:
- Checkout re-prices every line from the catalog and rejects the whole
  order if any gem is missing, unpriced or short of stock.
- COD orders debit stock at checkout; ONLINE orders debit stock only
  when the payment is confirmed.
- The paid effect is applied once per order: a single conditional
  UPDATE decides which caller wins, only the winner debits stock.
- Cancellation restores exactly what was debited (``stock_committed``).
- Status history is recorded on every transition.
"""

from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, Optional, Tuple

import structlog
from django.db import transaction
from django.utils import timezone

from modules.catalog.exceptions import InsufficientStock, ItemUnavailable
from modules.core.exceptions import Forbidden, ValidationError
from modules.orders.constants import (
    ADMIN_ONLY_STATES,
    TOTAL_PRICE_TOLERANCE,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from modules.orders.dtos import SellerStatsDTO
from modules.orders.events import (
    OrderCancelled,
    OrderCreated,
    OrderPaid,
    OrderPaymentFailed,
    OrderRefunded,
    OrderStatusChanged,
)
from modules.orders.exceptions import InvalidTransition, OrderNotFound
from modules.tax.engine import TaxableItem, rate_for, summarize, tax_inclusive_split

if TYPE_CHECKING:
    from modules.carts.repositories.interfaces import ICartRepository
    from modules.catalog.repositories.interfaces import IGemLedger
    from modules.core.identity import Actor
    from modules.orders.dtos import CreateOrderDTO
    from modules.orders.models import Order
    from modules.orders.repositories.interfaces import IOrderRepository

logger = structlog.get_logger(__name__)


class OrderService:
    """Application service for Order use-cases.

    Receives repositories via constructor injection (DIP).
    """

    def __init__(
        self,
        order_repository: IOrderRepository,
        gem_ledger: IGemLedger,
        cart_repository: ICartRepository,
    ) -> None:
        self._order_repo = order_repository
        self._ledger = gem_ledger
        self._cart_repo = cart_repository

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    @transaction.atomic
    def create_order(self, dto: CreateOrderDTO, actor: Actor) -> Order:
        """Create a PENDING order from the requested gems.

        Steps:
        1. Look up every gem in request order and snapshot its price,
           seller and GST split.
        2. Check the declared total against the recomputed one.
        3. Persist order + items with the next order number.
        4. COD only: debit stock for every line and clear the cart.
        5. Record the initial history row and ``OrderCreated``.

        Raises:
            Forbidden: the actor is not a buyer.
            ItemUnavailable: a gem is missing, not for sale or short of stock.
            ValidationError: declared total does not match.
            InsufficientStock: a COD debit lost the race (nothing persists).
        """
        if not actor.is_buyer:
            raise Forbidden("Only buyers can place orders.")

        log = logger.bind(user_id=actor.user_id, payment_method=dto.payment_method)
        log.info("order.creation_started", item_count=len(dto.items))

        lines = []
        for item_dto in dto.items:
            gem = self._ledger.get_item(item_dto.gem_id)
            if gem is None:
                raise ItemUnavailable(f"Gem {item_dto.gem_id} not found.", attr="items")
            if not gem.is_purchasable or gem.stock < item_dto.quantity:
                log.info(
                    "order.item_unavailable",
                    gem_id=str(gem.id),
                    requested=item_dto.quantity,
                    stock=gem.stock,
                )
                raise ItemUnavailable(
                    f"{gem.name} is not available or has insufficient stock.",
                    attr="items",
                )

            split = tax_inclusive_split(gem.price, rate_for(gem.gst_category))
            lines.append(
                {
                    "gem_id": gem.id,
                    "gem_name": gem.name,
                    "seller_id": gem.seller_id,
                    "quantity": item_dto.quantity,
                    "unit_price": gem.price,
                    "tax_category": gem.gst_category,
                    "tax_rate": split.tax_rate,
                    "unit_price_before_tax": split.price_before_tax,
                    "unit_tax_amount": split.tax_amount,
                }
            )

        summary = summarize(
            TaxableItem(line["unit_price"], line["quantity"], line["tax_category"])
            for line in lines
        )
        self._check_declared_total(dto.total_price, summary.total_with_tax)

        order = self._order_repo.create_pending(
            {
                "user_id": actor.user_id,
                "payment_method": dto.payment_method,
                "shipping_address": dto.shipping_address.model_dump(),
                "total_price": summary.total_with_tax,
                "total_tax": summary.total_tax,
                "tax_breakdown": [entry.as_dict() for entry in summary.breakdown],
                "items": lines,
            }
        )
        log = log.bind(order_id=str(order.id), order_number=order.order_number)

        if dto.payment_method == PaymentMethod.CASH_ON_DELIVERY:
            for line in sorted(lines, key=lambda line: str(line["gem_id"])):
                self._ledger.reserve_and_debit(line["gem_id"], line["quantity"])
            order.stock_committed = True
            self._cart_repo.clear(actor.user_id)

        order.add_domain_event(
            OrderCreated(
                aggregate_id=order.id,
                order_number=order.order_number,
                payment_method=order.payment_method,
                total_price=str(order.total_price),
                user_id=actor.user_id,
            )
        )
        self._order_repo.save(order)
        self._order_repo.add_history(
            order, old_status=None, notes="Order created", user_id=actor.user_id
        )

        log.info("order.created", total_price=str(order.total_price))
        return self._order_repo.get_by_id(order.id) or order

    @transaction.atomic
    def update_status(
        self,
        order_id: Any,
        new_status: str,
        actor: Actor,
        tracking_number: Optional[str] = None,
        reason: Optional[str] = None,
    ) -> Order:
        """Move an order along the fulfilment state machine.

        Checks run in this order, all before any change is made:
        ownership, admin-only target, terminal source, transition table,
        tracking number.  Cancelling goes through the same effect as the
        buyer cancellation (stock restored if it was committed).

        Raises:
            OrderNotFound: order does not exist.
            Forbidden: not a seller of the order, or a non-admin delivering.
            InvalidTransition: transition is not allowed.
            ValidationError: shipping without a tracking number.
        """
        if actor.is_buyer:
            raise Forbidden("Only sellers or admins can update order status.")

        order = self._order_repo.get_for_update(order_id)
        if not order:
            raise OrderNotFound(f"Order {order_id} not found.")

        log = logger.bind(
            order_id=str(order.id),
            current_status=order.status,
            new_status=new_status,
            actor_id=actor.user_id,
        )

        if not actor.is_admin and not order.has_items_from(actor.user_id):
            raise Forbidden("This order does not contain your items.")
        if new_status in ADMIN_ONLY_STATES and not actor.is_admin:
            raise Forbidden("Only an admin can mark orders as delivered.")
        if order.is_terminal:
            raise InvalidTransition(f"Cannot update order that is already {order.status}.")
        if not order.can_transition_to(new_status, as_admin=actor.is_admin):
            log.warning("order.invalid_transition")
            raise InvalidTransition(
                f"Cannot transition from '{order.status}' to '{new_status}'."
            )
        if new_status != OrderStatus.CANCELLED and self._awaiting_payment(order):
            log.warning("order.transition_awaiting_payment")
            raise InvalidTransition("Order cannot progress until its payment completes.")
        if new_status == OrderStatus.SHIPPED and not tracking_number:
            raise ValidationError(
                "Tracking number is required for shipped status.",
                attr="tracking_number",
            )

        if new_status == OrderStatus.CANCELLED:
            self._cancel(order, actor, reason)
            return self._order_repo.get_by_id(order.id)

        old_status, old_payment_status = order.status, order.payment_status
        fields: Dict[str, Any] = {}
        if new_status == OrderStatus.SHIPPED:
            fields["tracking_number"] = tracking_number
        if (
            new_status == OrderStatus.DELIVERED
            and order.payment_method == PaymentMethod.CASH_ON_DELIVERY
            and order.payment_status == PaymentStatus.PENDING
        ):
            fields["payment_status"] = PaymentStatus.COMPLETED
            fields["paid_at"] = timezone.now()

        order.add_domain_event(
            OrderStatusChanged(
                aggregate_id=order.id, old_status=old_status, new_status=new_status
            )
        )
        self._order_repo.update_status(order, new_status, **fields)
        self._order_repo.add_history(
            order,
            old_status=old_status,
            old_payment_status=old_payment_status,
            notes=reason or "",
            user_id=actor.user_id,
        )

        log.info("order.status_updated")
        return self._order_repo.get_by_id(order.id)

    @transaction.atomic
    def cancel_order(
        self, order_id: Any, actor: Actor, reason: Optional[str] = None
    ) -> Order:
        """Buyer cancellation.

        The order row is locked first, so a cancellation racing a payment
        confirmation or another cancellation is applied once.

        Raises:
            OrderNotFound: order does not exist.
            Forbidden: the actor does not own the order.
            InvalidTransition: order is shipped, delivered or cancelled.
        """
        order = self._order_repo.get_for_update(order_id)
        if not order:
            raise OrderNotFound(f"Order {order_id} not found.")
        if order.user_id != actor.user_id:
            raise Forbidden("Not authorized to cancel this order.")
        if order.status == OrderStatus.CANCELLED:
            raise InvalidTransition("Order is already cancelled.")
        if not order.buyer_can_cancel:
            raise InvalidTransition(
                "Cannot cancel order that has been shipped or delivered."
            )

        self._cancel(order, actor, reason)
        return self._order_repo.get_by_id(order.id)

    @transaction.atomic
    def mark_paid(
        self, order_id: Any, provider_payment_id: str, signature: str = ""
    ) -> Tuple[Order, bool]:
        """Apply the paid effect exactly once.

        Returns ``(order, applied)``; ``applied`` is ``False`` for every
        caller except the one whose conditional UPDATE claimed the order.
        The winner debits stock for all items, moves a pending order to
        processing, clears the buyer's cart and records history.  When the
        debit loses the stock race, or the order was cancelled meanwhile,
        the payment stays completed and the order is flagged
        ``fulfillment_blocked``.

        Raises:
            OrderNotFound: order does not exist.
        """
        current = self._order_repo.get_by_id(order_id)
        if not current:
            raise OrderNotFound(f"Order {order_id} not found.")

        log = logger.bind(
            order_id=str(current.id),
            order_number=current.order_number,
            provider_payment_id=provider_payment_id,
        )

        if current.payment_status == PaymentStatus.COMPLETED:
            log.info("order.payment_already_completed")
            return current, False
        if not self._order_repo.claim_payment_completion(
            current.id, provider_payment_id, signature
        ):
            log.info("order.payment_claim_lost", payment_status=current.payment_status)
            return self._order_repo.get_by_id(current.id), False

        order = self._order_repo.get_for_update(current.id)
        old_status = order.status
        blocked = False
        fields: Dict[str, Any] = {}

        if order.status == OrderStatus.CANCELLED:
            blocked = True
            log.error("order.paid_after_cancellation")
        elif not order.stock_committed:
            items = sorted(order.items.all(), key=lambda i: str(i.gem_id))
            try:
                with transaction.atomic():
                    for item in items:
                        self._ledger.reserve_and_debit(item.gem_id, item.quantity)
            except InsufficientStock as exc:
                blocked = True
                log.error(
                    "order.fulfillment_blocked",
                    gem_id=str(exc.gem_id),
                    requested=exc.requested,
                )
            else:
                fields["stock_committed"] = True

        if blocked:
            fields["fulfillment_blocked"] = True
        new_status = order.status
        if not blocked and order.status == OrderStatus.PENDING:
            new_status = OrderStatus.PROCESSING

        order.add_domain_event(
            OrderPaid(
                aggregate_id=order.id,
                order_number=order.order_number,
                provider_payment_id=provider_payment_id,
                stock_committed=fields.get("stock_committed", order.stock_committed),
                fulfillment_blocked=blocked,
            )
        )
        self._order_repo.update_status(order, new_status, **fields)
        self._cart_repo.clear(order.user_id)
        self._order_repo.add_history(
            order,
            old_status=old_status,
            old_payment_status=current.payment_status,
            notes=f"Payment {provider_payment_id} captured",
        )

        log.info("order.paid", fulfillment_blocked=blocked)
        return self._order_repo.get_by_id(order.id), True

    @transaction.atomic
    def mark_payment_failed(self, order_id: Any, reason: str = "") -> Tuple[Order, bool]:
        """PENDING -> FAILED; a completed or refunded payment is left alone."""
        current = self._order_repo.get_by_id(order_id)
        if not current:
            raise OrderNotFound(f"Order {order_id} not found.")

        if not self._order_repo.mark_payment_failed(current.id):
            logger.info(
                "order.payment_failure_ignored",
                order_id=str(current.id),
                payment_status=current.payment_status,
            )
            return current, False

        order = self._order_repo.get_for_update(current.id)
        order.add_domain_event(
            OrderPaymentFailed(
                aggregate_id=order.id, order_number=order.order_number, reason=reason
            )
        )
        self._order_repo.save(order)
        self._order_repo.add_history(
            order,
            old_status=order.status,
            old_payment_status=PaymentStatus.PENDING,
            notes=reason,
        )
        logger.warning("order.payment_failed", order_id=str(order.id), reason=reason)
        return order, True

    @transaction.atomic
    def mark_refunded(self, order_id: Any) -> Tuple[Order, bool]:
        """COMPLETED -> REFUNDED.  Stock is not touched here."""
        current = self._order_repo.get_by_id(order_id)
        if not current:
            raise OrderNotFound(f"Order {order_id} not found.")

        if not self._order_repo.mark_payment_refunded(current.id):
            logger.info(
                "order.refund_ignored",
                order_id=str(current.id),
                payment_status=current.payment_status,
            )
            return current, False

        order = self._order_repo.get_for_update(current.id)
        order.add_domain_event(
            OrderRefunded(aggregate_id=order.id, order_number=order.order_number)
        )
        self._order_repo.save(order)
        self._order_repo.add_history(
            order,
            old_status=order.status,
            old_payment_status=PaymentStatus.COMPLETED,
            notes="Payment refunded",
        )
        logger.info("order.refunded", order_id=str(order.id))
        return order, True

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_order(self, order_id: Any, actor: Actor) -> Order:
        """Retrieve an order visible to *actor*.

        A seller who is not the buyer gets the order with ``seller_items``
        holding only their own lines.

        Raises:
            OrderNotFound: if the order does not exist.
            Forbidden: not the buyer, a seller of its items, or an admin.
        """
        order = self._order_repo.get_by_id(order_id)
        if not order:
            raise OrderNotFound(f"Order {order_id} not found.")
        if self.sees_whole_order(order, actor):
            return order
        if actor.is_seller and order.has_items_from(actor.user_id):
            return self._order_repo.get_for_seller(order.id, actor.user_id)
        raise Forbidden("Not authorized to view this order.")

    @staticmethod
    def sees_whole_order(order: Order, actor: Actor) -> bool:
        return actor.is_admin or order.user_id == actor.user_id

    def list_orders_for_buyer(
        self, actor: Actor, filters: Optional[Dict[str, Any]] = None
    ):
        return self._order_repo.list({**(filters or {}), "user_id": actor.user_id})

    def list_orders_for_seller(
        self, actor: Actor, filters: Optional[Dict[str, Any]] = None
    ):
        """Orders containing the seller's items; each carries ``seller_items``."""
        return self._order_repo.list_for_seller(actor.user_id, filters)

    def seller_stats(self, seller_id: Any) -> SellerStatsDTO:
        counts: Dict[str, int] = {}
        revenue: Dict[str, Decimal] = {}
        for row in self._order_repo.seller_totals(seller_id):
            counts[row["order__status"]] = row["orders"]
            revenue[row["order__status"]] = row["revenue"] or Decimal("0.00")

        earned = sum(
            (amount for state, amount in revenue.items() if state != OrderStatus.CANCELLED),
            Decimal("0.00"),
        )
        return SellerStatsDTO(
            total_orders=sum(counts.values()),
            pending_orders=counts.get(OrderStatus.PENDING, 0),
            processing_orders=counts.get(OrderStatus.PROCESSING, 0),
            shipped_orders=counts.get(OrderStatus.SHIPPED, 0),
            delivered_orders=counts.get(OrderStatus.DELIVERED, 0),
            cancelled_orders=counts.get(OrderStatus.CANCELLED, 0),
            total_revenue=earned,
            pending_revenue=revenue.get(OrderStatus.PENDING, Decimal("0.00")),
            completed_revenue=revenue.get(OrderStatus.DELIVERED, Decimal("0.00")),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _cancel(self, order: Order, actor: Actor, reason: Optional[str]) -> None:
        """Cancel a locked order, restoring stock only if it was debited."""
        old_status, old_payment_status = order.status, order.payment_status
        restored = order.stock_committed
        if restored:
            for item in sorted(order.items.all(), key=lambda i: str(i.gem_id)):
                self._ledger.restore(item.gem_id, item.quantity)

        order.add_domain_event(
            OrderCancelled(
                aggregate_id=order.id,
                order_number=order.order_number,
                reason=reason or "",
                stock_restored=restored,
            )
        )
        self._order_repo.update_status(
            order,
            OrderStatus.CANCELLED,
            cancel_reason=reason or "",
            cancelled_at=timezone.now(),
            stock_committed=False,
        )
        self._order_repo.add_history(
            order,
            old_status=old_status,
            old_payment_status=old_payment_status,
            notes=reason or "Order cancelled",
            user_id=actor.user_id,
        )
        if order.payment_status == PaymentStatus.COMPLETED and order.is_online:
            logger.warning("order.cancelled_after_payment", order_id=str(order.id))
        logger.info(
            "order.cancelled",
            order_id=str(order.id),
            stock_restored=restored,
            actor_id=actor.user_id,
        )

    @staticmethod
    def _awaiting_payment(order: Order) -> bool:
        if order.fulfillment_blocked:
            return True
        return order.is_online and order.payment_status != PaymentStatus.COMPLETED

    @staticmethod
    def _check_declared_total(declared: Decimal, computed: Decimal) -> None:
        """The client total may differ from the recomputed one by one paisa."""
        if abs(declared - computed) > Decimal(TOTAL_PRICE_TOLERANCE):
            logger.info(
                "order.total_mismatch", declared=str(declared), computed=str(computed)
            )
            raise ValidationError(
                f"Total price mismatch: expected {computed}.",
                attr="total_price",
                code="total_mismatch",
            )


def build_order_service() -> OrderService:
    """``OrderService`` wired to the Django ORM repositories."""
    from modules.carts.repositories import CartDjangoRepository
    from modules.catalog.repositories import GemLedgerRepository
    from modules.orders.repositories import OrderDjangoRepository

    return OrderService(
        order_repository=OrderDjangoRepository(),
        gem_ledger=GemLedgerRepository(),
        cart_repository=CartDjangoRepository(),
    )
