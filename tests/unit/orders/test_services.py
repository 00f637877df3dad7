"""Unit tests for OrderService.

Covers:
- Checkout: re-pricing, GST snapshot, declared total check, COD stock debit.
- Rejections: unavailable gems, wrong role; nothing persists on failure.
- Fulfilment transitions: ownership, admin-only delivery, tracking number,
  orders awaiting payment.
- Cancellation restores exactly what was debited.
- Paid effect applied once; blocked fulfilment when stock is gone.
- Payment failure and refund transitions.
- Seller views and statistics.
"""

from __future__ import annotations

import re
from decimal import Decimal
from uuid import uuid4

import pytest

from modules.carts.models import Cart, CartItem
from modules.catalog.exceptions import ItemUnavailable
from modules.core.exceptions import Forbidden, ValidationError
from modules.core.identity import actor_from_user
from modules.core.models import OutboxEvent
from modules.orders.constants import OrderStatus, PaymentMethod, PaymentStatus
from modules.orders.exceptions import InvalidTransition, OrderNotFound
from modules.orders.models import Order, OrderStatusHistory
from modules.tax.constants import TaxCategory

pytestmark = pytest.mark.unit

ORDER_NUMBER_RE = re.compile(r"^ORD-\d{4}-\d{6}$")


@pytest.fixture()
def cod_order(order_service, buyer_actor, ruby, order_dto):
    """COD order for two rubies; stock already debited."""
    return order_service.create_order(order_dto([(ruby, 2)]), buyer_actor)


@pytest.fixture()
def online_order(order_service, buyer_actor, ruby, order_dto):
    """Unpaid ONLINE order for two rubies; stock untouched."""
    return order_service.create_order(
        order_dto([(ruby, 2)], payment_method=PaymentMethod.ONLINE), buyer_actor
    )


def _stock(gem):
    gem.refresh_from_db()
    return gem.stock, gem.sales


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------


class TestCreateOrder:
    def test_cod_order_debits_stock(self, cod_order, ruby):
        assert cod_order.status == OrderStatus.PENDING
        assert cod_order.payment_status == PaymentStatus.PENDING
        assert cod_order.payment_method == PaymentMethod.CASH_ON_DELIVERY
        assert cod_order.stock_committed is True
        assert _stock(ruby) == (3, 2)

    def test_totals_and_breakdown(self, order_service, buyer_actor, make_gem, order_dto):
        ruby = make_gem(price="1000.00", category=TaxCategory.CUT_POLISHED)
        garnet = make_gem(name="Garnet", price="500.00", category=TaxCategory.ROUGH_UNWORKED)
        order = order_service.create_order(order_dto([(ruby, 1), (garnet, 1)]), buyer_actor)
        assert order.total_price == Decimal("1500.00")
        assert order.total_tax == Decimal("19.61")
        assert order.tax_breakdown == [{"rate": "2", "amount": "19.61"}]

    def test_order_number_format_and_sequence(self, order_service, buyer_actor, make_gem, order_dto):
        first = order_service.create_order(order_dto([(make_gem(name="A"), 1)]), buyer_actor)
        second = order_service.create_order(order_dto([(make_gem(name="B"), 1)]), buyer_actor)
        assert ORDER_NUMBER_RE.match(first.order_number)
        assert int(second.order_number[-6:]) == int(first.order_number[-6:]) + 1

    def test_shipping_address_stored(self, cod_order):
        assert cod_order.shipping_address["city"] == "Bengaluru"
        assert cod_order.shipping_address["address_line2"] == "Near Metro"

    def test_history_and_outbox(self, cod_order):
        history = OrderStatusHistory.objects.get(order=cod_order)
        assert history.old_status is None
        assert history.new_status == OrderStatus.PENDING
        assert history.notes == "Order created"
        assert OutboxEvent.objects.filter(
            aggregate_id=str(cod_order.id), event_type="OrderCreated"
        ).exists()

    def test_cod_checkout_clears_cart(self, order_service, buyer, buyer_actor, ruby, order_dto):
        cart = Cart.objects.create(user=buyer)
        CartItem.objects.create(cart=cart, gem=ruby, quantity=1)
        order_service.create_order(order_dto([(ruby, 1)]), buyer_actor)
        assert not CartItem.objects.filter(cart=cart).exists()

    def test_online_order_keeps_stock_and_cart(
        self, order_service, buyer, buyer_actor, ruby, order_dto
    ):
        cart = Cart.objects.create(user=buyer)
        CartItem.objects.create(cart=cart, gem=ruby, quantity=1)
        order = order_service.create_order(
            order_dto([(ruby, 2)], payment_method=PaymentMethod.ONLINE), buyer_actor
        )
        assert order.stock_committed is False
        assert _stock(ruby) == (5, 0)
        assert CartItem.objects.filter(cart=cart).exists()

    def test_declared_total_within_tolerance(self, order_service, buyer_actor, ruby, order_dto):
        order = order_service.create_order(
            order_dto([(ruby, 2)], total=Decimal("2000.01")), buyer_actor
        )
        assert order.total_price == Decimal("2000.00")

    def test_tolerance_does_not_scale_with_quantity(
        self, order_service, buyer_actor, ruby, order_dto
    ):
        with pytest.raises(ValidationError):
            order_service.create_order(
                order_dto([(ruby, 3)], total=Decimal("3000.02")), buyer_actor
            )
        assert Order.objects.count() == 0

    def test_items_keep_request_order(self, order_service, buyer_actor, make_gem, order_dto):
        first = make_gem(name="First Sapphire")
        second = make_gem(name="Second Topaz")
        requested = sorted([first, second], key=lambda gem: str(gem.id), reverse=True)

        order = order_service.create_order(
            order_dto([(gem, 1) for gem in requested]), buyer_actor
        )

        assert [item.gem_id for item in order.items.all()] == [gem.id for gem in requested]
        assert [item.position for item in order.items.all()] == [0, 1]
        assert _stock(first) == (4, 1)
        assert _stock(second) == (4, 1)

    def test_declared_total_mismatch(self, order_service, buyer_actor, ruby, order_dto):
        with pytest.raises(ValidationError) as excinfo:
            order_service.create_order(
                order_dto([(ruby, 1)], total=Decimal("999.00")), buyer_actor
            )
        assert excinfo.value.attr == "total_price"
        assert excinfo.value.code == "total_mismatch"
        assert Order.objects.count() == 0
        assert _stock(ruby) == (5, 0)

    @pytest.mark.parametrize(
        "gem_kwargs",
        [
            {"stock": 0},
            {"contact_for_price": True},
            {"price": None},
        ],
    )
    def test_unpurchasable_gem_rejected(
        self, order_service, buyer_actor, make_gem, order_dto, gem_kwargs
    ):
        gem = make_gem(**gem_kwargs)
        with pytest.raises(ItemUnavailable):
            order_service.create_order(
                order_dto([(gem, 1)], total=Decimal("0")), buyer_actor
            )
        assert Order.objects.count() == 0

    def test_quantity_above_stock_rejected_whole_order(
        self, order_service, buyer_actor, make_gem, order_dto
    ):
        plenty = make_gem(name="Plenty", stock=10)
        scarce = make_gem(name="Scarce", stock=1)
        with pytest.raises(ItemUnavailable):
            order_service.create_order(order_dto([(plenty, 2), (scarce, 2)]), buyer_actor)
        assert Order.objects.count() == 0
        assert _stock(plenty) == (10, 0)

    def test_missing_gem_rejected(self, order_service, buyer_actor, ruby, order_dto):
        dto = order_dto([(ruby, 1)])
        dto = dto.model_copy(update={"items": [dto.items[0].model_copy(update={"gem_id": uuid4()})]})
        with pytest.raises(ItemUnavailable):
            order_service.create_order(dto, buyer_actor)

    def test_sellers_cannot_check_out(self, order_service, seller_actor, ruby, order_dto):
        with pytest.raises(Forbidden):
            order_service.create_order(order_dto([(ruby, 1)]), seller_actor)


# ---------------------------------------------------------------------------
# Fulfilment transitions
# ---------------------------------------------------------------------------


class TestUpdateStatus:
    def test_seller_moves_order_forward(self, order_service, cod_order, seller_actor):
        order = order_service.update_status(cod_order.id, OrderStatus.PROCESSING, seller_actor)
        assert order.status == OrderStatus.PROCESSING
        history = order.status_history.get(new_status=OrderStatus.PROCESSING)
        assert history.old_status == OrderStatus.PENDING
        assert history.new_status == OrderStatus.PROCESSING
        assert history.user_id == seller_actor.user_id

    def test_shipping_requires_tracking_number(self, order_service, cod_order, seller_actor):
        order_service.update_status(cod_order.id, OrderStatus.PROCESSING, seller_actor)
        with pytest.raises(ValidationError) as excinfo:
            order_service.update_status(cod_order.id, OrderStatus.SHIPPED, seller_actor)
        assert excinfo.value.attr == "tracking_number"

        order = order_service.update_status(
            cod_order.id, OrderStatus.SHIPPED, seller_actor, tracking_number="TRK123"
        )
        assert order.status == OrderStatus.SHIPPED
        assert order.tracking_number == "TRK123"

    def test_skipping_a_step_is_invalid(self, order_service, cod_order, seller_actor):
        with pytest.raises(InvalidTransition):
            order_service.update_status(
                cod_order.id, OrderStatus.SHIPPED, seller_actor, tracking_number="TRK"
            )

    def test_seller_cannot_mark_delivered(self, order_service, cod_order, seller_actor):
        with pytest.raises(Forbidden):
            order_service.update_status(cod_order.id, OrderStatus.DELIVERED, seller_actor)

    def test_admin_delivery_completes_cod_payment(self, order_service, cod_order, admin_actor):
        order = order_service.update_status(cod_order.id, OrderStatus.DELIVERED, admin_actor)
        assert order.status == OrderStatus.DELIVERED
        assert order.payment_status == PaymentStatus.COMPLETED
        assert order.paid_at is not None

    def test_terminal_order_is_final(self, order_service, cod_order, admin_actor):
        order_service.update_status(cod_order.id, OrderStatus.DELIVERED, admin_actor)
        with pytest.raises(InvalidTransition):
            order_service.update_status(cod_order.id, OrderStatus.CANCELLED, admin_actor)

    def test_seller_without_items_is_forbidden(self, order_service, cod_order, other_seller):
        with pytest.raises(Forbidden):
            order_service.update_status(
                cod_order.id, OrderStatus.PROCESSING, actor_from_user(other_seller)
            )

    def test_buyer_cannot_update_status(self, order_service, cod_order, buyer_actor):
        with pytest.raises(Forbidden):
            order_service.update_status(cod_order.id, OrderStatus.PROCESSING, buyer_actor)

    def test_unknown_order(self, order_service, seller_actor):
        with pytest.raises(OrderNotFound):
            order_service.update_status(uuid4(), OrderStatus.PROCESSING, seller_actor)

    def test_unpaid_online_order_cannot_progress(self, order_service, online_order, seller_actor):
        with pytest.raises(InvalidTransition):
            order_service.update_status(online_order.id, OrderStatus.PROCESSING, seller_actor)

    def test_seller_cancellation_restores_stock(self, order_service, cod_order, seller_actor, ruby):
        order = order_service.update_status(
            cod_order.id, OrderStatus.CANCELLED, seller_actor, reason="Stone damaged"
        )
        assert order.status == OrderStatus.CANCELLED
        assert order.cancel_reason == "Stone damaged"
        assert _stock(ruby) == (5, 0)


# ---------------------------------------------------------------------------
# Buyer cancellation
# ---------------------------------------------------------------------------


class TestCancelOrder:
    def test_cancel_restores_debited_stock(self, order_service, cod_order, buyer_actor, ruby):
        order = order_service.cancel_order(cod_order.id, buyer_actor, reason="Changed mind")
        assert order.status == OrderStatus.CANCELLED
        assert order.cancelled_at is not None
        assert order.stock_committed is False
        assert _stock(ruby) == (5, 0)

    def test_cancel_twice_is_invalid_and_restores_once(
        self, order_service, cod_order, buyer_actor, ruby
    ):
        order_service.cancel_order(cod_order.id, buyer_actor)
        with pytest.raises(InvalidTransition):
            order_service.cancel_order(cod_order.id, buyer_actor)
        assert _stock(ruby) == (5, 0)

    def test_cancel_unpaid_online_order_leaves_stock(
        self, order_service, online_order, buyer_actor, ruby
    ):
        order_service.cancel_order(online_order.id, buyer_actor)
        assert _stock(ruby) == (5, 0)

    def test_only_owner_can_cancel(self, order_service, cod_order, other_buyer):
        with pytest.raises(Forbidden):
            order_service.cancel_order(cod_order.id, actor_from_user(other_buyer))

    def test_shipped_order_cannot_be_cancelled(
        self, order_service, cod_order, buyer_actor, seller_actor
    ):
        order_service.update_status(cod_order.id, OrderStatus.PROCESSING, seller_actor)
        order_service.update_status(
            cod_order.id, OrderStatus.SHIPPED, seller_actor, tracking_number="TRK"
        )
        with pytest.raises(InvalidTransition):
            order_service.cancel_order(cod_order.id, buyer_actor)

    def test_cancel_records_history(self, order_service, cod_order, buyer_actor):
        order_service.cancel_order(cod_order.id, buyer_actor, reason="Too slow")
        history = OrderStatusHistory.objects.filter(
            order_id=cod_order.id, new_status=OrderStatus.CANCELLED
        ).get()
        assert history.notes == "Too slow"


# ---------------------------------------------------------------------------
# Payment effects
# ---------------------------------------------------------------------------


class TestMarkPaid:
    def test_first_call_applies_paid_effect(self, order_service, online_order, ruby):
        order, applied = order_service.mark_paid(online_order.id, "pay_1", "sig")
        assert applied is True
        assert order.payment_status == PaymentStatus.COMPLETED
        assert order.status == OrderStatus.PROCESSING
        assert order.stock_committed is True
        assert order.fulfillment_blocked is False
        assert order.provider_payment_id == "pay_1"
        assert order.paid_at is not None
        assert _stock(ruby) == (3, 2)

    def test_second_call_is_a_noop(self, order_service, online_order, ruby):
        order_service.mark_paid(online_order.id, "pay_1")
        order, applied = order_service.mark_paid(online_order.id, "pay_1")
        assert applied is False
        assert order.payment_status == PaymentStatus.COMPLETED
        assert _stock(ruby) == (3, 2)
        assert OutboxEvent.objects.filter(
            aggregate_id=str(online_order.id), event_type="OrderPaid"
        ).count() == 1

    def test_paid_effect_clears_cart(self, order_service, online_order, buyer, ruby):
        cart = Cart.objects.create(user=buyer)
        CartItem.objects.create(cart=cart, gem=ruby, quantity=2)
        order_service.mark_paid(online_order.id, "pay_1")
        assert not CartItem.objects.filter(cart=cart).exists()

    def test_stock_gone_blocks_fulfilment(
        self, order_service, online_order, other_buyer, ruby, order_dto
    ):
        order_service.create_order(order_dto([(ruby, 5)]), actor_from_user(other_buyer))
        order, applied = order_service.mark_paid(online_order.id, "pay_1")
        assert applied is True
        assert order.payment_status == PaymentStatus.COMPLETED
        assert order.fulfillment_blocked is True
        assert order.stock_committed is False
        assert order.status == OrderStatus.PENDING
        assert _stock(ruby) == (0, 5)

    def test_payment_after_cancellation_is_flagged(
        self, order_service, online_order, buyer_actor, ruby
    ):
        order_service.cancel_order(online_order.id, buyer_actor)
        order, applied = order_service.mark_paid(online_order.id, "pay_1")
        assert applied is True
        assert order.status == OrderStatus.CANCELLED
        assert order.payment_status == PaymentStatus.COMPLETED
        assert order.fulfillment_blocked is True
        assert _stock(ruby) == (5, 0)

    def test_cod_order_is_never_claimed(self, order_service, cod_order):
        order, applied = order_service.mark_paid(cod_order.id, "pay_1")
        assert applied is False
        assert order.payment_status == PaymentStatus.PENDING

    def test_failed_payment_can_still_complete(self, order_service, online_order):
        order_service.mark_payment_failed(online_order.id, reason="Card declined")
        order, applied = order_service.mark_paid(online_order.id, "pay_2")
        assert applied is True
        assert order.payment_status == PaymentStatus.COMPLETED

    def test_blocked_order_cannot_progress(
        self, order_service, online_order, other_buyer, ruby, order_dto, seller_actor
    ):
        order_service.create_order(order_dto([(ruby, 5)]), actor_from_user(other_buyer))
        order_service.mark_paid(online_order.id, "pay_1")
        with pytest.raises(InvalidTransition):
            order_service.update_status(online_order.id, OrderStatus.PROCESSING, seller_actor)

    def test_unknown_order(self, order_service):
        with pytest.raises(OrderNotFound):
            order_service.mark_paid(uuid4(), "pay_1")


class TestPaymentFailureAndRefund:
    def test_pending_payment_fails(self, order_service, online_order):
        order, applied = order_service.mark_payment_failed(online_order.id, reason="Declined")
        assert applied is True
        assert order.payment_status == PaymentStatus.FAILED
        assert order.status == OrderStatus.PENDING

    def test_completed_payment_is_not_failed(self, order_service, online_order):
        order_service.mark_paid(online_order.id, "pay_1")
        order, applied = order_service.mark_payment_failed(online_order.id)
        assert applied is False
        assert order.payment_status == PaymentStatus.COMPLETED

    def test_refund_of_completed_payment(self, order_service, online_order, ruby):
        order_service.mark_paid(online_order.id, "pay_1")
        order, applied = order_service.mark_refunded(online_order.id)
        assert applied is True
        assert order.payment_status == PaymentStatus.REFUNDED
        assert _stock(ruby) == (3, 2)

    def test_refund_of_pending_payment_ignored(self, order_service, online_order):
        order, applied = order_service.mark_refunded(online_order.id)
        assert applied is False
        assert order.payment_status == PaymentStatus.PENDING


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


class TestQueries:
    def test_get_order_visibility(
        self,
        order_service,
        cod_order,
        buyer_actor,
        seller_actor,
        admin_actor,
        other_buyer,
        other_seller,
    ):
        assert order_service.get_order(cod_order.id, buyer_actor).id == cod_order.id
        assert order_service.get_order(cod_order.id, seller_actor).id == cod_order.id
        assert order_service.get_order(cod_order.id, admin_actor).id == cod_order.id
        with pytest.raises(Forbidden):
            order_service.get_order(cod_order.id, actor_from_user(other_buyer))
        with pytest.raises(Forbidden):
            order_service.get_order(cod_order.id, actor_from_user(other_seller))

    def test_seller_gets_own_lines_only(
        self,
        order_service,
        seller_actor,
        buyer_actor,
        ruby,
        make_gem,
        other_seller,
        order_dto,
    ):
        emerald = make_gem(name="Emerald", owner=other_seller)
        order = order_service.create_order(
            order_dto([(ruby, 1), (emerald, 1)]), buyer_actor
        )

        scoped = order_service.get_order(order.id, seller_actor)
        assert [item.gem_name for item in scoped.seller_items] == [ruby.name]
        assert order_service.sees_whole_order(scoped, seller_actor) is False
        assert order_service.sees_whole_order(scoped, buyer_actor) is True

    def test_get_order_not_found(self, order_service, buyer_actor):
        with pytest.raises(OrderNotFound):
            order_service.get_order(uuid4(), buyer_actor)
        with pytest.raises(OrderNotFound):
            order_service.get_order("garbage", buyer_actor)

    def test_buyer_lists_only_own_orders(
        self, order_service, cod_order, other_buyer, make_gem, order_dto, buyer_actor
    ):
        order_service.create_order(
            order_dto([(make_gem(name="Opal"), 1)]), actor_from_user(other_buyer)
        )
        orders = list(order_service.list_orders_for_buyer(buyer_actor))
        assert [o.id for o in orders] == [cod_order.id]

    def test_seller_sees_only_own_items(
        self, order_service, buyer_actor, ruby, make_gem, other_seller, order_dto, seller_actor
    ):
        emerald = make_gem(name="Emerald", owner=other_seller)
        order = order_service.create_order(order_dto([(ruby, 1), (emerald, 1)]), buyer_actor)

        orders = list(order_service.list_orders_for_seller(seller_actor))
        assert [o.id for o in orders] == [order.id]
        assert [item.gem_id for item in orders[0].seller_items] == [ruby.id]

    def test_seller_stats(
        self, order_service, buyer_actor, seller, seller_actor, make_gem, order_dto
    ):
        first = order_service.create_order(order_dto([(make_gem(name="A"), 2)]), buyer_actor)
        second = order_service.create_order(order_dto([(make_gem(name="B"), 1)]), buyer_actor)
        third = order_service.create_order(order_dto([(make_gem(name="C"), 1)]), buyer_actor)
        order_service.update_status(second.id, OrderStatus.PROCESSING, seller_actor)
        order_service.cancel_order(third.id, buyer_actor)

        stats = order_service.seller_stats(seller.pk)
        assert stats.total_orders == 3
        assert stats.pending_orders == 1
        assert stats.processing_orders == 1
        assert stats.cancelled_orders == 1
        assert stats.total_revenue == Decimal("3000.00")
        assert stats.pending_revenue == Decimal("2000.00")
        assert stats.completed_revenue == Decimal("0.00")
        assert first.total_price == Decimal("2000.00")
