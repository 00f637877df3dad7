"""Unit tests for the order state machine helpers and item snapshots."""

from __future__ import annotations

from decimal import Decimal

import pytest

from modules.orders.constants import OrderStatus, PaymentMethod
from modules.orders.models import Order

pytestmark = pytest.mark.unit


def _order(status=OrderStatus.PENDING, **fields) -> Order:
    return Order(status=status, **fields)


class TestTransitions:
    @pytest.mark.parametrize(
        "current,target",
        [
            (OrderStatus.PENDING, OrderStatus.PROCESSING),
            (OrderStatus.PENDING, OrderStatus.CANCELLED),
            (OrderStatus.PROCESSING, OrderStatus.SHIPPED),
            (OrderStatus.PROCESSING, OrderStatus.CANCELLED),
        ],
    )
    def test_seller_transitions_allowed(self, current, target):
        assert _order(current).can_transition_to(target)

    @pytest.mark.parametrize(
        "current,target",
        [
            (OrderStatus.PENDING, OrderStatus.SHIPPED),
            (OrderStatus.SHIPPED, OrderStatus.PROCESSING),
            (OrderStatus.SHIPPED, OrderStatus.CANCELLED),
            (OrderStatus.PROCESSING, OrderStatus.PENDING),
        ],
    )
    def test_seller_transitions_rejected(self, current, target):
        assert not _order(current).can_transition_to(target)

    @pytest.mark.parametrize(
        "current", [OrderStatus.PENDING, OrderStatus.PROCESSING, OrderStatus.SHIPPED]
    )
    def test_only_admin_marks_delivered(self, current):
        order = _order(current)
        assert not order.can_transition_to(OrderStatus.DELIVERED)
        assert order.can_transition_to(OrderStatus.DELIVERED, as_admin=True)

    @pytest.mark.parametrize("terminal", [OrderStatus.DELIVERED, OrderStatus.CANCELLED])
    def test_terminal_states_are_final(self, terminal):
        order = _order(terminal)
        assert order.is_terminal
        for target in OrderStatus.values:
            assert not order.can_transition_to(target, as_admin=True)

    @pytest.mark.parametrize(
        "current,cancellable",
        [
            (OrderStatus.PENDING, True),
            (OrderStatus.PROCESSING, True),
            (OrderStatus.SHIPPED, False),
            (OrderStatus.DELIVERED, False),
            (OrderStatus.CANCELLED, False),
        ],
    )
    def test_buyer_can_cancel(self, current, cancellable):
        assert _order(current).buyer_can_cancel is cancellable


class TestOrderFields:
    def test_amount_minor_is_paise(self):
        assert _order(total_price=Decimal("1234.56")).amount_minor == 123456

    def test_is_online(self):
        assert _order(payment_method=PaymentMethod.ONLINE).is_online
        assert not _order(payment_method=PaymentMethod.CASH_ON_DELIVERY).is_online


class TestOrderItemSnapshot:
    def test_line_amounts_derived_on_insert(self, order_service, buyer_actor, make_gem, order_dto):
        gem = make_gem(price="1000.00")
        order = order_service.create_order(order_dto([(gem, 2)]), buyer_actor)
        item = order.items.get()
        assert item.unit_price == Decimal("1000.00")
        assert item.unit_price_before_tax == Decimal("980.39")
        assert item.unit_tax_amount == Decimal("19.61")
        assert item.line_total == Decimal("2000.00")
        assert item.line_tax_amount == Decimal("39.22")
        assert item.seller_id == gem.seller_id
        assert item.gem_name == gem.name

    def test_items_are_immutable(self, order_service, buyer_actor, ruby, order_dto):
        order = order_service.create_order(order_dto([(ruby, 1)]), buyer_actor)
        item = order.items.get()
        item.quantity = 3
        with pytest.raises(ValueError, match="immutable"):
            item.save()

    def test_snapshot_survives_price_change(self, order_service, buyer_actor, ruby, order_dto):
        order = order_service.create_order(order_dto([(ruby, 1)]), buyer_actor)
        ruby.price = Decimal("5000.00")
        ruby.save()
        assert order.items.get().unit_price == Decimal("1000.00")
