"""Event handlers for Orders domain events."""

from __future__ import annotations

import structlog

from modules.orders.events import (
    OrderCancelled,
    OrderCreated,
    OrderPaid,
    OrderPaymentFailed,
    OrderRefunded,
    OrderStatusChanged,
)
from shared.domain.bus import IEventHandler

logger = structlog.get_logger(__name__)


class OrderCreatedHandler(IEventHandler[OrderCreated]):
    def handle(self, event: OrderCreated) -> None:
        logger.info(
            "order.event.created",
            order_id=str(event.aggregate_id),
            order_number=event.order_number,
            payment_method=event.payment_method,
        )


class OrderPaidHandler(IEventHandler[OrderPaid]):
    def handle(self, event: OrderPaid) -> None:
        log = logger.bind(
            order_id=str(event.aggregate_id), order_number=event.order_number
        )
        if event.fulfillment_blocked:
            log.error("order.event.paid_fulfillment_blocked")
            return
        log.info("order.event.paid")


class OrderPaymentFailedHandler(IEventHandler[OrderPaymentFailed]):
    def handle(self, event: OrderPaymentFailed) -> None:
        logger.warning(
            "order.event.payment_failed",
            order_id=str(event.aggregate_id),
            reason=event.reason,
        )


class OrderStatusChangedHandler(IEventHandler[OrderStatusChanged]):
    def handle(self, event: OrderStatusChanged) -> None:
        logger.info(
            "order.event.status_changed",
            order_id=str(event.aggregate_id),
            old_status=event.old_status,
            new_status=event.new_status,
        )


class OrderCancelledHandler(IEventHandler[OrderCancelled]):
    def handle(self, event: OrderCancelled) -> None:
        logger.info(
            "order.event.cancelled",
            order_id=str(event.aggregate_id),
            stock_restored=event.stock_restored,
        )


class OrderRefundedHandler(IEventHandler[OrderRefunded]):
    def handle(self, event: OrderRefunded) -> None:
        logger.info(
            "order.event.refunded",
            order_id=str(event.aggregate_id),
            order_number=event.order_number,
        )


order_created_handler = OrderCreatedHandler()
order_paid_handler = OrderPaidHandler()
order_payment_failed_handler = OrderPaymentFailedHandler()
order_status_changed_handler = OrderStatusChangedHandler()
order_cancelled_handler = OrderCancelledHandler()
order_refunded_handler = OrderRefundedHandler()
