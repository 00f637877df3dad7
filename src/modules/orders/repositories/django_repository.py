"""Django ORM implementation of the Order repository.

Satisfies ``IOrderRepository`` using Django's QuerySet API.

- ``create_pending`` takes the next order number from the per-year
  ``OrderNumberSequence`` row while holding its lock, and inserts the
  order inside a savepoint so a uniqueness collision can be retried.
- Payment transitions are single conditional ``UPDATE`` statements; the
  number of rows updated tells the caller whether it won the race.
- ``save`` writes collected domain events to the transactional outbox.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from django.core.exceptions import ValidationError
from django.db import IntegrityError, transaction
from django.db.models import Count, F, Prefetch, Sum
from django.utils import timezone

from modules.core.models import OutboxEvent
from modules.orders.constants import (
    ORDER_NUMBER_DIGITS,
    ORDER_NUMBER_MAX_RETRIES,
    ORDER_NUMBER_PREFIX,
    PAYABLE_STATES,
    PURGEABLE_PAYMENT_STATES,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from modules.orders.exceptions import DuplicateOrderNumber
from modules.orders.models import (
    Order,
    OrderItem,
    OrderNumberSequence,
    OrderStatusHistory,
)
from modules.orders.repositories.interfaces import IOrderRepository

logger = structlog.get_logger(__name__)

OUTBOX_TOPIC = "orders"


def format_order_number(year: int, value: int) -> str:
    return f"{ORDER_NUMBER_PREFIX}-{year}-{value:0{ORDER_NUMBER_DIGITS}d}"


def _with_seller_items(queryset, seller_id: Any):
    return queryset.select_related("user").prefetch_related(
        Prefetch(
            "items",
            queryset=OrderItem.objects.filter(seller_id=seller_id),
            to_attr="seller_items",
        )
    )


class OrderDjangoRepository(IOrderRepository):
    """Concrete Order repository backed by Django ORM."""

    # ------------------------------------------------------------------
    # Create (aggregate root + children)
    # ------------------------------------------------------------------

    @transaction.atomic
    def create_pending(self, data: Dict[str, Any]) -> Order:
        """Create a PENDING order with its item snapshots.

        ``data`` keys:
        - ``user_id``, ``payment_method``, ``shipping_address`` (dict)
        - ``total_price``, ``total_tax``, ``tax_breakdown``
        - ``items``: list of dicts with ``gem_id``, ``gem_name``,
          ``seller_id``, ``quantity``, ``unit_price``, ``tax_category``,
          ``tax_rate``, ``unit_price_before_tax``, ``unit_tax_amount``
        """
        year = timezone.now().year
        log = logger.bind(user_id=data["user_id"])

        for attempt in range(1, ORDER_NUMBER_MAX_RETRIES + 1):
            order_number = self._next_order_number(year)
            try:
                with transaction.atomic():
                    order = self._insert(order_number, data)
            except IntegrityError:
                if not Order.objects.filter(order_number=order_number).exists():
                    raise
                log.warning(
                    "order.number_collision",
                    order_number=order_number,
                    attempt=attempt,
                )
                continue

            log.info(
                "order.persisted",
                order_id=str(order.id),
                order_number=order_number,
                item_count=len(data["items"]),
            )
            return order

        log.error("order.number_retries_exhausted", retries=ORDER_NUMBER_MAX_RETRIES)
        raise DuplicateOrderNumber()

    def _next_order_number(self, year: int) -> str:
        OrderNumberSequence.objects.select_for_update().get_or_create(year=year)
        OrderNumberSequence.objects.filter(year=year).update(
            last_value=F("last_value") + 1
        )
        value = (
            OrderNumberSequence.objects.filter(year=year)
            .values_list("last_value", flat=True)
            .get()
        )
        return format_order_number(year, value)

    def _insert(self, order_number: str, data: Dict[str, Any]) -> Order:
        shipping = data["shipping_address"]
        order = Order(
            order_number=order_number,
            user_id=data["user_id"],
            payment_method=data["payment_method"],
            payment_status=PaymentStatus.PENDING,
            status=OrderStatus.PENDING,
            total_price=data["total_price"],
            total_tax=data["total_tax"],
            tax_breakdown=data.get("tax_breakdown", []),
            shipping_name=shipping["name"],
            shipping_phone=shipping["phone"],
            shipping_address_line1=shipping["address_line1"],
            shipping_address_line2=shipping.get("address_line2") or "",
            shipping_city=shipping["city"],
            shipping_state=shipping["state"],
            shipping_postal_code=shipping["postal_code"],
            shipping_country=shipping["country"],
        )
        order.save(force_insert=True)

        for position, item in enumerate(data["items"]):
            OrderItem(
                order=order,
                position=position,
                gem_id=item["gem_id"],
                gem_name=item["gem_name"],
                seller_id=item["seller_id"],
                quantity=item["quantity"],
                unit_price=item["unit_price"],
                tax_category=item.get("tax_category"),
                tax_rate=item["tax_rate"],
                unit_price_before_tax=item["unit_price_before_tax"],
                unit_tax_amount=item["unit_tax_amount"],
            ).save(force_insert=True)
        return order

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get_by_id(self, id: Any) -> Optional[Order]:
        """Retrieve an order with items and history prefetched.

        Returns ``None`` for non-existent or malformed IDs.
        """
        try:
            return (
                Order.objects.select_related("user")
                .prefetch_related("items", "status_history")
                .filter(id=id)
                .first()
            )
        except (ValueError, ValidationError):
            return None

    def get_for_update(self, id: Any) -> Optional[Order]:
        """Retrieve an order with a row-level lock (SELECT FOR UPDATE).

        Only the order row is locked; items are prefetched separately so
        the caller can iterate over them while holding the lock.
        """
        try:
            return (
                Order.objects.select_for_update()
                .prefetch_related("items")
                .filter(id=id)
                .first()
            )
        except (ValueError, ValidationError):
            return None

    def list(self, filters: Optional[Dict[str, Any]] = None):
        """Queryset of orders, newest first, with items prefetched."""
        queryset = Order.objects.prefetch_related("items")
        if filters:
            queryset = queryset.filter(**filters)
        return queryset

    def find_by_provider_order_id(self, provider_order_id: str) -> Optional[Order]:
        if not provider_order_id:
            return None
        return Order.objects.filter(provider_order_id=provider_order_id).first()

    def get_for_seller(self, id: Any, seller_id: Any) -> Optional[Order]:
        """One order as *seller_id* sees it, carrying ``seller_items``."""
        try:
            return (
                _with_seller_items(Order.objects.filter(id=id), seller_id)
                .prefetch_related("status_history")
                .first()
            )
        except (ValueError, ValidationError):
            return None

    def list_for_seller(
        self, seller_id: Any, filters: Optional[Dict[str, Any]] = None
    ):
        """Orders with at least one of the seller's items.

        Each order carries ``seller_items``: only that seller's lines.
        """
        queryset = _with_seller_items(
            Order.objects.filter(items__seller_id=seller_id).distinct(), seller_id
        )
        if filters:
            queryset = queryset.filter(**filters)
        return queryset

    def seller_totals(self, seller_id: Any) -> List[Dict[str, Any]]:
        return list(
            OrderItem.objects.filter(seller_id=seller_id)
            .values("order__status")
            .annotate(
                orders=Count("order", distinct=True),
                revenue=Sum("line_total"),
            )
            .order_by("order__status")
        )

    # ------------------------------------------------------------------
    # Save (IRepository contract)
    # ------------------------------------------------------------------

    @transaction.atomic
    def save(self, entity: Order) -> Order:
        """Persist an order and relay its domain events to the outbox."""
        entity.save()

        events = entity.domain_events
        for event in events:
            OutboxEvent.objects.create(
                event_type=event.event_name,
                aggregate_id=str(event.aggregate_id),
                payload=event.to_payload(),
                topic=OUTBOX_TOPIC,
            )
        entity.clear_domain_events()

        logger.debug("order.saved", order_id=str(entity.id), event_count=len(events))
        return entity

    @transaction.atomic
    def update_status(self, order: Order, new_status: str, **fields: Any) -> Order:
        for field, value in fields.items():
            setattr(order, field, value)
        order.status = new_status
        return self.save(order)

    @transaction.atomic
    def add_history(
        self,
        order: Order,
        *,
        old_status: Optional[str],
        old_payment_status: Optional[str] = None,
        notes: str = "",
        user_id: Any = None,
    ) -> OrderStatusHistory:
        history = OrderStatusHistory.objects.create(
            order=order,
            old_status=old_status,
            new_status=order.status,
            old_payment_status=old_payment_status,
            new_payment_status=order.payment_status,
            user_id=user_id,
            notes=notes,
        )
        logger.info(
            "order.history_added",
            order_id=str(order.id),
            old_status=old_status,
            new_status=order.status,
            payment_status=order.payment_status,
        )
        return history

    # ------------------------------------------------------------------
    # Payment compare-and-set updates
    # ------------------------------------------------------------------

    def update_payment_fields(self, order_id: Any, **fields: Any) -> int:
        return Order.objects.filter(id=order_id).update(
            **fields, updated_at=timezone.now()
        )

    def claim_payment_completion(
        self, order_id: Any, provider_payment_id: str, signature: str = ""
    ) -> bool:
        now = timezone.now()
        changes: Dict[str, Any] = {
            "payment_status": PaymentStatus.COMPLETED,
            "provider_payment_id": provider_payment_id,
            "paid_at": now,
            "updated_at": now,
        }
        if signature:
            changes["provider_signature"] = signature
        updated = Order.objects.filter(
            id=order_id,
            payment_method=PaymentMethod.ONLINE,
            payment_status__in=PAYABLE_STATES,
        ).update(**changes)
        return updated == 1

    def mark_payment_failed(self, order_id: Any) -> bool:
        updated = Order.objects.filter(
            id=order_id, payment_status=PaymentStatus.PENDING
        ).update(payment_status=PaymentStatus.FAILED, updated_at=timezone.now())
        return updated == 1

    def mark_payment_refunded(self, order_id: Any) -> bool:
        updated = Order.objects.filter(
            id=order_id, payment_status=PaymentStatus.COMPLETED
        ).update(payment_status=PaymentStatus.REFUNDED, updated_at=timezone.now())
        return updated == 1

    # ------------------------------------------------------------------
    # Purge
    # ------------------------------------------------------------------

    @transaction.atomic
    def purge_stale_online(
        self, older_than: Optional[datetime], user_id: Any = None
    ) -> int:
        """Hard-delete unpaid ONLINE orders; never touches COMPLETED ones.

        ``older_than=None`` drops the age condition (buyer discarding all
        of their own unpaid orders).
        """
        queryset = Order.objects.filter(
            payment_method=PaymentMethod.ONLINE,
            payment_status__in=PURGEABLE_PAYMENT_STATES,
            stock_committed=False,
        )
        if older_than is not None:
            queryset = queryset.filter(created_at__lt=older_than)
        if user_id is not None:
            queryset = queryset.filter(user_id=user_id)

        _, per_model = queryset.delete()
        purged = per_model.get(Order._meta.label, 0)
        if purged:
            logger.info(
                "order.purged_stale_online",
                purged=purged,
                user_id=user_id,
                older_than=older_than.isoformat() if older_than else None,
            )
        return purged
