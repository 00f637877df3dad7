"""Order, OrderItem, OrderStatusHistory and OrderNumberSequence models.

Rules enforced at this level:
- ``order_number`` (``ORD-<year>-<NNNNNN>``) is assigned once by the
  record store from ``OrderNumberSequence`` and is unique.
- ``OrderItem`` rows are snapshots: price, seller and tax are frozen at
  checkout and the row refuses any update after insertion.
- ``stock_committed`` records that inventory was debited for the order
  and not yet restored; cancellation restores only what was debited.
- ``fulfillment_blocked`` marks a paid order whose stock could not be
  committed (debit lost the race, or the order was cancelled before the
  capture arrived).  It needs support intervention.
- Buyer FK uses PROTECT to preserve financial history.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models

from modules.core.models import BaseModel
from modules.orders.constants import (
    ADMIN_ONLY_STATES,
    BUYER_NON_CANCELLABLE,
    SELLER_TRANSITIONS,
    TERMINAL_STATES,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from modules.tax.constants import TaxCategory
from shared.domain.events import DomainEventMixin

MONEY = {"max_digits": 12, "decimal_places": 2}


class Order(DomainEventMixin, BaseModel):
    """Order aggregate root.

    The UUIDv7 ``id`` is used for all internal references and API look-ups;
    ``order_number`` is the human-readable identifier shown to buyers.
    """

    order_number = models.CharField(max_length=20, unique=True, editable=False)
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="orders",
    )

    # Shipping address (line 2 is the only optional part)
    shipping_name = models.CharField(max_length=200)
    shipping_phone = models.CharField(max_length=20)
    shipping_address_line1 = models.CharField(max_length=255)
    shipping_address_line2 = models.CharField(max_length=255, blank=True, default="")
    shipping_city = models.CharField(max_length=100)
    shipping_state = models.CharField(max_length=100)
    shipping_postal_code = models.CharField(max_length=20)
    shipping_country = models.CharField(max_length=100)

    payment_method = models.CharField(
        max_length=10,
        choices=PaymentMethod.choices,
        default=PaymentMethod.CASH_ON_DELIVERY,
    )
    payment_status = models.CharField(
        max_length=20,
        choices=PaymentStatus.choices,
        default=PaymentStatus.PENDING,
    )
    status = models.CharField(
        max_length=20,
        choices=OrderStatus.choices,
        default=OrderStatus.PENDING,
    )

    total_price = models.DecimalField(**MONEY, default=Decimal("0.00"))
    total_tax = models.DecimalField(**MONEY, default=Decimal("0.00"))
    tax_breakdown = models.JSONField(default=list, blank=True)

    provider_order_id = models.CharField(max_length=100, blank=True, default="")
    provider_payment_id = models.CharField(max_length=100, blank=True, default="")
    provider_signature = models.CharField(max_length=255, blank=True, default="")
    paid_at = models.DateTimeField(null=True, blank=True)

    tracking_number = models.CharField(max_length=100, blank=True, default="")
    cancel_reason = models.TextField(blank=True, default="")
    cancelled_at = models.DateTimeField(null=True, blank=True)

    stock_committed = models.BooleanField(default=False)
    fulfillment_blocked = models.BooleanField(default=False)

    class Meta:
        db_table = "orders"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status"], name="orders_status_idx"),
            models.Index(fields=["-created_at"], name="orders_created_idx"),
            models.Index(
                fields=["user", "-created_at"], name="orders_user_created_idx"
            ),
            models.Index(fields=["provider_order_id"], name="orders_provider_idx"),
            models.Index(
                fields=["payment_method", "payment_status", "created_at"],
                name="orders_purge_idx",
            ),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(total_price__gte=0),
                name="orders_total_price_non_negative",
            ),
        ]

    # ------------------------------------------------------------------
    # State machine helpers
    # ------------------------------------------------------------------

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    @property
    def is_online(self) -> bool:
        return self.payment_method == PaymentMethod.ONLINE

    @property
    def buyer_can_cancel(self) -> bool:
        return self.status not in BUYER_NON_CANCELLABLE

    def can_transition_to(self, new_status: str, *, as_admin: bool = False) -> bool:
        """Whether *new_status* is reachable from the current status.

        Sellers follow ``SELLER_TRANSITIONS``; admins additionally may
        mark any non-terminal order as delivered.
        """
        if self.is_terminal:
            return False
        if new_status in ADMIN_ONLY_STATES:
            return as_admin
        return new_status in SELLER_TRANSITIONS.get(self.status, set())

    def has_items_from(self, seller_id: Any) -> bool:
        return any(item.seller_id == seller_id for item in self.items.all())

    @property
    def shipping_address(self) -> dict[str, str]:
        return {
            "name": self.shipping_name,
            "phone": self.shipping_phone,
            "address_line1": self.shipping_address_line1,
            "address_line2": self.shipping_address_line2,
            "city": self.shipping_city,
            "state": self.shipping_state,
            "postal_code": self.shipping_postal_code,
            "country": self.shipping_country,
        }

    @property
    def amount_minor(self) -> int:
        """Total in paise, the unit the payment provider works in."""
        return int((self.total_price * 100).to_integral_value())

    def __str__(self) -> str:
        return f"{self.order_number} ({self.status}/{self.payment_status})"


class OrderItem(BaseModel):
    """Immutable line-item snapshot taken at checkout.

    ``unit_price`` is the tax-inclusive listed price at the time of
    purchase; the tax split is stored alongside so nothing is recomputed
    later.  ``line_total`` and ``line_tax_amount`` are derived on insert.
    """

    order = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="items",
    )
    position = models.PositiveSmallIntegerField(default=0)
    gem = models.ForeignKey(
        "catalog.Gem",
        on_delete=models.PROTECT,
        related_name="order_items",
    )
    gem_name = models.CharField(max_length=200)
    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="sold_order_items",
    )
    quantity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    unit_price = models.DecimalField(**MONEY)
    tax_category = models.CharField(
        max_length=32, choices=TaxCategory.choices, null=True, blank=True
    )
    tax_rate = models.DecimalField(max_digits=5, decimal_places=2, default=0)
    unit_price_before_tax = models.DecimalField(**MONEY)
    unit_tax_amount = models.DecimalField(**MONEY)
    line_total = models.DecimalField(**MONEY, editable=False)
    line_tax_amount = models.DecimalField(**MONEY, editable=False)

    class Meta:
        db_table = "order_items"
        ordering = ["position"]
        indexes = [
            models.Index(fields=["seller"], name="order_items_seller_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gte=1),
                name="order_items_quantity_positive",
            ),
            models.CheckConstraint(
                condition=models.Q(unit_price__gte=0),
                name="order_items_unit_price_non_negative",
            ),
        ]

    @property
    def unit_price_with_tax(self) -> Decimal:
        return self.unit_price_before_tax + self.unit_tax_amount

    def save(self, *args: Any, **kwargs: Any) -> None:
        if not self._state.adding:
            raise ValueError("Order items are immutable once created.")
        self.line_total = self.unit_price_with_tax * self.quantity
        self.line_tax_amount = self.unit_tax_amount * self.quantity
        super().save(*args, **kwargs)

    def __str__(self) -> str:
        return f"{self.gem_name} x{self.quantity} ({self.line_total})"


class OrderStatusHistory(BaseModel):
    """Append-only audit trail for status and payment transitions.

    ``user`` is nullable: ``None`` means the system performed the change
    (payment webhook, purge, provider callback).
    """

    order = models.ForeignKey(
        "orders.Order",
        on_delete=models.CASCADE,
        related_name="status_history",
    )
    old_status = models.CharField(  # noqa: DJ01
        max_length=20,
        choices=OrderStatus.choices,
        null=True,
        blank=True,
    )
    new_status = models.CharField(max_length=20, choices=OrderStatus.choices)
    old_payment_status = models.CharField(  # noqa: DJ01
        max_length=20,
        choices=PaymentStatus.choices,
        null=True,
        blank=True,
    )
    new_payment_status = models.CharField(  # noqa: DJ01
        max_length=20,
        choices=PaymentStatus.choices,
        null=True,
        blank=True,
    )
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
    )
    notes = models.TextField(blank=True, default="")

    class Meta:
        db_table = "order_status_history"
        ordering = ["-created_at"]
        indexes = [
            models.Index(
                fields=["order", "-created_at"],
                name="osh_order_created_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.order_id} : {self.old_status} -> {self.new_status}"


class OrderNumberSequence(models.Model):
    """Per-year counter behind ``ORD-<year>-<NNNNNN>``.

    The row is locked while a number is taken, so numbers are handed out
    strictly in order and are never reused, even after orders are purged.
    """

    year = models.PositiveIntegerField(primary_key=True)
    last_value = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = "order_number_sequences"

    def __str__(self) -> str:
        return f"{self.year}: {self.last_value}"
