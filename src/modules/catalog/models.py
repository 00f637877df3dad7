"""Gem model: the inventory item the order subsystem sells.

Only the fields checkout needs live here.  ``stock`` and ``sales`` are
mutated exclusively through ``GemLedgerRepository`` with single
conditional UPDATE statements; nothing reads-then-writes them.

``availability`` is derived from ``stock`` on every read instead of being
stored, so it can never disagree with the counter.
"""

from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.core.validators import MinValueValidator
from django.db import models

from modules.core.models import BaseModel
from modules.tax.constants import TaxCategory


class Gem(BaseModel):
    name = models.CharField(max_length=200)
    seller = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="gems",
    )
    price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        null=True,
        blank=True,
        validators=[MinValueValidator(Decimal("0.00"))],
    )
    contact_for_price = models.BooleanField(default=False)
    gst_category = models.CharField(
        max_length=32,
        choices=TaxCategory.choices,
        null=True,
        blank=True,
    )
    stock = models.PositiveIntegerField(default=1)
    sales = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = "gems"
        ordering = ["name"]
        indexes = [
            models.Index(fields=["seller"], name="gems_seller_idx"),
            models.Index(fields=["stock"], name="gems_stock_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(stock__gte=0), name="gems_stock_non_negative"
            ),
            models.CheckConstraint(
                condition=models.Q(sales__gte=0), name="gems_sales_non_negative"
            ),
        ]

    @property
    def availability(self) -> bool:
        return self.stock > 0

    @property
    def is_purchasable(self) -> bool:
        """Listed with a price (not "contact for price") and in stock."""
        return (
            self.availability
            and not self.contact_for_price
            and self.price is not None
        )

    def __str__(self) -> str:
        return f"{self.name} (stock={self.stock})"
