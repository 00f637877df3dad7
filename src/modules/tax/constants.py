"""GST constants for gemstone sales.

Rates follow the Indian GST schedule for precious and semi-precious
stones.  The listed price of a gem is treated as **tax-inclusive**; the
engine back-calculates the taxable base from it.
"""

from __future__ import annotations

from decimal import Decimal

from django.db import models


class TaxCategory(models.TextChoices):
    ROUGH_UNWORKED = (
        "rough_unworked",
        "Rough/Unworked Precious & Semi-precious Stones",
    )
    CUT_POLISHED = "cut_polished", "Cut & Polished Loose Gemstones (excl. diamonds)"
    ROUGH_DIAMONDS = "rough_diamonds", "Rough/Unpolished Diamonds"
    CUT_DIAMONDS = "cut_diamonds", "Cut & Polished Loose Diamonds"


TAX_RATES: dict[str, Decimal] = {
    TaxCategory.ROUGH_UNWORKED: Decimal("0"),
    TaxCategory.CUT_POLISHED: Decimal("2"),
    TaxCategory.ROUGH_DIAMONDS: Decimal("0.25"),
    TaxCategory.CUT_DIAMONDS: Decimal("1"),
}

MONEY_QUANTUM = Decimal("0.01")
