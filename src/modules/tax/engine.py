"""Tax Engine: pure GST arithmetic.

No state and no I/O.  Every monetary output is a ``Decimal`` rounded to
two places with ROUND_HALF_UP.

Rounding policy is **item level**: the per-unit split is rounded once,
line amounts are ``unit * quantity`` (exact for integer quantities) and
order aggregates are exact sums of the line amounts.  The per-rate
breakdown therefore always adds up to ``total_tax`` to the paisa.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, List, Optional

from modules.tax.constants import MONEY_QUANTUM, TAX_RATES, TaxCategory

ZERO = Decimal("0.00")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class TaxSplit:
    """Tax-inclusive price decomposed into taxable base and tax."""

    price_before_tax: Decimal
    tax_amount: Decimal
    price_with_tax: Decimal
    tax_rate: Decimal = Decimal("0")


@dataclass(frozen=True)
class RateBreakdown:
    rate: Decimal
    amount: Decimal

    def as_dict(self) -> dict[str, str]:
        return {"rate": str(self.rate), "amount": str(self.amount)}


@dataclass(frozen=True)
class TaxSummary:
    subtotal_before_tax: Decimal
    total_tax: Decimal
    total_with_tax: Decimal
    breakdown: List[RateBreakdown] = field(default_factory=list)


@dataclass(frozen=True)
class TaxableItem:
    """Input line for :func:`summarize`."""

    unit_price: Any
    quantity: int = 1
    category: Optional[str] = None


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def _to_decimal(value: Any) -> Decimal:
    """Coerce numeric input to ``Decimal``; anything unusable becomes zero."""
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError):
            return ZERO
    if not result.is_finite():
        return ZERO
    return result


# ---------------------------------------------------------------------------
# Category look-ups
# ---------------------------------------------------------------------------


def rate_for(category: Optional[str]) -> Decimal:
    """Return the GST percentage for *category* (0 for unknown/absent)."""
    if not category:
        return Decimal("0")
    return TAX_RATES.get(category, Decimal("0"))


def category_for(value: Optional[str]) -> Optional[dict[str, Any]]:
    if value not in TAX_RATES:
        return None
    category = TaxCategory(value)
    return {"value": category.value, "label": category.label, "rate": rate_for(value)}


def list_categories() -> List[dict[str, Any]]:
    return [category_for(category.value) for category in TaxCategory]


def format_rate(rate: Any) -> str:
    """Human form of a rate: ``0%``, ``0.25%``, ``2%``."""
    value = _to_decimal(rate)
    if value == value.to_integral_value():
        return f"{value.to_integral_value()}%"
    return f"{value.normalize()}%"


# ---------------------------------------------------------------------------
# Splits
# ---------------------------------------------------------------------------


def tax_inclusive_split(price: Any, rate: Any) -> TaxSplit:
    """Split a tax-inclusive *price* at *rate* percent.

    ``price_before_tax = price / (1 + rate/100)`` and
    ``tax_amount = price_before_tax * rate/100``, both rounded.  A zero
    rate performs no division: the base is the price itself.
    Missing or non-positive prices yield an all-zero split.
    """
    amount = _to_decimal(price)
    pct = _to_decimal(rate)
    if amount <= 0:
        return TaxSplit(ZERO, ZERO, ZERO, pct)

    if pct <= 0:
        base = quantize_money(amount)
        return TaxSplit(base, ZERO, base, Decimal("0"))

    base = quantize_money(amount / (1 + pct / HUNDRED))
    tax = quantize_money(base * pct / HUNDRED)
    return TaxSplit(base, tax, base + tax, pct)


def split_for_item(
    unit_price: Any, quantity: int = 1, category: Optional[str] = None
) -> TaxSplit:
    """Line-level split: the rounded unit split scaled by *quantity*.

    A non-positive quantity contributes nothing.
    """
    unit = tax_inclusive_split(unit_price, rate_for(category))
    qty = quantity if isinstance(quantity, int) and quantity > 0 else 0
    return TaxSplit(
        price_before_tax=unit.price_before_tax * qty,
        tax_amount=unit.tax_amount * qty,
        price_with_tax=unit.price_with_tax * qty,
        tax_rate=unit.tax_rate,
    )


def summarize(items: Iterable[TaxableItem]) -> TaxSummary:
    """Aggregate line splits into an order-level summary.

    Zero-rate lines contribute to the subtotal but not to the breakdown.
    Breakdown entries are ordered by ascending rate.
    """
    subtotal = ZERO
    total_tax = ZERO
    total_with_tax = ZERO
    by_rate: dict[Decimal, Decimal] = {}

    for item in items:
        line = split_for_item(item.unit_price, item.quantity, item.category)
        subtotal += line.price_before_tax
        total_tax += line.tax_amount
        total_with_tax += line.price_with_tax
        if line.tax_rate > 0:
            by_rate[line.tax_rate] = by_rate.get(line.tax_rate, ZERO) + line.tax_amount

    breakdown = [
        RateBreakdown(rate=rate, amount=quantize_money(amount))
        for rate, amount in sorted(by_rate.items())
    ]
    return TaxSummary(
        subtotal_before_tax=quantize_money(subtotal),
        total_tax=quantize_money(total_tax),
        total_with_tax=quantize_money(total_with_tax),
        breakdown=breakdown,
    )
