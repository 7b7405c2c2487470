"""
Line and document arithmetic for composed invoices.

All money is Decimal. Each line is rounded to cents on its own, and
document totals are plain sums of the rounded line values, so the
document total always equals the sum of line final amounts.
"""
from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from typing import Iterable

from ..dataclasses import InvoiceLineItem, LineAmounts, MixedPrice, Totals
from .utils import HUNDRED, ZERO, d, q2


def line_amount(item: InvoiceLineItem) -> Decimal:
    # A mixed-price line keeps the aggregate it was built with.
    if isinstance(item.unit_price, MixedPrice):
        return q2(item.amount)
    return q2(d(item.quantity) * d(item.unit_price.amount))


def compute_line(item: InvoiceLineItem) -> LineAmounts:
    amount = line_amount(item)
    tax_amount = q2(amount * d(item.tax_rate) / HUNDRED)
    # Negative discounts are surcharges and are kept as-is.
    discount = q2(d(item.discount_amount) + (amount + tax_amount) * d(item.discount_percent) / HUNDRED)
    return LineAmounts(
        amount=amount,
        tax_amount=tax_amount,
        discount=discount,
        final_amount=amount + tax_amount - discount,
    )


def apply_line(item: InvoiceLineItem) -> InvoiceLineItem:
    """Return a copy of ``item`` with its computed fields filled in."""
    amounts = compute_line(item)
    return replace(
        item,
        amount=amounts.amount,
        tax_amount=amounts.tax_amount,
        final_amount=amounts.final_amount,
    )


def compute_totals(items: Iterable[InvoiceLineItem]) -> Totals:
    subtotal = tax_amount = discount_amount = ZERO
    for item in items:
        amounts = compute_line(item)
        subtotal += amounts.amount
        tax_amount += amounts.tax_amount
        discount_amount += amounts.discount
    return Totals(
        subtotal=subtotal,
        tax_amount=tax_amount,
        discount_amount=discount_amount,
        total_amount=subtotal + tax_amount - discount_amount,
    )


def format_money(amount, currency: str = "") -> str:
    """Render with thousands separators and at least two decimals."""
    value = d(amount)
    if value.as_tuple().exponent > -2:
        value = value.quantize(Decimal("0.01"))
    text = f"{value:,}"
    return f"{text} {currency}".strip()
