"""Document totals — the single source of truth for subtotal/discount/tax.

Used for the live wizard preview and for every persisted ``total``.

Tax is computed per line after spreading the global discount across lines
in proportion to each line's share of the subtotal, so lines with
different tax rates keep their own rate under a discount:

    tax = Σ (line_i - discount * line_i / subtotal) * rate_i / 100
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable

if TYPE_CHECKING:
    from app.schemas.document import Discount, LineItem, Totals


def discount_amount_for(subtotal: float, discount: Discount | None) -> float:
    """Absolute discount for a subtotal (PERCENT → share, AMOUNT → as given)."""
    if discount is None:
        return 0.0
    if discount.kind.value == "PERCENT":
        return subtotal * discount.value / 100
    return float(discount.value)


def compute(items: Iterable[LineItem], discount: Discount | None = None) -> Totals:
    """Compute totals for a set of line items and an optional discount."""
    from app.schemas.document import Totals

    items = list(items)
    subtotal = sum(item.quantity * item.price for item in items)

    if subtotal <= 0:
        return Totals(
            subtotal=0.0,
            discount_amount=0.0,
            tax_amount=0.0,
            total=0.0,
            effective_discount_rate=0.0,
        )

    discount_amount = discount_amount_for(subtotal, discount)
    effective_rate = discount_amount / subtotal * 100

    tax_amount = 0.0
    for item in items:
        line_total = item.quantity * item.price
        line_base = line_total - discount_amount * (line_total / subtotal)
        tax_amount += line_base * item.tax_rate / 100

    return Totals(
        subtotal=subtotal,
        discount_amount=discount_amount,
        tax_amount=tax_amount,
        total=(subtotal - discount_amount) + tax_amount,
        effective_discount_rate=effective_rate,
    )
