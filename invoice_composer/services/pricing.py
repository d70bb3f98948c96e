"""
Pricing Engine

Pure computation of invoice totals. Arithmetic runs on integer minor units
so that totals do not depend on float rounding or on item order.
"""

import logging
from decimal import Decimal
from typing import Iterable

from invoice_composer.models import DiscountKind, InvoiceTotals, LineItem
from invoice_composer.utils.money import apply_rate, from_minor, to_decimal, to_minor

logger = logging.getLogger(__name__)


class PricingEngine:
    """Computes subtotal, discount, tax and total for a set of line items"""

    def compute(
        self,
        items: Iterable[LineItem],
        discount_value: Decimal,
        discount_kind: DiscountKind,
        tax_rate: Decimal
    ) -> InvoiceTotals:
        """
        Compute totals.

        subtotal = sum(unit_price * quantity)
        discount = subtotal * value / 100 for percent, value for fixed
        tax      = (subtotal - discount) * tax_rate
        total    = subtotal - discount + tax

        The discount is not clamped to the subtotal; an over-large discount
        produces a negative total and sets discount_exceeds_subtotal.
        """
        subtotal = sum(to_minor(item.unit_price) * item.quantity for item in items)

        if discount_kind == DiscountKind.PERCENT:
            discount = apply_rate(subtotal, to_decimal(discount_value) / 100)
        else:
            discount = to_minor(discount_value)

        after_discount = subtotal - discount
        tax = apply_rate(after_discount, tax_rate)
        total = after_discount + tax

        exceeds = discount > subtotal
        if exceeds:
            logger.warning(
                f"Discount {from_minor(discount)} exceeds subtotal {from_minor(subtotal)}; total is negative"
            )

        return InvoiceTotals(
            subtotal=from_minor(subtotal),
            discount_amount=from_minor(discount),
            after_discount=from_minor(after_discount),
            tax_rate=to_decimal(tax_rate),
            tax=from_minor(tax),
            total=from_minor(total),
            discount_exceeds_subtotal=exceeds,
        )
