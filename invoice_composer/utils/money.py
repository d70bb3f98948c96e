"""
Money helpers

Amounts are carried as integer minor units (paisa/cents) during arithmetic
and converted back to Decimal at the edges. Rounding happens here only.
"""

from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Optional, Union
import logging

from invoice_composer.utils.config import settings

logger = logging.getLogger(__name__)

Number = Union[Decimal, int, float, str]


def _scale(places: Optional[int]) -> int:
    return 10 ** (settings.CURRENCY_MINOR_UNITS if places is None else places)


def to_decimal(value: Optional[Number]) -> Decimal:
    """Parse any numeric input into a Decimal, treating blanks and junk as zero"""
    if value is None or value == "":
        return Decimal("0")
    try:
        return Decimal(str(value))
    except (ValueError, InvalidOperation):
        logger.warning(f"Could not parse amount '{value}', using 0")
        return Decimal("0")


def to_minor(value: Optional[Number], places: Optional[int] = None) -> int:
    """Convert a major-unit amount to integer minor units, rounding half up"""
    scaled = to_decimal(value) * _scale(places)
    return int(scaled.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor(minor: int, places: Optional[int] = None) -> Decimal:
    """Convert integer minor units back to a Decimal in major units"""
    p = settings.CURRENCY_MINOR_UNITS if places is None else places
    return (Decimal(minor) / _scale(p)).quantize(Decimal(1).scaleb(-p))


def apply_rate(minor: int, rate: Number) -> int:
    """Multiply a minor-unit amount by a rate, rounding half up to a whole minor unit"""
    product = Decimal(minor) * to_decimal(rate)
    return int(product.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_currency(
    amount: Optional[Number],
    symbol: Optional[str] = None,
    show_symbol: bool = True,
    compact: bool = False
) -> str:
    """
    Format an amount for display.

    Whole units with thousands separators ("Rs 12,500"); compact mode
    abbreviates large values ("Rs 1.5M", "Rs 10.0K").
    """
    symbol = settings.CURRENCY_SYMBOL if symbol is None else symbol
    value = to_decimal(amount)

    if compact and value >= 1000:
        if value >= 1000000:
            formatted = f"{(value / 1000000).quantize(Decimal('0.1'), rounding=ROUND_HALF_UP)}M"
        else:
            formatted = f"{(value / 1000).quantize(Decimal('0.1'), rounding=ROUND_HALF_UP)}K"
    else:
        whole = value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)
        formatted = f"{whole:,}"

    if show_symbol:
        return f"{symbol} {formatted}"
    return formatted
