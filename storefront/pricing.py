"""Cart totals. Pure functions over line items, exact Decimal arithmetic."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Union

from storefront.cart_store import LineItem

CENTS = Decimal("0.01")


def line_total(item: LineItem) -> Decimal:
    """Unit price times quantity, unrounded."""
    return item.unit_price * item.quantity


def total(items: Iterable[LineItem]) -> Decimal:
    """Sum of line totals. Rounding is left to format_amount."""
    return sum((line_total(item) for item in items), Decimal("0"))


def item_count(items: Iterable[LineItem]) -> int:
    """Sum of quantities."""
    return sum(item.quantity for item in items)


def to_cents(value: Union[Decimal, int, str]) -> Decimal:
    """Round a monetary amount to 2 decimal places."""
    return Decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def format_amount(value: Union[Decimal, int, str]) -> str:
    """Presentation string, e.g. Decimal('49.990') -> '49.99'."""
    return str(to_cents(value))
