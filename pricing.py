"""Flat cart arithmetic shared by the server and the cart client."""

from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Tuple, Union

Number = Union[Decimal, int, float, str]

CENT = Decimal("0.01")
FREE_SHIPPING_THRESHOLD = Decimal("100")
FLAT_SHIPPING = Decimal("10.00")


def to_money(value: Number) -> Decimal:
    if isinstance(value, float):
        value = repr(value)
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def line_total(unit_price: Number, quantity: int) -> Decimal:
    return to_money(to_money(unit_price) * quantity)


def subtotal(lines: Iterable[Tuple[Number, int]]) -> Decimal:
    """Sum of unit price x quantity over ``(unit_price, quantity)`` pairs."""
    return to_money(sum((line_total(price, qty) for price, qty in lines), Decimal("0")))


def shipping_for(amount: Number) -> Decimal:
    if to_money(amount) >= FREE_SHIPPING_THRESHOLD:
        return Decimal("0.00")
    return FLAT_SHIPPING


def total_with_shipping(amount: Number) -> Decimal:
    return to_money(to_money(amount) + shipping_for(amount))


def to_cents(amount: Number) -> int:
    return int(to_money(amount) * 100)


def from_cents(cents: int) -> Decimal:
    return to_money(Decimal(cents) / 100)
