"""
Fixed-point money helpers.

All amounts are ``Decimal`` values with exactly two fractional digits.
Floats are rejected outright: repeated apply/reverse cycles must not
drift, and a binary float cannot promise that.
"""

import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Optional, Union

CENT = Decimal("0.01")
ZERO = Decimal("0.00")
AMOUNT_PATTERN = re.compile(r"^-?\d+(\.\d{1,2})?$")

MoneyLike = Union[Decimal, str, int]


def to_money(value: MoneyLike) -> Decimal:
    """
    Parse a Decimal, plain decimal string or int into a two-digit Decimal.

    Input is never rounded. Strings must be plain notation with at most
    two fractional digits; Decimals may carry trailing zeros but no
    significant digit past the cent.

    Raises:
        ValueError: if the value is a float, empty, not a number, in
            exponent notation, or finer than a cent
    """
    if isinstance(value, bool) or isinstance(value, float):
        raise ValueError(f"Amounts must be decimal strings, not {type(value).__name__}")
    if isinstance(value, str):
        value = value.strip()
        if not value:
            raise ValueError("Amount is empty")
        if not AMOUNT_PATTERN.match(value):
            raise ValueError(f"Not a valid amount: {value!r} (use up to two decimal places)")
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError):
        raise ValueError(f"Not a valid amount: {value!r}")
    if not amount.is_finite():
        raise ValueError(f"Not a valid amount: {value!r}")
    cents = quantize(amount)
    if cents != amount:
        raise ValueError(f"Amount has more than two decimal places: {value!r}")
    return cents


def quantize(amount: Decimal) -> Decimal:
    """Round to cents, half-up."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def negate(amount: Decimal) -> Decimal:
    return quantize(-amount)


def money_sum(values: Iterable[Optional[MoneyLike]]) -> Decimal:
    """Sum amounts, treating None as zero."""
    total = ZERO
    for value in values:
        if value is None:
            continue
        total += to_money(value)
    return quantize(total)


def format_money(amount: Optional[Decimal]) -> Optional[str]:
    """Fixed-point string form used for storage and logs."""
    if amount is None:
        return None
    return f"{quantize(amount):.2f}"
