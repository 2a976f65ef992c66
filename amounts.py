"""Exact decimal arithmetic for monetary amounts.

All balances are ``Decimal`` values. Arithmetic goes through
``AMOUNT_CONTEXT``, which traps ``Inexact`` so a result that cannot be
represented exactly raises instead of being rounded.
"""
import re
from decimal import (
    Context,
    Decimal,
    DivisionByZero,
    Inexact,
    InvalidOperation,
    Overflow,
    ROUND_HALF_EVEN,
)

from exceptions import AmountOverflowError, AmountParseError

MAX_PRECISION = 34

AMOUNT_CONTEXT = Context(
    prec=MAX_PRECISION,
    rounding=ROUND_HALF_EVEN,
    traps=[InvalidOperation, Inexact, Overflow, DivisionByZero],
)

ZERO = Decimal("0")

# Unsigned plain decimals only: "10", "1.2345", ".5", "5."
_AMOUNT_PATTERN = re.compile(r"\d+(\.\d*)?|\.\d+", re.ASCII)


def parse_amount(text: str) -> Decimal:
    """Parse decimal text into an exact amount.

    Raises AmountParseError for anything that is not an unsigned plain
    decimal, or that carries more significant digits than MAX_PRECISION.
    """
    candidate = text.strip()
    if not _AMOUNT_PATTERN.fullmatch(candidate):
        raise AmountParseError(f"invalid amount {text!r}")
    try:
        return AMOUNT_CONTEXT.create_decimal(candidate)
    except Inexact as e:
        raise AmountParseError(
            f"amount {text!r} exceeds {MAX_PRECISION} significant digits"
        ) from e


def add(left: Decimal, right: Decimal) -> Decimal:
    try:
        return AMOUNT_CONTEXT.add(left, right)
    except (Inexact, Overflow) as e:
        raise AmountOverflowError(f"{left} + {right} cannot be represented exactly") from e


def subtract(left: Decimal, right: Decimal) -> Decimal:
    try:
        return AMOUNT_CONTEXT.subtract(left, right)
    except (Inexact, Overflow) as e:
        raise AmountOverflowError(f"{left} - {right} cannot be represented exactly") from e


def format_amount(value: Decimal) -> str:
    """Fixed-point text keeping the value's own scale ("1.50" stays "1.50")."""
    return format(value, "f")
