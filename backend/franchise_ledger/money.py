# Overview: Decimal helpers for monetary values.

from __future__ import annotations

from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

ZERO = Decimal("0")
HUNDRED = Decimal("100")
MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP


def to_decimal(value: Any, *, default: Decimal | None = None) -> Decimal | None:
    """
    Coerce user or database input into a Decimal without rounding.

    Floats go through str() so 0.1 stays 0.1. Currency symbols and
    thousands separators are stripped from strings.
    """
    if value is None or value == "":
        return default
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise InvalidOperation(f"Not a number: {value!r}")
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        return Decimal(str(value))
    text = str(value).strip().replace("$", "").replace("₹", "").replace(",", "")
    if not text:
        return default
    return Decimal(text)


def round_money(value: Decimal | None, decimal_places: int = MONEY_DECIMAL_PLACES) -> Decimal:
    """
    Round a monetary value for presentation.

    Intermediate sums stay unrounded; call this only when building output.
    """
    if value is None:
        value = ZERO
    quantize_str = "0." + "0" * decimal_places
    return Decimal(value).quantize(Decimal(quantize_str), rounding=DEFAULT_ROUNDING)


def money_out(value: Decimal | None) -> float:
    """Rounded float for JSON payloads."""
    return float(round_money(value))


def percent(part: Decimal, whole: Decimal) -> Decimal:
    """part / whole * 100, or 0 when whole is 0."""
    if not whole:
        return ZERO
    return Decimal(part) / Decimal(whole) * HUNDRED
