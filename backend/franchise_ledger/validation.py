from __future__ import annotations

import enum
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, TypeVar

from .errors import ValidationError
from .money import to_decimal
from .time_utils import parse_iso_datetime

E = TypeVar("E", bound=enum.Enum)


def parse_enum(enum_cls: type[E], value: Any, *, field: str) -> E:
    """
    Resolve a closed enum from its member, name or value (case-insensitive).

    "home & kitchen", "HOME_KITCHEN" and ProductCategory.HOME_KITCHEN all
    resolve to the same member. Anything else is a ValidationError.
    """
    if isinstance(value, enum_cls):
        return value
    if value is None or str(value).strip() == "":
        raise ValidationError(f"{field} is required", field=field)
    text = str(value).strip()
    lowered = text.lower()
    for member in enum_cls:
        if lowered in (member.name.lower(), str(member.value).lower()):
            return member
    allowed = ", ".join(str(m.value) for m in enum_cls)
    raise ValidationError(
        f"Invalid {field}: {text!r}. Allowed: {allowed}",
        {"value": text},
        field=field,
    )


def parse_int(value: Any, *, field: str, minimum: int | None = None, required: bool = True) -> int | None:
    """Strict integer: rejects floats with a fraction, bools and scientific notation."""
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required", field=field)
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer", {"value": value}, field=field)
    if isinstance(value, int):
        result = value
    elif isinstance(value, float):
        if not value.is_integer():
            raise ValidationError(f"{field} must be an integer, not a decimal", {"value": value}, field=field)
        result = int(value)
    else:
        stripped = str(value).strip()
        if "e" in stripped.lower():
            raise ValidationError(f"{field} must be a plain integer", {"value": stripped}, field=field)
        try:
            as_decimal = Decimal(stripped)
        except InvalidOperation:
            raise ValidationError(f"{field} must be an integer", {"value": stripped}, field=field)
        if as_decimal != as_decimal.to_integral_value():
            raise ValidationError(f"{field} must be an integer, not a decimal", {"value": stripped}, field=field)
        result = int(as_decimal)
    if minimum is not None and result < minimum:
        raise ValidationError(f"{field} must be >= {minimum}", {"value": result}, field=field)
    return result


def parse_money(value: Any, *, field: str, required: bool = True, default: Decimal | None = None) -> Decimal | None:
    """Non-negative Decimal amount."""
    try:
        amount = to_decimal(value, default=default)
    except InvalidOperation:
        raise ValidationError(f"{field} must be a number", {"value": value}, field=field)
    if amount is None:
        if required:
            raise ValidationError(f"{field} is required", field=field)
        return None
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a number", {"value": str(value)}, field=field)
    if amount < 0:
        raise ValidationError(f"{field} must be >= 0", {"value": str(amount)}, field=field)
    return amount


def parse_percent(value: Any, *, field: str) -> Decimal:
    """0..100, defaulting to 0."""
    pct = parse_money(value, field=field, required=False, default=Decimal("0"))
    if pct > 100:
        raise ValidationError(f"{field} cannot exceed 100", {"value": str(pct)}, field=field)
    return pct


def clean_text(value: Any, *, max_length: int | None = None, field: str = "value") -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if max_length and len(text) > max_length:
        raise ValidationError(f"{field} exceeds max length {max_length}", field=field)
    return text


def normalize_sku(value: Any) -> str | None:
    """SKUs compare trimmed and upper-cased."""
    text = clean_text(value, max_length=64, field="sku")
    return text.upper() if text else None


def parse_datetime(value: Any, *, field: str) -> datetime | None:
    """ISO-8601 -> UTC-naive datetime; None/blank -> None."""
    try:
        return parse_iso_datetime(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be an ISO-8601 datetime", {"value": str(value)}, field=field)
