# Overview: UTC time helpers; every timestamp in the ledger is stored as naive UTC.

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional, Union


def utcnow() -> datetime:
    """Current time as naive UTC, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_iso_datetime(value: Optional[Union[str, datetime, date]]) -> Optional[datetime]:
    """
    Normalize an ISO-8601 string, date or datetime to naive UTC.

    - None / blank string -> None
    - "YYYY-MM-DD" or a date -> midnight UTC that day
    - offset or "Z" suffixed values are shifted to UTC
    - naive values are taken to already be UTC

    Raises ValueError for unparseable strings; callers map it to a field error.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if not text:
            return None
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_utc_z(value: Optional[datetime]) -> Optional[str]:
    """Render as second-precision ISO-8601 with a trailing Z (naive input is UTC)."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.replace(microsecond=0).isoformat() + "Z"


def trailing_window(end: Optional[datetime], days: int) -> tuple[datetime, datetime]:
    """(end - days, end), with end defaulting to now."""
    end = end or utcnow()
    return end - timedelta(days=days), end


def month_key(value: datetime) -> str:
    """Calendar bucket used by monthly trends, e.g. "2024-03"."""
    return f"{value.year:04d}-{value.month:02d}"
