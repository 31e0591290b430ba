"""ISO timestamp helpers. All comparisons happen in UTC."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Convert to an aware UTC datetime; naive values are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_iso(value: datetime) -> str:
    """Format an aware or naive (assumed UTC) datetime as ISO 8601 UTC with a Z suffix."""
    return as_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO 8601 string into an aware UTC datetime.

    Accepts a trailing "Z" and naive values (treated as UTC).
    Returns None for missing or unparseable input.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def normalize_timestamp(value: Optional[str], now: Optional[datetime] = None) -> str:
    """Return value re-formatted as ISO UTC, or now (default: current time) if it does not parse."""
    parsed = parse_timestamp(value)
    if parsed is None:
        parsed = now or utc_now()
    return to_iso(parsed)


def day_key(value: datetime) -> tuple[int, int, int]:
    """Calendar day of value in UTC, as a sortable tuple."""
    value = as_utc(value)
    return (value.year, value.month, value.day)


def month_key(value: datetime) -> tuple[int, int]:
    """Calendar month of value in UTC, as a sortable tuple."""
    value = as_utc(value)
    return (value.year, value.month)
