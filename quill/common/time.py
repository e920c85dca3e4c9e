"""Common time utilities."""

from __future__ import annotations

import datetime as dt

# Values above this are treated as epoch milliseconds rather than seconds.
_EPOCH_MILLIS_THRESHOLD = 100_000_000_000


def utcnow() -> dt.datetime:
    """Return an aware UTC timestamp suitable for DB defaults."""
    return dt.datetime.now(dt.UTC)


def ensure_utc(value: dt.datetime) -> dt.datetime:
    """Return ``value`` in UTC, treating naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=dt.UTC)
    return value.astimezone(dt.UTC)


def isoformat_utc(value: dt.datetime) -> str:
    """Render ``value`` as ISO-8601 with an explicit UTC offset."""
    return ensure_utc(value).isoformat()


def parse_instant(value: object) -> dt.datetime | None:
    """Parse a producer-supplied instant into an aware UTC datetime.

    Accepts aware or naive datetimes, dates, ISO-8601 strings (``Z`` suffix
    allowed) and epoch numbers (milliseconds when large enough, seconds
    otherwise). Returns ``None`` when the value cannot be interpreted.
    """
    match value:
        case bool() | None:
            return None
        case dt.datetime():
            return ensure_utc(value)
        case dt.date():
            return dt.datetime(value.year, value.month, value.day, tzinfo=dt.UTC)
        case int() | float():
            return _parse_epoch(value)
        case str():
            return _parse_iso(value)
        case _:
            return None


def _parse_epoch(value: float) -> dt.datetime | None:
    try:
        seconds = value / 1000 if abs(value) >= _EPOCH_MILLIS_THRESHOLD else value
        return dt.datetime.fromtimestamp(seconds, tz=dt.UTC)
    except (OverflowError, OSError, ValueError):
        return None


def _parse_iso(value: str) -> dt.datetime | None:
    text = value.strip()
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = f"{text[:-1]}+00:00"
    try:
        parsed = dt.datetime.fromisoformat(text)
    except ValueError:
        return None
    return ensure_utc(parsed)
