"""Timestamp parsing and normalization helpers."""

from datetime import datetime, timezone
from typing import Any, Optional

from dateutil import parser as date_parser

# Epoch values above this are treated as milliseconds (year 5138 in seconds)
_EPOCH_MS_CUTOFF = 1e11


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Return value as an aware UTC datetime.

    Naive datetimes are assumed to already be UTC (SQLite drops tzinfo on
    the way back out of the database).
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> datetime:
    """
    Parse a client timestamp into an aware UTC datetime.

    Accepts ISO-8601 strings, epoch seconds, epoch milliseconds and
    datetime instances.

    Args:
        value: Raw timestamp from the client payload

    Returns:
        Timezone-aware UTC datetime

    Raises:
        ValueError: If the value cannot be interpreted as a timestamp
    """
    if isinstance(value, datetime):
        return ensure_utc(value)

    # bool is an int subclass but never a timestamp
    if isinstance(value, bool):
        raise ValueError(f"Invalid timestamp: {value!r}")

    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > _EPOCH_MS_CUTOFF else value
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError) as e:
            raise ValueError(f"Timestamp out of range: {value!r}") from e

    if isinstance(value, str) and value.strip():
        text = value.strip()
        if text.lstrip("-").replace(".", "", 1).isdigit():
            return parse_timestamp(float(text))
        try:
            return ensure_utc(date_parser.isoparse(text))
        except (ValueError, OverflowError) as e:
            raise ValueError(f"Invalid timestamp: {value!r}") from e

    raise ValueError(f"Invalid timestamp: {value!r}")
