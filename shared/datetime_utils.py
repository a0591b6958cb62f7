"""
Date/time helpers shared by the document models and services.

MongoDB stores datetimes as naive UTC with millisecond precision. Everything
in the application works with timezone-aware UTC datetimes, so values are
normalised on the way in (``truncate_to_millis``) and on the way out
(``ensure_utc``).
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return *value* as an aware UTC datetime; naive values are assumed UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def truncate_to_millis(value: datetime) -> datetime:
    """Drop sub-millisecond precision so a value survives a BSON round trip."""
    return value.replace(microsecond=(value.microsecond // 1000) * 1000)


def to_timestamp(value: datetime) -> float:
    return ensure_utc(value).timestamp()


def from_timestamp(value: Any) -> Optional[datetime]:
    """Parse Unix epoch seconds into an aware UTC datetime.

    Returns ``None`` for ``None`` or anything that is not a number.
    """
    if value is None or isinstance(value, bool):
        return None
    try:
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    except (TypeError, ValueError, OSError, OverflowError):
        return None


def to_bson_datetime(value: datetime) -> datetime:
    """Naive UTC at millisecond precision, the form MongoDB returns."""
    return truncate_to_millis(ensure_utc(value)).replace(tzinfo=None)
