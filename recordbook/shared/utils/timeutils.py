"""Timestamp helpers shared by services.

All stored timestamps are UTC. Naive datetimes handed in by callers are
interpreted as UTC rather than local time so results never depend on the
host's time zone.
"""
from datetime import datetime, timedelta, timezone
from typing import Callable

Clock = Callable[[], datetime]

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now() -> datetime:
    """Default clock: the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_epoch_ms(value: datetime) -> int:
    """Milliseconds since the Unix epoch, computed without float rounding."""
    return (ensure_utc(value) - EPOCH) // timedelta(milliseconds=1)


def to_storage_string(value: datetime) -> str:
    """Fixed-width ISO-8601 form whose string order equals time order.

    Example:
        >>> to_storage_string(datetime(2024, 9, 1, 8, 30, tzinfo=timezone.utc))
        '2024-09-01T08:30:00.000000+00:00'
    """
    return ensure_utc(value).isoformat(timespec="microseconds")


def from_storage_string(value: str) -> datetime:
    """Parse a timestamp written by :func:`to_storage_string`."""
    return ensure_utc(datetime.fromisoformat(value))
