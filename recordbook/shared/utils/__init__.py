"""Shared utilities for the Record Book platform."""
from .timeutils import (
    Clock,
    EPOCH,
    ensure_utc,
    from_storage_string,
    to_epoch_ms,
    to_storage_string,
    utc_now,
)

__all__ = [
    "Clock",
    "EPOCH",
    "ensure_utc",
    "from_storage_string",
    "to_epoch_ms",
    "to_storage_string",
    "utc_now",
]
