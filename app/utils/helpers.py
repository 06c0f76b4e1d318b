"""
Helper Functions
================

Common utility functions used across the application.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def utc_now() -> datetime:
    """Get current UTC datetime with timezone info."""
    return datetime.now(timezone.utc)


def from_epoch_ms(value: Optional[int]) -> Optional[datetime]:
    """
    Convert a millisecond Unix timestamp to an aware UTC datetime.

    Zero is treated like a missing timestamp.
    """
    if not value:
        return None
    return _EPOCH + timedelta(milliseconds=value)


def format_iso_millis(dt: Optional[datetime]) -> Optional[str]:
    """
    Format a datetime as ``YYYY-MM-DDTHH:MM:SS.mmmZ``.

    This is the shape JavaScript's ``Date.toISOString()`` produces, which is
    what the web and mobile clients parse. Naive datetimes are taken as UTC.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def from_epoch_seconds(value: Optional[int]) -> Optional[datetime]:
    """Convert a Unix timestamp in seconds (Stripe's format) to an aware UTC datetime."""
    if not value:
        return None
    return _EPOCH + timedelta(seconds=value)
