"""
Utilities Module
================

Helper functions and utility classes.
"""

from app.utils.helpers import (
    format_iso_millis,
    from_epoch_ms,
    from_epoch_seconds,
    utc_now,
)

__all__ = ["format_iso_millis", "from_epoch_ms", "from_epoch_seconds", "utc_now"]
