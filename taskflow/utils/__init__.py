"""
Utilities Module
================

Helper functions and utility classes.
"""

from taskflow.utils.helpers import (
    Instant,
    add_days,
    format_datetime,
    parse_datetime,
    utc_now,
)

__all__ = ["Instant", "add_days", "format_datetime", "parse_datetime", "utc_now"]
