"""
UTC timestamp utilities for Visibility Probe.

All timestamps MUST be in UTC with explicit timezone markers.

This module provides:
- utc_now(): Current time as timezone-aware datetime
- utc_timestamp(): ISO 8601 timestamp string with 'Z' suffix
- elapsed_ms(): Milliseconds elapsed since a perf_counter reading

Examples:
    >>> from visibility_probe.utils.time import utc_now, utc_timestamp
    >>> now = utc_now()
    >>> now.tzinfo
    datetime.timezone.utc
    >>> utc_timestamp()
    '2025-11-02T08:30:45Z'
"""

import time
from datetime import UTC, datetime


def utc_now() -> datetime:
    """
    Return current time in UTC with timezone info.

    Returns:
        datetime: Current UTC time with tzinfo=timezone.utc

    Note:
        NEVER use datetime.now() without timezone parameter.
        NEVER use datetime.utcnow() (deprecated, returns naive datetime).
    """
    return datetime.now(UTC)


def utc_timestamp() -> str:
    """
    Return ISO 8601 timestamp string with 'Z' suffix.

    Format: YYYY-MM-DDTHH:MM:SSZ (with colons in time)
    Example: 2025-11-02T08:30:45Z

    Used for database storage, JSON exports, and logging.
    """
    return utc_now().strftime("%Y-%m-%dT%H:%M:%SZ")


def elapsed_ms(started: float) -> int:
    """
    Return whole milliseconds elapsed since a time.perf_counter() reading.

    Args:
        started: Value previously returned by time.perf_counter()

    Returns:
        int: Elapsed milliseconds, never negative
    """
    return max(0, int((time.perf_counter() - started) * 1000))
