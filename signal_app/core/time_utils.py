"""Utilities for timestamps and interval arithmetic.

Exchange timestamps are UTC milliseconds. Candle buckets are aligned to the
epoch, so bucket arithmetic is plain integer flooring.
"""
from __future__ import annotations

import time
from datetime import datetime, timezone

from .types import TimestampMs


def now_ms() -> TimestampMs:
    """Return the current UTC time in epoch milliseconds."""

    return TimestampMs(int(time.time() * 1000))


def floor_to_interval(timestamp_ms: int, interval_ms: int) -> TimestampMs:
    """Return the start of the interval bucket containing ``timestamp_ms``."""

    if interval_ms <= 0:
        raise ValueError("interval_ms must be positive")
    return TimestampMs((timestamp_ms // interval_ms) * interval_ms)


def ms_to_datetime(timestamp_ms: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""

    return datetime.fromtimestamp(timestamp_ms / 1000.0, tz=timezone.utc)
