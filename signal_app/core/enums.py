"""Enumerations shared across subsystems.

State machines (stream connection, order-book synchronization) and the
closed set of signal rule kinds live here so every package agrees on the
same vocabulary.
"""
from __future__ import annotations

from enum import Enum


class Side(str, Enum):
    """Taker side of a trade."""

    BUY = "buy"
    SELL = "sell"


class BookState(str, Enum):
    """Synchronization state of a local order-book replica."""

    SYNCING = "syncing"
    LIVE = "live"
    DESYNCED = "desynced"


class ConnectionState(str, Enum):
    """Stream client lifecycle."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    BACKOFF = "backoff"
    STOPPED = "stopped"


class ConnectionEventKind(str, Enum):
    """Connection notifications surfaced to stream consumers."""

    CONNECTED = "connected"
    DROPPED = "dropped"
    RESUMED = "resumed"


class Severity(str, Enum):
    """Importance of a signal event, ordered from least to most urgent."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.INFO: 0, Severity.WARNING: 1, Severity.CRITICAL: 2}


class SignalKind(str, Enum):
    """Origin of a signal event."""

    RULE = "rule"
    SYSTEM = "system"


class RuleKind(str, Enum):
    """Closed set of signal rule variants understood by the signal engine."""

    VOLUME_SPIKE = "volume_spike"
    MOMENTUM = "momentum"
    RANGE_BREAKOUT = "range_breakout"
    BOOK_IMBALANCE = "book_imbalance"
    SPREAD_ALERT = "spread_alert"
