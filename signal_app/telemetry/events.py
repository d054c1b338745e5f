"""Counters exposed by each subsystem for status reads and logs.

Each counter set is written by the single thread that owns the subsystem;
readers get a point-in-time copy through ``to_dict``.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict


@dataclass(slots=True)
class StreamStats:
    """Stream client counters (frames, malformed drops, reconnects)."""

    messages_received: int = 0
    events_delivered: int = 0
    malformed_dropped: int = 0
    unsubscribed_dropped: int = 0
    connects: int = 0
    drops: int = 0
    failed_connects: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class BookStats:
    """Order-book engine counters."""

    updates_applied: int = 0
    updates_buffered: int = 0
    updates_dropped: int = 0
    gaps_detected: int = 0
    resyncs_completed: int = 0
    snapshot_failures: int = 0
    sync_exhausted: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class CandleStats:
    """Candle aggregator counters; late/duplicate trades are anomalies."""

    trades_accepted: int = 0
    duplicate_trades: int = 0
    late_trades: int = 0
    candles_closed: int = 0
    synthetic_candles: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class SignalStats:
    """Signal engine counters."""

    evaluations: int = 0
    signals_emitted: int = 0
    rule_failures: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(slots=True)
class DispatchStats:
    """Dispatcher counters, per delivery attempt."""

    dispatched: int = 0
    deliveries: int = 0
    delivery_failures: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


__all__ = ["BookStats", "CandleStats", "DispatchStats", "SignalStats", "StreamStats"]
