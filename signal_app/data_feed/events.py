"""Typed events produced by the stream client."""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Mapping, Tuple, Union

from signal_app.core.enums import ConnectionEventKind, Side
from signal_app.core.types import Instrument, PriceLevel, TimestampMs, TradeId, UpdateId


@dataclass(frozen=True, slots=True)
class DepthUpdate:
    """Incremental order-book diff (``depthUpdate``). Quantity zero removes a level."""

    instrument: Instrument
    first_update_id: UpdateId
    last_update_id: UpdateId
    bid_changes: Tuple[PriceLevel, ...] = ()
    ask_changes: Tuple[PriceLevel, ...] = ()
    event_time_ms: TimestampMs = TimestampMs(0)


@dataclass(frozen=True, slots=True)
class Snapshot:
    """Full order-book baseline fetched over REST."""

    instrument: Instrument
    last_update_id: UpdateId
    bids: Mapping[Decimal, Decimal] = field(default_factory=dict)
    asks: Mapping[Decimal, Decimal] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class Trade:
    """Single aggregated-by-exchange trade print."""

    instrument: Instrument
    price: Decimal
    quantity: Decimal
    side: Side  # taker side
    timestamp_ms: TimestampMs
    trade_id: TradeId


@dataclass(frozen=True, slots=True)
class ConnectionEvent:
    """Connection lifecycle notification (dropped/resumed)."""

    kind: ConnectionEventKind
    timestamp_ms: TimestampMs
    reason: str | None = None


StreamEvent = Union[DepthUpdate, Trade, ConnectionEvent]


__all__ = ["ConnectionEvent", "DepthUpdate", "Snapshot", "StreamEvent", "Trade"]
