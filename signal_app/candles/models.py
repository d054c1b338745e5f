"""Candle interval vocabulary and the OHLCV candle record."""
from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from typing import Any, Dict

from signal_app.core.types import Instrument, TimestampMs

_UNIT_MS = {"s": 1_000, "m": 60_000, "h": 3_600_000, "d": 86_400_000}


class Interval(str, Enum):
    """Supported candle intervals (Binance kline notation)."""

    SEC_1 = "1s"
    MIN_1 = "1m"
    MIN_3 = "3m"
    MIN_5 = "5m"
    MIN_15 = "15m"
    MIN_30 = "30m"
    HOUR_1 = "1h"
    HOUR_4 = "4h"
    DAY_1 = "1d"

    @property
    def millis(self) -> int:
        """Return interval duration in milliseconds."""

        return int(self.value[:-1]) * _UNIT_MS[self.value[-1]]

    @classmethod
    def from_value(cls, value: str) -> "Interval":
        """Map raw interval strings to enum members."""

        for member in cls:
            if member.value == value:
                return member
        raise ValueError(f"Unsupported interval: {value}")


@dataclass(slots=True)
class Candle:
    """OHLCV bar for one instrument/interval bucket.

    Mutated only by the candle aggregator while ``closed`` is false; closed
    candles are copies the aggregator never touches again.
    """

    instrument: Instrument
    interval: Interval
    bucket_start: TimestampMs
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal
    trade_count: int = 0
    closed: bool = False

    @property
    def bucket_end(self) -> int:
        return self.bucket_start + self.interval.millis

    @property
    def is_synthetic(self) -> bool:
        return self.trade_count == 0

    def finalized(self) -> "Candle":
        """Return a closed copy safe to share with readers."""

        return replace(self, closed=True)

    def as_dict(self) -> Dict[str, Any]:
        """Convenience representation for logs/tests."""

        return {
            "instrument": self.instrument,
            "interval": self.interval.value,
            "bucket_start": self.bucket_start,
            "open": str(self.open),
            "high": str(self.high),
            "low": str(self.low),
            "close": str(self.close),
            "volume": str(self.volume),
            "trade_count": self.trade_count,
            "closed": self.closed,
        }


__all__ = ["Candle", "Interval"]
