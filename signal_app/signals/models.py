"""Signal events and the read-only context rules are evaluated against."""
from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Sequence

from signal_app.candles.models import Candle, Interval
from signal_app.core.enums import Severity, SignalKind
from signal_app.core.types import Instrument, TimestampMs
from signal_app.orderbook.models import Ladder


@dataclass(frozen=True, slots=True)
class SignalEvent:
    """Immutable notification emitted by a rule or by the engine itself."""

    instrument: Instrument
    rule_id: str
    timestamp_ms: TimestampMs
    severity: Severity
    payload: Mapping[str, Any] = field(default_factory=dict)
    kind: SignalKind = SignalKind.RULE
    interval: Optional[Interval] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "payload", MappingProxyType(dict(self.payload)))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "instrument": self.instrument,
            "rule_id": self.rule_id,
            "timestamp_ms": self.timestamp_ms,
            "severity": self.severity.value,
            "kind": self.kind.value,
            "interval": self.interval.value if self.interval else None,
            "payload": dict(self.payload),
        }


@dataclass(frozen=True, slots=True)
class SignalContext:
    """Inputs of one rule evaluation.

    ``candles`` is the bounded lookback window, oldest first; its last element
    is the candle that just closed. ``ladder`` is a copy of the instrument's
    book taken when the context was built (``None`` if unavailable).
    """

    instrument: Instrument
    interval: Interval
    candles: Sequence[Candle]
    ladder: Optional[Ladder] = None

    @property
    def current(self) -> Candle:
        return self.candles[-1]

    @property
    def timestamp_ms(self) -> TimestampMs:
        """Close time of the current candle; signals are stamped with it."""

        return TimestampMs(self.current.bucket_end)


__all__ = ["SignalContext", "SignalEvent"]
