"""Signal engine: runs the configured rules against every closed candle."""
from __future__ import annotations

import logging
import threading
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Mapping, Optional, Sequence, Tuple

from signal_app.candles.models import Candle, Interval
from signal_app.config.models import SignalsConfig
from signal_app.core.enums import Severity, SignalKind
from signal_app.core.errors import RuleEvaluationFault
from signal_app.core.time_utils import now_ms
from signal_app.core.types import Instrument
from signal_app.orderbook.models import Ladder
from signal_app.telemetry.events import SignalStats

from .models import SignalContext, SignalEvent
from .registry import Rule

LOGGER = logging.getLogger(__name__)

BookReader = Callable[[Instrument], Optional[Ladder]]
SignalListener = Callable[[SignalEvent], None]


class SignalEngine:
    """Evaluates rules once per closed candle in a fixed order.

    Candle history per ``(instrument, interval)`` is bounded by
    ``history_size``; emitted signals are kept per instrument (bounded by
    ``recent_signals``) for the query surface and forwarded to
    ``on_signal`` in emission order. A failing rule is logged and skipped
    without affecting the remaining rules.
    """

    def __init__(
        self,
        rules: Sequence[Rule],
        config: SignalsConfig | None = None,
        *,
        book_reader: BookReader | None = None,
        on_signal: SignalListener | None = None,
    ) -> None:
        self._rules: Tuple[Rule, ...] = tuple(rules)
        self._config = config or SignalsConfig()
        self._book_reader = book_reader
        self._on_signal = on_signal
        self._history: Dict[Tuple[Instrument, Interval], Deque[Candle]] = {}
        self._recent: Dict[Instrument, Deque[SignalEvent]] = {}
        self._lock = threading.Lock()
        self.stats = SignalStats()

    @property
    def rules(self) -> Tuple[Rule, ...]:
        return self._rules

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------
    def on_candle(self, candle: Candle) -> List[SignalEvent]:
        """Record ``candle`` in the lookback window and evaluate applicable rules."""

        key = (candle.instrument, candle.interval)
        with self._lock:
            history = self._history.get(key)
            if history is None:
                history = deque(maxlen=self._config.history_size)
                self._history[key] = history
            history.append(candle)
            window = tuple(history)
        applicable = [rule for rule in self._rules if rule.applies_to(candle.interval)]
        if not applicable:
            return []
        ladder = None
        if self._book_reader is not None and any(rule.needs_book for rule in applicable):
            ladder = self._book_reader(candle.instrument)
        context = SignalContext(instrument=candle.instrument, interval=candle.interval, candles=window, ladder=ladder)
        return self.evaluate(context, applicable)

    def evaluate(self, context: SignalContext, rules: Sequence[Rule] | None = None) -> List[SignalEvent]:
        """Run ``rules`` (default: all) against ``context`` and emit the results in order."""

        events: List[SignalEvent] = []
        for rule in rules if rules is not None else self._rules:
            self.stats.evaluations += 1
            try:
                event = rule.evaluate(context)
            except Exception as exc:
                self.stats.rule_failures += 1
                fault = RuleEvaluationFault(f"rule {rule.id} failed: {exc!r}")
                LOGGER.error(
                    "Rule evaluation failed",
                    exc_info=exc,
                    extra={"rule_id": rule.id, "instrument": context.instrument, "error": str(fault)},
                )
                continue
            if event is not None:
                events.append(event)
        for event in events:
            self._publish(event)
        return events

    def emit_system(
        self,
        instrument: Instrument,
        rule_id: str,
        payload: Mapping[str, Any],
        *,
        severity: Severity = Severity.CRITICAL,
    ) -> SignalEvent:
        """Emit an engine-originated event (e.g. a book that cannot resynchronize)."""

        event = SignalEvent(
            instrument=instrument,
            rule_id=rule_id,
            timestamp_ms=now_ms(),
            severity=severity,
            payload=payload,
            kind=SignalKind.SYSTEM,
        )
        self._publish(event)
        return event

    def remove_instrument(self, instrument: Instrument) -> None:
        with self._lock:
            for key in [key for key in self._history if key[0] == instrument]:
                del self._history[key]
            self._recent.pop(instrument, None)

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------
    def recent_signals(self, instrument: Instrument, n: int) -> List[SignalEvent]:
        """Return up to ``n`` most recent signals for ``instrument``, oldest first."""

        if n <= 0:
            return []
        with self._lock:
            recent = self._recent.get(instrument)
            if recent is None:
                return []
            return list(recent)[-n:]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _publish(self, event: SignalEvent) -> None:
        with self._lock:
            recent = self._recent.get(event.instrument)
            if recent is None:
                recent = deque(maxlen=self._config.recent_signals)
                self._recent[event.instrument] = recent
            recent.append(event)
            self.stats.signals_emitted += 1
        LOGGER.info("Signal emitted", extra=event.to_dict())
        if self._on_signal is not None:
            self._on_signal(event)


__all__ = ["SignalEngine"]
