"""Trade-to-candle aggregation with gap filling and anomaly rejection.

For each instrument and configured interval the aggregator owns exactly one
open candle. A trade in a later bucket closes it, emits synthetic
zero-volume candles for every skipped bucket and opens the next one, so
consumers always observe a gapless sequence. Already-seen trade ids are
counted and dropped without side effects. Lateness is decided per interval:
a trade is applied to every series whose open bucket it does not precede and
counted as late once if any series had to skip it.
"""
from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Callable, Deque, Dict, Iterable, List, Optional, Sequence, Set, Tuple

from signal_app.config.models import CandleConfig
from signal_app.core.errors import DuplicateTradeError, LateTradeError
from signal_app.core.time_utils import floor_to_interval
from signal_app.core.types import Instrument, TimestampMs
from signal_app.data_feed.events import StreamEvent, Trade
from signal_app.telemetry.events import CandleStats

from .models import Candle, Interval

LOGGER = logging.getLogger(__name__)

CandleListener = Callable[[Candle], None]


class TradeIdWindow:
    """Bounded memory of recently aggregated trade ids for one instrument.

    Ids evicted from the window raise the floor: anything at or below the
    highest evicted id is treated as already seen.
    """

    __slots__ = ("_order", "_seen", "_floor")

    def __init__(self, size: int) -> None:
        self._order: Deque[int] = deque(maxlen=size)
        self._seen: Set[int] = set()
        self._floor = -1

    def seen(self, trade_id: int) -> bool:
        return trade_id <= self._floor or trade_id in self._seen

    def add(self, trade_id: int) -> None:
        if len(self._order) == self._order.maxlen:
            evicted = self._order[0]
            self._seen.discard(evicted)
            self._floor = max(self._floor, evicted)
        self._order.append(trade_id)
        self._seen.add(trade_id)


@dataclass(slots=True)
class _Series:
    """Open candle plus closed history for one instrument/interval."""

    interval: Interval
    open_candle: Optional[Candle] = None
    last_closed: Optional[Candle] = None
    history: Deque[Candle] = field(default_factory=deque)


class _InstrumentCandles:
    """All series of one instrument guarded by that instrument's lock."""

    __slots__ = ("lock", "series", "trade_ids", "released")

    def __init__(self, intervals: Iterable[Interval], *, retention: int, dedup_window: int) -> None:
        self.lock = threading.Lock()
        self.series: Dict[Interval, _Series] = {
            interval: _Series(interval=interval, history=deque(maxlen=retention)) for interval in intervals
        }
        self.trade_ids = TradeIdWindow(dedup_window)
        self.released = False


class CandleAggregator:
    """Buckets trades into OHLCV candles per instrument and interval.

    Mutations happen on one writer thread (the candle consumer) under the
    instrument's own lock; :meth:`recent_candles` and :meth:`open_candle` may
    be called from any thread and return copies. Closed candles are handed
    to ``on_close`` in bucket order.
    """

    def __init__(
        self,
        config: CandleConfig | None = None,
        *,
        on_close: CandleListener | None = None,
    ) -> None:
        self._config = config or CandleConfig()
        self._intervals: Tuple[Interval, ...] = tuple(self._config.intervals)
        self._on_close = on_close
        self._instruments: Dict[Instrument, _InstrumentCandles] = {}
        self._registry_lock = threading.Lock()
        self.stats = CandleStats()

    @property
    def intervals(self) -> Tuple[Interval, ...]:
        return self._intervals

    # ------------------------------------------------------------------
    # Subscription management
    # ------------------------------------------------------------------
    def add_instrument(self, instrument: Instrument) -> None:
        with self._registry_lock:
            if instrument in self._instruments:
                return
            self._instruments[instrument] = _InstrumentCandles(
                self._intervals,
                retention=self._config.retention,
                dedup_window=self._config.dedup_window,
            )

    def remove_instrument(self, instrument: Instrument) -> None:
        """Release all candle state; later trades for ``instrument`` are ignored."""

        with self._registry_lock:
            state = self._instruments.pop(instrument, None)
        if state is None:
            return
        with state.lock:
            state.released = True

    # ------------------------------------------------------------------
    # Writer entry points
    # ------------------------------------------------------------------
    def on_event(self, event: StreamEvent) -> None:
        if isinstance(event, Trade):
            self.on_trade(event)

    def on_trade(self, trade: Trade) -> List[Candle]:
        """Aggregate ``trade``; return the candles closed by it (oldest first).

        Late and duplicate trades are counted and yield an empty list.
        """

        try:
            closed = self._aggregate(trade)
        except DuplicateTradeError:
            self.stats.duplicate_trades += 1
            LOGGER.debug("Duplicate trade ignored", extra={"instrument": trade.instrument, "trade_id": trade.trade_id})
            return []
        except LateTradeError as exc:
            self.stats.late_trades += 1
            LOGGER.info(
                "Late trade rejected",
                extra={"instrument": trade.instrument, "trade_id": trade.trade_id, "reason": str(exc)},
            )
            return []
        self._emit(closed)
        return closed

    def close_expired(self, now_ms: int) -> List[Candle]:
        """Close every open candle whose bucket ended at or before ``now_ms``.

        Instruments are visited one at a time; no two instrument locks are
        ever held together.
        """

        closed: List[Candle] = []
        for state in self._snapshot_states():
            with state.lock:
                if state.released:
                    continue
                for series in state.series.values():
                    candle = series.open_candle
                    if candle is not None and candle.bucket_end <= now_ms:
                        closed.append(self._close_open(series))
        self._emit(closed)
        return closed

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------
    def recent_candles(self, instrument: Instrument, interval: Interval, n: int) -> List[Candle]:
        """Return up to ``n`` most recent closed candles, oldest first."""

        state = self._get_state(instrument)
        if state is None or n <= 0:
            return []
        with state.lock:
            series = state.series.get(interval)
            if series is None:
                return []
            return list(series.history)[-n:]

    def open_candle(self, instrument: Instrument, interval: Interval) -> Optional[Candle]:
        """Return a copy of the candle currently being built, if any."""

        state = self._get_state(instrument)
        if state is None:
            return None
        with state.lock:
            series = state.series.get(interval)
            if series is None or series.open_candle is None:
                return None
            return replace(series.open_candle)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _aggregate(self, trade: Trade) -> List[Candle]:
        closed: List[Candle] = []
        state = self._get_state(trade.instrument)
        if state is None:
            return closed
        with state.lock:
            if state.released:
                return closed
            if state.trade_ids.seen(trade.trade_id):
                raise DuplicateTradeError(f"trade {trade.trade_id} already aggregated")
            accepting: List[_Series] = []
            late: Dict[str, str] = {}
            for series in state.series.values():
                reason = self._late_reason(series, trade)
                if reason is None:
                    accepting.append(series)
                else:
                    late[series.interval.value] = reason
            if not accepting:
                raise LateTradeError("; ".join(late.values()))
            state.trade_ids.add(trade.trade_id)
            for series in accepting:
                closed.extend(self._apply(series, trade))
            self.stats.trades_accepted += 1
            if late:
                # Closed candles of the late intervals stay untouched
                self.stats.late_trades += 1
                LOGGER.info(
                    "Late trade skipped for some intervals",
                    extra={"instrument": trade.instrument, "trade_id": trade.trade_id, "late_intervals": sorted(late)},
                )
        return closed

    @staticmethod
    def _late_reason(series: _Series, trade: Trade) -> Optional[str]:
        bucket = floor_to_interval(trade.timestamp_ms, series.interval.millis)
        if series.open_candle is not None:
            if bucket < series.open_candle.bucket_start:
                return f"{series.interval.value} bucket {bucket} precedes open bucket {series.open_candle.bucket_start}"
            return None
        if series.last_closed is not None and bucket <= series.last_closed.bucket_start:
            return f"{series.interval.value} bucket {bucket} is already closed (last {series.last_closed.bucket_start})"
        return None

    def _apply(self, series: _Series, trade: Trade) -> List[Candle]:
        bucket = floor_to_interval(trade.timestamp_ms, series.interval.millis)
        closed: List[Candle] = []
        candle = series.open_candle
        if candle is not None and bucket == candle.bucket_start:
            candle.high = max(candle.high, trade.price)
            candle.low = min(candle.low, trade.price)
            candle.close = trade.price
            candle.volume += trade.quantity
            candle.trade_count += 1
            return closed
        if candle is not None:
            closed.append(self._close_open(series))
        closed.extend(self._fill_gap(series, trade.instrument, bucket))
        series.open_candle = Candle(
            instrument=trade.instrument,
            interval=series.interval,
            bucket_start=bucket,
            open=trade.price,
            high=trade.price,
            low=trade.price,
            close=trade.price,
            volume=trade.quantity,
            trade_count=1,
        )
        return closed

    def _fill_gap(self, series: _Series, instrument: Instrument, bucket: TimestampMs) -> List[Candle]:
        """Emit zero-volume candles for buckets between the last close and ``bucket``."""

        previous = series.last_closed
        if previous is None:
            return []
        interval_ms = series.interval.millis
        price = previous.close
        synthetic: List[Candle] = []
        start = previous.bucket_start + interval_ms
        while start < bucket:
            candle = Candle(
                instrument=instrument,
                interval=series.interval,
                bucket_start=TimestampMs(start),
                open=price,
                high=price,
                low=price,
                close=price,
                volume=Decimal(0),
                trade_count=0,
                closed=True,
            )
            self._record_closed(series, candle)
            self.stats.synthetic_candles += 1
            synthetic.append(candle)
            start += interval_ms
        return synthetic

    def _close_open(self, series: _Series) -> Candle:
        assert series.open_candle is not None
        candle = series.open_candle.finalized()
        series.open_candle = None
        self._record_closed(series, candle)
        return candle

    def _record_closed(self, series: _Series, candle: Candle) -> None:
        series.last_closed = candle
        series.history.append(candle)
        self.stats.candles_closed += 1

    def _emit(self, candles: Sequence[Candle]) -> None:
        if self._on_close is None:
            return
        for candle in candles:
            self._on_close(candle)

    def _get_state(self, instrument: Instrument) -> Optional[_InstrumentCandles]:
        with self._registry_lock:
            return self._instruments.get(instrument)

    def _snapshot_states(self) -> List[_InstrumentCandles]:
        with self._registry_lock:
            return list(self._instruments.values())


__all__ = ["CandleAggregator", "TradeIdWindow"]
