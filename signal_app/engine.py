"""Engine facade wiring stream, books, candles, signals and dispatch.

Threads at runtime:

* ``stream-ws``: WebSocket session, decodes frames and publishes events;
* ``orderbook-worker``: single writer of every order book (snapshot fetches
  happen here and never stall the stream thread);
* ``candles-worker``: single writer of every candle series, also runs rule
  evaluation for closed candles and the periodic close of quiet buckets;
* ``dispatch-worker``: delivers signal events to sinks;
* ``candle-clock``: enqueues close ticks for the candle worker.

The query accessors (:meth:`current_book`, :meth:`recent_candles`,
:meth:`recent_signals`) are safe from any thread.
"""
from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from signal_app.candles.aggregator import CandleAggregator
from signal_app.candles.models import Candle, Interval
from signal_app.config.models import EngineConfig
from signal_app.core.enums import BookState, ConnectionState, Severity
from signal_app.core.time_utils import now_ms
from signal_app.core.types import Instrument, normalize_instrument
from signal_app.data_feed.binance_client import BinanceRestClient, BinanceWebSocketSession
from signal_app.data_feed.events import StreamEvent
from signal_app.data_feed.fanout import ConsumerWorker, EventFanout
from signal_app.data_feed.stream import Jitter, StreamClient, Transport, TransportFactory
from signal_app.dispatch.dispatcher import Dispatcher, SignalSink
from signal_app.orderbook.engine import OrderBookEngine, SnapshotProvider
from signal_app.orderbook.models import Ladder
from signal_app.signals.engine import SignalEngine
from signal_app.signals.models import SignalEvent
from signal_app.signals.registry import Rule

LOGGER = logging.getLogger(__name__)

BOOK_DESYNCED_RULE_ID = "system.book_desynced"


@dataclass(frozen=True, slots=True)
class ClockTick:
    """Time-driven close request processed by the candle worker."""

    now_ms: int


class MarketDataEngine:
    """Owns subscriptions and exposes read-only views of books, candles and signals."""

    def __init__(
        self,
        config: EngineConfig,
        rules: Sequence[Rule],
        *,
        snapshot_provider: SnapshotProvider | None = None,
        transport_factory: TransportFactory | None = None,
        sinks: Iterable[SignalSink] = (),
        jitter: Jitter = random.uniform,
        clock: Callable[[], int] = now_ms,
        background_dispatch: bool = True,
    ) -> None:
        self._config = config
        self._clock = clock
        self._rest_client: BinanceRestClient | None = None
        if snapshot_provider is None:
            self._rest_client = BinanceRestClient(config.binance, snapshot_depth=config.orderbook.snapshot_depth)
            snapshot_provider = self._rest_client

        self.dispatcher = Dispatcher(sinks, background=background_dispatch)
        self.signals = SignalEngine(
            rules,
            config.signals,
            book_reader=self._book_for_rules,
            on_signal=self.dispatcher.submit,
        )
        self.books = OrderBookEngine(
            snapshot_provider,
            config.orderbook,
            on_state_change=self._on_book_state,
            on_sync_failure=self._on_sync_failure,
        )
        self.candles = CandleAggregator(config.candles, on_close=self.signals.on_candle)

        self.fanout: EventFanout[Any] = EventFanout()
        self.fanout.add_consumer("orderbook", self.books.on_event)
        self._candle_worker: ConsumerWorker[Any] = self.fanout.add_consumer("candles", self._on_candle_input)

        instruments = [normalize_instrument(symbol) for symbol in config.instruments]
        for instrument in instruments:
            self._track(instrument)
        self.stream = StreamClient(
            transport_factory or self._default_transport,
            instruments,
            self.fanout.publish,
            config=config.stream,
            jitter=jitter,
            clock=clock,
            state_listener=self._on_connection_state,
        )
        self._ticker: Optional[threading.Thread] = None
        self._stopping = threading.Event()
        self._started = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self, *, candle_clock: bool = True) -> None:
        if self._started:
            return
        self._started = True
        self.dispatcher.start()
        self.fanout.start()
        self.stream.start()
        if candle_clock:
            self._ticker = threading.Thread(target=self._tick_loop, name="candle-clock", daemon=True)
            self._ticker.start()
        LOGGER.info("Engine started", extra={"instruments": sorted(self.stream.instruments)})

    def stop(self, timeout: float | None = 5.0) -> None:
        """Stop streaming, drain the consumers and release network clients."""

        self._stopping.set()
        self.stream.stop(timeout)
        if self._ticker is not None:
            self._ticker.join(timeout)
            self._ticker = None
        self.fanout.stop(timeout)
        self.dispatcher.stop(timeout)
        if self._rest_client is not None:
            self._rest_client.close()
        LOGGER.info("Engine stopped", extra={"stats": self.stats()})

    def wait_idle(self) -> None:
        """Block until every event published so far is processed and dispatched."""

        self.fanout.wait_idle()
        self.dispatcher.wait_idle()

    # ------------------------------------------------------------------
    # Subscriptions
    # ------------------------------------------------------------------
    def subscribe(self, instruments: Iterable[str]) -> List[Instrument]:
        symbols = [normalize_instrument(symbol) for symbol in instruments]
        for instrument in symbols:
            self._track(instrument)
        added = self.stream.subscribe(symbols)
        if added:
            LOGGER.info("Instruments subscribed", extra={"instruments": added})
        return added

    def unsubscribe(self, instruments: Iterable[str]) -> List[Instrument]:
        """Stop delivery first, then release book, candle and signal state."""

        removed = self.stream.unsubscribe(instruments)
        for instrument in removed:
            self.books.remove_instrument(instrument)
            self.candles.remove_instrument(instrument)
            self.signals.remove_instrument(instrument)
        if removed:
            LOGGER.info("Instruments unsubscribed", extra={"instruments": removed})
        return removed

    def resync(self, instrument: str) -> bool:
        return self.books.resync(normalize_instrument(instrument))

    # ------------------------------------------------------------------
    # Query accessors
    # ------------------------------------------------------------------
    def current_book(self, instrument: str, depth: Optional[int] = None) -> Optional[Ladder]:
        return self.books.ladder(normalize_instrument(instrument), depth)

    def book_state(self, instrument: str) -> Optional[BookState]:
        return self.books.state(normalize_instrument(instrument))

    def recent_candles(self, instrument: str, interval: Interval | str, n: int) -> List[Candle]:
        return self.candles.recent_candles(normalize_instrument(instrument), Interval.from_value(interval), n)

    def recent_signals(self, instrument: str, n: int) -> List[SignalEvent]:
        return self.signals.recent_signals(normalize_instrument(instrument), n)

    @property
    def connection_state(self) -> ConnectionState:
        return self.stream.state

    def stats(self) -> Dict[str, Any]:
        return {
            "connection_state": self.stream.state.value,
            "stream": self.stream.stats.to_dict(),
            "books": self.books.stats.to_dict(),
            "candles": self.candles.stats.to_dict(),
            "signals": self.signals.stats.to_dict(),
            "dispatch": self.dispatcher.stats.to_dict(),
            "backlog": self.fanout.backlog(),
        }

    # ------------------------------------------------------------------
    # Wiring
    # ------------------------------------------------------------------
    def _track(self, instrument: Instrument) -> None:
        self.books.add_instrument(instrument)
        self.candles.add_instrument(instrument)

    def _default_transport(self) -> Transport:
        return BinanceWebSocketSession(self._config.binance.ws_endpoint, timeout=self._config.stream.recv_timeout_sec)

    def _on_candle_input(self, item: StreamEvent | ClockTick) -> None:
        if isinstance(item, ClockTick):
            self.candles.close_expired(item.now_ms)
        else:
            self.candles.on_event(item)

    def _tick_loop(self) -> None:
        period = self._config.candles.close_check_sec
        grace = self._config.candles.close_grace_ms
        while not self._stopping.wait(period):
            self._candle_worker.submit(ClockTick(now_ms=self._clock() - grace))

    def _book_for_rules(self, instrument: Instrument) -> Optional[Ladder]:
        return self.books.ladder(instrument)

    def _on_book_state(self, instrument: Instrument, old: BookState, new: BookState) -> None:
        LOGGER.info("Book state change", extra={"instrument": instrument, "from": old.value, "to": new.value})

    def _on_sync_failure(self, instrument: Instrument, attempts: int) -> None:
        self.signals.emit_system(
            instrument,
            BOOK_DESYNCED_RULE_ID,
            {"attempts": attempts, "state": BookState.DESYNCED.value},
            severity=Severity.CRITICAL,
        )

    def _on_connection_state(self, old: ConnectionState, new: ConnectionState) -> None:
        if new is ConnectionState.BACKOFF:
            LOGGER.warning("Stream in backoff", extra={"from": old.value})


__all__ = ["BOOK_DESYNCED_RULE_ID", "ClockTick", "MarketDataEngine"]
