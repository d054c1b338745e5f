from __future__ import annotations

import json
import threading
from collections import deque
from decimal import Decimal
from typing import Any, Callable, Deque, Iterable, List, Mapping, Sequence, Tuple

import pytest

from signal_app.candles.models import Candle, Interval
from signal_app.config.models import (
    CandleConfig,
    EngineConfig,
    OrderBookConfig,
    RuleConfig,
    SignalsConfig,
    StreamConfig,
)
from signal_app.core.enums import RuleKind, Severity, Side
from signal_app.core.errors import SnapshotFetchError, TransportFault
from signal_app.core.types import Instrument, TimestampMs, TradeId, UpdateId
from signal_app.data_feed.events import DepthUpdate, Snapshot, Trade

BTC = Instrument("BTCUSDT")
ETH = Instrument("ETHUSDT")


def _levels(levels: Iterable[Tuple[Any, Any]]) -> Tuple[Tuple[Decimal, Decimal], ...]:
    return tuple((Decimal(str(price)), Decimal(str(qty))) for price, qty in levels)


# ---------------------------------------------------------------------------
# Wire payload factories
# ---------------------------------------------------------------------------
def depth_payload(
    first: int,
    last: int,
    *,
    symbol: str = "BTCUSDT",
    bids: Sequence[Tuple[str, str]] = (),
    asks: Sequence[Tuple[str, str]] = (),
    event_time: int = 1_700_000_000_000,
) -> str:
    return json.dumps(
        {
            "e": "depthUpdate",
            "E": event_time,
            "s": symbol,
            "U": first,
            "u": last,
            "b": [list(level) for level in bids],
            "a": [list(level) for level in asks],
        }
    )


def trade_payload(
    trade_id: int,
    price: str,
    qty: str,
    ts: int,
    *,
    symbol: str = "BTCUSDT",
    buyer_is_maker: bool = False,
) -> str:
    return json.dumps(
        {"e": "trade", "E": ts, "s": symbol, "t": trade_id, "p": price, "q": qty, "T": ts, "m": buyer_is_maker}
    )


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------
class FakeSnapshotProvider:
    """Returns queued snapshots (or raises queued errors) in order."""

    def __init__(self) -> None:
        self.responses: Deque[Snapshot | Exception] = deque()
        self.calls: List[Instrument] = []
        self.on_fetch: Callable[[Instrument], None] | None = None

    def queue(self, *items: Snapshot | Exception) -> None:
        self.responses.extend(items)

    def fetch_snapshot(self, instrument: Instrument) -> Snapshot:
        self.calls.append(instrument)
        if self.on_fetch is not None:
            self.on_fetch(instrument)
        if not self.responses:
            raise SnapshotFetchError(f"no snapshot queued for {instrument}")
        item = self.responses.popleft()
        if isinstance(item, Exception):
            raise item
        return item


class FakeTransport:
    """Scripted transport: ``recv`` replays frames, then blocks until closed.

    A script entry that is an exception is raised from ``recv`` (simulating
    a drop). ``drained`` is set once the script is exhausted.
    """

    def __init__(self, frames: Iterable[str | Exception] = (), *, connect_error: Exception | None = None) -> None:
        self._frames: Deque[str | Exception] = deque(frames)
        self._connect_error = connect_error
        self._closed = threading.Event()
        self.drained = threading.Event()
        self.connected = False
        self.sent: List[Mapping[str, Any]] = []

    def connect(self) -> None:
        if self._connect_error is not None:
            raise self._connect_error
        self.connected = True

    def send_json(self, payload: Mapping[str, Any]) -> None:
        if self._closed.is_set():
            raise TransportFault("closed")
        self.sent.append(payload)

    def recv(self) -> str:
        if self._frames:
            item = self._frames.popleft()
            if isinstance(item, Exception):
                raise item
            return item
        self.drained.set()
        self._closed.wait(5.0)
        raise TransportFault("closed")

    def close(self) -> None:
        self._closed.set()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()


class FakeTransportFactory:
    """Hands out prepared transports in order; repeats the last one's behaviour when exhausted."""

    def __init__(self, *transports: FakeTransport) -> None:
        self._pending: Deque[FakeTransport] = deque(transports)
        self.created: List[FakeTransport] = []

    def __call__(self) -> FakeTransport:
        transport = self._pending.popleft() if self._pending else FakeTransport()
        self.created.append(transport)
        return transport


class FakeTelegramBot:
    """Stands in for ``telegram.Bot``; ``send_message`` is a coroutine like the real one."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.messages: List[Tuple[int, str]] = []
        self.shutdown_called = False

    async def send_message(self, chat_id: int, text: str) -> None:
        if self.error is not None:
            raise self.error
        self.messages.append((chat_id, text))

    async def shutdown(self) -> None:
        self.shutdown_called = True


class RecordingSink:
    def __init__(self, name: str = "recording", error: Exception | None = None) -> None:
        self.name = name
        self.error = error
        self.events: List[Any] = []

    def deliver(self, event: Any) -> None:
        if self.error is not None:
            raise self.error
        self.events.append(event)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def snapshot_provider() -> FakeSnapshotProvider:
    return FakeSnapshotProvider()


@pytest.fixture
def snapshot_factory() -> Callable[..., Snapshot]:
    def _factory(
        last_update_id: int,
        *,
        instrument: Instrument = BTC,
        bids: Iterable[Tuple[Any, Any]] = (("10.0", "1"), ("9.5", "2")),
        asks: Iterable[Tuple[Any, Any]] = (("10.5", "1"), ("11.0", "3")),
    ) -> Snapshot:
        return Snapshot(
            instrument=instrument,
            last_update_id=UpdateId(last_update_id),
            bids=dict(_levels(bids)),
            asks=dict(_levels(asks)),
        )

    return _factory


@pytest.fixture
def depth_update_factory() -> Callable[..., DepthUpdate]:
    def _factory(
        first: int,
        last: int | None = None,
        *,
        instrument: Instrument = BTC,
        bids: Iterable[Tuple[Any, Any]] = (),
        asks: Iterable[Tuple[Any, Any]] = (),
    ) -> DepthUpdate:
        return DepthUpdate(
            instrument=instrument,
            first_update_id=UpdateId(first),
            last_update_id=UpdateId(last if last is not None else first),
            bid_changes=_levels(bids),
            ask_changes=_levels(asks),
        )

    return _factory


@pytest.fixture
def trade_factory() -> Callable[..., Trade]:
    def _factory(
        trade_id: int,
        ts: int,
        price: Any = "100",
        qty: Any = "1",
        *,
        instrument: Instrument = BTC,
        side: Side = Side.BUY,
    ) -> Trade:
        return Trade(
            instrument=instrument,
            price=Decimal(str(price)),
            quantity=Decimal(str(qty)),
            side=side,
            timestamp_ms=TimestampMs(ts),
            trade_id=TradeId(trade_id),
        )

    return _factory


@pytest.fixture
def candle_factory() -> Callable[..., Candle]:
    def _factory(
        index: int,
        *,
        close: Any = "100",
        volume: Any = "1",
        high: Any | None = None,
        low: Any | None = None,
        open_: Any | None = None,
        instrument: Instrument = BTC,
        interval: Interval = Interval.MIN_1,
    ) -> Candle:
        close_dec = Decimal(str(close))
        open_dec = Decimal(str(open_)) if open_ is not None else close_dec
        high_dec = Decimal(str(high)) if high is not None else max(open_dec, close_dec)
        low_dec = Decimal(str(low)) if low is not None else min(open_dec, close_dec)
        return Candle(
            instrument=instrument,
            interval=interval,
            bucket_start=TimestampMs(index * interval.millis),
            open=open_dec,
            high=high_dec,
            low=low_dec,
            close=close_dec,
            volume=Decimal(str(volume)),
            trade_count=1,
            closed=True,
        )

    return _factory


@pytest.fixture
def orderbook_config() -> OrderBookConfig:
    return OrderBookConfig(snapshot_depth=100, max_snapshot_attempts=3, max_buffered_updates=100, ladder_depth=10)


@pytest.fixture
def candle_config() -> CandleConfig:
    return CandleConfig(intervals=[Interval.MIN_1], retention=100, dedup_window=100)


@pytest.fixture
def stream_config() -> StreamConfig:
    return StreamConfig(backoff_base_sec=0.01, backoff_cap_sec=0.05, recv_timeout_sec=1)


@pytest.fixture
def engine_config(orderbook_config: OrderBookConfig, candle_config: CandleConfig, stream_config: StreamConfig) -> EngineConfig:
    return EngineConfig(
        instruments=["btcusdt"],
        stream=stream_config,
        orderbook=orderbook_config,
        candles=candle_config,
        signals=SignalsConfig(history_size=30, recent_signals=20),
    )


@pytest.fixture
def volume_spike_rule_config() -> RuleConfig:
    return RuleConfig(
        id="volume_spike_1m",
        kind=RuleKind.VOLUME_SPIKE,
        priority=1,
        severity=Severity.WARNING,
        parameters={"window": 5, "multiplier": 3},
    )
