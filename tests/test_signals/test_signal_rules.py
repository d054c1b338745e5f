from __future__ import annotations

from decimal import Decimal
from typing import Any, Sequence

import pytest

from signal_app.candles.models import Candle, Interval
from signal_app.core.enums import BookState, RuleKind, Severity
from signal_app.orderbook.models import Ladder
from signal_app.signals.models import SignalContext
from signal_app.signals.registry import Rule
from signal_app.signals.rules import book_imbalance, momentum, range_breakout, spread_alert, volume_spike

from conftest import BTC

D = Decimal


def _rule(kind: RuleKind, **parameters: Any) -> Rule:
    return Rule(id=kind.value, kind=kind, priority=1, severity=Severity.WARNING, parameters=parameters)


def _context(candles: Sequence[Candle], ladder: Ladder | None = None) -> SignalContext:
    return SignalContext(instrument=BTC, interval=Interval.MIN_1, candles=tuple(candles), ladder=ladder)


def _ladder(bids, asks, state: BookState = BookState.LIVE) -> Ladder:
    def levels(raw):
        return tuple((D(price), D(qty)) for price, qty in raw)

    return Ladder(instrument=BTC, state=state, last_update_id=1, bids=levels(bids), asks=levels(asks))


def test_volume_spike_should_fire_on_last_candle_only(candle_factory) -> None:
    volumes = [1, 1, 1, 1, 50]
    rule = _rule(RuleKind.VOLUME_SPIKE, window=5, multiplier=3)
    events = []
    for end in range(1, len(volumes) + 1):
        candles = [candle_factory(i, volume=volumes[i]) for i in range(end)]
        event = volume_spike(rule, _context(candles))
        if event is not None:
            events.append(event)
    assert len(events) == 1
    event = events[0]
    assert event.payload["volume"] == "50"
    assert event.payload["ratio"] == "50.00"
    assert event.timestamp_ms == 5 * Interval.MIN_1.millis
    assert event.interval is Interval.MIN_1


def test_volume_spike_should_need_positive_baseline(candle_factory) -> None:
    candles = [candle_factory(i, volume=v) for i, v in enumerate([0, 0, 0, 0, 5])]
    assert volume_spike(_rule(RuleKind.VOLUME_SPIKE, window=5), _context(candles)) is None


def test_momentum_should_report_direction(candle_factory) -> None:
    rule = _rule(RuleKind.MOMENTUM, lookback=3, threshold_pct=1)
    rising = [candle_factory(i, close=c) for i, c in enumerate(["100", "100.2", "100.5", "101.5"])]
    falling = [candle_factory(i, close=c) for i, c in enumerate(["100", "99.8", "99.5", "98"])]
    flat = [candle_factory(i, close=c) for i, c in enumerate(["100", "100.2", "100.5", "100.9"])]

    up = momentum(rule, _context(rising))
    down = momentum(rule, _context(falling))
    assert up is not None and up.payload["direction"] == "up"
    assert up.payload["change_pct"] == "1.5000"
    assert down is not None and down.payload["direction"] == "down"
    assert momentum(rule, _context(flat)) is None
    assert momentum(rule, _context(rising[:3])) is None


def test_range_breakout_should_compare_against_prior_window(candle_factory) -> None:
    rule = _rule(RuleKind.RANGE_BREAKOUT, window=4)
    base = [candle_factory(i, close="100", high="101", low="99") for i in range(3)]
    breakout = range_breakout(rule, _context(base + [candle_factory(3, close="102", high="102", low="100")]))
    breakdown = range_breakout(rule, _context(base + [candle_factory(3, close="98", high="100", low="98")]))
    inside = range_breakout(rule, _context(base + [candle_factory(3, close="100.5")]))

    assert breakout is not None and breakout.payload["direction"] == "up"
    assert breakout.payload["range_high"] == "101"
    assert breakdown is not None and breakdown.payload["direction"] == "down"
    assert inside is None


def test_book_imbalance_should_detect_heavy_side(candle_factory) -> None:
    rule = _rule(RuleKind.BOOK_IMBALANCE, levels=2, ratio=3)
    candles = [candle_factory(0)]
    heavy_bid = _ladder(bids=[("100", "10"), ("99", "10")], asks=[("101", "1"), ("102", "1")])
    balanced = _ladder(bids=[("100", "1")], asks=[("101", "1")])

    event = book_imbalance(rule, _context(candles, heavy_bid))
    assert event is not None
    assert event.payload["heavy_side"] == "bid"
    assert book_imbalance(rule, _context(candles, balanced)) is None
    assert book_imbalance(rule, _context(candles, None)) is None


def test_book_rules_should_ignore_non_live_books(candle_factory) -> None:
    candles = [candle_factory(0)]
    stale = _ladder(bids=[("100", "50")], asks=[("200", "1")], state=BookState.DESYNCED)
    assert book_imbalance(_rule(RuleKind.BOOK_IMBALANCE), _context(candles, stale)) is None
    assert spread_alert(_rule(RuleKind.SPREAD_ALERT), _context(candles, stale)) is None


def test_spread_alert_should_fire_above_threshold(candle_factory) -> None:
    rule = _rule(RuleKind.SPREAD_ALERT, max_spread_bps=10)
    candles = [candle_factory(0)]
    wide = _ladder(bids=[("99", "1")], asks=[("101", "1")])
    tight = _ladder(bids=[("100", "1")], asks=[("100.05", "1")])

    event = spread_alert(rule, _context(candles, wide))
    assert event is not None
    assert event.payload["spread_bps"] == "200.00"
    assert spread_alert(rule, _context(candles, tight)) is None


def test_signal_event_should_be_immutable(candle_factory) -> None:
    candles = [candle_factory(i, volume=v) for i, v in enumerate([1, 1, 1, 1, 50])]
    event = volume_spike(_rule(RuleKind.VOLUME_SPIKE, window=5), _context(candles))
    with pytest.raises(TypeError):
        event.payload["volume"] = "0"  # type: ignore[index]
    with pytest.raises(AttributeError):
        event.rule_id = "other"  # type: ignore[misc]
    assert event.payload["volume"] == "50"
    assert event.to_dict()["severity"] == "warning"
