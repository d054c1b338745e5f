"""Pure signal rule implementations.

Every function here maps ``(rule, context)`` to a :class:`SignalEvent` or
``None`` and touches nothing but its arguments, so each can be tested with a
hand-built context.
"""
from __future__ import annotations

from decimal import Decimal
from typing import TYPE_CHECKING, Any, Callable, Dict, Mapping, Optional

from signal_app.core.enums import RuleKind
from signal_app.orderbook.models import side_notional

from .models import SignalContext, SignalEvent

if TYPE_CHECKING:
    from .registry import Rule

RuleFunction = Callable[["Rule", SignalContext], Optional[SignalEvent]]

_HUNDRED = Decimal(100)


def _decimal(value: Any) -> Decimal:
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _signal(rule: "Rule", context: SignalContext, payload: Mapping[str, Any]) -> SignalEvent:
    return SignalEvent(
        instrument=context.instrument,
        rule_id=rule.id,
        timestamp_ms=context.timestamp_ms,
        severity=rule.severity,
        payload=payload,
        interval=context.interval,
    )


def volume_spike(rule: "Rule", context: SignalContext) -> Optional[SignalEvent]:
    """Current volume is at least ``multiplier`` times the mean of the window before it."""

    window = int(rule.param("window", 20))
    multiplier = _decimal(rule.param("multiplier", 3))
    if window < 2 or len(context.candles) < window:
        return None
    candles = list(context.candles)[-window:]
    current = candles[-1]
    previous = candles[:-1]
    baseline = sum((candle.volume for candle in previous), Decimal(0)) / len(previous)
    if baseline <= 0:
        return None
    ratio = current.volume / baseline
    if ratio < multiplier:
        return None
    return _signal(
        rule,
        context,
        {
            "volume": str(current.volume),
            "baseline_volume": str(baseline),
            "ratio": str(ratio.quantize(Decimal("0.01"))),
            "close": str(current.close),
        },
    )


def momentum(rule: "Rule", context: SignalContext) -> Optional[SignalEvent]:
    """Close-to-close move over ``lookback`` candles exceeds ``threshold_pct``."""

    lookback = int(rule.param("lookback", 3))
    threshold_pct = _decimal(rule.param("threshold_pct", 1))
    if lookback < 1 or len(context.candles) < lookback + 1:
        return None
    reference = context.candles[-lookback - 1].close
    if reference <= 0:
        return None
    current = context.current
    change_pct = (current.close - reference) / reference * _HUNDRED
    if abs(change_pct) < threshold_pct:
        return None
    return _signal(
        rule,
        context,
        {
            "direction": "up" if change_pct > 0 else "down",
            "change_pct": str(change_pct.quantize(Decimal("0.0001"))),
            "reference_close": str(reference),
            "close": str(current.close),
        },
    )


def range_breakout(rule: "Rule", context: SignalContext) -> Optional[SignalEvent]:
    """Close breaks above the highest high or below the lowest low of the prior window."""

    window = int(rule.param("window", 20))
    if window < 2 or len(context.candles) < window:
        return None
    candles = list(context.candles)[-window:]
    current = candles[-1]
    range_high = max(candle.high for candle in candles[:-1])
    range_low = min(candle.low for candle in candles[:-1])
    if current.close > range_high:
        direction = "up"
    elif current.close < range_low:
        direction = "down"
    else:
        return None
    return _signal(
        rule,
        context,
        {
            "direction": direction,
            "range_high": str(range_high),
            "range_low": str(range_low),
            "close": str(current.close),
        },
    )


def book_imbalance(rule: "Rule", context: SignalContext) -> Optional[SignalEvent]:
    """Notional on one side of the top ``levels`` outweighs the other by ``ratio``."""

    ladder = context.ladder
    if ladder is None or not ladder.is_live:
        return None
    levels = int(rule.param("levels", 10))
    ratio = _decimal(rule.param("ratio", 3))
    bid_notional = side_notional(ladder.bids, levels)
    ask_notional = side_notional(ladder.asks, levels)
    if bid_notional <= 0 or ask_notional <= 0:
        return None
    if bid_notional / ask_notional >= ratio:
        side, observed = "bid", bid_notional / ask_notional
    elif ask_notional / bid_notional >= ratio:
        side, observed = "ask", ask_notional / bid_notional
    else:
        return None
    return _signal(
        rule,
        context,
        {
            "heavy_side": side,
            "ratio": str(observed.quantize(Decimal("0.01"))),
            "bid_notional": str(bid_notional),
            "ask_notional": str(ask_notional),
            "last_update_id": ladder.last_update_id,
        },
    )


def spread_alert(rule: "Rule", context: SignalContext) -> Optional[SignalEvent]:
    """Top-of-book spread wider than ``max_spread_bps``."""

    ladder = context.ladder
    if ladder is None or not ladder.is_live:
        return None
    max_spread_bps = _decimal(rule.param("max_spread_bps", 10))
    spread_bps = ladder.spread_bps
    if spread_bps is None or spread_bps <= max_spread_bps:
        return None
    return _signal(
        rule,
        context,
        {
            "spread_bps": str(spread_bps.quantize(Decimal("0.01"))),
            "best_bid": str(ladder.bids[0][0]),
            "best_ask": str(ladder.asks[0][0]),
        },
    )


RULE_FUNCTIONS: Dict[RuleKind, RuleFunction] = {
    RuleKind.VOLUME_SPIKE: volume_spike,
    RuleKind.MOMENTUM: momentum,
    RuleKind.RANGE_BREAKOUT: range_breakout,
    RuleKind.BOOK_IMBALANCE: book_imbalance,
    RuleKind.SPREAD_ALERT: spread_alert,
}

BOOK_RULES = frozenset({RuleKind.BOOK_IMBALANCE, RuleKind.SPREAD_ALERT})


__all__ = [
    "BOOK_RULES",
    "RULE_FUNCTIONS",
    "book_imbalance",
    "momentum",
    "range_breakout",
    "spread_alert",
    "volume_spike",
]
