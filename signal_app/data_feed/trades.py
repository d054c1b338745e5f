"""Parsing helpers for Binance trade prints."""
from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from signal_app.core.enums import Side
from signal_app.core.errors import MalformedMessageError
from signal_app.core.types import TimestampMs, TradeId, normalize_instrument

from .events import Trade


def parse_trade_event(payload: Mapping[str, Any]) -> Trade:
    """Convert a ``trade`` event into :class:`Trade`.

    Structure: ``{"e": "trade", "E": 123, "s": "BNBBTC", "t": 12345,
    "p": "0.001", "q": "100", "T": 123456785, "m": true}``.
    """

    try:
        price = Decimal(str(payload["p"]))
        quantity = Decimal(str(payload["q"]))
        # Buyer is maker => seller was the aggressor
        side = Side.SELL if payload.get("m") else Side.BUY
        trade = Trade(
            instrument=normalize_instrument(payload["s"]),
            price=price,
            quantity=quantity,
            side=side,
            timestamp_ms=TimestampMs(int(payload["T"])),
            trade_id=TradeId(int(payload["t"])),
        )
        valid = price.is_finite() and quantity.is_finite() and price > 0 and quantity >= 0
    except (KeyError, TypeError, ValueError, InvalidOperation) as exc:
        raise MalformedMessageError(f"Invalid trade payload: {exc!r}") from exc
    if not valid:
        raise MalformedMessageError(f"Trade {trade.trade_id} with non-finite, non-positive price or negative quantity")
    return trade
