"""Shared type aliases for readability and contract enforcement.

Prices and quantities travel as :class:`decimal.Decimal` so order-book keys
compare exactly; timestamps are integer milliseconds as sent by the exchange.
"""
from __future__ import annotations

from decimal import Decimal
from typing import Any, Mapping, MutableMapping, NewType, Sequence, Tuple, TypeAlias

Instrument = NewType("Instrument", str)
TimestampMs = NewType("TimestampMs", int)
UpdateId = NewType("UpdateId", int)
TradeId = NewType("TradeId", int)

Price: TypeAlias = Decimal
Quantity: TypeAlias = Decimal
PriceLevel: TypeAlias = Tuple[Decimal, Decimal]

JSONLike: TypeAlias = Mapping[str, Any]
MutableJSONLike: TypeAlias = MutableMapping[str, Any]
LevelSequence: TypeAlias = Sequence[PriceLevel]


def normalize_instrument(value: str) -> Instrument:
    """Return the canonical upper-case instrument key (``btcusdt`` -> ``BTCUSDT``)."""

    return Instrument(value.strip().upper())
