"""Read-only order-book views and liquidity metrics derived from them."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Sequence

from signal_app.core.enums import BookState
from signal_app.core.types import Instrument, PriceLevel

_BPS = Decimal(10_000)


@dataclass(frozen=True, slots=True)
class Ladder:
    """Consistent copy of a book as of ``last_update_id``.

    ``state`` travels with the copy so readers can flag stale data when the
    replica is not ``LIVE``.
    """

    instrument: Instrument
    state: BookState
    last_update_id: int
    bids: Sequence[PriceLevel]
    asks: Sequence[PriceLevel]

    @property
    def is_live(self) -> bool:
        return self.state is BookState.LIVE

    @property
    def best_bid(self) -> Optional[PriceLevel]:
        return self.bids[0] if self.bids else None

    @property
    def best_ask(self) -> Optional[PriceLevel]:
        return self.asks[0] if self.asks else None

    @property
    def mid_price(self) -> Optional[Decimal]:
        """Return ``(best_ask + best_bid) / 2`` or ``None`` for a one-sided book."""

        if not self.bids or not self.asks:
            return None
        return (self.bids[0][0] + self.asks[0][0]) / 2

    @property
    def spread(self) -> Optional[Decimal]:
        if not self.bids or not self.asks:
            return None
        return self.asks[0][0] - self.bids[0][0]

    @property
    def spread_bps(self) -> Optional[Decimal]:
        """Return spread expressed in basis points of the mid price."""

        mid = self.mid_price
        spread = self.spread
        if mid is None or spread is None or mid == 0:
            return None
        return spread / mid * _BPS


def side_notional(levels: Sequence[PriceLevel], max_levels: int) -> Decimal:
    """Return ``sum(price * qty)`` over the first ``max_levels`` levels."""

    total = Decimal(0)
    for price, qty in levels[:max_levels]:
        total += price * qty
    return total


__all__ = ["Ladder", "side_notional"]
