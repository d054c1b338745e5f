"""One side of an order book keyed by exact decimal price."""
from __future__ import annotations

from bisect import bisect_left, insort
from decimal import Decimal
from typing import Dict, Iterator, List, Mapping, Optional, Tuple

from signal_app.core.types import PriceLevel


class PriceLadder:
    """Price levels with O(1) point lookup and a sorted price index.

    ``_levels`` maps price to quantity for direct updates; ``_prices`` keeps
    the same keys sorted ascending for best-price and depth reads. Bids read
    the index from the top, asks from the bottom.
    """

    __slots__ = ("_descending", "_levels", "_prices")

    def __init__(self, *, descending: bool) -> None:
        self._descending = descending
        self._levels: Dict[Decimal, Decimal] = {}
        self._prices: List[Decimal] = []

    def __len__(self) -> int:
        return len(self._levels)

    def __contains__(self, price: object) -> bool:
        return price in self._levels

    def get(self, price: Decimal) -> Optional[Decimal]:
        return self._levels.get(price)

    def set_level(self, price: Decimal, quantity: Decimal) -> None:
        """Set ``price`` to ``quantity``; a zero quantity removes the level."""

        if quantity == 0:
            self.remove(price)
            return
        if price not in self._levels:
            insort(self._prices, price)
        self._levels[price] = quantity

    def remove(self, price: Decimal) -> None:
        if self._levels.pop(price, None) is None:
            return
        idx = bisect_left(self._prices, price)
        del self._prices[idx]

    def clear(self) -> None:
        self._levels.clear()
        self._prices.clear()

    def load(self, levels: Mapping[Decimal, Decimal]) -> None:
        """Replace the whole side with ``levels`` (zero quantities skipped)."""

        self._levels = {price: qty for price, qty in levels.items() if qty != 0}
        self._prices = sorted(self._levels)

    def best(self) -> Optional[PriceLevel]:
        if not self._prices:
            return None
        price = self._prices[-1] if self._descending else self._prices[0]
        return price, self._levels[price]

    def _ordered_prices(self) -> Iterator[Decimal]:
        return reversed(self._prices) if self._descending else iter(self._prices)

    def levels(self, depth: Optional[int] = None) -> Tuple[PriceLevel, ...]:
        """Return up to ``depth`` levels best-first (all levels when ``None``)."""

        out: List[PriceLevel] = []
        for price in self._ordered_prices():
            if depth is not None and len(out) >= depth:
                break
            out.append((price, self._levels[price]))
        return tuple(out)


__all__ = ["PriceLadder"]
