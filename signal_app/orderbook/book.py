"""Per-instrument order-book replica."""
from __future__ import annotations

import threading
from collections import deque
from typing import Deque, Optional

from signal_app.core.enums import BookState
from signal_app.core.errors import SequenceGapFault
from signal_app.core.types import Instrument
from signal_app.data_feed.events import DepthUpdate, Snapshot

from .ladder import PriceLadder
from .models import Ladder


class OrderBook:
    """Bid/ask ladders for one instrument plus its synchronization state.

    ``lock`` guards everything readers can observe (ladders, state, last
    applied id). Only the order-book engine's writer thread mutates a book;
    readers copy under the same lock, so a half-applied update is never
    visible. ``buffer``/``pending_snapshot``/``attempts`` belong to the
    writer alone.
    """

    def __init__(self, instrument: Instrument, *, max_buffered_updates: int) -> None:
        self.instrument = instrument
        self.lock = threading.Lock()
        self.bids = PriceLadder(descending=True)
        self.asks = PriceLadder(descending=False)
        self.state = BookState.SYNCING
        self.last_update_id = 0
        self.closed = False
        self.stalled = False
        self.resync_requested = False
        self.buffer: Deque[DepthUpdate] = deque(maxlen=max_buffered_updates)
        self.pending_snapshot: Optional[Snapshot] = None
        self.attempts = 0

    # ------------------------------------------------------------------
    # Mutations (caller holds ``lock``)
    # ------------------------------------------------------------------
    def load_snapshot(self, snapshot: Snapshot) -> None:
        self.bids.load(snapshot.bids)
        self.asks.load(snapshot.asks)
        self.last_update_id = snapshot.last_update_id

    def apply_changes(self, update: DepthUpdate) -> None:
        """Apply every level change of ``update`` without a contiguity check."""

        for price, qty in update.bid_changes:
            self.bids.set_level(price, qty)
        for price, qty in update.ask_changes:
            self.asks.set_level(price, qty)
        self.last_update_id = update.last_update_id

    def apply_update(self, update: DepthUpdate) -> None:
        """Apply ``update`` if it continues the chain, else raise :class:`SequenceGapFault`."""

        expected = self.last_update_id + 1
        if update.first_update_id != expected:
            raise SequenceGapFault(self.instrument, expected, update.first_update_id)
        self.apply_changes(update)

    def reset_sync(self, state: BookState) -> None:
        """Drop writer-side sync progress and enter ``state`` (SYNCING/DESYNCED)."""

        self.state = state
        self.buffer.clear()
        self.pending_snapshot = None
        self.attempts = 0
        self.stalled = False

    # ------------------------------------------------------------------
    # Reads (caller holds ``lock``)
    # ------------------------------------------------------------------
    def ladder(self, depth: Optional[int] = None) -> Ladder:
        return Ladder(
            instrument=self.instrument,
            state=self.state,
            last_update_id=self.last_update_id,
            bids=self.bids.levels(depth),
            asks=self.asks.levels(depth),
        )


__all__ = ["OrderBook"]
