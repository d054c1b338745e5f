"""Order-book engine implementing snapshot-plus-diff synchronization.

Protocol per instrument:

1. While ``SYNCING``/``DESYNCED`` every depth update is buffered in arrival
   order and a snapshot is requested from the injected provider.
2. Buffered updates with ``last_update_id <= snapshot.last_update_id`` are
   discarded.
3. The first remaining update must straddle ``snapshot.last_update_id + 1``
   and the rest must form a contiguous chain; otherwise the snapshot is
   dropped and re-fetched when the next update arrives (bounded by
   ``max_snapshot_attempts``).
4. Snapshot and buffered updates are applied and the book becomes ``LIVE``.
5. While ``LIVE`` an update is applied only if it continues the chain; a gap
   moves the book to ``DESYNCED`` and restarts at step 1.

A snapshot newer than everything buffered is kept while more updates
arrive. After exhausted attempts the book stays ``DESYNCED`` and ignores
updates until :meth:`OrderBookEngine.resync` or a stream resume.
"""
from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Protocol

from signal_app.config.models import OrderBookConfig
from signal_app.core.enums import BookState, ConnectionEventKind
from signal_app.core.errors import SequenceGapFault, SnapshotFetchError
from signal_app.core.types import Instrument
from signal_app.data_feed.events import ConnectionEvent, DepthUpdate, Snapshot, StreamEvent
from signal_app.telemetry.events import BookStats

from .book import OrderBook
from .models import Ladder

LOGGER = logging.getLogger(__name__)

StateListener = Callable[[Instrument, BookState, BookState], None]
SyncFailureListener = Callable[[Instrument, int], None]


class SnapshotProvider(Protocol):
    """Request/response accessor used during (re)synchronization."""

    def fetch_snapshot(self, instrument: Instrument) -> Snapshot:
        ...


class _SyncOutcome(Enum):
    LIVE = "live"
    WAIT = "wait"
    REFETCH = "refetch"


class OrderBookEngine:
    """Maintains a ``LIVE`` replica per subscribed instrument.

    All mutating entry points (:meth:`on_event`, :meth:`on_depth_update`)
    must be called from a single writer thread; read accessors are safe from
    any thread.
    """

    def __init__(
        self,
        snapshot_provider: SnapshotProvider,
        config: OrderBookConfig | None = None,
        *,
        on_state_change: StateListener | None = None,
        on_sync_failure: SyncFailureListener | None = None,
    ) -> None:
        self._provider = snapshot_provider
        self._config = config or OrderBookConfig()
        self._on_state_change = on_state_change
        self._on_sync_failure = on_sync_failure
        self._books: Dict[Instrument, OrderBook] = {}
        self._registry_lock = threading.Lock()
        self.stats = BookStats()

    # ------------------------------------------------------------------
    # Subscription management
    # ------------------------------------------------------------------
    def add_instrument(self, instrument: Instrument) -> None:
        with self._registry_lock:
            if instrument in self._books:
                return
            self._books[instrument] = OrderBook(instrument, max_buffered_updates=self._config.max_buffered_updates)
        LOGGER.info("Order book created", extra={"instrument": instrument})

    def remove_instrument(self, instrument: Instrument) -> None:
        """Drop the book; once this returns no update for it is applied."""

        with self._registry_lock:
            book = self._books.pop(instrument, None)
        if book is None:
            return
        with book.lock:
            book.closed = True
        LOGGER.info("Order book released", extra={"instrument": instrument})

    def instruments(self) -> List[Instrument]:
        with self._registry_lock:
            return list(self._books)

    def resync(self, instrument: Instrument) -> bool:
        """Request a rebuild from a fresh snapshot on the next update."""

        book = self._get_book(instrument)
        if book is None:
            return False
        with book.lock:
            book.resync_requested = True
        return True

    # ------------------------------------------------------------------
    # Writer entry points
    # ------------------------------------------------------------------
    def on_event(self, event: StreamEvent) -> None:
        """Consume the subset of stream events relevant to order books."""

        if isinstance(event, DepthUpdate):
            self.on_depth_update(event)
        elif isinstance(event, ConnectionEvent):
            self._on_connection_event(event)

    def on_depth_update(self, update: DepthUpdate) -> None:
        book = self._get_book(update.instrument)
        if book is None:
            self.stats.updates_dropped += 1
            return
        previous_state: Optional[BookState] = None
        with book.lock:
            if book.closed:
                self.stats.updates_dropped += 1
                return
            if book.resync_requested:
                book.resync_requested = False
                previous_state = book.state
                book.reset_sync(BookState.DESYNCED if previous_state is BookState.LIVE else previous_state)
            if book.state is BookState.LIVE:
                try:
                    book.apply_update(update)
                except SequenceGapFault as gap:
                    previous_state = BookState.LIVE
                    book.reset_sync(BookState.DESYNCED)
                    self.stats.gaps_detected += 1
                    LOGGER.warning(
                        "Sequence gap detected, resynchronizing",
                        extra={"instrument": book.instrument, "expected": gap.expected, "received": gap.received},
                    )
                else:
                    self.stats.updates_applied += 1
                    return
            stalled = book.stalled
        if previous_state is not None:
            self._notify(book, previous_state)
        if stalled:
            self.stats.updates_dropped += 1
            return
        book.buffer.append(update)
        self.stats.updates_buffered += 1
        self._try_synchronize(book)

    # ------------------------------------------------------------------
    # Read accessors
    # ------------------------------------------------------------------
    def ladder(self, instrument: Instrument, depth: Optional[int] = None) -> Optional[Ladder]:
        """Return a consistent copy of the book (``None`` if not subscribed)."""

        book = self._get_book(instrument)
        if book is None:
            return None
        limit = depth if depth is not None else self._config.ladder_depth
        with book.lock:
            return book.ladder(limit)

    def ladders(self, instruments: Iterable[Instrument], depth: Optional[int] = None) -> Dict[Instrument, Ladder]:
        """Copy several books one at a time (never holding two locks)."""

        copies: Dict[Instrument, Ladder] = {}
        for instrument in instruments:
            ladder = self.ladder(instrument, depth)
            if ladder is not None:
                copies[instrument] = ladder
        return copies

    def state(self, instrument: Instrument) -> Optional[BookState]:
        book = self._get_book(instrument)
        if book is None:
            return None
        with book.lock:
            return book.state

    # ------------------------------------------------------------------
    # Synchronization
    # ------------------------------------------------------------------
    def _try_synchronize(self, book: OrderBook) -> None:
        while not book.closed:
            if book.pending_snapshot is None:
                if book.attempts >= self._config.max_snapshot_attempts:
                    self._stall(book)
                    return
                book.attempts += 1
                try:
                    # Fetched without holding the book lock
                    book.pending_snapshot = self._provider.fetch_snapshot(book.instrument)
                except SnapshotFetchError as exc:
                    self.stats.snapshot_failures += 1
                    LOGGER.warning(
                        "Snapshot fetch failed",
                        extra={"instrument": book.instrument, "attempt": book.attempts, "error": str(exc)},
                    )
                    continue
            if self._reconcile(book) is _SyncOutcome.REFETCH:
                # Refetched once the next update is buffered
                book.pending_snapshot = None
                if book.attempts >= self._config.max_snapshot_attempts:
                    self._stall(book)
            return

    def _reconcile(self, book: OrderBook) -> _SyncOutcome:
        snapshot = book.pending_snapshot
        assert snapshot is not None
        usable = [update for update in book.buffer if update.last_update_id > snapshot.last_update_id]
        if not usable:
            return _SyncOutcome.WAIT
        first = usable[0]
        if not first.first_update_id <= snapshot.last_update_id + 1 <= first.last_update_id:
            LOGGER.info(
                "Snapshot older than buffered updates, refetching",
                extra={
                    "instrument": book.instrument,
                    "snapshot_id": snapshot.last_update_id,
                    "first_buffered_id": first.first_update_id,
                },
            )
            return _SyncOutcome.REFETCH
        for prev, nxt in zip(usable, usable[1:]):
            if nxt.first_update_id != prev.last_update_id + 1:
                LOGGER.info(
                    "Gap inside buffered updates, refetching",
                    extra={"instrument": book.instrument, "after_id": prev.last_update_id},
                )
                return _SyncOutcome.REFETCH
        with book.lock:
            if book.closed:
                return _SyncOutcome.LIVE
            book.load_snapshot(snapshot)
            for update in usable:
                book.apply_changes(update)
            old_state = book.state
            book.reset_sync(BookState.LIVE)
        self.stats.updates_applied += len(usable)
        self.stats.resyncs_completed += 1
        LOGGER.info(
            "Order book live",
            extra={
                "instrument": book.instrument,
                "snapshot_id": snapshot.last_update_id,
                "replayed": len(usable),
                "last_update_id": usable[-1].last_update_id,
            },
        )
        self._notify(book, old_state)
        return _SyncOutcome.LIVE

    def _stall(self, book: OrderBook) -> None:
        with book.lock:
            old_state = book.state
            attempts = book.attempts
            book.reset_sync(BookState.DESYNCED)
            book.stalled = True
        self.stats.sync_exhausted += 1
        LOGGER.error(
            "Snapshot attempts exhausted, book left desynced",
            extra={"instrument": book.instrument, "attempts": attempts},
        )
        self._notify(book, old_state)
        if self._on_sync_failure is not None:
            self._on_sync_failure(book.instrument, attempts)

    def _on_connection_event(self, event: ConnectionEvent) -> None:
        if event.kind is not ConnectionEventKind.RESUMED:
            return
        # Fresh stream: give stalled books another bounded round of attempts
        for instrument in self.instruments():
            book = self._get_book(instrument)
            if book is None:
                continue
            with book.lock:
                if book.stalled:
                    book.reset_sync(BookState.DESYNCED)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _get_book(self, instrument: Instrument) -> Optional[OrderBook]:
        with self._registry_lock:
            return self._books.get(instrument)

    def _notify(self, book: OrderBook, old_state: BookState) -> None:
        new_state = book.state
        if new_state is old_state or self._on_state_change is None:
            return
        self._on_state_change(book.instrument, old_state, new_state)


__all__ = ["OrderBookEngine", "SnapshotProvider"]
