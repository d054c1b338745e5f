"""Reconnecting stream client for one instrument set.

The client runs a blocking WebSocket session on a dedicated thread and turns
every frame into a typed event handed to ``handler`` in arrival order. The
connection lifecycle is an explicit state machine::

    DISCONNECTED -> CONNECTING -> STREAMING -> BACKOFF -> CONNECTING ...
                                                  (any) -> STOPPED

Each reconnect resubscribes the full instrument set and is bracketed by
``ConnectionEvent(DROPPED)`` / ``ConnectionEvent(RESUMED)`` so downstream
consumers know the update chain was interrupted.
"""
from __future__ import annotations

import itertools
import logging
import random
import threading
from typing import Any, Callable, Iterable, List, Mapping, Optional, Protocol, Set

from signal_app.config.models import StreamConfig
from signal_app.core.enums import ConnectionEventKind, ConnectionState
from signal_app.core.errors import MalformedMessageError, TransportFault
from signal_app.core.time_utils import now_ms
from signal_app.core.types import Instrument, normalize_instrument
from signal_app.telemetry.events import StreamStats

from .binance_client import stream_topics, subscription_request
from .decoder import ControlFrame, decode_frame
from .events import ConnectionEvent, StreamEvent

LOGGER = logging.getLogger(__name__)


class Transport(Protocol):
    """Blocking message transport; every failure surfaces as :class:`TransportFault`."""

    def connect(self) -> None:
        ...

    def send_json(self, payload: Mapping[str, Any]) -> None:
        ...

    def recv(self) -> str | bytes:
        ...

    def close(self) -> None:
        ...


TransportFactory = Callable[[], Transport]
EventHandler = Callable[[StreamEvent], None]
StateListener = Callable[[ConnectionState, ConnectionState], None]
Jitter = Callable[[float, float], float]


class Backoff:
    """Exponential backoff with full jitter: ``uniform(0, min(cap, base * 2**n))``."""

    def __init__(self, base: float, cap: float, *, jitter: Jitter = random.uniform) -> None:
        self._base = base
        self._cap = cap
        self._jitter = jitter
        self._attempt = 0

    @property
    def attempt(self) -> int:
        return self._attempt

    def ceiling(self) -> float:
        return min(self._cap, self._base * (2 ** self._attempt))

    def next_delay(self) -> float:
        delay = self._jitter(0.0, self.ceiling())
        self._attempt += 1
        return max(0.0, delay)

    def reset(self) -> None:
        self._attempt = 0


class StreamClient:
    """Owns one logical subscription and delivers a single ordered event sequence."""

    def __init__(
        self,
        transport_factory: TransportFactory,
        instruments: Iterable[str],
        handler: EventHandler,
        *,
        config: StreamConfig | None = None,
        jitter: Jitter = random.uniform,
        clock: Callable[[], int] = now_ms,
        state_listener: StateListener | None = None,
        name: str = "stream",
    ) -> None:
        self._factory = transport_factory
        self._handler = handler
        self._config = config or StreamConfig()
        self._backoff = Backoff(self._config.backoff_base_sec, self._config.backoff_cap_sec, jitter=jitter)
        self._clock = clock
        self._state_listener = state_listener
        self._name = name
        self._instruments: Set[Instrument] = {normalize_instrument(symbol) for symbol in instruments}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._transport: Optional[Transport] = None
        self._thread: Optional[threading.Thread] = None
        self._state = ConnectionState.DISCONNECTED
        self._request_ids = itertools.count(1)
        self.stats = StreamStats()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def instruments(self) -> frozenset[Instrument]:
        with self._lock:
            return frozenset(self._instruments)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError(f"stream client {self._name} already started")
        self._thread = threading.Thread(target=self.run, name=f"{self._name}-ws", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        """Stop the loop, close the connection and wait for the thread to exit."""

        self._stop.set()
        with self._lock:
            transport = self._transport
        if transport is not None:
            transport.close()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def run(self) -> None:
        """Connection loop; returns once :meth:`stop` is called."""

        has_streamed = False
        while not self._stop.is_set():
            self._set_state(ConnectionState.CONNECTING)
            transport = self._factory()
            try:
                self._open(transport)
            except TransportFault as exc:
                self.stats.failed_connects += 1
                LOGGER.warning("Stream connect failed", extra={"stream": self._name, "error": str(exc)})
                transport.close()
                if not self._wait_backoff():
                    break
                continue

            self.stats.connects += 1
            self._backoff.reset()
            self._set_state(ConnectionState.STREAMING)
            kind = ConnectionEventKind.RESUMED if has_streamed else ConnectionEventKind.CONNECTED
            has_streamed = True
            self._deliver(ConnectionEvent(kind=kind, timestamp_ms=self._clock()))

            reason: Optional[str] = None
            try:
                self._pump(transport)
            except TransportFault as exc:
                reason = str(exc)
            finally:
                self._detach(transport)
            if self._stop.is_set():
                break
            self.stats.drops += 1
            LOGGER.warning("Stream dropped", extra={"stream": self._name, "reason": reason})
            self._deliver(ConnectionEvent(kind=ConnectionEventKind.DROPPED, timestamp_ms=self._clock(), reason=reason))
            if not self._wait_backoff():
                break
        self._set_state(ConnectionState.STOPPED)

    # ------------------------------------------------------------------
    # Subscription management
    # ------------------------------------------------------------------
    def subscribe(self, instruments: Iterable[str]) -> List[Instrument]:
        """Add ``instruments``; returns the ones that were not already subscribed."""

        with self._lock:
            added = [
                symbol
                for symbol in dict.fromkeys(normalize_instrument(raw) for raw in instruments)
                if symbol not in self._instruments
            ]
            self._instruments.update(added)
        if added:
            self._send_request("SUBSCRIBE", added)
        return added

    def unsubscribe(self, instruments: Iterable[str]) -> List[Instrument]:
        """Remove ``instruments``; their events stop being delivered immediately."""

        with self._lock:
            removed = [
                symbol
                for symbol in dict.fromkeys(normalize_instrument(raw) for raw in instruments)
                if symbol in self._instruments
            ]
            self._instruments.difference_update(removed)
        if removed:
            self._send_request("UNSUBSCRIBE", removed)
        return removed

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _open(self, transport: Transport) -> None:
        transport.connect()
        with self._lock:
            self._transport = transport
            instruments = sorted(self._instruments)
        if instruments:
            transport.send_json(self._request("SUBSCRIBE", instruments))
        LOGGER.info("Stream connected", extra={"stream": self._name, "instruments": instruments})

    def _detach(self, transport: Transport) -> None:
        with self._lock:
            if self._transport is transport:
                self._transport = None
        transport.close()

    def _pump(self, transport: Transport) -> None:
        while not self._stop.is_set():
            raw = transport.recv()
            self.stats.messages_received += 1
            try:
                decoded = decode_frame(raw)
            except MalformedMessageError as exc:
                self.stats.malformed_dropped += 1
                LOGGER.debug("Malformed frame dropped", extra={"stream": self._name, "error": str(exc)})
                continue
            except Exception:
                self.stats.malformed_dropped += 1
                LOGGER.exception("Frame decoding failed, frame dropped", extra={"stream": self._name})
                continue
            if isinstance(decoded, ControlFrame):
                if decoded.error:
                    LOGGER.warning(
                        "Subscription request rejected",
                        extra={"stream": self._name, "request_id": decoded.request_id, "error": dict(decoded.error)},
                    )
                continue
            with self._lock:
                subscribed = decoded.instrument in self._instruments
            if not subscribed:
                self.stats.unsubscribed_dropped += 1
                continue
            self._deliver(decoded)

    def _deliver(self, event: StreamEvent) -> None:
        try:
            self._handler(event)
        except Exception:
            LOGGER.exception("Stream handler failed", extra={"stream": self._name})
            return
        self.stats.events_delivered += 1

    def _wait_backoff(self) -> bool:
        delay = self._backoff.next_delay()
        self._set_state(ConnectionState.BACKOFF)
        LOGGER.info(
            "Stream reconnect scheduled",
            extra={"stream": self._name, "delay_sec": round(delay, 3), "attempt": self._backoff.attempt},
        )
        return not self._stop.wait(delay)

    def _send_request(self, method: str, instruments: List[Instrument]) -> None:
        with self._lock:
            transport = self._transport
        if transport is None:
            # Picked up by the SUBSCRIBE sent on the next connect
            return
        try:
            transport.send_json(self._request(method, instruments))
        except TransportFault as exc:
            LOGGER.warning(
                "Subscription request failed",
                extra={"stream": self._name, "method": method, "error": str(exc)},
            )

    def _request(self, method: str, instruments: Iterable[Instrument]) -> dict[str, Any]:
        topics: List[str] = []
        for instrument in instruments:
            topics.extend(stream_topics(instrument, depth_speed_ms=self._config.depth_speed_ms))
        return subscription_request(method, topics, next(self._request_ids))

    def _set_state(self, new: ConnectionState) -> None:
        old = self._state
        if old is new:
            return
        self._state = new
        LOGGER.info("Stream state change", extra={"stream": self._name, "from": old.value, "to": new.value})
        if self._state_listener is not None:
            self._state_listener(old, new)


__all__ = ["Backoff", "StreamClient", "Transport", "TransportFactory"]
