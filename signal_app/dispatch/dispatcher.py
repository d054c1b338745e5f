"""Fan-out of signal events to notification sinks."""
from __future__ import annotations

import logging
import threading
from typing import Iterable, List, Protocol, runtime_checkable

from signal_app.core.errors import DeliveryError
from signal_app.data_feed.fanout import ConsumerWorker
from signal_app.signals.models import SignalEvent
from signal_app.telemetry.events import DispatchStats

LOGGER = logging.getLogger(__name__)


@runtime_checkable
class SignalSink(Protocol):
    """Destination for signal events; raises :class:`DeliveryError` on failure."""

    name: str

    def deliver(self, event: SignalEvent) -> None:
        ...


class Dispatcher:
    """Hands every event to each sink in registration order.

    Delivery is attempted exactly once per sink. A failing sink is logged and
    counted and the remaining sinks still receive the event. With
    ``background=True`` delivery runs on its own worker thread so a slow sink
    never holds up candle processing.
    """

    def __init__(self, sinks: Iterable[SignalSink] = (), *, background: bool = False) -> None:
        self._sinks: List[SignalSink] = list(sinks)
        self._lock = threading.Lock()
        self._worker: ConsumerWorker[SignalEvent] | None = (
            ConsumerWorker("dispatch", self.dispatch) if background else None
        )
        self.stats = DispatchStats()

    @property
    def sinks(self) -> List[SignalSink]:
        with self._lock:
            return list(self._sinks)

    def add_sink(self, sink: SignalSink) -> None:
        with self._lock:
            self._sinks.append(sink)

    def submit(self, event: SignalEvent) -> None:
        """Queue ``event`` for delivery (or deliver inline without a worker)."""

        if self._worker is None:
            self.dispatch(event)
        else:
            self._worker.submit(event)

    def dispatch(self, event: SignalEvent) -> None:
        self.stats.dispatched += 1
        for sink in self.sinks:
            try:
                sink.deliver(event)
            except DeliveryError as exc:
                self.stats.delivery_failures += 1
                LOGGER.warning(
                    "Signal delivery failed",
                    extra={"sink": sink.name, "rule_id": event.rule_id, "instrument": event.instrument, "error": str(exc)},
                )
                continue
            except Exception:
                self.stats.delivery_failures += 1
                LOGGER.exception("Sink raised unexpectedly", extra={"sink": sink.name, "rule_id": event.rule_id})
                continue
            self.stats.deliveries += 1

    def start(self) -> None:
        if self._worker is not None:
            self._worker.start()

    def wait_idle(self) -> None:
        if self._worker is not None:
            self._worker.wait_idle()

    def stop(self, timeout: float | None = 5.0) -> None:
        if self._worker is not None:
            self._worker.stop(timeout)
        for sink in self.sinks:
            close = getattr(sink, "close", None)
            if callable(close):
                close()


__all__ = ["Dispatcher", "SignalSink"]
