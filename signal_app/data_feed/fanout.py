"""Per-consumer queues so each consumer processes the stream on its own thread."""
from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Callable, Dict, Generic, List, Optional, TypeVar

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

_STOP = object()


class ConsumerWorker(Generic[T]):
    """Drains an unbounded queue into ``handler`` on a dedicated thread.

    Items are handled strictly in submission order. A raising handler is
    logged and counted; the worker keeps going with the next item.
    """

    def __init__(self, name: str, handler: Callable[[T], Any]) -> None:
        self.name = name
        self._handler = handler
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self.processed = 0
        self.failures = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name=f"{self.name}-worker", daemon=True)
        self._thread.start()

    def submit(self, item: T) -> None:
        self._queue.put(item)

    def wait_idle(self) -> None:
        """Block until every submitted item has been handled."""

        self._queue.join()

    def stop(self, timeout: float | None = 5.0) -> None:
        """Finish queued items, then stop the thread."""

        if self._thread is None:
            return
        self._queue.put(_STOP)
        self._thread.join(timeout)
        self._thread = None

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._handler(item)
                self.processed += 1
            except Exception:
                self.failures += 1
                LOGGER.exception("Consumer handler failed", extra={"consumer": self.name})
            finally:
                self._queue.task_done()


class EventFanout(Generic[T]):
    """Publishes each event to every registered consumer queue."""

    def __init__(self) -> None:
        self._workers: Dict[str, ConsumerWorker[T]] = {}
        self._lock = threading.Lock()

    def add_consumer(self, name: str, handler: Callable[[T], Any]) -> ConsumerWorker[T]:
        with self._lock:
            if name in self._workers:
                raise ValueError(f"consumer {name!r} already registered")
            worker: ConsumerWorker[T] = ConsumerWorker(name, handler)
            self._workers[name] = worker
        return worker

    def consumers(self) -> List[ConsumerWorker[T]]:
        with self._lock:
            return list(self._workers.values())

    def publish(self, event: T) -> None:
        for worker in self.consumers():
            worker.submit(event)

    def start(self) -> None:
        for worker in self.consumers():
            worker.start()

    def wait_idle(self) -> None:
        for worker in self.consumers():
            worker.wait_idle()

    def stop(self, timeout: float | None = 5.0) -> None:
        for worker in self.consumers():
            worker.stop(timeout)

    def backlog(self) -> Dict[str, int]:
        return {worker.name: worker.pending for worker in self.consumers()}


__all__ = ["ConsumerWorker", "EventFanout"]
