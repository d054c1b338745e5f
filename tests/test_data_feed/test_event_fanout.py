from __future__ import annotations

import threading

import pytest

from signal_app.data_feed.fanout import ConsumerWorker, EventFanout


def test_event_fanout_should_deliver_every_event_to_each_consumer_in_order() -> None:
    fanout: EventFanout[int] = EventFanout()
    books: list = []
    candles: list = []
    fanout.add_consumer("orderbook", books.append)
    fanout.add_consumer("candles", candles.append)
    fanout.start()
    for value in range(100):
        fanout.publish(value)
    fanout.wait_idle()
    fanout.stop()
    assert books == list(range(100))
    assert candles == list(range(100))


def test_event_fanout_should_reject_duplicate_consumer_names() -> None:
    fanout: EventFanout[int] = EventFanout()
    fanout.add_consumer("orderbook", lambda _: None)
    with pytest.raises(ValueError):
        fanout.add_consumer("orderbook", lambda _: None)


def test_slow_consumer_should_not_block_other_consumers() -> None:
    release = threading.Event()
    fast: list = []
    fanout: EventFanout[int] = EventFanout()
    fanout.add_consumer("slow", lambda _: release.wait(5.0))
    fast_worker = fanout.add_consumer("fast", fast.append)
    fanout.start()
    for value in range(3):
        fanout.publish(value)
    fast_worker.wait_idle()
    assert fast == [0, 1, 2]
    assert fanout.backlog()["slow"] >= 1
    release.set()
    fanout.wait_idle()
    fanout.stop()


def test_consumer_worker_should_continue_after_handler_error() -> None:
    handled: list = []

    def handler(item: int) -> None:
        if item == 1:
            raise RuntimeError("bad item")
        handled.append(item)

    worker: ConsumerWorker[int] = ConsumerWorker("test", handler)
    worker.start()
    for item in range(3):
        worker.submit(item)
    worker.wait_idle()
    worker.stop()
    assert handled == [0, 2]
    assert worker.failures == 1
    assert worker.processed == 2
    assert not worker.running
