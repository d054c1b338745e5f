from __future__ import annotations

import logging

import pytest
from telegram.error import TelegramError

from signal_app.candles.models import Interval
from signal_app.config.models import TelegramConfig
from signal_app.core.enums import Severity, SignalKind
from signal_app.core.errors import DeliveryError
from signal_app.core.types import TimestampMs
from signal_app.dispatch import Dispatcher, LoggingSink, SignalSink, TelegramSink, format_signal
from signal_app.signals.models import SignalEvent

from conftest import BTC, FakeTelegramBot, RecordingSink


def _event(severity: Severity = Severity.WARNING, **payload) -> SignalEvent:
    return SignalEvent(
        instrument=BTC,
        rule_id="volume_spike_1m",
        timestamp_ms=TimestampMs(1_700_000_060_000),
        severity=severity,
        payload=payload or {"ratio": "12.50"},
        interval=Interval.MIN_1,
    )


def test_failing_sink_should_not_block_other_sinks() -> None:
    first = RecordingSink("first")
    broken = RecordingSink("broken", error=DeliveryError("down"))
    crashing = RecordingSink("crashing", error=RuntimeError("bug"))
    last = RecordingSink("last")
    dispatcher = Dispatcher([first, broken, crashing, last])

    event = _event()
    dispatcher.dispatch(event)

    assert first.events == [event]
    assert last.events == [event]
    assert dispatcher.stats.to_dict() == {"dispatched": 1, "deliveries": 2, "delivery_failures": 2}


def test_sinks_should_satisfy_protocol() -> None:
    assert isinstance(RecordingSink(), SignalSink)
    assert isinstance(LoggingSink(), SignalSink)


def test_added_sink_should_receive_later_events() -> None:
    dispatcher = Dispatcher()
    dispatcher.submit(_event())
    sink = RecordingSink()
    dispatcher.add_sink(sink)
    dispatcher.submit(_event())
    assert len(sink.events) == 1
    assert [s.name for s in dispatcher.sinks] == ["recording"]


def test_background_dispatcher_should_deliver_in_order() -> None:
    sink = RecordingSink()
    dispatcher = Dispatcher([sink], background=True)
    dispatcher.start()
    events = [_event(ratio=str(index)) for index in range(20)]
    for event in events:
        dispatcher.submit(event)
    dispatcher.wait_idle()
    dispatcher.stop()
    assert sink.events == events
    assert dispatcher.stats.deliveries == 20


def test_logging_sink_should_filter_by_severity(caplog: pytest.LogCaptureFixture) -> None:
    logger = logging.getLogger("tests.dispatch.sink")
    sink = LoggingSink(min_severity=Severity.WARNING, logger=logger)
    with caplog.at_level(logging.INFO, logger="tests.dispatch.sink"):
        sink.deliver(_event(Severity.INFO))
        sink.deliver(_event(Severity.WARNING))
        sink.deliver(_event(Severity.CRITICAL))

    records = [record for record in caplog.records if record.name == "tests.dispatch.sink"]
    assert [record.levelno for record in records] == [logging.INFO, logging.WARNING]
    assert records[0].signal["rule_id"] == "volume_spike_1m"


def test_format_signal_should_render_header_time_and_payload() -> None:
    text = format_signal(_event(ratio="12.50", volume="50"))
    header, when, details = text.split("\n")
    assert header.endswith("BTCUSDT volume_spike_1m [1m]")
    assert when == "2023-11-14 22:14:20 UTC"
    assert details == "ratio=12.50 volume=50"

    system = SignalEvent(
        instrument=BTC,
        rule_id="system.book_desynced",
        timestamp_ms=TimestampMs(0),
        severity=Severity.CRITICAL,
        kind=SignalKind.SYSTEM,
    )
    assert format_signal(system).split("\n")[0].endswith("(system)")
    assert len(format_signal(system).split("\n")) == 2


def test_telegram_sink_should_send_formatted_message_above_threshold() -> None:
    bot = FakeTelegramBot()
    sink = TelegramSink(token="123456:token", chat_id=42, min_severity=Severity.WARNING, bot=bot)

    sink.deliver(_event(Severity.INFO))
    sink.deliver(_event(Severity.CRITICAL))
    sink.close()

    assert len(bot.messages) == 1
    chat_id, text = bot.messages[0]
    assert chat_id == 42
    assert text == format_signal(_event(Severity.CRITICAL))
    assert bot.shutdown_called is True


def test_telegram_errors_should_become_delivery_errors() -> None:
    sink = TelegramSink(token="123456:token", chat_id=1, bot=FakeTelegramBot(error=TelegramError("flood")))
    with pytest.raises(DeliveryError, match="flood"):
        sink.deliver(_event())
    sink.close()

    dispatcher = Dispatcher([sink])
    dispatcher.dispatch(_event())
    assert dispatcher.stats.delivery_failures == 1
    sink.close()


def test_telegram_sink_should_build_from_config() -> None:
    config = TelegramConfig(bot_token="123456:token", chat_id=7, min_severity=Severity.CRITICAL)
    bot = FakeTelegramBot()
    sink = TelegramSink.from_config(config, bot=bot)
    sink.deliver(_event(Severity.WARNING))
    assert bot.messages == []
    sink.close()
    assert bot.shutdown_called is False


def test_dispatcher_stop_should_close_sinks() -> None:
    bot = FakeTelegramBot()
    sink = TelegramSink(token="123456:token", chat_id=1, bot=bot)
    dispatcher = Dispatcher([sink, RecordingSink()])
    dispatcher.dispatch(_event())
    dispatcher.stop()
    assert bot.shutdown_called is True
