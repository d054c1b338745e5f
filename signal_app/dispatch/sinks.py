"""Notification sinks: structured log lines and Telegram messages."""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Optional

from telegram import Bot
from telegram.error import TelegramError

from signal_app.config.models import TelegramConfig
from signal_app.core.enums import Severity, SignalKind
from signal_app.core.errors import DeliveryError
from signal_app.core.time_utils import ms_to_datetime
from signal_app.signals.models import SignalEvent

LOGGER = logging.getLogger(__name__)

_SEVERITY_ICONS = {
    Severity.INFO: "ℹ️",
    Severity.WARNING: "⚠️",
    Severity.CRITICAL: "🚨",
}


def format_signal(event: SignalEvent) -> str:
    """Render ``event`` as a short operator-facing message."""

    when = ms_to_datetime(event.timestamp_ms).strftime("%Y-%m-%d %H:%M:%S UTC")
    header = f"{_SEVERITY_ICONS[event.severity]} {event.instrument} {event.rule_id}"
    if event.interval is not None:
        header += f" [{event.interval.value}]"
    if event.kind is SignalKind.SYSTEM:
        header += " (system)"
    details = " ".join(f"{key}={value}" for key, value in event.payload.items())
    return f"{header}\n{when}\n{details}" if details else f"{header}\n{when}"


class LoggingSink:
    """Writes one structured log line per event."""

    def __init__(self, *, name: str = "log", min_severity: Severity = Severity.INFO, logger: logging.Logger | None = None) -> None:
        self.name = name
        self._min_severity = min_severity
        self._logger = logger or LOGGER

    def deliver(self, event: SignalEvent) -> None:
        if event.severity.rank < self._min_severity.rank:
            return
        level = logging.WARNING if event.severity is Severity.CRITICAL else logging.INFO
        self._logger.log(level, "Signal", extra={"signal": event.to_dict()})


class TelegramSink:
    """Sends events to one Telegram chat through python-telegram-bot.

    ``Bot`` coroutines run on an event loop owned by the sink, so delivery
    can be called from any worker thread; calls are serialized by a lock.
    """

    def __init__(
        self,
        *,
        token: str,
        chat_id: int,
        min_severity: Severity = Severity.WARNING,
        bot: Any | None = None,
        name: str = "telegram",
    ) -> None:
        self.name = name
        self._chat_id = chat_id
        self._min_severity = min_severity
        self._bot = bot if bot is not None else Bot(token=token)
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: TelegramConfig, **kwargs: Any) -> "TelegramSink":
        return cls(token=config.bot_token, chat_id=config.chat_id, min_severity=config.min_severity, **kwargs)

    def deliver(self, event: SignalEvent) -> None:
        if event.severity.rank < self._min_severity.rank:
            return
        text = format_signal(event)
        with self._lock:
            loop = self._ensure_loop()
            try:
                loop.run_until_complete(self._bot.send_message(chat_id=self._chat_id, text=text))
            except TelegramError as exc:
                raise DeliveryError(f"Telegram send failed: {exc}") from exc

    def close(self) -> None:
        with self._lock:
            if self._loop is None:
                return
            shutdown = getattr(self._bot, "shutdown", None)
            if callable(shutdown):
                try:
                    self._loop.run_until_complete(shutdown())
                except TelegramError as exc:  # pragma: no cover - depends on Telegram availability
                    LOGGER.warning("Failed to shut down Telegram bot", exc_info=exc)
            self._loop.close()
            self._loop = None

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.new_event_loop()
        return self._loop


__all__ = ["LoggingSink", "TelegramSink", "format_signal"]
