"""Signal dispatch boundary: dispatcher plus notification sinks."""

from .dispatcher import Dispatcher, SignalSink
from .sinks import LoggingSink, TelegramSink, format_signal

__all__ = ["Dispatcher", "LoggingSink", "SignalSink", "TelegramSink", "format_signal"]
