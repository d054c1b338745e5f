"""Telemetry and logging subsystem package."""
from .events import BookStats, CandleStats, DispatchStats, SignalStats, StreamStats
from .logging_setup import JsonFormatter, component_of, configure_logging

__all__ = [
    "BookStats",
    "CandleStats",
    "DispatchStats",
    "SignalStats",
    "StreamStats",
    "JsonFormatter",
    "component_of",
    "configure_logging",
]
