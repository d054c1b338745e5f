"""Error hierarchy shared by the engine subsystems.

No error in this hierarchy is process-fatal. Each one is recovered at the
boundary of the component that raises it: transport faults inside the stream
client, sequence gaps inside the order-book engine, rule faults inside the
signal engine and delivery faults inside the dispatcher.
"""
from __future__ import annotations


class CoreError(Exception):
    """Base class for all custom exceptions in the application."""


class ConfigurationError(CoreError):
    """Raised when configuration files are missing or invalid."""


class TransportFault(CoreError):
    """Raised when the stream connection drops or cannot be established."""


class MalformedMessageError(TransportFault):
    """Raised by the decoder for frames that cannot be turned into events."""


class SequenceGapFault(CoreError):
    """Raised when depth update ids stop forming a contiguous chain."""

    def __init__(self, instrument: str, expected: int, received: int):
        super().__init__(f"{instrument}: expected update {expected}, received first_update_id={received}")
        self.instrument = instrument
        self.expected = expected
        self.received = received


class SnapshotFetchError(CoreError):
    """Raised when an order-book snapshot cannot be fetched or parsed."""


class AnomalyFault(CoreError):
    """Base class for trade anomalies that are counted and dropped."""


class LateTradeError(AnomalyFault):
    """Raised for trades whose bucket precedes the open candle's bucket."""


class DuplicateTradeError(AnomalyFault):
    """Raised for trades whose id was already aggregated."""


class RuleEvaluationFault(CoreError):
    """Raised when a signal rule fails; isolated by the signal engine."""


class DeliveryError(CoreError):
    """Raised by sinks when a signal event cannot be delivered."""
