"""Core primitives shared across all subsystems.

Enums, type aliases, time helpers and the error taxonomy live here so the
feed, book, candle and signal packages can import them without cycles.
"""

from . import enums, errors, time_utils, types

__all__ = ["enums", "errors", "time_utils", "types"]
