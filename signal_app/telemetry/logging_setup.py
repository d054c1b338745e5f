"""JSON-lines logging for the engine.

Every record becomes one JSON object. Structured ``extra=`` payloads are
merged at the top level and each record is tagged with the subsystem
(``component``) that emitted it, taken from the dotted logger name:
``signal_app.orderbook.engine`` logs as ``orderbook``.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from logging import Logger
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

_RECORD_FIELDS = frozenset(vars(logging.makeLogRecord({})).keys()) | {"message", "asctime"}


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    return str(value)


def component_of(logger_name: str) -> str:
    """Return the subsystem segment of a package logger name."""

    parts = logger_name.split(".")
    return parts[1] if len(parts) > 1 else parts[0]


class JsonFormatter(logging.Formatter):
    """One JSON object per record; extras merged, odd values stringified."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "component": component_of(record.name),
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        for key, value in record.__dict__.items():
            if key.startswith("_") or key in _RECORD_FIELDS or key in payload:
                continue
            payload[key] = value
        return json.dumps(payload, ensure_ascii=False, default=_json_default)


def configure_logging(
    *,
    log_dir: Path,
    level: str = "INFO",
    logger_name: str = "signal_app",
    log_file: str = "engine_current.jsonl",
    backup_days: int = 14,
    console: bool = True,
    component_levels: Optional[Mapping[str, str]] = None,
) -> Logger:
    """Attach JSON handlers to the package logger and return it.

    The file rotates at midnight and keeps ``backup_days`` old files.
    ``component_levels`` overrides the level of single subsystems, e.g.
    ``{"data_feed": "WARNING"}`` to quiet the stream while debugging books.
    Calling this again replaces the previously installed handlers.
    """

    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / log_file
    formatter = JsonFormatter()

    logger = logging.getLogger(logger_name)
    logger.setLevel(level.upper())
    for existing in list(logger.handlers):
        existing.close()
    logger.handlers.clear()

    file_handler = TimedRotatingFileHandler(log_path, when="midnight", backupCount=backup_days, encoding="utf-8")
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)
    if console:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        logger.addHandler(stream_handler)
    logger.propagate = False

    for component, component_level in (component_levels or {}).items():
        logging.getLogger(f"{logger_name}.{component}").setLevel(component_level.upper())

    logger.debug(
        "JSON logging configured",
        extra={"log_file": str(log_path), "console": console, "component_levels": dict(component_levels or {})},
    )
    return logger


__all__ = ["JsonFormatter", "component_of", "configure_logging"]
