"""Typed configuration models for the signal engine.

The config subsystem relies on pydantic to validate YAML files and to
provide strongly-typed objects to the rest of the runtime. Snapshot
transport and backoff parameters are configuration rather than constants.
"""
from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, PositiveInt, field_validator, model_validator

from signal_app.candles.models import Interval
from signal_app.core.enums import RuleKind, Severity

_LOG_LEVELS = frozenset({"CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"})


class BinanceConfig(BaseModel):
    """REST/WebSocket endpoints and REST retry policy."""

    rest_endpoint: str = "https://api.binance.com"
    ws_endpoint: str = "wss://stream.binance.com:9443/ws"
    request_timeout_sec: float = Field(5.0, gt=0)
    max_retries: PositiveInt = 3
    backoff_base_sec: float = Field(0.25, ge=0)


class StreamConfig(BaseModel):
    """Reconnect policy for the stream client (exponential backoff, full jitter)."""

    backoff_base_sec: float = Field(1.0, gt=0)
    backoff_cap_sec: float = Field(30.0, gt=0)
    recv_timeout_sec: float = Field(60.0, gt=0, description="Silence after which the connection counts as dropped")
    depth_speed_ms: Literal[100, 1000] = 100

    @model_validator(mode="after")
    def _cap_not_below_base(self) -> "StreamConfig":
        if self.backoff_cap_sec < self.backoff_base_sec:
            raise ValueError("backoff_cap_sec must be >= backoff_base_sec")
        return self


class OrderBookConfig(BaseModel):
    """Snapshot/diff reconciliation limits."""

    snapshot_depth: int = Field(1000, ge=5, le=5000)
    max_snapshot_attempts: PositiveInt = 5
    max_buffered_updates: PositiveInt = 10_000
    ladder_depth: PositiveInt = 20


class CandleConfig(BaseModel):
    """Intervals aggregated per instrument plus retention/dedup windows."""

    intervals: List[Interval] = Field(default_factory=lambda: [Interval.MIN_1])
    retention: PositiveInt = 500
    dedup_window: PositiveInt = 10_000
    close_check_sec: float = Field(1.0, gt=0, description="Period of the time-driven close of expired candles")
    close_grace_ms: int = Field(2_000, ge=0, description="Delay past bucket end before a quiet candle is closed")

    @field_validator("intervals")
    @classmethod
    def _unique_intervals(cls, value: List[Interval]) -> List[Interval]:
        if not value:
            raise ValueError("at least one candle interval is required")
        if len(set(value)) != len(value):
            raise ValueError("candle intervals must be unique")
        return sorted(value, key=lambda interval: interval.millis)


class SignalsConfig(BaseModel):
    """Lookback and retention for the signal engine."""

    history_size: PositiveInt = 50
    recent_signals: PositiveInt = 200


class RuleConfig(BaseModel):
    """Per-rule runtime config.

    Required fields: ``id``, ``kind``, ``priority``. Rule parameters live in
    ``parameters`` so YAML stays extensible; an empty ``intervals`` list
    means the rule runs for every configured interval.
    """

    id: str = Field(..., min_length=1)
    kind: RuleKind
    enabled: bool = True
    priority: int = Field(..., ge=1)
    severity: Severity = Severity.WARNING
    intervals: List[Interval] = Field(default_factory=list)
    parameters: Dict[str, Any] = Field(default_factory=dict)


class TelegramConfig(BaseModel):
    """Telegram bot token and chat id used by the Telegram sink."""

    bot_token: str = Field(..., min_length=10)
    chat_id: int
    min_severity: Severity = Severity.WARNING


class SecretsConfig(BaseModel):
    """Secrets for optional notification sinks."""

    telegram: Optional[TelegramConfig] = None

    model_config = ConfigDict(frozen=True)


class TelemetryConfig(BaseModel):
    """Logging switches."""

    log_level: str = Field("INFO")
    log_dir: str = Field("data/logs")
    log_file: str = Field("engine_current.jsonl", min_length=1)
    backup_days: PositiveInt = 14
    console: bool = True
    component_levels: Dict[str, str] = Field(default_factory=dict, description="Per-subsystem level overrides")

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        if value.upper() not in _LOG_LEVELS:
            raise ValueError(f"unknown log level: {value}")
        return value.upper()

    @field_validator("component_levels")
    @classmethod
    def _known_component_levels(cls, value: Dict[str, str]) -> Dict[str, str]:
        unknown = sorted(level for level in value.values() if level.upper() not in _LOG_LEVELS)
        if unknown:
            raise ValueError(f"unknown log levels: {unknown}")
        return {component: level.upper() for component, level in value.items()}


class EngineConfig(BaseModel):
    """Top-level engine config combining feed, book, candle and signal settings."""

    instruments: List[str] = Field(..., min_length=1)
    binance: BinanceConfig = Field(default_factory=BinanceConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    orderbook: OrderBookConfig = Field(default_factory=OrderBookConfig)
    candles: CandleConfig = Field(default_factory=CandleConfig)
    signals: SignalsConfig = Field(default_factory=SignalsConfig)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)

    @field_validator("instruments")
    @classmethod
    def _normalize_instruments(cls, value: List[str]) -> List[str]:
        normalized = [symbol.strip().upper() for symbol in value]
        if len(set(normalized)) != len(normalized):
            raise ValueError("instruments must be unique")
        return normalized


class AppConfig(BaseModel):
    """Runtime config composed of engine settings, rules and secrets."""

    engine: EngineConfig
    rules: Dict[str, RuleConfig]
    secrets: SecretsConfig = Field(default_factory=SecretsConfig)
