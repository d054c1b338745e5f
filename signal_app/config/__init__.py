"""Configuration loading and validation package."""

from .loader import load_app_config, load_engine_config, load_rules_config, load_secrets_config
from .models import (
    AppConfig,
    BinanceConfig,
    CandleConfig,
    EngineConfig,
    OrderBookConfig,
    RuleConfig,
    SecretsConfig,
    SignalsConfig,
    StreamConfig,
    TelegramConfig,
    TelemetryConfig,
)

__all__ = [
    "AppConfig",
    "BinanceConfig",
    "CandleConfig",
    "EngineConfig",
    "OrderBookConfig",
    "RuleConfig",
    "SecretsConfig",
    "SignalsConfig",
    "StreamConfig",
    "TelegramConfig",
    "TelemetryConfig",
    "load_app_config",
    "load_engine_config",
    "load_rules_config",
    "load_secrets_config",
]
