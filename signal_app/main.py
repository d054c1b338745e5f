from __future__ import annotations

import logging
import os
import signal
import threading
from pathlib import Path
from typing import List

from signal_app.config.loader import load_app_config
from signal_app.config.models import AppConfig
from signal_app.core.errors import ConfigurationError
from signal_app.dispatch.dispatcher import SignalSink
from signal_app.dispatch.sinks import LoggingSink, TelegramSink
from signal_app.engine import MarketDataEngine
from signal_app.signals.registry import build_active_rules
from signal_app.telemetry import configure_logging

STATUS_INTERVAL_SEC = 60.0


def main() -> None:
    project_root = Path(__file__).resolve().parents[1]
    config_dir = Path(os.environ.get("SIGNAL_APP_CONFIG_DIR", project_root / "config"))
    try:
        config = load_app_config(
            engine_path=config_dir / "engine.yml",
            rules_path=config_dir / "rules.yml",
            secrets_path=_resolve_secrets_path(config_dir),
        )
    except (FileNotFoundError, TypeError, ValueError) as exc:
        raise ConfigurationError(f"Invalid configuration in {config_dir}: {exc}") from exc

    telemetry = config.engine.telemetry
    logger = configure_logging(
        log_dir=(project_root / telemetry.log_dir).resolve(),
        level=telemetry.log_level,
        log_file=telemetry.log_file,
        backup_days=telemetry.backup_days,
        console=telemetry.console,
        component_levels=telemetry.component_levels,
    )
    logger.info("Bootstrapping engine", extra={"instruments": config.engine.instruments})

    rules = build_active_rules(config.rules)
    if not rules:
        raise ConfigurationError(f"No enabled rules in {config_dir / 'rules.yml'}")
    engine = MarketDataEngine(config.engine, rules, sinks=_build_sinks(config, logger))

    stop_event = threading.Event()

    def _request_stop(signum: int, _: object) -> None:
        logger.info("Received signal", extra={"signal": signum})
        stop_event.set()

    signal.signal(signal.SIGINT, _request_stop)
    signal.signal(signal.SIGTERM, _request_stop)

    engine.start()
    try:
        while not stop_event.wait(STATUS_INTERVAL_SEC):
            logger.info("Engine status", extra={"stats": engine.stats()})
    except KeyboardInterrupt:  # pragma: no cover - manual exit
        logger.info("Interrupted by user")
    finally:
        engine.stop()
        logger.info("Shutdown complete")


def _resolve_secrets_path(config_dir: Path) -> Path:
    env_path = os.environ.get("SIGNAL_APP_SECRETS_PATH")
    if env_path:
        return Path(env_path)
    return config_dir / "secrets.yaml"


def _build_sinks(config: AppConfig, logger: logging.Logger) -> List[SignalSink]:
    sinks: List[SignalSink] = [LoggingSink(logger=logger.getChild("signals"))]
    telegram = config.secrets.telegram
    if telegram is not None:
        sinks.append(TelegramSink.from_config(telegram))
    else:
        logger.info("Telegram secrets not configured, signals go to the log only")
    return sinks


if __name__ == "__main__":
    main()
