"""YAML loaders for the config subsystem.

Each helper here consumes one YAML file, validates it via models.py and
returns typed objects to the caller. Secrets are optional: without a
secrets file the engine runs with the logging sink only.
"""
from __future__ import annotations

from pathlib import Path
from typing import Dict, Mapping, Sequence

import yaml

from .models import AppConfig, EngineConfig, RuleConfig, SecretsConfig

_DEFAULT_CONFIG_DIR = Path("config")


def _read_yaml(path: Path) -> Mapping:
    """Read a YAML file and return a mapping (empty dict if file is blank)."""

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with path.open("r", encoding="utf-8") as fp:
        data = yaml.safe_load(fp) or {}
    if not isinstance(data, Mapping):
        raise ValueError(f"YAML root must be a mapping in {path}")
    return data


def load_engine_config(path: Path | str = _DEFAULT_CONFIG_DIR / "engine.yml") -> EngineConfig:
    """Load engine.yml (instruments, binance, stream, orderbook, candles, signals, telemetry)."""

    data = _read_yaml(Path(path))
    return EngineConfig.model_validate(data)


def load_rules_config(path: Path | str = _DEFAULT_CONFIG_DIR / "rules.yml") -> Dict[str, RuleConfig]:
    """Load rules.yml (list of signal rules indexed by id).

    The file contains a list ``rules``, each with ``id``, ``kind``,
    ``priority`` and a free-form ``parameters`` map. Duplicate ids are
    rejected because evaluation order is keyed on them.
    """

    data = _read_yaml(Path(path))
    raw_rules = data.get("rules", [])
    if not isinstance(raw_rules, Sequence) or isinstance(raw_rules, str):
        raise TypeError("`rules` must be a list")
    parsed: Dict[str, RuleConfig] = {}
    for entry in raw_rules:
        cfg = RuleConfig.model_validate(entry)
        if cfg.id in parsed:
            raise ValueError(f"Duplicate rule id in {path}: {cfg.id}")
        parsed[cfg.id] = cfg
    return parsed


def load_secrets_config(path: Path | str = _DEFAULT_CONFIG_DIR / "secrets.yaml") -> SecretsConfig:
    """Load secrets.yaml (Telegram credentials). A missing file yields empty secrets."""

    resolved = Path(path)
    if not resolved.exists():
        return SecretsConfig()
    data = _read_yaml(resolved)
    return SecretsConfig.model_validate(data)


def load_app_config(
    *,
    engine_path: Path | str = _DEFAULT_CONFIG_DIR / "engine.yml",
    rules_path: Path | str = _DEFAULT_CONFIG_DIR / "rules.yml",
    secrets_path: Path | str = _DEFAULT_CONFIG_DIR / "secrets.yaml",
) -> AppConfig:
    """Load and aggregate all config sections into a single AppConfig."""

    engine = load_engine_config(engine_path)
    rules = load_rules_config(rules_path)
    secrets = load_secrets_config(secrets_path)
    return AppConfig(engine=engine, rules=rules, secrets=secrets)
