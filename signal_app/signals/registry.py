"""Rule registry: binds rule configs to their evaluation functions."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, FrozenSet, Iterable, Mapping, Optional

from signal_app.candles.models import Interval
from signal_app.config.models import RuleConfig
from signal_app.core.enums import RuleKind, Severity

from .models import SignalContext, SignalEvent
from .rules import BOOK_RULES, RULE_FUNCTIONS

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Rule:
    """Configured rule instance; immutable so evaluation stays side-effect free."""

    id: str
    kind: RuleKind
    priority: int
    severity: Severity = Severity.WARNING
    intervals: FrozenSet[Interval] = frozenset()
    parameters: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "parameters", MappingProxyType(dict(self.parameters)))

    @classmethod
    def from_config(cls, config: RuleConfig) -> "Rule":
        return cls(
            id=config.id,
            kind=config.kind,
            priority=config.priority,
            severity=config.severity,
            intervals=frozenset(config.intervals),
            parameters=config.parameters,
        )

    @property
    def needs_book(self) -> bool:
        return self.kind in BOOK_RULES

    def param(self, key: str, default: Any) -> Any:
        """Convenience accessor returning parameter overrides when provided."""

        return self.parameters.get(key, default)

    def applies_to(self, interval: Interval) -> bool:
        return not self.intervals or interval in self.intervals

    def evaluate(self, context: SignalContext) -> Optional[SignalEvent]:
        return RULE_FUNCTIONS[self.kind](self, context)


def build_active_rules(
    configs: Mapping[str, RuleConfig] | Iterable[RuleConfig],
) -> list[Rule]:
    """Instantiate enabled rules sorted by ``(priority, id)``.

    The signal engine evaluates rules in the returned order, so ties on
    priority are broken by id to keep evaluation deterministic.
    """

    if isinstance(configs, Mapping):
        source = configs.values()
    else:
        source = configs
    active = [Rule.from_config(cfg) for cfg in source if cfg.enabled]
    active.sort(key=lambda rule: (rule.priority, rule.id))

    logger.info(
        "Built active rules",
        extra={
            "n_active_rules": len(active),
            "active_rule_ids": [rule.id for rule in active],
        },
    )
    return active


__all__ = ["Rule", "build_active_rules"]
