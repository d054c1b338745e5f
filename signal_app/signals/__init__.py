"""Signal evaluation package.

Rules are a closed set of pure evaluation functions selected by
:class:`signal_app.core.enums.RuleKind`; the engine runs them in priority
order and isolates failures per rule.
"""

from .engine import SignalEngine
from .models import SignalContext, SignalEvent
from .registry import Rule, build_active_rules

__all__ = ["Rule", "SignalContext", "SignalEngine", "SignalEvent", "build_active_rules"]
