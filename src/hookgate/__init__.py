"""Config-driven lifecycle gates for agent pipelines."""

from .actions import ActionRegistry, build_default_registry, list_builtin_actions
from .config import dump_rule_set, load_rule_set, parse_rule_set, save_rule_set
from .discovery import ConflictWarning, DiscoveryResult, detect_conflicts, merge, scan
from .engine import GateEngine
from .errors import ActionError, ConfigError, ConfigLoadError, ConfigValidationError, HookgateError, ModuleLoadError
from .notify import NotificationRouter, NotificationTarget, SessionTracker, parse_target
from .types import (
    ActionResult,
    Defaults,
    EventContext,
    FailurePolicy,
    HOOK_POINTS,
    MatchCriteria,
    Rule,
    RuleSet,
)

__all__ = [
    "ActionError",
    "ActionRegistry",
    "ActionResult",
    "ConfigError",
    "ConfigLoadError",
    "ConfigValidationError",
    "ConflictWarning",
    "Defaults",
    "DiscoveryResult",
    "EventContext",
    "FailurePolicy",
    "GateEngine",
    "HOOK_POINTS",
    "HookgateError",
    "MatchCriteria",
    "ModuleLoadError",
    "NotificationRouter",
    "NotificationTarget",
    "Rule",
    "RuleSet",
    "SessionTracker",
    "build_default_registry",
    "detect_conflicts",
    "dump_rule_set",
    "list_builtin_actions",
    "load_rule_set",
    "merge",
    "parse_rule_set",
    "parse_target",
    "save_rule_set",
    "scan",
]
