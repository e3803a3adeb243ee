"""Rule and event data models for hookgate."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Any, Literal, Mapping


HookPoint = Literal[
    "turn:pre",
    "turn:post",
    "turn:tool:pre",
    "turn:tool:post",
    "subagent:spawn:pre",
    "subagent:pre",
    "subagent:post",
    "subagent:tool:pre",
    "subagent:tool:post",
    "heartbeat:pre",
    "heartbeat:post",
    "cron:pre",
    "cron:post",
]
FailureMode = Literal["block", "retry", "notify", "continue"]

HOOK_POINTS: tuple[str, ...] = (
    "turn:pre",
    "turn:post",
    "turn:tool:pre",
    "turn:tool:post",
    "subagent:spawn:pre",
    "subagent:pre",
    "subagent:post",
    "subagent:tool:pre",
    "subagent:tool:post",
    "heartbeat:pre",
    "heartbeat:post",
    "cron:pre",
    "cron:post",
)
FAILURE_MODES: tuple[str, ...] = ("block", "retry", "notify", "continue")

SUBAGENT_MARKER = ":subagent:"
TOPIC_WILDCARD = "*"


@dataclass(frozen=True)
class FailurePolicy:
    mode: FailureMode
    retries: int | None = None
    notify_user: bool = False
    message: str | None = None


@dataclass(frozen=True)
class MatchCriteria:
    """Optional filters; every present field must match."""

    tool: str | None = None
    command_pattern: str | None = None
    topic_id: str | int | None = None
    is_subagent: bool | None = None
    session_pattern: str | None = None
    custom: str | None = None


@dataclass(frozen=True)
class Rule:
    points: tuple[str, ...]
    action: str
    name: str | None = None
    match: MatchCriteria | None = None
    model: str | None = None
    target: str | None = None
    source: str | None = None
    script: str | None = None
    inject_output: bool = False
    last_n: int | None = None
    on_failure: FailurePolicy | None = None
    notify_user: bool = False
    enabled: bool = True
    source_path: str | None = None

    def applies_to(self, point: str) -> bool:
        return self.enabled and point in self.points

    @property
    def label(self) -> str:
        return self.name or self.action


@dataclass(frozen=True)
class Defaults:
    model: str | None = None
    on_failure: FailurePolicy | None = None
    notification_target: str | None = None


@dataclass(frozen=True)
class RuleSet:
    version: str
    rules: tuple[Rule, ...] = ()
    defaults: Defaults = field(default_factory=Defaults)


@dataclass(frozen=True)
class EventContext:
    """One lifecycle event as seen by the engine."""

    point: str
    session_id: str
    tool_name: str | None = None
    tool_args: Mapping[str, Any] | None = None
    prompt: str | None = None
    response: str | None = None
    topic_id: str | int | None = None
    subagent_label: str | None = None
    cron_job: str | None = None
    timestamp: float = field(default_factory=time.time)
    extra: Mapping[str, Any] = field(default_factory=dict)

    @property
    def is_subagent(self) -> bool:
        return SUBAGENT_MARKER in self.session_id


@dataclass(frozen=True)
class ActionResult:
    passed: bool
    action: str
    message: str = ""
    duration_ms: int = 0
    injected_content: str | None = None
    modified_params: Mapping[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "passed": self.passed,
            "action": self.action,
            "message": self.message,
            "durationMs": self.duration_ms,
        }
        if self.injected_content is not None:
            payload["injectedContent"] = self.injected_content
        if self.modified_params is not None:
            payload["modifiedParams"] = dict(self.modified_params)
        return payload


def elapsed_ms(start_time: float) -> int:
    return max(int((time.monotonic() - start_time) * 1000), 0)
