"""Placeholder substitution for rule string fields."""

from __future__ import annotations

import re
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

from .types import EventContext, Rule


_PLACEHOLDER_RE = re.compile(r"\{([A-Za-z]+)\}")
_TOPIC_RE = re.compile(r":topic:(\d+)")


def extract_topic_id(session_id: str) -> str | None:
    match = _TOPIC_RE.search(session_id)
    return match.group(1) if match else None


def format_timestamp(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat(timespec="milliseconds")


def template_values(ctx: EventContext) -> dict[str, str]:
    if ctx.topic_id is not None:
        topic = str(ctx.topic_id)
    else:
        topic = extract_topic_id(ctx.session_id) or "unknown"
    return {
        "topicId": topic,
        "sessionKey": ctx.session_id,
        "timestamp": format_timestamp(ctx.timestamp),
        "point": ctx.point,
        "tool": ctx.tool_name or "",
    }


def render_template(value: Any, ctx: EventContext) -> Any:
    """Replace known ``{name}`` placeholders; unknown ones stay verbatim."""
    if not isinstance(value, str) or "{" not in value:
        return value
    values = template_values(ctx)

    def _substitute(match: re.Match[str]) -> str:
        return values.get(match.group(1), match.group(0))

    return _PLACEHOLDER_RE.sub(_substitute, value)


def resolve_rule_templates(rule: Rule, ctx: EventContext) -> Rule:
    """Copy of ``rule`` with target, source, script and failure message rendered."""
    on_failure = rule.on_failure
    if on_failure is not None and on_failure.message:
        on_failure = replace(on_failure, message=render_template(on_failure.message, ctx))
    return replace(
        rule,
        target=render_template(rule.target, ctx),
        source=render_template(rule.source, ctx),
        script=render_template(rule.script, ctx),
        on_failure=on_failure,
    )
