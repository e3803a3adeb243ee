"""Unconditional block."""

from __future__ import annotations

import logging

from ..matcher import extract_command_subject
from ..notify import NotificationRouter
from ..types import ActionResult, Defaults, EventContext, Rule, elapsed_ms


logger = logging.getLogger(__name__)


def block_message(rule: Rule, ctx: EventContext) -> str:
    if rule.on_failure is not None and rule.on_failure.message:
        return rule.on_failure.message
    parts = ["Action blocked by lifecycle hook."]
    if ctx.tool_name:
        parts.append(f"Tool: {ctx.tool_name}")
    subject = extract_command_subject(ctx) if ctx.tool_args else ""
    if subject:
        parts.append(f"Command: {subject[:80]}{'...' if len(subject) > 80 else ''}")
    parts.append(f"Hook point: {ctx.point}")
    return " | ".join(parts)


def execute_block(
    rule: Rule,
    ctx: EventContext,
    start_time: float,
    defaults: Defaults,
    *,
    router: NotificationRouter | None = None,
) -> ActionResult:
    message = block_message(rule, ctx)
    wants_notify = rule.notify_user or (rule.on_failure is not None and rule.on_failure.notify_user)
    if wants_notify and router is not None:
        router.send(router.resolve_target(ctx, defaults), f"[hookgate] {message}")
    logger.info("規則 %s 阻擋 %s（session=%s）", rule.label, ctx.point, ctx.session_id)
    return ActionResult(passed=False, action="block", message=message, duration_ms=elapsed_ms(start_time))
