"""Operator notification."""

from __future__ import annotations

import logging

from ..llm import TextCompletion
from ..notify import NotificationRouter
from ..types import ActionResult, Defaults, EventContext, Rule, elapsed_ms


logger = logging.getLogger(__name__)

NOTIFY_PROMPT = "Summarize this agent activity for a human operator in one short sentence."


def default_notification(ctx: EventContext) -> str:
    who = ctx.subagent_label or ctx.cron_job or ctx.session_id
    duration = ctx.extra.get("durationMs")
    parts = [f"[hookgate] {ctx.point} ({who})"]
    if isinstance(duration, (int, float)):
        parts.append(f"{duration / 1000:.1f}s")
    if ctx.response:
        parts.append(ctx.response[:200])
    return " | ".join(parts)


async def execute_notify_user(
    rule: Rule,
    ctx: EventContext,
    start_time: float,
    defaults: Defaults,
    *,
    router: NotificationRouter,
    completion: TextCompletion | None = None,
) -> ActionResult:
    text = None
    if rule.model and completion is not None and ctx.response:
        try:
            summary = await completion(rule.model, NOTIFY_PROMPT, ctx.response[:4000])
            text = f"[hookgate] {ctx.point}: {summary}"
        except Exception as exc:  # noqa: BLE001
            logger.warning("通知摘要產生失敗，改用預設文字：%s", exc)
    if text is None:
        text = default_notification(ctx)

    target = router.resolve_target(ctx, defaults)
    router.send(target, text)
    return ActionResult(
        passed=True,
        action="notify_user",
        message=f"Notification sent to session: {target}",
        duration_ms=elapsed_ms(start_time),
    )
