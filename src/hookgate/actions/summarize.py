"""LLM summary of an event, written like the log action."""

from __future__ import annotations

import asyncio
import logging

from ..llm import TextCompletion
from ..template import format_timestamp
from ..types import ActionResult, Defaults, EventContext, Rule, elapsed_ms
from .log import build_log_entry, write_entry


logger = logging.getLogger(__name__)

SUMMARY_PROMPT = (
    "You summarize agent lifecycle events for an audit log. "
    "Reply with one or two plain sentences."
)


def fallback_summary(ctx: EventContext) -> str:
    return f"Event at {ctx.point} in session {ctx.session_id} at {format_timestamp(ctx.timestamp)}"


def _describe(ctx: EventContext) -> str:
    lines = [f"Point: {ctx.point}", f"Session: {ctx.session_id}"]
    if ctx.tool_name:
        lines.append(f"Tool: {ctx.tool_name}")
    if ctx.prompt:
        lines.append(f"Prompt: {ctx.prompt[:1000]}")
    if ctx.response:
        lines.append(f"Response: {ctx.response[:2000]}")
    return "\n".join(lines)


async def execute_summarize_and_log(
    rule: Rule,
    ctx: EventContext,
    start_time: float,
    defaults: Defaults,
    *,
    completion: TextCompletion | None = None,
) -> ActionResult:
    model = rule.model or defaults.model or "default"
    summary = None
    if completion is not None:
        try:
            summary = await completion(model, SUMMARY_PROMPT, _describe(ctx))
        except Exception as exc:  # noqa: BLE001
            logger.warning("摘要產生失敗，改用預設文字：%s", exc)
    if not summary:
        summary = fallback_summary(ctx)

    entry = build_log_entry(ctx)
    entry["summary"] = summary
    entry["model"] = model
    await asyncio.to_thread(write_entry, rule.target, entry)
    return ActionResult(
        passed=True,
        action="summarize_and_log",
        message=f"Summarized event at {ctx.point}",
        duration_ms=elapsed_ms(start_time),
    )
