"""Structured event logging."""

from __future__ import annotations

import asyncio
import json
import logging
from pathlib import Path
from typing import Any

from ..fs import append_line
from ..template import extract_topic_id, format_timestamp
from ..types import ActionResult, Defaults, EventContext, Rule, elapsed_ms


logger = logging.getLogger(__name__)


def _truncate(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def build_log_entry(ctx: EventContext) -> dict[str, Any]:
    topic = ctx.topic_id if ctx.topic_id is not None else extract_topic_id(ctx.session_id)
    entry: dict[str, Any] = {
        "timestamp": format_timestamp(ctx.timestamp),
        "point": ctx.point,
        "sessionKey": ctx.session_id,
        "topicId": topic,
    }
    if ctx.tool_name:
        entry["tool"] = ctx.tool_name
    if ctx.tool_args:
        args = {}
        for key, value in ctx.tool_args.items():
            rendered = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False, default=str)
            args[key] = _truncate(rendered, 100)
        entry["args"] = args
    if ctx.prompt:
        entry["prompt"] = _truncate(ctx.prompt, 200)
    if ctx.subagent_label:
        entry["subagent"] = ctx.subagent_label
    if ctx.cron_job:
        entry["cronJob"] = ctx.cron_job
    return entry


def write_entry(target: str | None, entry: dict[str, Any]) -> None:
    """JSON line to ``target``; the process log when there is none or the write fails."""
    line = json.dumps(entry, ensure_ascii=False, default=str)
    if target:
        try:
            append_line(Path(target).expanduser(), line)
            return
        except OSError as exc:
            logger.warning("寫入紀錄檔失敗：%s：%s", target, exc)
    logger.info("hook 事件：%s", line)


async def execute_log(rule: Rule, ctx: EventContext, start_time: float, defaults: Defaults) -> ActionResult:
    await asyncio.to_thread(write_entry, rule.target, build_log_entry(ctx))
    return ActionResult(
        passed=True,
        action="log",
        message=f"Logged event at {ctx.point}",
        duration_ms=elapsed_ms(start_time),
    )
