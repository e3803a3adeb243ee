"""Context injection from a file."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from ..types import ActionResult, Defaults, EventContext, Rule, elapsed_ms


logger = logging.getLogger(__name__)


def _format_entry(index: int, entry: Any) -> str:
    if not isinstance(entry, dict):
        return f"{index}. {entry}"
    when = entry.get("timestamp") or entry.get("ts") or ""
    role = entry.get("role") or entry.get("point") or "event"
    text = entry.get("content") or entry.get("summary") or entry.get("prompt") or entry.get("message")
    if text is None:
        text = json.dumps(entry, ensure_ascii=False, default=str)
    prefix = f"[{when}] " if when else ""
    return f"{index}. {prefix}{role}: {text}"


def format_recent_entries(text: str, last_n: int) -> str | None:
    entries: list[Any] = []
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            entries.append(json.loads(line))
        except json.JSONDecodeError:
            logger.debug("略過無法解析的 JSONL 行：%s", line[:80])
    if not entries:
        return None
    recent = entries[-last_n:]
    body = [_format_entry(i, entry) for i, entry in enumerate(recent, start=1)]
    return "\n".join(
        [f"── Recent Topic Context (last {len(recent)} interactions) ──", *body, "── End Topic Context ──"]
    )


def execute_inject_context(
    rule: Rule,
    ctx: EventContext,
    start_time: float,
    defaults: Defaults,
    *,
    default_last_n: int = 5,
) -> ActionResult:
    def result(message: str, content: str | None = None) -> ActionResult:
        return ActionResult(
            passed=True,
            action="inject_context",
            message=message,
            duration_ms=elapsed_ms(start_time),
            injected_content=content,
        )

    source = rule.source or rule.target
    if not source:
        return result("No context source configured")
    path = Path(source).expanduser()
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return result(f"Context source not found: {path}")
    except OSError as exc:
        logger.warning("讀取 context 來源失敗：%s：%s", path, exc)
        return result(f"Context source unreadable: {path}")

    if path.suffix == ".jsonl":
        content = format_recent_entries(text, rule.last_n or default_last_n)
    else:
        content = text.strip() or None
    if not content:
        return result(f"Context source empty: {path}")
    return result(f"Injected context from {path}", content)
