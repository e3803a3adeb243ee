"""Rule matcher."""

from __future__ import annotations

import inspect
import logging
import re
from pathlib import Path

from .errors import ModuleLoadError
from .loader import load_callable
from .types import TOPIC_WILDCARD, EventContext, MatchCriteria, Rule


logger = logging.getLogger(__name__)

# Order matters: the first string-valued argument wins.
COMMAND_SUBJECT_KEYS = ("command", "path", "file_path", "url", "message")


def extract_command_subject(ctx: EventContext) -> str:
    args = ctx.tool_args or {}
    for key in COMMAND_SUBJECT_KEYS:
        value = args.get(key)
        if isinstance(value, str):
            return value
    if ctx.prompt:
        return ctx.prompt
    return ""


def _compile(pattern: str, field: str) -> re.Pattern[str] | None:
    try:
        return re.compile(pattern)
    except re.error as exc:
        logger.warning("%s 正規表示式無效 \"%s\"：%s，視為不符合", field, pattern, exc)
        return None


def _match_topic(expected: str | int, actual: str | int | None) -> bool:
    if str(expected) == TOPIC_WILDCARD:
        return actual is not None
    return actual is not None and str(actual) == str(expected)


async def _match_custom(reference: str, ctx: EventContext, base_dir: Path | None) -> bool:
    # Fail-open: a broken safety predicate must not silently disable its rule,
    # unlike custom actions, which fail closed.
    try:
        predicate = load_callable(reference, "match", base_dir)
    except ModuleLoadError as exc:
        logger.warning("自訂 matcher 載入失敗 \"%s\"：%s，視為符合", reference, exc)
        return True
    try:
        outcome = predicate(ctx)
        if inspect.isawaitable(outcome):
            outcome = await outcome
    except Exception as exc:  # noqa: BLE001
        logger.warning("自訂 matcher 執行失敗 \"%s\"：%s，視為符合", reference, exc, exc_info=True)
        return True
    return bool(outcome)


async def matches_filter(criteria: MatchCriteria | None, ctx: EventContext, base_dir: Path | None = None) -> bool:
    """AND of every present field; an absent field never constrains."""
    if criteria is None:
        return True

    if criteria.tool is not None and ctx.tool_name != criteria.tool:
        return False

    if criteria.command_pattern is not None:
        pattern = _compile(criteria.command_pattern, "commandPattern")
        if pattern is None or not pattern.search(extract_command_subject(ctx)):
            return False

    if criteria.topic_id is not None and not _match_topic(criteria.topic_id, ctx.topic_id):
        return False

    if criteria.is_subagent is not None and ctx.is_subagent != criteria.is_subagent:
        return False

    if criteria.session_pattern is not None:
        pattern = _compile(criteria.session_pattern, "sessionPattern")
        if pattern is None or not pattern.search(ctx.session_id):
            return False

    if criteria.custom is not None and not await _match_custom(criteria.custom, ctx, base_dir):
        return False

    return True


async def should_fire(rule: Rule, ctx: EventContext) -> bool:
    if not rule.enabled:
        return False
    if ctx.point not in rule.points:
        return False
    base_dir = Path(rule.source_path).parent if rule.source_path else None
    return await matches_filter(rule.match, ctx, base_dir)
