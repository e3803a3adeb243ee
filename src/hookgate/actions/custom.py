"""Custom actions loaded from module references."""

from __future__ import annotations

import inspect
import logging
from pathlib import Path
from typing import Any, Mapping

from ..errors import ActionError, ModuleLoadError
from ..loader import load_callable
from ..types import ActionResult, Defaults, EventContext, Rule, elapsed_ms


logger = logging.getLogger(__name__)


def _coerce_result(value: Any, rule: Rule, start_time: float) -> ActionResult:
    if isinstance(value, ActionResult):
        return value
    if isinstance(value, Mapping):
        passed = value.get("passed")
        if not isinstance(passed, bool):
            raise ActionError(f'custom action "{rule.action}" returned a mapping without a boolean "passed"')
        return ActionResult(
            passed=passed,
            action=str(value.get("action") or rule.action),
            message=str(value.get("message") or ""),
            duration_ms=int(value.get("durationMs") or value.get("duration_ms") or elapsed_ms(start_time)),
            injected_content=value.get("injectedContent") or value.get("injected_content"),
            modified_params=value.get("modifiedParams") or value.get("modified_params"),
        )
    raise ActionError(f'custom action "{rule.action}" returned {type(value).__name__}, expected ActionResult')


async def execute_custom_action(rule: Rule, ctx: EventContext, start_time: float, defaults: Defaults) -> ActionResult:
    """Run ``rule.action`` as ``module:execute``; every failure raises :class:`ActionError`."""
    base_dir = Path(rule.source_path).parent if rule.source_path else None
    try:
        func = load_callable(rule.action, "execute", base_dir)
    except ModuleLoadError as exc:
        raise ActionError(f'failed to load custom action "{rule.action}": {exc}') from exc

    try:
        outcome = func(rule, ctx, start_time, defaults)
        if inspect.isawaitable(outcome):
            outcome = await outcome
    except Exception as exc:  # noqa: BLE001
        logger.warning("自訂 action 執行失敗 \"%s\"：%s", rule.action, exc)
        raise ActionError(f'custom action "{rule.action}" failed: {exc}') from exc
    return _coerce_result(outcome, rule, start_time)
