"""Origin tag for spawned sub-agents."""

from __future__ import annotations

from ..context_store import OriginContextStore, origin_from_session
from ..types import ActionResult, Defaults, EventContext, Rule, elapsed_ms


SPAWN_TOOL = "sessions_spawn"


def execute_inject_origin(
    rule: Rule,
    ctx: EventContext,
    start_time: float,
    defaults: Defaults,
    *,
    origin_store: OriginContextStore,
) -> ActionResult:
    def result(message: str, params: dict | None = None) -> ActionResult:
        return ActionResult(
            passed=True,
            action="inject_origin",
            message=message,
            duration_ms=elapsed_ms(start_time),
            modified_params=params,
        )

    if ctx.tool_name != SPAWN_TOOL:
        return result(f"Skipped: tool is not {SPAWN_TOOL}")
    args = dict(ctx.tool_args or {})
    task = args.get("task")
    if not isinstance(task, str):
        return result("Skipped: no task parameter")

    origin = origin_store.get(ctx.session_id) or origin_from_session(ctx.session_id, ctx.topic_id)
    tag = origin.tag()
    if tag in task:
        return result("Origin already present")
    args["task"] = f"{task}\n\n{tag}"
    return result(f"Injected origin {tag}", args)
