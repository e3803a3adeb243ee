"""Action registry and dispatcher."""

from __future__ import annotations

import inspect
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Awaitable, Callable, Mapping, Union

from ..context_store import OriginContextStore
from ..llm import TextCompletion
from ..notify import NotificationRouter
from ..settings import DEFAULT_SETTINGS, get_setting
from ..types import ActionResult, Defaults, EventContext, Rule
from .block import execute_block
from .custom import execute_custom_action
from .exec_script import execute_exec_script
from .inject import execute_inject_context
from .inject_origin import execute_inject_origin
from .log import execute_log
from .notify_user import execute_notify_user
from .summarize import execute_summarize_and_log


ActionExecutor = Callable[
    [Rule, EventContext, float, Defaults],
    Union[ActionResult, Awaitable[ActionResult]],
]

BUILTIN_ACTIONS = (
    "block",
    "log",
    "summarize_and_log",
    "inject_context",
    "inject_origin",
    "exec_script",
    "notify_user",
)


@dataclass
class ActionRegistry:
    """Built-in executors by name; anything else is a custom module reference."""

    _executors: dict[str, ActionExecutor] = field(default_factory=dict, init=False)

    def register(self, name: str, executor: ActionExecutor) -> None:
        self._executors[name] = executor

    def get(self, name: str) -> ActionExecutor | None:
        return self._executors.get(name)

    def names(self) -> list[str]:
        return sorted(self._executors)

    async def dispatch(self, rule: Rule, ctx: EventContext, start_time: float, defaults: Defaults) -> ActionResult:
        executor = self._executors.get(rule.action)
        if executor is None:
            return await execute_custom_action(rule, ctx, start_time, defaults)
        outcome = executor(rule, ctx, start_time, defaults)
        if inspect.isawaitable(outcome):
            outcome = await outcome
        return outcome


def build_default_registry(
    router: NotificationRouter,
    completion: TextCompletion | None = None,
    settings: Mapping[str, Any] | None = None,
    origin_store: OriginContextStore | None = None,
) -> ActionRegistry:
    settings = settings or DEFAULT_SETTINGS
    registry = ActionRegistry()
    registry.register("block", partial(execute_block, router=router))
    registry.register("log", execute_log)
    registry.register("summarize_and_log", partial(execute_summarize_and_log, completion=completion))
    registry.register(
        "inject_context",
        partial(execute_inject_context, default_last_n=int(get_setting(settings, "actions.inject_last_n", 5))),
    )
    registry.register(
        "inject_origin",
        partial(execute_inject_origin, origin_store=origin_store or OriginContextStore()),
    )
    registry.register(
        "exec_script",
        partial(
            execute_exec_script,
            timeout_s=float(get_setting(settings, "actions.script_timeout_s", 30)),
            max_output_chars=int(get_setting(settings, "actions.max_output_chars", 1024 * 1024)),
            denied_prefixes=tuple(get_setting(settings, "actions.denied_script_prefixes", ()) or ()),
        ),
    )
    registry.register("notify_user", partial(execute_notify_user, router=router, completion=completion))
    return registry


def list_builtin_actions() -> list[str]:
    return list(BUILTIN_ACTIONS)


__all__ = [
    "ActionExecutor",
    "ActionRegistry",
    "BUILTIN_ACTIONS",
    "build_default_registry",
    "execute_custom_action",
    "list_builtin_actions",
]
