"""Example custom matcher and action referenced from HOOKS.yaml."""

from __future__ import annotations

import re

from hookgate.types import ActionResult, elapsed_ms


PROTECTED_PREFIXES = ("/etc/", "~/.ssh/", "~/.hookgate/")
TICKET_RE = re.compile(r"\b[A-Z]{2,}-\d+\b")


def touches_protected_path(ctx) -> bool:
    path = (ctx.tool_args or {}).get("path") or ""
    return isinstance(path, str) and path.startswith(PROTECTED_PREFIXES)


def require_ticket(rule, ctx, start_time, defaults):
    message = (ctx.tool_args or {}).get("message") or ""
    if TICKET_RE.search(message):
        return ActionResult(passed=True, action=rule.action, message="ticket reference found", duration_ms=elapsed_ms(start_time))
    return ActionResult(passed=False, action=rule.action, message="Commit messages must reference a ticket (ABC-123).", duration_ms=elapsed_ms(start_time))
