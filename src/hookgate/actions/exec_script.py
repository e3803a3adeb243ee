"""External script execution."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import signal
import tempfile
from pathlib import Path
from typing import Sequence

from ..template import extract_topic_id, format_timestamp
from ..types import ActionResult, Defaults, EventContext, Rule, elapsed_ms


logger = logging.getLogger(__name__)


def is_denied(script_path: str, denied_prefixes: Sequence[str]) -> bool:
    """Checks both the absolute and the symlink-resolved path."""
    path = Path(script_path).expanduser()
    candidates = {os.path.abspath(path), os.path.realpath(path)}
    for candidate in candidates:
        for prefix in denied_prefixes:
            if candidate == prefix.rstrip("/") or candidate.startswith(prefix):
                return True
    return False


def build_script_env(ctx: EventContext) -> dict[str, str]:
    topic = ctx.topic_id if ctx.topic_id is not None else extract_topic_id(ctx.session_id)
    env = dict(os.environ)
    env.update(
        {
            "HOOK_POINT": ctx.point,
            "HOOK_SESSION": ctx.session_id,
            "HOOK_TOOL": ctx.tool_name or "",
            "HOOK_ARGS": json.dumps(dict(ctx.tool_args or {}), ensure_ascii=False, default=str),
            "HOOK_TOPIC": "" if topic is None else str(topic),
            "HOOK_TIMESTAMP": format_timestamp(ctx.timestamp),
            "HOOK_SUBAGENT": "true" if ctx.is_subagent else "false",
            "HOOK_SUBAGENT_LABEL": ctx.subagent_label or "",
            "HOOK_CRON_JOB": ctx.cron_job or "",
            "HOOK_PROMPT": ctx.prompt or "",
        }
    )
    return env


def _write_inline(content: str) -> str:
    fd, path = tempfile.mkstemp(prefix="hookgate-inline-", suffix=".sh")
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(content)
    os.chmod(path, 0o700)
    return path


def _kill(process: asyncio.subprocess.Process) -> None:
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        try:
            process.kill()
        except ProcessLookupError:
            pass


def _decode(data: bytes | None, limit: int) -> str:
    text = (data or b"").decode("utf-8", errors="replace")
    return text[:limit]


async def execute_exec_script(
    rule: Rule,
    ctx: EventContext,
    start_time: float,
    defaults: Defaults,
    *,
    timeout_s: float = 30.0,
    max_output_chars: int = 1024 * 1024,
    denied_prefixes: Sequence[str] = (),
) -> ActionResult:
    def result(passed: bool, message: str, injected: str | None = None) -> ActionResult:
        return ActionResult(
            passed=passed,
            action="exec_script",
            message=message,
            duration_ms=elapsed_ms(start_time),
            injected_content=injected,
        )

    inline_path: str | None = None
    if rule.target:
        target = Path(rule.target).expanduser()
        if not target.is_absolute() and rule.source_path:
            target = Path(rule.source_path).parent / target
        script_path = str(target)
        if is_denied(script_path, denied_prefixes):
            logger.warning("拒絕執行受限路徑的腳本：%s", script_path)
            return result(False, f"Script path denied: {script_path}")
        argv = [script_path]
    elif rule.script:
        inline_path = _write_inline(rule.script)
        script_path = inline_path
        argv = [inline_path] if rule.script.startswith("#!") else ["/bin/sh", inline_path]
    else:
        return result(True, "No script configured, skipped")

    try:
        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=build_script_env(ctx),
                start_new_session=True,
            )
        except FileNotFoundError:
            return result(False, f"Script not found: {script_path}")
        except PermissionError:
            return result(False, f"Script not executable: {script_path}")
        except OSError as exc:
            return result(False, f"Script failed to start: {exc}")

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout_s)
        except asyncio.TimeoutError:
            _kill(process)
            await process.wait()
            logger.warning("腳本執行逾時（%ss），已終止：%s", timeout_s, script_path)
            return result(False, f"Script timed out after {timeout_s:g}s")

        out = _decode(stdout, max_output_chars).strip()
        err = _decode(stderr, max_output_chars).strip()
        if process.returncode != 0:
            if err:
                logger.warning("腳本 stderr（exit %s）：%s", process.returncode, err[:500])
            return result(False, f"Script failed (exit {process.returncode}): {err or out}")
        return result(True, out or "Script completed successfully", out if rule.inject_output and out else None)
    finally:
        if inline_path is not None:
            try:
                os.unlink(inline_path)
            except OSError:
                logger.debug("無法刪除暫存腳本：%s", inline_path)
