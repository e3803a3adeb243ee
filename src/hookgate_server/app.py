"""FastAPI application for the hookgate engine."""

from __future__ import annotations

import logging
import secrets
import sys
from typing import Any

from fastapi import FastAPI, Header, HTTPException

from hookgate.config import dump_rule
from hookgate.engine import GateEngine
from hookgate.errors import ConfigError
from hookgate.logging_utils import setup_logger
from hookgate.settings import resolve_data_dir
from hookgate.types import HOOK_POINTS, EventContext

from .config import ServerSettings, load_settings

logger = logging.getLogger("hookgate_server")

_CONTEXT_FIELDS = {
    "toolName": "tool_name",
    "toolArgs": "tool_args",
    "prompt": "prompt",
    "response": "response",
    "topicId": "topic_id",
    "subagentLabel": "subagent_label",
    "cronJob": "cron_job",
    "timestamp": "timestamp",
    "extra": "extra",
}


def context_from_payload(payload: dict[str, Any]) -> EventContext:
    point = payload.get("point")
    session_id = payload.get("sessionId")
    if point not in HOOK_POINTS:
        raise ValueError(f"未知的 hook point：{point}")
    if not isinstance(session_id, str) or not session_id:
        raise ValueError("缺少 sessionId")
    fields = {attr: payload[key] for key, attr in _CONTEXT_FIELDS.items() if payload.get(key) is not None}
    if "tool_args" in fields and not isinstance(fields["tool_args"], dict):
        raise ValueError("toolArgs 必須為物件")
    if "extra" in fields and not isinstance(fields["extra"], dict):
        raise ValueError("extra 必須為物件")
    return EventContext(point=point, session_id=session_id, **fields)


def create_app(settings: ServerSettings | None = None, engine: GateEngine | None = None) -> FastAPI:
    app = FastAPI(title="Hookgate", version="0.1.0")
    runtime_settings = settings or load_settings()
    gate = engine or GateEngine()

    def _authorize(authorization: str | None) -> None:
        if runtime_settings.api_key:
            expected = f"Bearer {runtime_settings.api_key}"
            if not authorization or not secrets.compare_digest(authorization, expected):
                raise HTTPException(status_code=401, detail="unauthorized")

    async def _load() -> None:
        if runtime_settings.config_path is None:
            return
        try:
            if runtime_settings.workspace is not None:
                await gate.load_with_discovery(runtime_settings.config_path, runtime_settings.workspace)
            else:
                await gate.load_config(runtime_settings.config_path)
        except ConfigError as exc:
            logger.error("載入 HOOKS 設定失敗：%s", exc)
            raise HTTPException(status_code=422, detail=str(exc)) from exc

    async def _ensure_loaded() -> None:
        if not gate.is_ready:
            await _load()

    @app.get("/health")
    def health() -> dict[str, Any]:
        rule_set = gate.rule_set
        return {
            "status": "ok",
            "service": "hookgate",
            "version": "0.1.0",
            "ready": gate.is_ready,
            "rules": len(rule_set.rules) if rule_set else 0,
        }

    @app.post("/execute")
    async def execute(payload: dict[str, Any], authorization: str | None = Header(default=None)) -> dict[str, Any]:
        _authorize(authorization)
        try:
            ctx = context_from_payload(payload)
        except (TypeError, ValueError) as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        await _ensure_loaded()

        try:
            results = await gate.execute(ctx.point, ctx)
        except Exception as exc:  # noqa: BLE001
            logger.exception("execute 發生未預期錯誤")
            raise HTTPException(status_code=500, detail="engine internal error") from exc

        injected = [result.injected_content for result in results if result.injected_content]
        modified = next(
            (result.modified_params for result in reversed(results) if result.modified_params is not None),
            None,
        )
        return {
            "results": [result.to_dict() for result in results],
            "blocked": any(not result.passed for result in results),
            "injectedContent": "\n\n".join(injected) if injected else None,
            "modifiedParams": dict(modified) if modified is not None else None,
        }

    @app.get("/rules/{point}")
    async def rules(point: str, authorization: str | None = Header(default=None)) -> dict[str, Any]:
        _authorize(authorization)
        if point not in HOOK_POINTS:
            raise HTTPException(status_code=404, detail=f"unknown hook point: {point}")
        await _ensure_loaded()
        return {"point": point, "rules": [dump_rule(rule) for rule in gate.get_rules_for_point(point)]}

    @app.post("/reload")
    async def reload(authorization: str | None = Header(default=None)) -> dict[str, Any]:
        _authorize(authorization)
        if gate.is_ready:
            try:
                await gate.reload_config()
            except ConfigError as exc:
                raise HTTPException(status_code=422, detail=str(exc)) from exc
        else:
            await _load()
        rule_set = gate.rule_set
        return {"reloaded": gate.is_ready, "rules": len(rule_set.rules) if rule_set else 0}

    return app


def main() -> None:
    log_dir = resolve_data_dir() / "logs"
    setup_logger("hookgate", log_dir=log_dir)
    setup_logger("hookgate_server", log_dir=log_dir)
    try:
        import uvicorn

        settings = load_settings()
        app = create_app(settings)
        uvicorn.run(app, host=settings.host, port=settings.port)
    except Exception as exc:  # noqa: BLE001
        logger.exception("hookgate server 啟動失敗")
        print(f"hookgate server 啟動失敗：{exc}", file=sys.stderr)
        raise


if __name__ == "__main__":
    main()
