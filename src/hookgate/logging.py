"""JSONL audit log for gate decisions."""

from __future__ import annotations

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any

from .fs import append_line
from .settings import resolve_data_dir

_LOGGER = logging.getLogger("hookgate.logging")


def log_event(event: dict[str, Any], data_dir: Path | None = None) -> None:
    """Append one audit record. Write failures are logged, never raised."""
    payload = _build_payload(event)
    path = _log_path("events.log", data_dir)
    try:
        append_line(path, json.dumps(payload, ensure_ascii=False, default=str))
    except OSError as exc:
        _LOGGER.warning("寫入稽核紀錄失敗：%s：%s", path, exc)


def _build_payload(source: dict[str, Any]) -> dict[str, Any]:
    payload = dict(source)
    payload.setdefault("ts", _now_iso())
    payload.setdefault("level", "INFO")
    payload.setdefault("session_id", None)
    payload.setdefault("point", None)
    return payload


def _log_path(filename: str, data_dir: Path | None = None) -> Path:
    return resolve_data_dir(data_dir) / "logs" / filename


def _now_iso() -> str:
    return datetime.now().astimezone().isoformat(timespec="seconds")
