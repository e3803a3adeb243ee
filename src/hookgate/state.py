"""Durable record of the last primary session."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from .fs import atomic_write_text
from .settings import resolve_data_dir


logger = logging.getLogger(__name__)

DEFAULT_STATE_FILE = "state/last_primary_session.txt"


@dataclass
class SessionStateStore:
    data_dir: Path | None = None
    filename: str = DEFAULT_STATE_FILE

    def _state_path(self) -> Path:
        return resolve_data_dir(self.data_dir) / self.filename

    def load(self) -> str | None:
        path = self._state_path()
        if not path.exists():
            return None
        try:
            value = path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            logger.warning("讀取 session 紀錄失敗：%s：%s", path, exc)
            return None
        return value or None

    def save(self, session_id: str) -> None:
        path = self._state_path()
        try:
            atomic_write_text(path, session_id)
        except OSError as exc:
            logger.warning("寫入 session 紀錄失敗：%s：%s", path, exc)
