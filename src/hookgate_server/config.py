"""Runtime settings for the hookgate HTTP adapter."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class ServerSettings:
    host: str = "127.0.0.1"
    port: int = 8089
    api_key: str | None = None
    config_path: Path | None = None
    workspace: Path | None = None


def load_settings() -> ServerSettings:
    config_path = os.environ.get("HOOKGATE_SERVER_CONFIG")
    workspace = os.environ.get("HOOKGATE_SERVER_WORKSPACE")
    return ServerSettings(
        host=os.environ.get("HOOKGATE_SERVER_HOST", "127.0.0.1"),
        port=int(os.environ.get("HOOKGATE_SERVER_PORT", "8089")),
        api_key=os.environ.get("HOOKGATE_SERVER_API_KEY") or None,
        config_path=Path(config_path).expanduser() if config_path else None,
        workspace=Path(workspace).expanduser() if workspace else None,
    )
