"""Runtime settings for hookgate."""

from __future__ import annotations

import os
from copy import deepcopy
from pathlib import Path
from typing import Any, Mapping

import yaml

from .errors import ConfigLoadError

DEFAULT_SETTINGS: dict[str, Any] = {
    "discovery": {
        "max_depth": 4,
        "ignore": ["node_modules", ".git", "dist", ".venv", "__pycache__"],
        "filenames": ["HOOKS.yaml", "HOOKS.yml"],
    },
    "engine": {
        "retry_backoff_s": 0.1,
        "default_retries": 3,
    },
    "actions": {
        "script_timeout_s": 30,
        "max_output_chars": 1024 * 1024,
        "denied_script_prefixes": ["/etc/", "/usr/bin/rm", "/bin/rm", "/usr/sbin/", "/sbin/"],
        "inject_last_n": 5,
    },
    "notify": {
        "state_file": "state/last_primary_session.txt",
    },
    "llm": {
        "default_model": "openai/gpt-4o-mini",
        "timeout_s": 30,
        "aliases": {},
        "providers": {
            "openai": {
                "base_url": "https://api.openai.com/v1",
                "api_key_env": "OPENAI_API_KEY",
            },
            "local": {
                "base_url": "http://localhost:8000/v1",
                "api_key_env": "LOCAL_LLM_API_KEY",
            },
        },
    },
}


def resolve_data_dir(data_dir: Path | None = None) -> Path:
    if data_dir:
        return data_dir
    env_path = os.environ.get("HOOKGATE_HOME")
    if env_path:
        return Path(env_path).expanduser()
    return Path("~/.hookgate").expanduser()


def deep_merge(base: dict[str, Any], updates: Mapping[str, Any]) -> dict[str, Any]:
    merged = deepcopy(base)
    for key, value in updates.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = deepcopy(value)
    return merged


def read_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigLoadError(f"讀取設定檔失敗：{path}") from exc
    if not isinstance(data, dict):
        raise ConfigLoadError(f"設定檔頂層必須為物件：{path}")
    return data


def load_settings(overrides: Mapping[str, Any] | None = None, data_dir: Path | None = None) -> dict[str, Any]:
    """Defaults, then ``$HOOKGATE_HOME/config.yaml``, then explicit overrides."""
    base_dir = resolve_data_dir(data_dir)
    settings = deep_merge(DEFAULT_SETTINGS, read_yaml(base_dir / "config.yaml"))
    if overrides:
        settings = deep_merge(settings, overrides)
    settings["data_dir"] = str(base_dir)
    return settings


def get_setting(settings: Mapping[str, Any], key_path: str, default: Any = None) -> Any:
    cursor: Any = settings
    for part in key_path.split("."):
        if not isinstance(cursor, Mapping) or part not in cursor:
            return default
        cursor = cursor[part]
    return cursor
