"""Loading of external matcher and action callables."""

from __future__ import annotations

import hashlib
import importlib
import importlib.util
import logging
from pathlib import Path
from types import ModuleType
from typing import Any, Callable

from .errors import ModuleLoadError


logger = logging.getLogger(__name__)

_MODULE_CACHE: dict[tuple[str, float], ModuleType] = {}


def split_reference(reference: str, default_attr: str) -> tuple[str, str]:
    """``pkg.mod:attr`` or ``path/to/file.py:attr``; the attribute is optional."""
    target, sep, attr = reference.rpartition(":")
    if sep and attr.isidentifier() and target:
        return target, attr
    return reference, default_attr


def _is_file_reference(target: str) -> bool:
    return target.endswith(".py") or "/" in target or "\\" in target


def _import_file(path: Path) -> ModuleType:
    try:
        mtime = path.stat().st_mtime
    except OSError as exc:
        raise ModuleLoadError(f"找不到模組檔案：{path}") from exc
    cache_key = (str(path), mtime)
    cached = _MODULE_CACHE.get(cache_key)
    if cached is not None:
        return cached

    digest = hashlib.sha256(str(path).encode("utf-8")).hexdigest()[:8]
    module_name = f"hookgate_ext_{path.stem}_{digest}"
    spec = importlib.util.spec_from_file_location(module_name, path)
    if spec is None or spec.loader is None:
        raise ModuleLoadError(f"無法載入模組：{path}")
    module = importlib.util.module_from_spec(spec)
    try:
        spec.loader.exec_module(module)
    except Exception as exc:  # noqa: BLE001
        raise ModuleLoadError(f"執行模組失敗：{path}：{exc}") from exc
    for stale in [key for key in _MODULE_CACHE if key[0] == cache_key[0]]:
        del _MODULE_CACHE[stale]
    _MODULE_CACHE[cache_key] = module
    return module


def _import_dotted(name: str) -> ModuleType:
    try:
        return importlib.import_module(name)
    except Exception as exc:  # noqa: BLE001
        raise ModuleLoadError(f"無法匯入模組：{name}：{exc}") from exc


def load_callable(reference: str, default_attr: str, base_dir: Path | None = None) -> Callable[..., Any]:
    """Resolve ``reference`` to a callable or raise :class:`ModuleLoadError`.

    Relative file paths resolve against ``base_dir`` (the directory of the
    rule's source document) when given, else the working directory.
    """
    target, attr = split_reference(reference.strip(), default_attr)
    if not target:
        raise ModuleLoadError("模組參照不可為空")

    if _is_file_reference(target):
        path = Path(target).expanduser()
        if not path.is_absolute():
            path = (base_dir or Path.cwd()) / path
        module = _import_file(path.resolve())
    else:
        module = _import_dotted(target)

    func = getattr(module, attr, None)
    if not callable(func):
        raise ModuleLoadError(f"模組 {target} 沒有可呼叫的 {attr}")
    logger.debug("已載入外部模組 %s:%s", target, attr)
    return func


def clear_cache() -> None:
    _MODULE_CACHE.clear()
