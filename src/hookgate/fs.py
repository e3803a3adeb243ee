"""File helpers: atomic replace and locked line appends."""

from __future__ import annotations

import os
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

try:
    import fcntl  # type: ignore[attr-defined]
except ImportError:  # pragma: no cover - Windows fallback
    fcntl = None


def atomic_write_text(path: Path, content: str, encoding: str = "utf-8") -> None:
    """Replace ``path`` with ``content`` so readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding=encoding) as handle:
            handle.write(content)
        os.replace(temp_name, path)
    except OSError:
        if os.path.exists(temp_name):
            os.unlink(temp_name)
        raise


@contextmanager
def locked(path: Path) -> Iterator[None]:
    lock_path = path.with_name(f"{path.name}.lock")
    with lock_path.open("a+") as handle:
        if fcntl:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        try:
            yield
        finally:
            if fcntl:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


def append_line(path: Path, line: str) -> None:
    """Append one line, creating parent directories first."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with locked(path):
        with path.open("a", encoding="utf-8") as handle:
            handle.write(line.rstrip("\n"))
            handle.write("\n")
