"""Discovery of rule documents across a workspace, merge and conflict checks."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Literal, Sequence

from .types import MatchCriteria, Rule, RuleSet


logger = logging.getLogger(__name__)

DEFAULT_MAX_DEPTH = 4
DEFAULT_IGNORE = ("node_modules", ".git", "dist", ".venv", "__pycache__")
DEFAULT_FILENAMES = ("HOOKS.yaml", "HOOKS.yml")

ConflictType = Literal["duplicate-name", "overlapping-match"]


@dataclass(frozen=True)
class LoadedDocument:
    path: str
    rule_set: RuleSet


@dataclass(frozen=True)
class ConflictWarning:
    type: ConflictType
    sources: tuple[str, ...]
    message: str
    rule_name: str | None = None


@dataclass
class DiscoveryResult:
    documents: list[LoadedDocument] = field(default_factory=list)
    conflicts: list[ConflictWarning] = field(default_factory=list)
    total_rules: int = 0


def scan(
    root: Path | str,
    max_depth: int = DEFAULT_MAX_DEPTH,
    ignore: Iterable[str] | None = None,
    filenames: Iterable[str] = DEFAULT_FILENAMES,
) -> list[str]:
    """Absolute paths of every rule document under ``root``, sorted.

    Unreadable directories are skipped.
    """
    ignored = set(DEFAULT_IGNORE if ignore is None else ignore)
    wanted = set(filenames)
    found: list[str] = []

    def _walk(directory: Path, depth: int) -> None:
        if depth > max_depth:
            return
        try:
            entries = list(os.scandir(directory))
        except OSError as exc:
            logger.debug("略過無法讀取的目錄：%s：%s", directory, exc)
            return
        for entry in entries:
            if entry.name in ignored:
                continue
            try:
                is_dir = entry.is_dir(follow_symlinks=False)
            except OSError:
                continue
            if is_dir:
                _walk(Path(entry.path), depth + 1)
            elif entry.name in wanted:
                found.append(str(Path(entry.path).resolve()))

    _walk(Path(root).expanduser().resolve(), 0)
    return sorted(found)


def merge(primary: RuleSet, *secondaries: RuleSet) -> RuleSet:
    """Primary's version and defaults win; rules concatenate primary first."""
    rules: list[Rule] = list(primary.rules)
    for rule_set in secondaries:
        rules.extend(rule_set.rules)
    return RuleSet(version=primary.version, rules=tuple(rules), defaults=primary.defaults)


def _match_signature(criteria: MatchCriteria | None) -> tuple:
    if criteria is None:
        return ()
    return (
        criteria.tool,
        criteria.command_pattern,
        None if criteria.topic_id is None else str(criteria.topic_id),
        criteria.is_subagent,
        criteria.session_pattern,
    )


def _unique(items: Sequence[str]) -> tuple[str, ...]:
    return tuple(dict.fromkeys(items))


def detect_conflicts(documents: Sequence[LoadedDocument]) -> list[ConflictWarning]:
    """Advisory only; the merged order is never changed."""
    names: dict[str, list[str]] = {}
    signatures: dict[tuple, list[str]] = {}

    for document in documents:
        for rule in document.rule_set.rules:
            if rule.name:
                names.setdefault(rule.name, []).append(document.path)
            signature = _match_signature(rule.match)
            for point in rule.points:
                signatures.setdefault((point, signature), []).append(document.path)

    warnings: list[ConflictWarning] = []
    for name, sources in names.items():
        unique = _unique(sources)
        if len(unique) > 1:
            warnings.append(
                ConflictWarning(
                    type="duplicate-name",
                    sources=unique,
                    message=f'Duplicate hook name "{name}" found in {len(unique)} files',
                    rule_name=name,
                )
            )
    for (point, _), sources in signatures.items():
        unique = _unique(sources)
        if len(unique) > 1:
            warnings.append(
                ConflictWarning(
                    type="overlapping-match",
                    sources=unique,
                    message=f'Overlapping match at point "{point}" from {len(unique)} files',
                )
            )
    return warnings
