"""Gate engine: ordered rule evaluation with failure policies."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import replace
from pathlib import Path
from typing import Any, Iterable, Mapping

from .actions import ActionRegistry, build_default_registry
from .config import load_rule_set
from .context_store import OriginContextStore, origin_from_session
from .discovery import DiscoveryResult, LoadedDocument, detect_conflicts, merge, scan
from .errors import ConfigError
from .llm import CompletionClient
from .logging import log_event
from .matcher import should_fire
from .notify import NotificationRouter, SessionTracker
from .settings import get_setting, load_settings
from .state import DEFAULT_STATE_FILE, SessionStateStore
from .template import resolve_rule_templates
from .types import HOOK_POINTS, ActionResult, Defaults, EventContext, Rule, RuleSet, elapsed_ms


logger = logging.getLogger(__name__)


class GateEngine:
    """Evaluates the loaded rule set for one lifecycle event at a time.

    Rules run strictly in document order. The first non-passing result stops
    the chain; the caller treats that as "do not proceed".
    """

    def __init__(
        self,
        registry: ActionRegistry | None = None,
        router: NotificationRouter | None = None,
        settings: Mapping[str, Any] | None = None,
        origin_store: OriginContextStore | None = None,
        data_dir: Path | None = None,
    ) -> None:
        self.data_dir = data_dir
        self.settings = settings if settings is not None else load_settings(data_dir=data_dir)
        if router is None:
            store = SessionStateStore(
                data_dir=data_dir,
                filename=str(get_setting(self.settings, "notify.state_file", DEFAULT_STATE_FILE)),
            )
            router = NotificationRouter(tracker=SessionTracker(store))
        self.router = router
        self.origin_store = origin_store or OriginContextStore()
        self.registry = registry or build_default_registry(
            router=self.router,
            completion=CompletionClient(self.settings),
            settings=self.settings,
            origin_store=self.origin_store,
        )
        self._rule_set: RuleSet | None = None
        self._config_path: Path | None = None
        self._discovery_root: Path | None = None

    # Loading

    @property
    def is_ready(self) -> bool:
        return self._rule_set is not None

    @property
    def rule_set(self) -> RuleSet | None:
        return self._rule_set

    async def load_config(self, path: Path | str) -> RuleSet:
        config_path = Path(path).expanduser().resolve()
        rule_set = await asyncio.to_thread(load_rule_set, config_path)
        self._rule_set = rule_set
        self._config_path = config_path
        self._discovery_root = None
        logger.info("已載入 %s 條規則（version %s）：%s", len(rule_set.rules), rule_set.version, config_path)
        log_event(
            {"event": "config_loaded", "path": str(config_path), "rules": len(rule_set.rules)},
            self.data_dir,
        )
        return rule_set

    async def reload_config(self) -> RuleSet | None:
        if self._config_path is None:
            logger.warning("尚未載入任何設定，無法重新載入")
            return None
        if self._discovery_root is not None:
            result = await self.load_with_discovery(self._config_path, self._discovery_root)
            return self._rule_set if result else None
        return await self.load_config(self._config_path)

    async def load_with_discovery(
        self,
        primary: Path | str,
        root: Path | str,
        max_depth: int | None = None,
        ignore: Iterable[str] | None = None,
    ) -> DiscoveryResult:
        """Load ``primary`` and merge every other rule document found under ``root``.

        The primary document must be valid; invalid secondaries are skipped.
        """
        primary_path = Path(primary).expanduser().resolve()
        root_path = Path(root).expanduser().resolve()
        primary_set = await asyncio.to_thread(load_rule_set, primary_path)

        if max_depth is None:
            max_depth = int(get_setting(self.settings, "discovery.max_depth", 4))
        if ignore is None:
            ignore = get_setting(self.settings, "discovery.ignore")
        filenames = get_setting(self.settings, "discovery.filenames", ["HOOKS.yaml", "HOOKS.yml"])
        found = await asyncio.to_thread(scan, root_path, max_depth, ignore, filenames)

        documents = [LoadedDocument(str(primary_path), primary_set)]
        for candidate in found:
            if candidate == str(primary_path):
                continue
            try:
                rule_set = await asyncio.to_thread(load_rule_set, candidate)
            except ConfigError as exc:
                logger.warning("略過無效的 HOOKS 檔：%s：%s", candidate, exc)
                continue
            documents.append(LoadedDocument(candidate, rule_set))

        merged = merge(primary_set, *(document.rule_set for document in documents[1:]))
        conflicts = detect_conflicts(documents)
        for conflict in conflicts:
            logger.warning("規則衝突（%s）：%s：%s", conflict.type, conflict.message, ", ".join(conflict.sources))

        self._rule_set = merged
        self._config_path = primary_path
        self._discovery_root = root_path
        logger.info("自動探索載入 %s 個檔案，共 %s 條規則", len(documents), len(merged.rules))
        log_event(
            {
                "event": "config_loaded",
                "path": str(primary_path),
                "documents": [document.path for document in documents],
                "rules": len(merged.rules),
                "conflicts": len(conflicts),
            },
            self.data_dir,
        )
        return DiscoveryResult(documents=documents, conflicts=conflicts, total_rules=len(merged.rules))

    # Queries

    def get_rules_for_point(self, point: str) -> list[Rule]:
        """Enabled rules registered for ``point``; match criteria are not evaluated."""
        if self._rule_set is None:
            return []
        return [rule for rule in self._rule_set.rules if rule.applies_to(point)]

    @staticmethod
    def build_context(point: str, session_id: str, **fields: Any) -> EventContext:
        if point not in HOOK_POINTS:
            raise ValueError(f"未知的 hook point：{point}")
        return EventContext(point=point, session_id=session_id, **fields)

    # Execution

    async def _observe(self, ctx: EventContext) -> None:
        if ctx.is_subagent:
            return
        await self.router.tracker.record_async(ctx.session_id)
        if ctx.point == "turn:pre":
            sender = ctx.extra.get("sender")
            self.origin_store.set(
                ctx.session_id,
                origin_from_session(ctx.session_id, ctx.topic_id, sender if isinstance(sender, str) else None),
            )
        elif ctx.point == "turn:post":
            self.origin_store.clear(ctx.session_id)

    async def execute(self, point: str, ctx: EventContext) -> list[ActionResult]:
        rule_set = self._rule_set
        if rule_set is None:
            logger.warning("尚未載入設定，略過 %s 的所有規則", point)
            return []
        if ctx.point != point:
            ctx = replace(ctx, point=point)
        await self._observe(ctx)

        results: list[ActionResult] = []
        for rule in rule_set.rules:
            if not await should_fire(rule, ctx):
                continue
            start_time = time.monotonic()
            resolved = resolve_rule_templates(rule, ctx)
            try:
                result = await self.registry.dispatch(resolved, ctx, start_time, rule_set.defaults)
            except Exception as exc:  # noqa: BLE001
                result = await self.resolve_failure(resolved, ctx, start_time, exc, rule_set.defaults)
            else:
                mode = resolved.on_failure.mode if resolved.on_failure is not None else "block"
                if not result.passed and mode != "block":
                    result = await self.resolve_failure(
                        resolved,
                        ctx,
                        start_time,
                        result.message or "action returned passed=false",
                        rule_set.defaults,
                    )

            results.append(result)
            if not result.passed:
                logger.warning(
                    "%s 被規則 %s 阻擋，停止後續規則",
                    point,
                    rule.label,
                    extra={"session_id": ctx.session_id, "point": point, "rule": rule.label, "action": rule.action},
                )
                log_event(
                    {
                        "event": "gate_blocked",
                        "session_id": ctx.session_id,
                        "point": point,
                        "rule": rule.label,
                        "message": result.message,
                    },
                    self.data_dir,
                )
                break
        return results

    async def resolve_failure(
        self,
        rule: Rule,
        ctx: EventContext,
        start_time: float,
        err: BaseException | str,
        defaults: Defaults | None = None,
    ) -> ActionResult:
        if defaults is None:
            defaults = self._rule_set.defaults if self._rule_set is not None else Defaults()
        message = str(err)
        policy = rule.on_failure or defaults.on_failure
        mode = policy.mode if policy is not None else "continue"
        logger.error(
            "規則 %s 的 action \"%s\" 於 %s 失敗：%s",
            rule.label,
            rule.action,
            ctx.point,
            message,
            extra={"session_id": ctx.session_id, "point": ctx.point, "rule": rule.label, "action": rule.action},
        )

        def result(passed: bool, text: str) -> ActionResult:
            return ActionResult(passed=passed, action=rule.action, message=text, duration_ms=elapsed_ms(start_time))

        if mode == "block":
            resolved = result(False, (policy.message if policy else None) or f"action failed: {message}")
            if policy is not None and policy.notify_user:
                self.router.send(self.router.resolve_target(ctx, defaults), f"[hookgate] {resolved.message}")
        elif mode == "retry":
            resolved = await self._retry(rule, ctx, start_time, message, policy.retries if policy else None, defaults)
        elif mode == "notify":
            notice = (policy.message if policy else None) or f'action "{rule.action}" failed: {message}'
            self.router.send(self.router.resolve_target(ctx, defaults), notice)
            resolved = result(True, f"action failed (user notified): {message}")
        else:
            resolved = result(True, f"action failed (continuing): {message}")

        log_event(
            {
                "event": "gate_failure_resolved",
                "session_id": ctx.session_id,
                "point": ctx.point,
                "rule": rule.label,
                "mode": mode,
                "passed": resolved.passed,
                "error": message,
            },
            self.data_dir,
        )
        return resolved

    async def _retry(
        self,
        rule: Rule,
        ctx: EventContext,
        start_time: float,
        message: str,
        retries: int | None,
        defaults: Defaults,
    ) -> ActionResult:
        max_retries = retries or int(get_setting(self.settings, "engine.default_retries", 3))
        backoff_s = float(get_setting(self.settings, "engine.retry_backoff_s", 0.1))
        for attempt in range(1, max_retries + 1):
            await asyncio.sleep(backoff_s * 2 ** (attempt - 1))
            try:
                outcome = await self.registry.dispatch(rule, ctx, time.monotonic(), defaults)
            except Exception as exc:  # noqa: BLE001
                logger.warning("第 %s/%s 次重試拋出例外：%s", attempt, max_retries, exc)
                continue
            if outcome.passed:
                logger.info("action \"%s\" 於第 %s 次重試成功", rule.action, attempt)
                return replace(
                    outcome,
                    duration_ms=elapsed_ms(start_time),
                    message=f"succeeded on retry {attempt}: {outcome.message}".strip(),
                )
            logger.warning("第 %s/%s 次重試失敗：%s", attempt, max_retries, outcome.message)

        logger.error("action \"%s\" 重試 %s 次皆失敗，繼續執行", rule.action, max_retries)
        return ActionResult(
            passed=True,
            action=rule.action,
            message=f"action failed after {max_retries} retries: {message}",
            duration_ms=elapsed_ms(start_time),
        )
