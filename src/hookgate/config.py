"""HOOKS.yaml loader and schema validator."""

from __future__ import annotations

import logging
from dataclasses import replace
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigLoadError, ConfigValidationError
from .fs import atomic_write_text
from .types import FAILURE_MODES, HOOK_POINTS, Defaults, FailurePolicy, MatchCriteria, Rule, RuleSet


logger = logging.getLogger(__name__)

RULE_LIST_KEYS = ("hooks", "rules")

_MATCH_STRING_FIELDS = ("tool", "commandPattern", "sessionPattern", "custom")


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _optional_str(payload: dict[str, Any], key: str, path: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ConfigValidationError(f"{path}.{key} 必須為字串", f"{path}.{key}")
    return value


def _optional_bool(payload: dict[str, Any], key: str, path: str, default: bool) -> bool:
    value = payload.get(key)
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ConfigValidationError(f"{path}.{key} 必須為布林值", f"{path}.{key}")
    return value


def _validate_points(value: Any, path: str) -> tuple[str, ...]:
    if value is None:
        raise ConfigValidationError(f"{path}.point 為必填欄位", f"{path}.point")
    points = value if isinstance(value, list) else [value]
    if not points:
        raise ConfigValidationError(f"{path}.point 不可為空", f"{path}.point")
    for point in points:
        if point not in HOOK_POINTS:
            raise ConfigValidationError(
                f"{path}.point \"{point}\" 不是有效的 hook point，可用值：{', '.join(HOOK_POINTS)}",
                f"{path}.point",
            )
    return tuple(str(point) for point in points)


def _validate_failure_policy(payload: Any, path: str) -> FailurePolicy:
    if not isinstance(payload, dict):
        raise ConfigValidationError(f"{path} 必須為物件", path)
    # "action" is the legacy spelling of "mode".
    mode = payload.get("mode", payload.get("action"))
    if not isinstance(mode, str) or mode not in FAILURE_MODES:
        raise ConfigValidationError(f"{path}.mode 必須為 {', '.join(FAILURE_MODES)} 之一", f"{path}.mode")

    retries = payload.get("retries")
    if retries is not None and (not _is_int(retries) or retries < 1):
        raise ConfigValidationError(f"{path}.retries 必須為正整數", f"{path}.retries")

    return FailurePolicy(
        mode=mode,  # type: ignore[arg-type]
        retries=retries,
        notify_user=_optional_bool(payload, "notifyUser", path, False),
        message=_optional_str(payload, "message", path),
    )


def _validate_match(payload: Any, path: str) -> MatchCriteria | None:
    if payload is None:
        return None
    if not isinstance(payload, dict):
        raise ConfigValidationError(f"{path} 必須為物件", path)
    for key in _MATCH_STRING_FIELDS:
        _optional_str(payload, key, path)

    topic_id = payload.get("topicId")
    if topic_id is not None and not (isinstance(topic_id, str) or _is_int(topic_id)):
        raise ConfigValidationError(f"{path}.topicId 必須為字串或整數", f"{path}.topicId")

    is_subagent = payload.get("isSubAgent")
    if is_subagent is not None and not isinstance(is_subagent, bool):
        raise ConfigValidationError(f"{path}.isSubAgent 必須為布林值", f"{path}.isSubAgent")

    return MatchCriteria(
        tool=payload.get("tool"),
        command_pattern=payload.get("commandPattern"),
        topic_id=topic_id,
        is_subagent=is_subagent,
        session_pattern=payload.get("sessionPattern"),
        custom=payload.get("custom"),
    )


def _validate_rule(payload: Any, path: str) -> Rule:
    if not isinstance(payload, dict):
        raise ConfigValidationError(f"{path} 必須為物件", path)

    points = _validate_points(payload.get("point"), path)

    action = payload.get("action")
    if not isinstance(action, str) or not action.strip():
        raise ConfigValidationError(f"{path}.action 必須為非空字串", f"{path}.action")

    name = payload.get("name")
    if name is not None and not isinstance(name, str):
        raise ConfigValidationError(f"{path}.name 必須為字串", f"{path}.name")

    last_n = payload.get("lastN")
    if last_n is not None and (not _is_int(last_n) or last_n < 1):
        raise ConfigValidationError(f"{path}.lastN 必須為正整數", f"{path}.lastN")

    on_failure = None
    if payload.get("onFailure") is not None:
        on_failure = _validate_failure_policy(payload["onFailure"], f"{path}.onFailure")

    return Rule(
        points=points,
        action=action,
        name=name,
        match=_validate_match(payload.get("match"), f"{path}.match"),
        model=_optional_str(payload, "model", path),
        target=_optional_str(payload, "target", path),
        source=_optional_str(payload, "source", path),
        script=_optional_str(payload, "script", path),
        inject_output=_optional_bool(payload, "injectOutput", path, False),
        last_n=last_n,
        on_failure=on_failure,
        notify_user=_optional_bool(payload, "notifyUser", path, False),
        enabled=_optional_bool(payload, "enabled", path, True),
    )


def _validate_defaults(payload: Any) -> Defaults:
    if payload is None:
        return Defaults()
    if not isinstance(payload, dict):
        raise ConfigValidationError("defaults 必須為物件", "defaults")
    on_failure = None
    if payload.get("onFailure") is not None:
        on_failure = _validate_failure_policy(payload["onFailure"], "defaults.onFailure")
    return Defaults(
        model=_optional_str(payload, "model", "defaults"),
        on_failure=on_failure,
        notification_target=_optional_str(payload, "notificationTarget", "defaults"),
    )


def parse_rule_set(payload: Any, source_path: str | None = None) -> RuleSet:
    """Validate a parsed document and build an immutable rule set.

    Validation is structural only: regexes, file targets and module paths are
    resolved lazily when a rule is evaluated or dispatched.
    """
    if not isinstance(payload, dict):
        raise ConfigValidationError("HOOKS.yaml 頂層必須為物件")

    if "version" not in payload:
        raise ConfigValidationError("缺少必要欄位：version", "version")
    version = payload["version"]
    if isinstance(version, bool) or not isinstance(version, (str, int, float)):
        raise ConfigValidationError("version 必須為字串或數字", "version")

    list_key = next((key for key in RULE_LIST_KEYS if key in payload), None)
    if list_key is None:
        raise ConfigValidationError("缺少必要欄位：hooks", "hooks")
    raw_rules = payload[list_key]
    if not isinstance(raw_rules, list):
        raise ConfigValidationError(f"{list_key} 必須為陣列", list_key)

    rules = [_validate_rule(item, f"{list_key}[{index}]") for index, item in enumerate(raw_rules)]
    if source_path:
        stamped = str(Path(source_path).resolve())
        rules = [_with_source(rule, stamped) for rule in rules]

    return RuleSet(
        version=str(version),
        rules=tuple(rules),
        defaults=_validate_defaults(payload.get("defaults")),
    )


def _with_source(rule: Rule, source_path: str) -> Rule:
    return replace(rule, source_path=source_path)


def load_rule_set(path: Path | str, source_path: Path | str | None = None) -> RuleSet:
    """Read, parse and validate a rule document. All or nothing."""
    file_path = Path(path)
    try:
        text = file_path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigLoadError(f"讀取 HOOKS.yaml 失敗：{file_path}：{exc}") from exc
    try:
        payload = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ConfigLoadError(f"解析 HOOKS.yaml 失敗：{file_path}：{exc}") from exc
    return parse_rule_set(payload, str(source_path or file_path))


def _dump_policy(policy: FailurePolicy) -> dict[str, Any]:
    data: dict[str, Any] = {"mode": policy.mode}
    if policy.retries is not None:
        data["retries"] = policy.retries
    if policy.notify_user:
        data["notifyUser"] = True
    if policy.message is not None:
        data["message"] = policy.message
    return data


def _dump_match(criteria: MatchCriteria) -> dict[str, Any]:
    fields = {
        "tool": criteria.tool,
        "commandPattern": criteria.command_pattern,
        "topicId": criteria.topic_id,
        "isSubAgent": criteria.is_subagent,
        "sessionPattern": criteria.session_pattern,
        "custom": criteria.custom,
    }
    return {key: value for key, value in fields.items() if value is not None}


def dump_rule(rule: Rule) -> dict[str, Any]:
    data: dict[str, Any] = {}
    if rule.name is not None:
        data["name"] = rule.name
    data["point"] = rule.points[0] if len(rule.points) == 1 else list(rule.points)
    if rule.match is not None:
        data["match"] = _dump_match(rule.match)
    data["action"] = rule.action
    for key, value in (
        ("model", rule.model),
        ("target", rule.target),
        ("source", rule.source),
        ("script", rule.script),
        ("lastN", rule.last_n),
    ):
        if value is not None:
            data[key] = value
    if rule.inject_output:
        data["injectOutput"] = True
    if rule.on_failure is not None:
        data["onFailure"] = _dump_policy(rule.on_failure)
    if rule.notify_user:
        data["notifyUser"] = True
    if not rule.enabled:
        data["enabled"] = False
    return data


def dump_rule_set(rule_set: RuleSet) -> dict[str, Any]:
    data: dict[str, Any] = {"version": rule_set.version}
    defaults: dict[str, Any] = {}
    if rule_set.defaults.model is not None:
        defaults["model"] = rule_set.defaults.model
    if rule_set.defaults.on_failure is not None:
        defaults["onFailure"] = _dump_policy(rule_set.defaults.on_failure)
    if rule_set.defaults.notification_target is not None:
        defaults["notificationTarget"] = rule_set.defaults.notification_target
    if defaults:
        data["defaults"] = defaults
    data["hooks"] = [dump_rule(rule) for rule in rule_set.rules]
    return data


def save_rule_set(path: Path | str, rule_set: RuleSet) -> None:
    content = yaml.safe_dump(dump_rule_set(rule_set), allow_unicode=True, sort_keys=False)
    atomic_write_text(Path(path), content)
    logger.info("已寫入 %d 條規則：%s", len(rule_set.rules), path)
