import sys
import tempfile
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

import yaml

from hookgate.config import dump_rule_set, load_rule_set, parse_rule_set, save_rule_set
from hookgate.errors import ConfigLoadError, ConfigValidationError
from hookgate.types import FailurePolicy


def _document(**overrides):
    payload = {
        "version": "1",
        "hooks": [
            {"point": "turn:tool:pre", "action": "block", "match": {"tool": "exec"}},
        ],
    }
    payload.update(overrides)
    return payload


class RuleSetParsingTests(unittest.TestCase):
    def test_parses_minimal_document(self) -> None:
        rule_set = parse_rule_set(_document())
        self.assertEqual(rule_set.version, "1")
        self.assertEqual(len(rule_set.rules), 1)
        rule = rule_set.rules[0]
        self.assertEqual(rule.points, ("turn:tool:pre",))
        self.assertEqual(rule.action, "block")
        self.assertEqual(rule.match.tool, "exec")
        self.assertTrue(rule.enabled)

    def test_numeric_version_is_stored_as_string(self) -> None:
        rule_set = parse_rule_set(_document(version=2))
        self.assertEqual(rule_set.version, "2")

    def test_point_list_and_rules_alias(self) -> None:
        payload = {
            "version": "1",
            "rules": [{"point": ["turn:pre", "turn:post"], "action": "log"}],
        }
        rule_set = parse_rule_set(payload)
        self.assertEqual(rule_set.rules[0].points, ("turn:pre", "turn:post"))

    def test_hooks_key_wins_over_rules(self) -> None:
        payload = {
            "version": "1",
            "hooks": [{"point": "turn:pre", "action": "log"}],
            "rules": [{"point": "turn:post", "action": "block"}],
        }
        rule_set = parse_rule_set(payload)
        self.assertEqual(rule_set.rules[0].action, "log")

    def test_missing_version_is_rejected(self) -> None:
        payload = _document()
        del payload["version"]
        with self.assertRaises(ConfigValidationError) as ctx:
            parse_rule_set(payload)
        self.assertEqual(ctx.exception.field, "version")

    def test_non_list_hooks_is_rejected(self) -> None:
        with self.assertRaises(ConfigValidationError) as ctx:
            parse_rule_set(_document(hooks={"point": "turn:pre"}))
        self.assertEqual(ctx.exception.field, "hooks")

    def test_unknown_point_reports_field_path(self) -> None:
        payload = _document(
            hooks=[
                {"point": "turn:pre", "action": "log"},
                {"point": "turn:middle", "action": "log"},
            ]
        )
        with self.assertRaises(ConfigValidationError) as ctx:
            parse_rule_set(payload)
        self.assertEqual(ctx.exception.field, "hooks[1].point")
        self.assertIn("turn:middle", str(ctx.exception))

    def test_empty_action_is_rejected(self) -> None:
        with self.assertRaises(ConfigValidationError) as ctx:
            parse_rule_set(_document(hooks=[{"point": "turn:pre", "action": "  "}]))
        self.assertEqual(ctx.exception.field, "hooks[0].action")

    def test_invalid_failure_mode_reports_nested_path(self) -> None:
        payload = _document(
            hooks=[
                {"point": "turn:pre", "action": "log"},
                {"point": "turn:pre", "action": "log"},
                {"point": "turn:pre", "action": "log", "onFailure": {"mode": "explode"}},
            ]
        )
        with self.assertRaises(ConfigValidationError) as ctx:
            parse_rule_set(payload)
        self.assertEqual(ctx.exception.field, "hooks[2].onFailure.mode")

    def test_failure_action_alias_and_retries(self) -> None:
        payload = _document(
            hooks=[{"point": "turn:pre", "action": "log", "onFailure": {"action": "retry", "retries": 2}}]
        )
        rule = parse_rule_set(payload).rules[0]
        self.assertEqual(rule.on_failure, FailurePolicy(mode="retry", retries=2))

    def test_non_positive_retries_rejected(self) -> None:
        for retries in (0, -1, True, "3"):
            payload = _document(
                hooks=[{"point": "turn:pre", "action": "log", "onFailure": {"mode": "retry", "retries": retries}}]
            )
            with self.subTest(retries=retries):
                with self.assertRaises(ConfigValidationError) as ctx:
                    parse_rule_set(payload)
                self.assertEqual(ctx.exception.field, "hooks[0].onFailure.retries")

    def test_match_field_types_are_checked(self) -> None:
        payload = _document(hooks=[{"point": "turn:pre", "action": "log", "match": {"isSubAgent": "yes"}}])
        with self.assertRaises(ConfigValidationError) as ctx:
            parse_rule_set(payload)
        self.assertEqual(ctx.exception.field, "hooks[0].match.isSubAgent")

    def test_defaults_failure_policy_is_validated(self) -> None:
        with self.assertRaises(ConfigValidationError) as ctx:
            parse_rule_set(_document(defaults={"onFailure": {"mode": "nope"}}))
        self.assertEqual(ctx.exception.field, "defaults.onFailure.mode")

    def test_regex_is_not_compiled_at_load_time(self) -> None:
        payload = _document(hooks=[{"point": "turn:pre", "action": "log", "match": {"commandPattern": "(["}}])
        rule_set = parse_rule_set(payload)
        self.assertEqual(rule_set.rules[0].match.command_pattern, "([")


class RuleSetFileTests(unittest.TestCase):
    def test_load_stamps_source_path(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "HOOKS.yaml"
            path.write_text(yaml.safe_dump(_document()), encoding="utf-8")
            rule_set = load_rule_set(path)
            self.assertEqual(rule_set.rules[0].source_path, str(path.resolve()))

    def test_invalid_yaml_raises_load_error(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "HOOKS.yaml"
            path.write_text("version: [1\nhooks: :\n", encoding="utf-8")
            with self.assertRaises(ConfigLoadError):
                load_rule_set(path)

    def test_missing_file_raises_load_error(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            with self.assertRaises(ConfigLoadError):
                load_rule_set(Path(temp_dir) / "missing.yaml")

    def test_save_then_load_keeps_rules(self) -> None:
        payload = {
            "version": "3",
            "defaults": {"model": "fast", "onFailure": {"mode": "continue"}, "notificationTarget": "telegram:1"},
            "hooks": [
                {
                    "name": "guard",
                    "point": ["turn:tool:pre", "subagent:tool:pre"],
                    "match": {"tool": "exec", "commandPattern": "rm -rf", "topicId": 42},
                    "action": "block",
                    "onFailure": {"mode": "block", "message": "no", "notifyUser": True},
                },
                {"point": "turn:post", "action": "log", "target": "/tmp/{topicId}.jsonl", "enabled": False},
            ],
        }
        expected = parse_rule_set(payload)
        with tempfile.TemporaryDirectory() as temp_dir:
            path = Path(temp_dir) / "HOOKS.yaml"
            save_rule_set(path, expected)
            reloaded = load_rule_set(path)
        self.assertEqual(dump_rule_set(reloaded), dump_rule_set(expected))
        self.assertEqual(reloaded.defaults, expected.defaults)


if __name__ == "__main__":
    unittest.main()
