import asyncio
import io
import json
import logging
import os
import sys
import tempfile
import unittest
import urllib.error
from pathlib import Path
from unittest.mock import patch

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from hookgate.context_store import origin_from_session
from hookgate.errors import ConfigLoadError
from hookgate.llm import CompletionClient, ProviderError, resolve_model
from hookgate.logging import log_event
from hookgate.logging_utils import JsonFormatter, setup_logger
from hookgate.settings import DEFAULT_SETTINGS, deep_merge, get_setting, load_settings
from hookgate.template import render_template, resolve_rule_templates
from hookgate.types import EventContext, FailurePolicy, Rule


class SettingsTests(unittest.TestCase):
    def test_config_file_and_overrides_are_layered(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            data_dir = Path(temp_dir)
            (data_dir / "config.yaml").write_text("engine:\n  default_retries: 5\n", encoding="utf-8")
            settings = load_settings({"actions": {"script_timeout_s": 2}}, data_dir=data_dir)
        self.assertEqual(get_setting(settings, "engine.default_retries"), 5)
        self.assertEqual(get_setting(settings, "engine.retry_backoff_s"), 0.1)
        self.assertEqual(get_setting(settings, "actions.script_timeout_s"), 2)
        self.assertEqual(get_setting(settings, "actions.missing", "x"), "x")
        self.assertEqual(DEFAULT_SETTINGS["engine"]["default_retries"], 3)

    def test_hookgate_home_is_honoured(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            with patch.dict(os.environ, {"HOOKGATE_HOME": temp_dir}):
                settings = load_settings()
        self.assertEqual(settings["data_dir"], temp_dir)

    def test_invalid_config_file_raises(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            data_dir = Path(temp_dir)
            (data_dir / "config.yaml").write_text("- just\n- a list\n", encoding="utf-8")
            with self.assertRaises(ConfigLoadError):
                load_settings(data_dir=data_dir)

    def test_deep_merge_does_not_mutate_base(self) -> None:
        base = {"a": {"b": 1, "c": 2}}
        merged = deep_merge(base, {"a": {"b": 9}})
        self.assertEqual(merged, {"a": {"b": 9, "c": 2}})
        self.assertEqual(base, {"a": {"b": 1, "c": 2}})


class TemplateTests(unittest.TestCase):
    def test_known_placeholders_and_unknown_left_verbatim(self) -> None:
        ctx = EventContext(point="turn:post", session_id="telegram:group:-1:topic:8", tool_name="exec", timestamp=0)
        rendered = render_template("{point}/{tool}/{topicId}/{sessionKey}/{timestamp}/{nope}", ctx)
        self.assertEqual(
            rendered,
            "turn:post/exec/8/telegram:group:-1:topic:8/1970-01-01T00:00:00.000+00:00/{nope}",
        )

    def test_topic_falls_back_to_unknown(self) -> None:
        ctx = EventContext(point="turn:post", session_id="telegram:5")
        self.assertEqual(render_template("t-{topicId}", ctx), "t-unknown")
        self.assertEqual(render_template("t-{topicId}", EventContext(point="turn:post", session_id="x", topic_id=3)), "t-3")

    def test_rule_fields_are_rendered(self) -> None:
        rule = Rule(
            points=("turn:post",),
            action="log",
            target="/tmp/{topicId}.jsonl",
            script="echo {point}",
            on_failure=FailurePolicy(mode="block", message="blocked at {point}"),
        )
        resolved = resolve_rule_templates(rule, EventContext(point="turn:post", session_id="s", topic_id=1))
        self.assertEqual(resolved.target, "/tmp/1.jsonl")
        self.assertEqual(resolved.script, "echo turn:post")
        self.assertEqual(resolved.on_failure.message, "blocked at turn:post")
        self.assertEqual(rule.target, "/tmp/{topicId}.jsonl")


class _FakeResponse(io.BytesIO):
    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()
        return False


class CompletionClientTests(unittest.TestCase):
    def _settings(self):
        return deep_merge(DEFAULT_SETTINGS, {"llm": {"aliases": {"fast": "local/tiny"}}})

    def test_resolve_model_aliases(self) -> None:
        settings = self._settings()
        self.assertEqual(resolve_model("fast", settings), ("local", "tiny"))
        self.assertEqual(resolve_model("openai/gpt-4o", settings), ("openai", "gpt-4o"))
        self.assertEqual(resolve_model("default", settings), ("openai", "gpt-4o-mini"))

    def test_complete_posts_chat_request(self) -> None:
        body = json.dumps({"choices": [{"message": {"content": " summary "}}]}).encode("utf-8")
        with patch("hookgate.llm.urllib.request.urlopen", return_value=_FakeResponse(body)) as urlopen:
            text = asyncio.run(CompletionClient(self._settings())("fast", "sys", "user"))
        self.assertEqual(text, "summary")
        request = urlopen.call_args.args[0]
        self.assertEqual(request.full_url, "http://localhost:8000/v1/chat/completions")
        self.assertEqual(json.loads(request.data)["model"], "tiny")

    def test_connection_errors_become_provider_errors(self) -> None:
        with patch("hookgate.llm.urllib.request.urlopen", side_effect=urllib.error.URLError("down")):
            with self.assertRaises(ProviderError):
                CompletionClient(self._settings()).complete("fast", "sys", "user")


class LoggingTests(unittest.TestCase):
    def test_log_event_appends_json(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            log_event({"event": "gate_blocked", "point": "turn:pre"}, Path(temp_dir))
            lines = (Path(temp_dir) / "logs" / "events.log").read_text(encoding="utf-8").splitlines()
        payload = json.loads(lines[0])
        self.assertEqual(payload["event"], "gate_blocked")
        self.assertEqual(payload["level"], "INFO")
        self.assertIn("ts", payload)

    def test_setup_logger_writes_json_lines(self) -> None:
        with tempfile.TemporaryDirectory() as temp_dir:
            logger = setup_logger("hookgate.test_setup", log_dir=Path(temp_dir))
            try:
                logger.warning("hello %s", "world")
                for handler in logger.handlers:
                    handler.flush()
                line = (Path(temp_dir) / "hookgate.log").read_text(encoding="utf-8").splitlines()[0]
            finally:
                for handler in list(logger.handlers):
                    handler.close()
                    logger.removeHandler(handler)
        payload = json.loads(line)
        self.assertEqual(payload["message"], "hello world")
        self.assertEqual(payload["level"], "WARNING")
        self.assertEqual(payload["logger"], "hookgate.test_setup")
        self.assertNotIn("session_id", payload)

    def test_json_formatter_includes_gate_context(self) -> None:
        record = logging.LogRecord("hookgate.engine", logging.WARNING, __file__, 1, "blocked %s", ("x",), None)
        record.session_id = "telegram:1"
        record.point = "turn:tool:pre"
        record.rule = "no-rm"
        payload = json.loads(JsonFormatter().format(record))
        self.assertEqual(payload["message"], "blocked x")
        self.assertEqual(payload["session_id"], "telegram:1")
        self.assertEqual(payload["point"], "turn:tool:pre")
        self.assertEqual(payload["rule"], "no-rm")
        self.assertNotIn("action", payload)


class OriginContextTests(unittest.TestCase):
    def test_origin_parsed_from_session(self) -> None:
        origin = origin_from_session("agent:main:telegram:private:12345")
        self.assertEqual(origin.chat_id, "private:12345")
        self.assertEqual(origin.sender, "12345")
        self.assertIsNone(origin.topic_id)
        self.assertEqual(
            origin.tag(),
            "[origin: chat=private:12345, sender=12345, parent=agent:main:telegram:private:12345]",
        )


if __name__ == "__main__":
    unittest.main()
