"""OpenAI-compatible text completion client."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import urllib.error
import urllib.request
from typing import Any, Awaitable, Callable, Mapping

from .errors import HookgateError
from .settings import DEFAULT_SETTINGS, get_setting


logger = logging.getLogger(__name__)

TextCompletion = Callable[[str, str, str], Awaitable[str]]


class ProviderError(HookgateError):
    pass


def resolve_model(alias: str | None, settings: Mapping[str, Any]) -> tuple[str, str]:
    """Alias table, then ``provider/model``, then the configured default."""
    aliases = get_setting(settings, "llm.aliases", {}) or {}
    default_model = str(get_setting(settings, "llm.default_model", "openai/gpt-4o-mini"))
    name = (alias or "").strip()
    if name in aliases:
        name = str(aliases[name])
    if "/" not in name:
        if name and name != "default":
            logger.warning("未知的模型別名 \"%s\"，改用預設模型 %s", name, default_model)
        name = default_model
    provider, _, model = name.partition("/")
    return provider, model


class CompletionClient:
    """Awaitable ``(model_id, system_prompt, user_message) -> text``.

    Raises :class:`ProviderError` on any failure; callers keep a local fallback.
    """

    def __init__(self, settings: Mapping[str, Any] | None = None) -> None:
        self.settings = settings or DEFAULT_SETTINGS

    async def __call__(self, model_id: str, system_prompt: str, user_message: str) -> str:
        return await asyncio.to_thread(self.complete, model_id, system_prompt, user_message)

    def complete(self, model_id: str, system_prompt: str, user_message: str) -> str:
        provider, model = resolve_model(model_id, self.settings)
        provider_cfg = get_setting(self.settings, f"llm.providers.{provider}")
        if not isinstance(provider_cfg, Mapping) or not provider_cfg.get("base_url"):
            raise ProviderError(f"未設定模型供應商：{provider}")

        url = f"{str(provider_cfg['base_url']).rstrip('/')}/chat/completions"
        headers = {"Content-Type": "application/json"}
        api_key_env = provider_cfg.get("api_key_env")
        api_key = os.getenv(str(api_key_env)) if api_key_env else None
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        payload = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_message},
            ],
            "max_tokens": 1024,
            "temperature": 0.3,
        }
        request = urllib.request.Request(
            url,
            data=json.dumps(payload).encode("utf-8"),
            headers=headers,
            method="POST",
        )
        timeout_s = float(get_setting(self.settings, "llm.timeout_s", 30))
        try:
            with urllib.request.urlopen(request, timeout=timeout_s) as response:  # noqa: S310
                try:
                    data = json.loads(response.read().decode("utf-8"))
                except json.JSONDecodeError as exc:
                    raise ProviderError("解析模型回應失敗") from exc
        except urllib.error.HTTPError as exc:
            raise ProviderError(f"模型請求失敗：{exc}") from exc
        except urllib.error.URLError as exc:
            raise ProviderError(f"模型連線失敗：{exc}") from exc
        except TimeoutError as exc:
            raise ProviderError(f"模型請求逾時：{exc}") from exc

        message = (data.get("choices") or [{}])[0].get("message") or {}
        content = message.get("content")
        if isinstance(content, str) and content.strip():
            return content.strip()
        # Some reasoning models spend every token on reasoning_content.
        reasoning = message.get("reasoning_content")
        if isinstance(reasoning, str) and reasoning.strip():
            return reasoning.strip()[:500]
        raise ProviderError("模型回應格式不符")
