"""LLM 提供方接口：OpenAI / OpenRouter / Anthropic 的同步 HTTP 调用封装。"""

from __future__ import annotations

import logging
import time
from typing import Any, Mapping, Protocol

import httpx

from superagent.config import SUPPORTED_LLM_PROVIDERS, Settings
from superagent.domain.errors import ConfigurationError, LlmProviderError

logger = logging.getLogger(__name__)

ANTHROPIC_DEFAULT_MAX_TOKENS = 1024


class LlmCompleter(Protocol):
    """LlmTask 依赖的最小补全接口。"""

    def complete(self, prompt: Any, **params: Any) -> str: ...


def normalize_messages(prompt: Any) -> list[dict[str, str]]:
    """字符串、单条消息或消息列表统一转换为 chat messages。"""
    if isinstance(prompt, str):
        return [{"role": "user", "content": prompt}]
    if isinstance(prompt, Mapping):
        return [{"role": str(prompt.get("role", "user")), "content": str(prompt.get("content", ""))}]
    if isinstance(prompt, (list, tuple)):
        messages: list[dict[str, str]] = []
        for item in prompt:
            messages.extend(normalize_messages(item))
        return messages
    return [{"role": "user", "content": str(prompt)}]


class LlmInterface:
    """按 provider 分派的 LLM 客户端。"""

    def __init__(
        self,
        settings: Settings,
        *,
        provider: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.provider = (provider or settings.llm_provider).lower()
        if self.provider not in SUPPORTED_LLM_PROVIDERS:
            raise ConfigurationError(
                f"Unsupported LLM provider: {self.provider}. Supported: {', '.join(SUPPORTED_LLM_PROVIDERS)}"
            )
        self._settings = settings
        self._client = httpx.Client(
            timeout=httpx.Timeout(timeout or settings.default_llm_timeout),
            transport=transport,
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> LlmInterface:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def _api_key(self) -> str:
        key = {
            "openai": self._settings.openai_api_key,
            "open_router": self._settings.open_router_api_key,
            "anthropic": self._settings.anthropic_api_key,
        }[self.provider]
        if not key:
            raise ConfigurationError(f"Missing API key for LLM provider: {self.provider}")
        return key

    def complete(
        self,
        prompt: Any,
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        **extra: Any,
    ) -> str:
        """发送补全请求并返回文本内容。"""
        messages = normalize_messages(prompt)
        model = model or self._settings.default_llm_model
        temperature = self._settings.default_llm_temperature if temperature is None else temperature
        if self.provider == "anthropic":
            url, headers, body = self._anthropic_request(messages, model, temperature, max_tokens, extra)
        else:
            url, headers, body = self._openai_request(messages, model, temperature, max_tokens, extra)

        started = time.perf_counter()
        try:
            response = self._client.post(url, headers=headers, json=body)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            status_code = exc.response.status_code if isinstance(exc, httpx.HTTPStatusError) else None
            logger.error(
                "llm request failed",
                extra={
                    "event": "llm.request.failed",
                    "external_service": self.provider,
                    "op": "llm.complete",
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    "status_code": status_code,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                    "payload_preview": {"model": model, "messages": len(messages)},
                },
            )
            raise LlmProviderError(f"{self.provider} request failed: {exc}") from exc

        text = self._extract_text(payload)
        logger.info(
            "llm request completed",
            extra={
                "event": "llm.request.completed",
                "external_service": self.provider,
                "op": "llm.complete",
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "payload_preview": {"model": model, "response_chars": len(text)},
            },
        )
        return text

    def _openai_request(
        self,
        messages: list[dict[str, str]],
        model: str,
        temperature: float,
        max_tokens: int | None,
        extra: dict[str, Any],
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        base_url = self._settings.openai_base_url
        if self.provider == "open_router":
            base_url = self._settings.open_router_base_url
        body: dict[str, Any] = {"model": model, "messages": messages, "temperature": temperature, **extra}
        if max_tokens is not None:
            body["max_tokens"] = max_tokens
        headers = {"Authorization": f"Bearer {self._api_key()}", "Content-Type": "application/json"}
        return f"{base_url.rstrip('/')}/chat/completions", headers, body

    def _anthropic_request(
        self,
        messages: list[dict[str, str]],
        model: str,
        temperature: float,
        max_tokens: int | None,
        extra: dict[str, Any],
    ) -> tuple[str, dict[str, str], dict[str, Any]]:
        # Anthropic 将 system 提示放在顶层字段，而不是消息列表中。
        system = "\n".join(item["content"] for item in messages if item["role"] == "system")
        chat = [item for item in messages if item["role"] != "system"]
        body: dict[str, Any] = {
            "model": model,
            "messages": chat,
            "temperature": temperature,
            "max_tokens": max_tokens or ANTHROPIC_DEFAULT_MAX_TOKENS,
            **extra,
        }
        if system:
            body["system"] = system
        headers = {
            "x-api-key": self._api_key(),
            "anthropic-version": self._settings.anthropic_version,
            "Content-Type": "application/json",
        }
        return f"{self._settings.anthropic_base_url.rstrip('/')}/messages", headers, body

    def _extract_text(self, payload: Any) -> str:
        try:
            if self.provider == "anthropic":
                return "".join(
                    block.get("text", "") for block in payload["content"] if block.get("type") == "text"
                )
            return str(payload["choices"][0]["message"]["content"] or "")
        except (KeyError, IndexError, TypeError) as exc:
            raise LlmProviderError(f"Unexpected {self.provider} response shape: {exc}") from exc
