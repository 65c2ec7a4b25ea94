"""LLM 任务：模板渲染、调用提供方并把文本响应转换为目标类型。"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Mapping

from superagent.config import Settings
from superagent.domain.context import Context
from superagent.domain.enums import TaskKind
from superagent.domain.errors import SuperAgentError, TaskError
from superagent.domain.tasks.base import COMMON_CONFIG_KEYS, Task
from superagent.infra.llm.interface import LlmCompleter, LlmInterface

logger = logging.getLogger(__name__)

_PLACEHOLDER = re.compile(r"\{\{(.+?)\}\}")
_TRUTHY = re.compile(r"\b(true|yes|1|success|ok)\b", re.IGNORECASE)
_LLM_KEYS = frozenset(
    {"prompt", "messages", "system_prompt", "template", "provider", "model", "temperature", "max_tokens",
     "format", "response_format"}
)
LOG_PREVIEW_CHARS = 500

LlmFactory = Callable[[str], LlmCompleter]


@dataclass(slots=True)
class LlmTaskConfig:
    """LlmTask 的显式配置结构，未知键作为额外参数透传给提供方。"""
    prompt: str | None = None
    messages: list[dict[str, Any]] | None = None
    system_prompt: str | None = None
    template: str | None = None
    provider: str | None = None
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    format: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any]) -> LlmTaskConfig:
        response_format = config.get("format") or config.get("response_format")
        return cls(
            prompt=config.get("prompt"),
            messages=config.get("messages"),
            system_prompt=config.get("system_prompt"),
            template=config.get("template"),
            provider=config.get("provider"),
            model=config.get("model"),
            temperature=config.get("temperature"),
            max_tokens=config.get("max_tokens"),
            format=str(response_format).lower() if response_format else None,
            extra={
                key: value
                for key, value in config.items()
                if key not in _LLM_KEYS and key not in COMMON_CONFIG_KEYS and key != "agent"
            },
        )


def _render_value(value: Any) -> str:
    if isinstance(value, (Mapping, list, tuple)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def resolve_template_value(context: Context, key_path: str) -> Any:
    """解析 a 或 a.b 形式的路径，支持一层映射键或对象属性访问。"""
    head, _, rest = key_path.partition(".")
    value = context.get(head)
    if not rest or value is None:
        return value
    for step in rest.split("."):
        if isinstance(value, Mapping):
            value = value.get(step)
        else:
            value = getattr(value, step, None)
        if value is None:
            return None
    return value


def interpolate(template: Any, context: Context) -> Any:
    """替换 {{key.path}} 占位符；缺失变量渲染为可见的 [MISSING: key]。"""
    if not isinstance(template, str):
        return template

    def _replace(match: re.Match[str]) -> str:
        key_path = match.group(1).strip()
        value = resolve_template_value(context, key_path)
        if value is None:
            logger.warning(
                "llm template variable missing",
                extra={"event": "llm.template.missing", "op": key_path},
            )
            return f"[MISSING: {key_path}]"
        return _render_value(value)

    return _PLACEHOLDER.sub(_replace, template)


def extract_structured_data(text: str) -> Any:
    """尽力而为的 key: value 行扫描，结果不保证可解析。"""
    data = {key.lower(): value.strip() for key, value in re.findall(r"(\w+):\s*([^\n,]+)", text)}
    return data or text


def parse_json_response(text: str) -> Any:
    match = re.search(r"\{.*\}", text, re.DOTALL) or re.search(r"\[.*\]", text, re.DOTALL)
    candidate = match.group(0) if match else text
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as exc:
        logger.warning(
            "llm json response fallback",
            extra={
                "event": "llm.response.json_fallback",
                "error_type": type(exc).__name__,
                "error": str(exc),
                "payload_preview": text,
            },
        )
        return extract_structured_data(text)


def parse_response(text: str, response_format: str | None) -> Any:
    """按 format 转换响应：json/hash/dict/integer/float/boolean/array，其他原样返回。"""
    text = "" if text is None else str(text)
    if response_format in ("json", "hash", "dict"):
        return parse_json_response(text)
    if response_format == "integer":
        match = re.search(r"-?\d+", text)
        return int(match.group(0)) if match else 0
    if response_format == "float":
        match = re.search(r"-?\d+(?:\.\d+)?", text)
        return float(match.group(0)) if match else 0.0
    if response_format == "boolean":
        return bool(_TRUTHY.search(text))
    if response_format == "array":
        if re.search(r"\[.*\]", text, re.DOTALL):
            return parse_json_response(text)
        return [item.strip() for item in re.split(r"[,\n]", text) if item.strip()]
    return text


def _preview(value: Any) -> str:
    text = value if isinstance(value, str) else " ".join(str(item.get("content", "")) for item in value)
    return text[:LOG_PREVIEW_CHARS] + ("..." if len(text) > LOG_PREVIEW_CHARS else "")


class LlmTask(Task):
    """渲染提示词并调用 LLM，结果写入 output 键（缺省为任务名）。"""

    kind: ClassVar[TaskKind] = TaskKind.llm
    required_config = (("prompt", "messages", "system_prompt"),)

    def __init__(
        self,
        name: str,
        config: Mapping[str, Any] | None = None,
        *,
        settings: Settings | None = None,
        llm_factory: LlmFactory | None = None,
    ) -> None:
        super().__init__(name, config, settings=settings)
        self.options = LlmTaskConfig.from_mapping(self.config)
        self._llm_factory = llm_factory or (lambda provider: LlmInterface(self.settings, provider=provider))

    @property
    def provider(self) -> str:
        return self.options.provider or self.settings.llm_provider

    @property
    def model(self) -> str:
        return self.options.model or self.settings.default_llm_model

    def description(self) -> str:
        return super().description() or f"LLM task: {self.model} via {self.provider}"

    def build_prompt(self, context: Context) -> str | list[dict[str, Any]]:
        options = self.options
        if options.prompt:
            return interpolate(options.prompt, context)
        if options.messages:
            return [
                {"role": message.get("role", "user"), "content": interpolate(message.get("content", ""), context)}
                for message in options.messages
            ]
        if options.template:
            return [
                {"role": "system", "content": interpolate(options.system_prompt, context)},
                {"role": "user", "content": interpolate(options.template, context)},
            ]
        return [{"role": "user", "content": interpolate(options.system_prompt, context)}]

    def execute(self, context: Context) -> Context:
        self.validate()
        prompt = self.build_prompt(context)
        logger.info(
            "llm task started",
            extra={"event": "llm.task.started", "op": self.name, "payload_preview": _preview(prompt)},
        )
        params: dict[str, Any] = {"model": self.model, **self.options.extra}
        if self.options.temperature is not None:
            params["temperature"] = self.options.temperature
        if self.options.max_tokens is not None:
            params["max_tokens"] = self.options.max_tokens

        llm = self._llm_factory(self.provider)
        try:
            text = llm.complete(prompt, **params)
        except SuperAgentError as exc:
            raise TaskError(f"LLM API error: {exc}", task_name=self.name, context=context) from exc
        finally:
            close = getattr(llm, "close", None)
            if callable(close):
                close()

        logger.info(
            "llm task completed",
            extra={"event": "llm.task.completed", "op": self.name, "payload_preview": _preview(str(text))},
        )
        return context.set(self.output_key or self.name, parse_response(text, self.options.format))
