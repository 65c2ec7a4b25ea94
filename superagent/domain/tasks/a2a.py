"""A2A 任务：在远端代理上调用具名技能，并把结果与产物写回上下文。"""

from __future__ import annotations

import logging
import os
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, ClassVar, Mapping, Union

import httpx

from superagent.config import Settings
from superagent.domain.a2a.artifact import Artifact, DataArtifact, DocumentArtifact
from superagent.domain.a2a.agent_card import utc_now_iso
from superagent.domain.context import Context
from superagent.domain.enums import TaskKind
from superagent.domain.errors import (
    A2AError,
    ConfigurationError,
    InvocationError,
    NetworkError,
    SkillNotFoundError,
    TaskError,
)
from superagent.domain.tasks.base import Task, as_key_list
from superagent.infra.a2a.client import A2AClient
from superagent.infra.a2a.sse import StreamAccumulator

logger = logging.getLogger(__name__)

# 服务端注入的内部簿记键，永远不回传给远端代理。
INTERNAL_KEY_PREFIX = "_a2a_"
DEFAULT_RESULT_KEY = "a2a_result"
DEFAULT_ERROR_KEY = "a2a_error"


@dataclass(slots=True, frozen=True)
class LiteralToken:
    """直接给出的令牌字符串。"""
    value: str


@dataclass(slots=True, frozen=True)
class EnvToken:
    """从环境变量读取令牌。"""
    name: str


@dataclass(slots=True, frozen=True)
class ConfigToken:
    """从 Settings 属性读取令牌。"""
    key: str


@dataclass(slots=True, frozen=True)
class CallbackToken:
    """调用函数获取令牌，适合会轮换的凭据。"""
    fn: Callable[[], Any]


TokenSource = Union[LiteralToken, EnvToken, ConfigToken, CallbackToken]


def token_source_from_config(auth: Any) -> TokenSource | Mapping[str, Any] | None:
    """把 auth 配置转换为令牌来源；api_key/oauth2/basic 等复合认证原样保留。"""
    if auth is None or isinstance(auth, (LiteralToken, EnvToken, ConfigToken, CallbackToken)):
        return auth
    if isinstance(auth, str):
        return LiteralToken(auth)
    if callable(auth):
        return CallbackToken(auth)
    if isinstance(auth, Mapping):
        auth_type = str(auth.get("type", ""))
        if auth_type == "env":
            return EnvToken(str(auth["key"]))
        if auth_type == "config":
            return ConfigToken(str(auth["key"]))
        if auth_type == "proc":
            return CallbackToken(auth["proc"])
        return auth
    return LiteralToken(str(auth))


def resolve_token(source: TokenSource | Mapping[str, Any] | None, settings: Settings) -> Any:
    """每次执行时解析一次，不跨执行缓存。"""
    if source is None:
        return None
    if isinstance(source, LiteralToken):
        return source.value
    if isinstance(source, EnvToken):
        return os.environ.get(source.name)
    if isinstance(source, ConfigToken):
        if not hasattr(settings, source.key):
            raise ConfigurationError(f"unknown settings attribute for auth token: {source.key}")
        return getattr(settings, source.key)
    if isinstance(source, CallbackToken):
        return source.fn()
    return source


@dataclass(slots=True)
class A2aTaskConfig:
    """A2aTask 的显式配置结构。"""
    agent_url: str
    skill: str
    timeout: float
    auth: TokenSource | Mapping[str, Any] | None = None
    stream: bool = False
    webhook_url: str | None = None
    input_keys: list[str] = field(default_factory=list)
    output_key: str | None = None
    forward_all: bool = False
    max_retries: int | None = None
    cache_ttl: float | None = None

    @classmethod
    def from_mapping(cls, config: Mapping[str, Any], settings: Settings) -> A2aTaskConfig:
        """构造期校验：agent_url 与 skill 必填、timeout 为正、URL 可解析。"""
        agent_url = config.get("agent_url")
        auth = config.get("auth")
        agent_name = config.get("agent")
        if not agent_url and agent_name:
            entry = settings.a2a_agent(str(agent_name))
            if entry is None:
                raise ConfigurationError(f"unknown A2A agent in registry: {agent_name}")
            agent_url = entry.get("url")
            auth = auth if auth is not None else entry.get("auth", entry.get("auth_token"))
        if not agent_url:
            raise ConfigurationError("agent_url is required")
        if not config.get("skill"):
            raise ConfigurationError("skill is required")
        timeout = config.get("timeout")
        if timeout is None:
            timeout = settings.a2a_default_timeout
        if not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ConfigurationError("timeout must be positive")
        _validate_url(str(agent_url))
        return cls(
            agent_url=str(agent_url),
            skill=str(config["skill"]),
            timeout=float(timeout),
            auth=token_source_from_config(auth),
            stream=bool(config.get("stream", False)),
            webhook_url=config.get("webhook_url"),
            input_keys=as_key_list(config.get("input", config.get("inputs"))),
            output_key=str(config["output"]) if config.get("output") else None,
            forward_all=bool(config.get("forward_all", False)),
            max_retries=config.get("max_retries"),
            cache_ttl=config.get("cache_ttl"),
        )


def _validate_url(value: str) -> None:
    try:
        url = httpx.URL(value)
    except httpx.InvalidURL as exc:
        raise ConfigurationError(f"Invalid agent_url format: {value}") from exc
    if url.scheme not in ("http", "https") or not url.host:
        raise ConfigurationError(f"Invalid agent_url format: {value}")


ClientFactory = Callable[..., A2AClient]


class A2aTask(Task):
    """远端技能调用任务；每次执行都新建客户端并重新解析令牌。"""

    kind: ClassVar[TaskKind] = TaskKind.a2a

    def __init__(
        self,
        name: str,
        config: Mapping[str, Any] | None = None,
        *,
        settings: Settings | None = None,
        client_factory: ClientFactory | None = None,
    ) -> None:
        super().__init__(name, config, settings=settings)
        self.options = A2aTaskConfig.from_mapping(self.config, self.settings)
        self._client_factory = client_factory or (
            lambda agent_url, **kwargs: A2AClient.from_settings(agent_url, self.settings, **kwargs)
        )

    @property
    def agent_url(self) -> str:
        return self.options.agent_url

    @property
    def skill_name(self) -> str:
        return self.options.skill

    @property
    def error_key(self) -> str:
        return self.options.output_key or DEFAULT_ERROR_KEY

    def description(self) -> str:
        return super().description() or f"A2A task: Invoke '{self.skill_name}' skill on {self.agent_url}"

    def required_inputs(self) -> list[str]:
        if self.options.input_keys:
            return list(self.options.input_keys)
        return ["*"] if self.options.forward_all else []

    def provided_outputs(self) -> list[str]:
        return [self.options.output_key] if self.options.output_key else [DEFAULT_RESULT_KEY]

    def validate(self) -> None:
        super().validate()
        self.options = A2aTaskConfig.from_mapping(self.config, self.settings)

    def _build_client(self) -> A2AClient:
        return self._client_factory(
            self.agent_url,
            auth_token=resolve_token(self.options.auth, self.settings),
            timeout=self.options.timeout,
            max_retries=self.options.max_retries,
            cache_ttl=self.options.cache_ttl,
        )

    def _validate_prerequisites(self, client: A2AClient) -> None:
        if not client.health_check():
            raise NetworkError(f"Agent at {self.agent_url} is not reachable")
        if not client.supports_skill(self.skill_name):
            raise SkillNotFoundError(self.skill_name, [item.name for item in client.list_capabilities()])

    def extract_parameters(self, context: Context) -> dict[str, Any]:
        """优先按 input 白名单取参；forward_all 时转发除内部键与私有键外的全部上下文。"""
        if self.options.input_keys:
            return {key: context.get(key) for key in self.options.input_keys if context.get(key) is not None}
        if self.options.forward_all:
            return {
                key: value
                for key, value in context.to_dict().items()
                if not key.startswith(INTERNAL_KEY_PREFIX) and key not in context.private_keys
            }
        logger.warning(
            "a2a task has no input allowlist",
            extra={"event": "a2a.task.no_inputs", "op": self.name},
        )
        return {}

    def execute(self, context: Context) -> Context:
        started = time.perf_counter()
        logger.info(
            "a2a task started",
            extra={
                "event": "a2a.task.started",
                "op": self.name,
                "external_service": "a2a",
                "payload_preview": {
                    "agent_url": self.agent_url,
                    "skill": self.skill_name,
                    "stream": self.options.stream,
                    "context_keys": list(context.keys()),
                },
            },
        )
        try:
            with self._build_client() as client:
                self._validate_prerequisites(client)
                parameters = self.extract_parameters(context)
                request_id = str(uuid.uuid4())
                if self.options.stream:
                    result = self._invoke_streaming(client, parameters, request_id)
                else:
                    result = client.invoke_skill(
                        self.skill_name,
                        parameters,
                        request_id=request_id,
                        webhook_url=self.options.webhook_url,
                    )
                updated = self.process_result(result, context)
        except A2AError as exc:
            raise self._failure(str(exc), exc, context, started) from exc
        except Exception as exc:
            raise self._failure(f"Unexpected error: {exc}", exc, context, started) from exc
        logger.info(
            "a2a task completed",
            extra={
                "event": "a2a.task.completed",
                "op": self.name,
                "external_service": "a2a",
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            },
        )
        return updated

    def _invoke_streaming(self, client: A2AClient, parameters: dict[str, Any], request_id: str) -> dict[str, Any]:
        accumulator = StreamAccumulator()
        for event in client.stream_skill(
            self.skill_name, parameters, request_id=request_id, webhook_url=self.options.webhook_url
        ):
            logger.debug(
                "a2a task stream event",
                extra={"event": "a2a.task.stream_event", "op": event.event, "payload_preview": event.data},
            )
            accumulator.add(event)
        return accumulator.finish()

    def process_result(self, result: Mapping[str, Any], context: Context) -> Context:
        """写回主结果与产物；非完成状态且无结果时视为调用失败。"""
        if result.get("status") != "completed" and result.get("result") is None:
            raise InvocationError(str(result.get("error") or "Unknown error from A2A agent"))
        main_result = result.get("result")
        if main_result is None:
            main_result = dict(result)

        updated = context
        artifacts = result.get("artifacts") or []
        if artifacts:
            updated = self._store_artifacts(artifacts, updated)

        if self.options.output_key:
            return updated.set(self.options.output_key, main_result)
        if isinstance(main_result, Mapping):
            return updated.merge(main_result)
        return updated.set(DEFAULT_RESULT_KEY, main_result)

    def _store_artifacts(self, artifacts: list[Any], context: Context) -> Context:
        updated = context
        for index, data in enumerate(artifacts):
            if not isinstance(data, Mapping):
                logger.warning(
                    "a2a artifact skipped",
                    extra={"event": "a2a.artifact.skipped", "op": self.name, "payload_preview": {"index": index}},
                )
                continue
            artifact = Artifact.from_dict(data)
            key = f"{self.name}_{artifact.name}" if artifact.name else f"{self.name}_artifact_{index}"
            updated = updated.set(key, artifact)
            if isinstance(artifact, DocumentArtifact):
                updated = updated.set(f"{key}_content", artifact.content)
            elif isinstance(artifact, DataArtifact):
                updated = updated.set(f"{key}_data", artifact.parsed_content)
        return updated

    def _failure(self, message: str, exc: BaseException, context: Context, started: float) -> TaskError:
        logger.error(
            "a2a task failed",
            extra={
                "event": "a2a.task.failed",
                "op": self.name,
                "external_service": "a2a",
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "error_type": type(exc).__name__,
                "error": message,
                "payload_preview": {"agent_url": self.agent_url, "skill": self.skill_name},
            },
        )
        return TaskError(message, task_name=self.name, context=context.set("error", message))

    def contain_failure(self, context: Context, error: BaseException) -> Context:
        logger.warning(
            "a2a task failed but continuing",
            extra={"event": "a2a.task.contained", "op": self.name, "error": str(error)},
        )
        return context.set(
            self.error_key,
            {"error": str(error), "failed": True, "timestamp": utc_now_iso()},
        )
