"""A2A HTTP 客户端：健康检查、能力发现、阻塞/流式技能调用与退避重试。"""

from __future__ import annotations

import base64
import logging
import time
import uuid
from typing import Any, Iterator, Mapping

import httpx

from superagent.config import Settings
from superagent.domain.a2a.agent_card import AgentCard, Capability
from superagent.domain.errors import (
    A2AError,
    A2ATimeoutError,
    AgentCardError,
    AuthenticationError,
    InvocationError,
    NetworkError,
    ProtocolError,
    SkillNotFoundError,
    TransientHTTPError,
)
from superagent.infra.a2a.cache import AgentCardCache, get_shared_card_cache
from superagent.infra.a2a.sse import StreamEvent, collect_stream_result, iter_sse_events
from superagent.infra.resilience.retry import RetryManager

logger = logging.getLogger(__name__)

AGENT_CARD_PATH = "/.well-known/agent.json"
HEALTH_PATH = "/health"
INVOKE_PATH = "/invoke"
TRANSIENT_STATUS_CODES = {429, 502, 503}
TIMEOUT_STATUS_CODES = {408, 504}


def normalize_url(url: str) -> str:
    """补全缺省 scheme 并去掉末尾斜杠。"""
    text = url.strip()
    if "://" not in text:
        text = f"http://{text}"
    return text.rstrip("/")


def _body_preview(response: httpx.Response, limit: int = 300) -> str:
    try:
        text = response.text
    except httpx.ResponseNotRead:
        return ""
    return text[:limit]


def raise_for_a2a_status(response: httpx.Response) -> None:
    """把 HTTP 状态码映射为 A2A 错误分类。"""
    status = response.status_code
    if 200 <= status < 300:
        return
    if status in (401, 403):
        raise AuthenticationError("Authentication failed")
    if status == 404:
        raise AgentCardError("Agent not found")
    if status in TIMEOUT_STATUS_CODES:
        raise A2ATimeoutError("Request timeout")
    if status in TRANSIENT_STATUS_CODES:
        raise TransientHTTPError(f"Transient HTTP error {status}", status_code=status)
    if 400 <= status < 500:
        raise InvocationError(f"Client error: {_body_preview(response)}")
    raise InvocationError(f"Server error {status}: {_body_preview(response)}")


class A2AClient:
    """面向单个远端代理的同步 A2A 客户端。"""

    def __init__(
        self,
        agent_url: str,
        *,
        auth_token: str | Mapping[str, Any] | None = None,
        timeout: float = 30,
        max_retries: int = 3,
        cache_ttl: float = 300,
        user_agent: str = "SuperAgent-A2A/0.1.0",
        retry_manager: RetryManager | None = None,
        card_cache: AgentCardCache | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.agent_url = normalize_url(agent_url)
        self.timeout = timeout
        self.cache_ttl = cache_ttl
        self._auth_token = auth_token
        self._user_agent = user_agent
        self._retry = retry_manager or RetryManager(max_retries=max_retries, op="a2a.client")
        self._cache = card_cache or get_shared_card_cache()
        self._closed = False
        self._client = httpx.Client(
            base_url=self.agent_url,
            timeout=httpx.Timeout(timeout, connect=min(10.0, float(timeout))),
            transport=transport,
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=5),
        )

    @classmethod
    def from_settings(cls, agent_url: str, settings: Settings, **overrides: Any) -> A2AClient:
        """用全局配置填充默认值，显式参数优先。"""
        options: dict[str, Any] = {
            "timeout": settings.a2a_default_timeout,
            "cache_ttl": settings.a2a_cache_ttl,
            "user_agent": settings.a2a_user_agent,
        }
        options.update({key: value for key, value in overrides.items() if value is not None})
        if "retry_manager" not in options:
            options["retry_manager"] = RetryManager.from_settings(
                settings, max_retries=overrides.get("max_retries"), op="a2a.client"
            )
        options.pop("max_retries", None)
        return cls(agent_url, **options)

    def __enter__(self) -> A2AClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()

    def _client_or_raise(self) -> httpx.Client:
        """返回可用客户端；若已关闭则抛出异常。"""
        if self._closed:
            raise RuntimeError("A2AClient is already closed")
        return self._client

    def close(self) -> None:
        """关闭底层 HTTP 客户端连接池。"""
        if self._closed:
            return
        self._client.close()
        self._closed = True

    @property
    def _card_cache_key(self) -> str:
        return f"agent_card:{self.agent_url}"

    def _auth_headers(self) -> dict[str, str]:
        token = self._auth_token
        if not token:
            return {}
        if not isinstance(token, Mapping):
            return {"Authorization": f"Bearer {token}"}
        auth_type = str(token.get("type", "bearer"))
        if auth_type == "api_key":
            return {"X-API-Key": str(token.get("token", ""))}
        if auth_type == "oauth2":
            return {"Authorization": f"Bearer {token.get('access_token', '')}"}
        if auth_type == "basic":
            raw = f"{token.get('username', '')}:{token.get('password', '')}".encode("utf-8")
            return {"Authorization": f"Basic {base64.b64encode(raw).decode('ascii')}"}
        return {"Authorization": f"Bearer {token.get('token', '')}"}

    def _headers(self, *, accept: str = "application/json", request_id: str | None = None) -> dict[str, str]:
        headers = {
            "User-Agent": self._user_agent,
            "Accept": accept,
            "X-Request-ID": request_id or str(uuid.uuid4()),
        }
        headers.update(self._auth_headers())
        return headers

    def _log_failure(self, op: str, started: float, exc: BaseException, payload_preview: Any = None) -> None:
        logger.error(
            "a2a request failed",
            extra={
                "event": "a2a.request.failed",
                "external_service": "a2a",
                "op": op,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "status_code": getattr(exc, "status_code", None),
                "error_type": type(exc).__name__,
                "error": str(exc),
                "payload_preview": payload_preview,
            },
        )

    def _request(
        self,
        *,
        method: str,
        path: str,
        op: str,
        json_body: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        payload_preview: Any = None,
    ) -> httpx.Response:
        """发送 HTTP 请求，传输异常与错误状态统一映射为 A2A 错误并记录结构化日志。"""
        started = time.perf_counter()
        try:
            response = self._client_or_raise().request(
                method, path, json=json_body, headers=headers or self._headers()
            )
            raise_for_a2a_status(response)
        except httpx.TimeoutException as exc:
            self._log_failure(op, started, exc, payload_preview)
            raise A2ATimeoutError(f"Request to {self.agent_url}{path} timed out") from exc
        except httpx.TransportError as exc:
            self._log_failure(op, started, exc, payload_preview)
            raise NetworkError(f"Network error contacting {self.agent_url}: {exc}") from exc
        except A2AError as exc:
            self._log_failure(op, started, exc, payload_preview)
            raise
        logger.debug(
            "a2a request completed",
            extra={
                "event": "a2a.request.completed",
                "external_service": "a2a",
                "op": op,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "status_code": response.status_code,
            },
        )
        return response

    @staticmethod
    def _expect_content_type(response: httpx.Response, expected: str) -> None:
        content_type = response.headers.get("content-type", "")
        if expected not in content_type:
            raise ProtocolError(f"Expected {expected}, got {content_type or 'none'}")

    def _json(self, response: httpx.Response) -> Any:
        self._expect_content_type(response, "application/json")
        try:
            return response.json()
        except ValueError as exc:
            raise ProtocolError(f"Invalid JSON response: {exc}") from exc

    def health_check(self) -> bool:
        """轻量可达性探测，任何失败都返回 False 而不抛出。"""
        try:
            self._retry.with_retry(self._request, method="GET", path=HEALTH_PATH, op="a2a.health")
        except (A2AError, RuntimeError) as exc:
            logger.warning(
                "a2a health check failed",
                extra={
                    "event": "a2a.health.failed",
                    "external_service": "a2a",
                    "op": "a2a.health",
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            return False
        return True

    def _load_agent_card(self) -> AgentCard:
        response = self._request(method="GET", path=AGENT_CARD_PATH, op="a2a.agent_card")
        data = self._json(response)
        if not isinstance(data, Mapping):
            raise AgentCardError("Agent card must be a JSON object")
        return AgentCard.from_dict(data)

    def fetch_agent_card(self, *, force_refresh: bool = False) -> AgentCard:
        """获取并缓存代理卡片；cache_ttl 秒内重复调用不再发起请求。"""
        if not force_refresh:
            cached = self._cache.get(self._card_cache_key, ttl_seconds=self.cache_ttl)
            if cached is not None:
                return cached
        card = self._retry.with_retry(self._load_agent_card)
        self._cache.set(self._card_cache_key, card)
        logger.info(
            "a2a agent card fetched",
            extra={
                "event": "a2a.agent_card.fetched",
                "external_service": "a2a",
                "op": "a2a.agent_card",
                "payload_preview": {"agent_url": self.agent_url, "capabilities": card.capability_names()},
            },
        )
        return card

    def list_capabilities(self) -> list[Capability]:
        return list(self.fetch_agent_card().capabilities)

    def supports_skill(self, skill_name: str) -> bool:
        return self.fetch_agent_card().find_capability(skill_name) is not None

    def supports_modality(self, modality: str) -> bool:
        return self.fetch_agent_card().supports_modality(modality)

    def agent_info(self) -> dict[str, Any]:
        return {
            "url": self.agent_url,
            "timeout": self.timeout,
            "cached_agent_card": self._cache.contains(self._card_cache_key, ttl_seconds=self.cache_ttl),
            "cache_size": self._cache.size(),
        }

    def clear_cache(self) -> None:
        self._cache.delete(self._card_cache_key)

    def _ensure_skill(self, skill_name: str) -> None:
        card = self.fetch_agent_card()
        if card.find_capability(skill_name) is None:
            raise SkillNotFoundError(skill_name, card.capability_names())

    @staticmethod
    def build_invoke_payload(
        skill_name: str,
        parameters: Mapping[str, Any],
        *,
        request_id: str,
        stream: bool = False,
        webhook_url: str | None = None,
    ) -> dict[str, Any]:
        options: dict[str, Any] = {"stream": stream}
        if webhook_url:
            options["webhookUrl"] = webhook_url
        return {
            "jsonrpc": "2.0",
            "method": "invoke",
            "params": {
                "task": {
                    "id": request_id,
                    "skill": skill_name,
                    "parameters": dict(parameters),
                    "options": options,
                }
            },
            "id": request_id,
        }

    def invoke_skill(
        self,
        skill_name: str,
        parameters: Mapping[str, Any],
        *,
        request_id: str | None = None,
        stream: bool = False,
        webhook_url: str | None = None,
    ) -> dict[str, Any]:
        """调用远端技能；stream=True 时消费完整事件流后按全有或全无汇总。"""
        request_id = request_id or str(uuid.uuid4())
        if stream:
            return collect_stream_result(
                self.stream_skill(skill_name, parameters, request_id=request_id, webhook_url=webhook_url)
            )
        self._ensure_skill(skill_name)
        payload = self.build_invoke_payload(
            skill_name, parameters, request_id=request_id, stream=False, webhook_url=webhook_url
        )

        def _invoke() -> dict[str, Any]:
            response = self._request(
                method="POST",
                path=INVOKE_PATH,
                op="a2a.invoke",
                json_body=payload,
                headers=self._headers(request_id=request_id),
                payload_preview={"skill": skill_name, "request_id": request_id},
            )
            return self._parse_jsonrpc(self._json(response))

        return self._retry.with_retry(_invoke)

    @staticmethod
    def _parse_jsonrpc(body: Any) -> dict[str, Any]:
        if not isinstance(body, Mapping):
            raise ProtocolError("JSON-RPC response must be an object")
        error = body.get("error")
        if error:
            message = error.get("message") if isinstance(error, Mapping) else error
            raise InvocationError(f"Remote error: {message}")
        result = body.get("result")
        if isinstance(result, Mapping):
            return dict(result)
        return {"status": "completed", "result": result}

    def _open_stream(self, payload: dict[str, Any], request_id: str) -> httpx.Response:
        started = time.perf_counter()
        headers = self._headers(accept="text/event-stream", request_id=request_id)
        headers["Cache-Control"] = "no-cache"
        client = self._client_or_raise()
        request = client.build_request("POST", INVOKE_PATH, json=payload, headers=headers)
        try:
            response = client.send(request, stream=True)
        except httpx.TimeoutException as exc:
            self._log_failure("a2a.invoke_stream", started, exc)
            raise A2ATimeoutError(f"Stream request to {self.agent_url} timed out") from exc
        except httpx.TransportError as exc:
            self._log_failure("a2a.invoke_stream", started, exc)
            raise NetworkError(f"Network error contacting {self.agent_url}: {exc}") from exc
        try:
            if response.status_code >= 300:
                response.read()
            raise_for_a2a_status(response)
            self._expect_content_type(response, "text/event-stream")
        except A2AError as exc:
            response.close()
            self._log_failure("a2a.invoke_stream", started, exc)
            raise
        return response

    def stream_skill(
        self,
        skill_name: str,
        parameters: Mapping[str, Any],
        *,
        request_id: str | None = None,
        webhook_url: str | None = None,
    ) -> Iterator[StreamEvent]:
        """以 SSE 调用技能并逐条产出事件；调用方丢弃迭代器即关闭连接。"""
        request_id = request_id or str(uuid.uuid4())
        self._ensure_skill(skill_name)
        payload = self.build_invoke_payload(
            skill_name, parameters, request_id=request_id, stream=True, webhook_url=webhook_url
        )
        response = self._retry.with_retry(self._open_stream, payload, request_id)
        deadline = time.monotonic() + float(self.timeout)
        try:
            for event in iter_sse_events(response.iter_lines()):
                logger.debug(
                    "a2a stream event",
                    extra={"event": "a2a.stream.event", "op": event.event, "payload_preview": event.data},
                )
                yield event
                if time.monotonic() > deadline:
                    raise A2ATimeoutError(f"Stream from {self.agent_url} exceeded {self.timeout}s")
        except httpx.TimeoutException as exc:
            raise A2ATimeoutError(f"Stream from {self.agent_url} timed out") from exc
        except httpx.TransportError as exc:
            raise NetworkError(f"Stream from {self.agent_url} interrupted: {exc}") from exc
        finally:
            response.close()
