"""A2A 服务：把已注册的工作流以发现文档、健康检查与 JSON-RPC 调用的形式对外暴露。"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from pathlib import Path
from typing import Any, Iterator, Mapping
from uuid import uuid4

import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from superagent.api.middleware.auth import AuthToken, BearerAuthMiddleware
from superagent.api.middleware.cors import A2ACorsMiddleware
from superagent.api.middleware.request_logging import RequestLoggingMiddleware
from superagent.api.router import api_router
from superagent.application.engine import WorkflowEngine, WorkflowResult
from superagent.config import Settings
from superagent.domain.a2a.agent_card import AgentCard, utc_now_iso
from superagent.domain.a2a.artifact import Artifact, DataArtifact, DocumentArtifact
from superagent.domain.context import Context
from superagent.domain.enums import HealthStatus
from superagent.domain.errors import InvocationError, SkillNotFoundError
from superagent.domain.workflow import WorkflowDefinition, WorkflowRegistry
from superagent.infra.a2a.sse import format_sse

logger = logging.getLogger(__name__)

INTERNAL_KEY_PREFIX = "_a2a_"
DOCUMENT_ARTIFACT_MIN_CHARS = 1000
CARD_CACHE_SECONDS = 300

ENDPOINTS = {
    "agent_card": "GET /.well-known/agent.json",
    "health": "GET /health",
    "stats": "GET /stats",
    "invoke": "POST /invoke",
    "workflow_info": "GET /agents/{path}",
    "workflow_invoke": "POST /agents/{path}",
}

_HEALTH_RANK = {HealthStatus.healthy: 0, HealthStatus.degraded: 1, HealthStatus.unhealthy: 2}


def to_jsonable(value: Any) -> Any:
    return jsonable_encoder(
        value,
        custom_encoder={
            Context: lambda item: jsonable_encoder(item.to_dict()),
            Artifact: lambda item: item.to_dict(),
            Path: str,
        },
    )


def public_data(context: Context) -> dict[str, Any]:
    """对外返回的上下文数据：剔除内部簿记键与私有键。"""
    return to_jsonable(
        {
            key: value
            for key, value in context.to_dict().items()
            if not key.startswith(INTERNAL_KEY_PREFIX) and key not in context.private_keys
        }
    )


def extract_artifacts(data: Mapping[str, Any]) -> list[dict[str, Any]]:
    """长文本转换为文档产物，映射与列表转换为数据产物。"""
    artifacts: list[dict[str, Any]] = []
    for key, value in data.items():
        if isinstance(value, str) and len(value) > DOCUMENT_ARTIFACT_MIN_CHARS:
            artifact: Artifact = DocumentArtifact(
                name=f"{key}_result", content=value, description=f"Result from {key}"
            )
        elif isinstance(value, (dict, list)):
            artifact = DataArtifact(
                name=f"{key}_data",
                content=value,
                description=f"Data result from {key}",
                metadata={"encoding": "json"},
            )
        else:
            continue
        artifacts.append(artifact.to_dict())
    return artifacts


class A2AServer:
    """A2A 服务门面；单个工作流时发布单代理卡片，多个时发布网关卡片。"""

    def __init__(
        self,
        settings: Settings,
        *,
        registry: WorkflowRegistry | None = None,
        engine: WorkflowEngine | None = None,
        auth_token: AuthToken = None,
        allow_origin: Any = None,
        base_url: str | None = None,
    ) -> None:
        self.settings = settings
        self.registry = registry if registry is not None else WorkflowRegistry()
        self.engine = engine or WorkflowEngine(settings)
        self.auth_token = auth_token if auth_token is not None else settings.a2a_auth_token
        origins = settings.cors_allowed_origins_list()
        self.allow_origin = allow_origin if allow_origin is not None else ("*" if origins in ([], ["*"]) else origins)
        self._base_url = base_url
        self._started_at = time.time()
        self._started_at_iso = utc_now_iso()
        self._lock = threading.Lock()
        self._counters = {"requests_total": 0, "invocations_total": 0, "invocations_failed": 0, "streams_total": 0}
        self._card_document: tuple[dict[str, Any], str, float] | None = None
        self._app: FastAPI | None = None

    @property
    def base_url(self) -> str:
        if self._base_url:
            return self._base_url.rstrip("/")
        if self.settings.a2a_base_url:
            return self.settings.a2a_base_url.rstrip("/")
        scheme = "https" if self.settings.a2a_server_ssl_enabled() else "http"
        return f"{scheme}://{self.settings.a2a_server_host}:{self.settings.a2a_server_port}"

    @property
    def auth_required(self) -> bool:
        return bool(self.auth_token)

    def register_workflow(self, definition: WorkflowDefinition, path: str | None = None) -> str:
        registered = self.registry.register(definition, path)
        self._card_document = None
        logger.info(
            "workflow registered",
            extra={"event": "a2a.server.workflow_registered", "op": registered, "payload_preview": definition.task_names()},
        )
        return registered

    # 发现文档

    def agent_card(self) -> AgentCard:
        items = self.registry.items()
        if len(items) == 1:
            path, definition = items[0]
            return AgentCard.from_workflow(
                definition, base_url=self.base_url, auth_required=self.auth_required, path=path
            )
        return AgentCard.from_workflow_registry(
            self.registry, base_url=self.base_url, auth_required=self.auth_required
        )

    def agent_card_document(self) -> tuple[dict[str, Any], str]:
        """返回卡片 JSON 与 ETag；卡片在注册变更或过期前保持稳定。"""
        cached = self._card_document
        if cached is not None and time.monotonic() - cached[2] < CARD_CACHE_SECONDS:
            return cached[0], cached[1]
        payload = self.agent_card().to_dict()
        digest = hashlib.md5(json.dumps(payload, sort_keys=True).encode("utf-8")).hexdigest()
        etag = f'"{digest}"'
        self._card_document = (payload, etag, time.monotonic())
        return payload, etag

    def info(self) -> dict[str, Any]:
        card = self.agent_card()
        return {
            "name": card.name,
            "description": card.description,
            "version": card.version,
            "base_url": self.base_url,
            "authentication": "bearer" if self.auth_required else "none",
            "endpoints": dict(ENDPOINTS),
            "workflows": self.registry.paths(),
        }

    # 健康与统计

    def health(self) -> dict[str, Any]:
        checks: dict[str, dict[str, Any]] = {}
        if len(self.registry):
            checks["registry"] = {
                "status": HealthStatus.healthy.value,
                "details": {"workflows": len(self.registry)},
            }
        else:
            checks["registry"] = {"status": HealthStatus.degraded.value, "message": "no workflows registered"}

        missing = [
            item
            for item in (self.settings.a2a_ssl_cert_path, self.settings.a2a_ssl_key_path)
            if self.settings.a2a_server_ssl_enabled() and item and not Path(item).exists()
        ]
        if missing:
            checks["configuration"] = {
                "status": HealthStatus.unhealthy.value,
                "message": f"ssl files not found: {', '.join(missing)}",
            }
        else:
            checks["configuration"] = {
                "status": HealthStatus.healthy.value,
                "details": {"ssl": self.settings.a2a_server_ssl_enabled(), "auth": self.auth_required},
            }

        overall = max((HealthStatus(item["status"]) for item in checks.values()), key=_HEALTH_RANK.__getitem__)
        return {
            "status": overall.value,
            "timestamp": utc_now_iso(),
            "version": self.agent_card().version,
            "uptime_seconds": round(time.time() - self._started_at, 2),
            "checks": checks,
        }

    def record(self, counter: str) -> None:
        with self._lock:
            self._counters[counter] += 1

    def stats(self) -> dict[str, Any]:
        with self._lock:
            counters = dict(self._counters)
        return {
            "started_at": self._started_at_iso,
            "uptime_seconds": round(time.time() - self._started_at, 2),
            **counters,
            "workflows": self.registry.paths(),
            "skills": self.registry.skill_names(),
        }

    # 调用

    def resolve_skill(self, skill: str) -> tuple[str, WorkflowDefinition, str]:
        target = self.registry.find_by_skill(skill)
        if target is None:
            raise SkillNotFoundError(skill, self.agent_card().capability_names())
        return target

    @staticmethod
    def build_context(parameters: Mapping[str, Any] | None, skill: str, request_id: str) -> Context:
        data = dict(parameters) if isinstance(parameters, Mapping) else {}
        return Context(data).merge(
            {
                "_a2a_skill": skill,
                "_a2a_request_id": request_id,
                "_a2a_timestamp": utc_now_iso(),
            }
        )

    def _completed_result(self, path: str, definition: WorkflowDefinition, result: WorkflowResult) -> dict[str, Any]:
        data = public_data(result.context)
        return {
            "status": "completed",
            "result": data,
            "artifacts": extract_artifacts(data),
            "metadata": {
                "workflow": definition.name,
                "path": path,
                "run_id": result.run_id,
                "duration_ms": result.duration_ms,
                "trace": [entry.to_dict() for entry in result.trace],
                "execution_time": utc_now_iso(),
            },
        }

    def run_workflow(
        self,
        path: str,
        definition: WorkflowDefinition,
        parameters: Mapping[str, Any] | None,
        *,
        skill: str,
        request_id: str | None = None,
    ) -> dict[str, Any]:
        """阻塞执行工作流；运行失败抛出 InvocationError。"""
        request_id = request_id or str(uuid4())
        self.record("invocations_total")
        result = self.engine.execute(definition, self.build_context(parameters, skill, request_id))
        if not result.completed:
            self.record("invocations_failed")
            raise InvocationError(f"Workflow execution failed: {result.error}")
        return self._completed_result(path, definition, result)

    def invoke_skill(self, skill: str, parameters: Mapping[str, Any] | None, request_id: str) -> dict[str, Any]:
        path, definition, task_name = self.resolve_skill(skill)
        return self.run_workflow(path, definition, parameters, skill=task_name, request_id=request_id)

    def stream_skill(self, skill: str, parameters: Mapping[str, Any] | None, request_id: str) -> Iterator[str]:
        """以 SSE 帧推送运行进度；运行失败以 error 事件结束。"""
        path, definition, task_name = self.resolve_skill(skill)
        self.record("streams_total")
        return self._stream(path, definition, task_name, parameters, request_id)

    def _stream(
        self,
        path: str,
        definition: WorkflowDefinition,
        skill: str,
        parameters: Mapping[str, Any] | None,
        request_id: str,
    ) -> Iterator[str]:
        yield format_sse("start", {"status": "started", "id": request_id})
        try:
            for event in self.engine.iter_execute(definition, self.build_context(parameters, skill, request_id)):
                if event.type == "task_started":
                    yield format_sse("task_start", {"task": event.task_name, "status": "running"})
                elif event.type == "task_completed":
                    yield format_sse(
                        "task_complete",
                        {"task": event.task_name, "status": "completed", "duration_ms": event.data.get("duration_ms")},
                    )
                elif event.type == "task_skipped":
                    yield format_sse("task_skipped", {"task": event.task_name, "status": "skipped"})
                elif event.type == "task_failed":
                    yield format_sse(
                        "task_error", {"task": event.task_name, "status": "failed", "error": event.data.get("error")}
                    )
                elif event.type == "run_completed" and event.result is not None:
                    completed = self._completed_result(path, definition, event.result)
                    yield format_sse("complete", {**completed, "id": request_id})
                elif event.type == "run_failed":
                    self.record("invocations_failed")
                    yield format_sse("error", {"status": "failed", "error": event.data.get("error"), "id": request_id})
        except Exception as exc:
            self.record("invocations_failed")
            logger.exception(
                "a2a stream failed",
                extra={"event": "a2a.stream.failed", "op": skill, "error_type": type(exc).__name__},
            )
            yield format_sse("error", {"status": "failed", "error": str(exc), "id": request_id})

    # 应用装配

    async def _count_requests(self, request: Request, call_next):
        self.record("requests_total")
        return await call_next(request)

    async def _http_error(self, request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == 404:
            return JSONResponse(
                {"error": "Not found", "code": "not_found", "path": request.url.path, "endpoints": ENDPOINTS},
                status_code=404,
            )
        if exc.status_code == 405:
            return JSONResponse(
                {"error": "Method not allowed", "code": "method_not_allowed"},
                status_code=405,
                headers=exc.headers,
            )
        return JSONResponse({"error": str(exc.detail), "code": "http_error"}, status_code=exc.status_code)

    def build_app(self, *, lifespan: Any = None) -> FastAPI:
        """中间件由外到内：CORS -> Auth -> Logging -> 业务路由。"""
        app = FastAPI(
            title=self.settings.app_name, docs_url=None, redoc_url=None, openapi_url=None, lifespan=lifespan
        )
        app.state.a2a_server = self
        app.add_exception_handler(StarletteHTTPException, self._http_error)
        app.include_router(api_router)
        app.middleware("http")(self._count_requests)
        app.add_middleware(RequestLoggingMiddleware)
        app.add_middleware(BearerAuthMiddleware, auth_token=self.auth_token)
        app.add_middleware(A2ACorsMiddleware, allow_origin=self.allow_origin)
        return app

    @property
    def app(self) -> FastAPI:
        if self._app is None:
            self._app = self.build_app()
        return self._app

    def run(self, app: FastAPI | None = None) -> None:
        """以 uvicorn 启动；配置证书与私钥时启用 TLS。"""
        options: dict[str, Any] = {"host": self.settings.a2a_server_host, "port": self.settings.a2a_server_port}
        if self.settings.a2a_server_ssl_enabled():
            options["ssl_certfile"] = self.settings.a2a_ssl_cert_path
            options["ssl_keyfile"] = self.settings.a2a_ssl_key_path
        logger.info(
            "a2a server starting",
            extra={
                "event": "a2a.server.starting",
                "op": self.base_url,
                "payload_preview": {"workflows": self.registry.paths(), "ssl": "ssl_certfile" in options},
            },
        )
        uvicorn.run(app or self.app, log_config=None, **options)
