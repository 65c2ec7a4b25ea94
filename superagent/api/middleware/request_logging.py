"""请求日志中间件：透传或生成请求 ID，记录耗时，并兜底未处理异常为 JSON 500。"""

from __future__ import annotations

import logging
import time
import traceback
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from superagent.domain.a2a.agent_card import utc_now_iso
from superagent.infra.logging.context import bind_log_context

logger = logging.getLogger(__name__)

BACKTRACE_LINES = 10


def _client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    return request.headers.get("x-real-ip") or (request.client.host if request.client else None)


def _level_for(status_code: int) -> int:
    if status_code >= 500:
        return logging.ERROR
    if status_code >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """所有响应（包括 500 兜底）都带 X-Request-ID 与 X-Response-Time。"""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        # 优先透传上游的请求 ID，其次是关联 ID，都没有时本地生成。
        request_id = (
            request.headers.get("x-request-id") or request.headers.get("x-correlation-id") or str(uuid4())
        )
        op = f"{request.method} {request.url.path}"
        started = time.perf_counter()
        with bind_log_context(request_id=request_id):
            logger.info(
                "a2a request received",
                extra={
                    "event": "a2a.request.received",
                    "op": op,
                    "payload_preview": {
                        "query": request.url.query or None,
                        "user_agent": request.headers.get("user-agent"),
                        "remote_addr": _client_ip(request),
                        "content_type": request.headers.get("content-type"),
                        "accept": request.headers.get("accept"),
                    },
                },
            )
            try:
                response = await call_next(request)
            except Exception as exc:
                duration_ms = round((time.perf_counter() - started) * 1000, 2)
                logger.error(
                    "a2a request failed",
                    extra={
                        "event": "a2a.request.failed",
                        "op": op,
                        "duration_ms": duration_ms,
                        "status_code": 500,
                        "error_type": type(exc).__name__,
                        "error": str(exc),
                        "payload_preview": traceback.format_exception(exc)[-BACKTRACE_LINES:],
                    },
                )
                response = JSONResponse(
                    {"error": "Internal server error", "request_id": request_id, "timestamp": utc_now_iso()},
                    status_code=500,
                )
            else:
                duration_ms = round((time.perf_counter() - started) * 1000, 2)
                logger.log(
                    _level_for(response.status_code),
                    "a2a request completed",
                    extra={
                        "event": "a2a.request.completed",
                        "op": op,
                        "duration_ms": duration_ms,
                        "status_code": response.status_code,
                    },
                )
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{duration_ms}ms"
        return response
