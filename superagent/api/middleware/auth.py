"""Bearer 认证中间件：公开路径放行，其余请求校验令牌。"""

from __future__ import annotations

import hmac
import logging
import os
import re
from typing import Any, Callable, Iterable, Mapping, Union

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp

logger = logging.getLogger(__name__)

PUBLIC_PATHS = frozenset({"/.well-known/agent.json", "/health", "/favicon.ico"})
WWW_AUTHENTICATE = 'Bearer realm="A2A Agent"'
_BEARER = re.compile(r"^Bearer\s+(.+)$", re.IGNORECASE)

AuthToken = Union[str, Iterable[str], Callable[[str], bool], Mapping[str, Any], None]


def extract_bearer_token(header: str | None) -> str | None:
    if not header:
        return None
    match = _BEARER.match(header.strip())
    return match.group(1).strip() if match else None


def _same(left: str | None, right: str | None) -> bool:
    if left is None or right is None:
        return False
    return hmac.compare_digest(left.encode("utf-8"), right.encode("utf-8"))


def token_matches(expected: AuthToken, token: str | None) -> bool:
    """expected 支持字符串、字符串列表、谓词函数与 {type: static|env} 映射。"""
    if token is None:
        return False
    if isinstance(expected, str):
        return _same(token, expected)
    if isinstance(expected, Mapping):
        auth_type = str(expected.get("type", ""))
        if auth_type == "static":
            return _same(token, expected.get("token"))
        if auth_type == "env":
            return _same(token, os.environ.get(str(expected.get("key"))))
        return False
    if callable(expected):
        return bool(expected(token))
    if expected is None:
        return False
    return any(_same(token, item) for item in expected)


class BearerAuthMiddleware(BaseHTTPMiddleware):
    """未配置令牌时全部放行；失败响应不回显期望令牌。"""

    def __init__(self, app: ASGIApp, *, auth_token: AuthToken = None, public_paths: Iterable[str] = PUBLIC_PATHS):
        super().__init__(app)
        self._auth_token = auth_token
        self._public_paths = frozenset(public_paths)

    @property
    def enabled(self) -> bool:
        return bool(self._auth_token)

    def is_public(self, path: str) -> bool:
        return path in self._public_paths

    def _authorized(self, request: Request) -> bool:
        token = extract_bearer_token(request.headers.get("authorization"))
        try:
            return token_matches(self._auth_token, token)
        except Exception as exc:
            logger.error(
                "token validation failed",
                extra={"event": "a2a.auth.validator_failed", "error_type": type(exc).__name__, "error": str(exc)},
            )
            return False

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.method == "OPTIONS" or self.is_public(request.url.path) or not self.enabled:
            return await call_next(request)
        if not self._authorized(request):
            logger.warning(
                "a2a request unauthorized",
                extra={"event": "a2a.auth.rejected", "op": f"{request.method} {request.url.path}", "status_code": 401},
            )
            return JSONResponse(
                {"error": "Unauthorized", "code": "auth_required"},
                status_code=401,
                headers={"WWW-Authenticate": WWW_AUTHENTICATE},
            )
        return await call_next(request)
