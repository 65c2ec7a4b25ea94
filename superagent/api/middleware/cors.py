"""CORS 中间件：区分预检与实际请求，仅对允许的来源回写 Allow-Origin。"""

from __future__ import annotations

import re
from typing import Any, Callable, Iterable, Union

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response
from starlette.types import ASGIApp

OriginRule = Union[str, re.Pattern[str], Callable[[str], bool]]

DEFAULT_ALLOW_METHODS = ("GET", "POST", "OPTIONS")
DEFAULT_ALLOW_HEADERS = ("Content-Type", "Authorization", "X-Request-ID", "Accept")
DEFAULT_EXPOSE_HEADERS = ("X-Request-ID", "X-Response-Time")


def _as_rules(allow_origin: Any) -> list[OriginRule]:
    if allow_origin is None:
        return []
    if isinstance(allow_origin, (str, re.Pattern)) or callable(allow_origin):
        return [allow_origin]
    return list(allow_origin)


class A2ACorsMiddleware(BaseHTTPMiddleware):
    """来源规则支持通配符、精确字符串、正则与谓词函数。"""

    def __init__(
        self,
        app: ASGIApp,
        *,
        allow_origin: OriginRule | Iterable[OriginRule] = "*",
        allow_methods: Iterable[str] = DEFAULT_ALLOW_METHODS,
        allow_headers: Iterable[str] = DEFAULT_ALLOW_HEADERS,
        expose_headers: Iterable[str] = DEFAULT_EXPOSE_HEADERS,
        allow_credentials: bool = False,
        max_age: int | None = 86400,
    ) -> None:
        super().__init__(app)
        self._rules = _as_rules(allow_origin)
        self._wildcard = "*" in [rule for rule in self._rules if isinstance(rule, str)]
        self._allow_methods = ", ".join(allow_methods)
        self._allow_headers = ", ".join(allow_headers)
        self._expose_headers = ", ".join(expose_headers)
        self._allow_credentials = allow_credentials
        self._max_age = max_age

    def origin_allowed(self, origin: str | None) -> bool:
        if self._wildcard:
            return True
        if not origin:
            return False
        for rule in self._rules:
            if isinstance(rule, str) and origin == rule:
                return True
            if isinstance(rule, re.Pattern) and rule.search(origin):
                return True
            if callable(rule) and not isinstance(rule, (str, re.Pattern)) and rule(origin):
                return True
        return False

    def cors_headers(self, origin: str | None) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self._wildcard and not self._allow_credentials:
            headers["Access-Control-Allow-Origin"] = "*"
        elif origin and self.origin_allowed(origin):
            headers["Access-Control-Allow-Origin"] = origin
            headers["Vary"] = "Origin"
        if self._allow_credentials:
            headers["Access-Control-Allow-Credentials"] = "true"
        if self._expose_headers:
            headers["Access-Control-Expose-Headers"] = self._expose_headers
        return headers

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        origin = request.headers.get("origin")
        if request.method == "OPTIONS":
            if not self.origin_allowed(origin):
                return PlainTextResponse("CORS request denied", status_code=403)
            headers = self.cors_headers(origin)
            headers["Access-Control-Allow-Methods"] = self._allow_methods
            if self._max_age is not None:
                headers["Access-Control-Max-Age"] = str(self._max_age)
            headers["Access-Control-Allow-Headers"] = (
                request.headers.get("access-control-request-headers") or self._allow_headers
            )
            return Response(status_code=200, headers=headers)

        response = await call_next(request)
        if self.origin_allowed(origin):
            response.headers.update(self.cors_headers(origin))
        return response
