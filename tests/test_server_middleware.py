"""服务中间件测试：验证 CORS 预检、Bearer 认证与请求日志兜底行为。"""

from __future__ import annotations

import re

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from superagent.api.middleware.auth import BearerAuthMiddleware, extract_bearer_token, token_matches
from superagent.api.middleware.cors import A2ACorsMiddleware
from superagent.api.middleware.request_logging import RequestLoggingMiddleware


def _app(*, allow_origin: object = "*", auth_token: object = None) -> FastAPI:
    app = FastAPI()

    @app.get("/ping")
    def ping() -> dict[str, str]:
        return {"pong": "ok"}

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "healthy"}

    @app.get("/explode")
    def explode() -> None:
        raise RuntimeError("kaboom")

    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(BearerAuthMiddleware, auth_token=auth_token)
    app.add_middleware(A2ACorsMiddleware, allow_origin=allow_origin)
    return app


def test_preflight_rejects_unknown_origin_and_accepts_allowed_one() -> None:
    """预检请求：未允许的来源返回 403，允许的来源返回 200 并回写来源。"""
    client = TestClient(_app(allow_origin="https://a.com"))

    denied = client.options("/ping", headers={"Origin": "https://b.com"})
    allowed = client.options("/ping", headers={"Origin": "https://a.com"})

    assert denied.status_code == 403
    assert allowed.status_code == 200
    assert allowed.headers["Access-Control-Allow-Origin"] == "https://a.com"
    assert allowed.headers["Access-Control-Allow-Methods"] == "GET, POST, OPTIONS"
    assert allowed.headers["Access-Control-Max-Age"] == "86400"


def test_preflight_echoes_requested_headers() -> None:
    client = TestClient(_app(allow_origin=[re.compile(r"\.example\.com$")]))

    response = client.options(
        "/ping",
        headers={"Origin": "https://app.example.com", "Access-Control-Request-Headers": "X-Custom"},
    )

    assert response.status_code == 200
    assert response.headers["Access-Control-Allow-Headers"] == "X-Custom"


def test_actual_request_only_tagged_for_allowed_origins() -> None:
    client = TestClient(_app(allow_origin=lambda origin: origin.endswith(".trusted.dev")))

    trusted = client.get("/ping", headers={"Origin": "https://x.trusted.dev"})
    other = client.get("/ping", headers={"Origin": "https://evil.dev"})

    assert trusted.headers["Access-Control-Allow-Origin"] == "https://x.trusted.dev"
    assert trusted.headers["Vary"] == "Origin"
    assert other.status_code == 200
    assert "Access-Control-Allow-Origin" not in other.headers


def test_wildcard_origin_returns_star() -> None:
    response = TestClient(_app()).get("/ping", headers={"Origin": "https://any.dev"})
    assert response.headers["Access-Control-Allow-Origin"] == "*"
    assert "Access-Control-Max-Age" not in response.headers


def test_auth_rejects_missing_or_wrong_token() -> None:
    """受保护路径缺少或携带错误令牌时返回 401 与 WWW-Authenticate。"""
    client = TestClient(_app(auth_token="s3cret"))

    missing = client.get("/ping")
    wrong = client.get("/ping", headers={"Authorization": "Bearer nope"})
    ok = client.get("/ping", headers={"Authorization": "bearer s3cret"})

    assert missing.status_code == 401
    assert missing.json() == {"error": "Unauthorized", "code": "auth_required"}
    assert missing.headers["WWW-Authenticate"] == 'Bearer realm="A2A Agent"'
    assert "s3cret" not in missing.text
    assert wrong.status_code == 401
    assert ok.status_code == 200


def test_auth_skips_public_paths_and_preflight() -> None:
    client = TestClient(_app(auth_token="s3cret"))

    assert client.get("/health").status_code == 200
    assert client.options("/ping", headers={"Origin": "https://a.com"}).status_code == 200


def test_auth_predicate_errors_deny_request() -> None:
    def predicate(token: str) -> bool:
        raise ValueError("validator down")

    response = TestClient(_app(auth_token=predicate)).get("/ping", headers={"Authorization": "Bearer x"})

    assert response.status_code == 401


def test_token_matching_variants(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("A2A_TEST_TOKEN", "env-token")

    assert extract_bearer_token("Bearer  abc ") == "abc"
    assert extract_bearer_token("Basic abc") is None
    assert token_matches(["a", "b"], "b")
    assert token_matches({"type": "static", "token": "t"}, "t")
    assert token_matches({"type": "env", "key": "A2A_TEST_TOKEN"}, "env-token")
    assert not token_matches({"type": "unknown"}, "t")
    assert not token_matches("t", None)


def test_request_id_propagated_and_generated() -> None:
    client = TestClient(_app())

    given = client.get("/ping", headers={"X-Request-ID": "req-42"})
    correlated = client.get("/ping", headers={"X-Correlation-ID": "corr-7"})
    generated = client.get("/ping")

    assert given.headers["X-Request-ID"] == "req-42"
    assert correlated.headers["X-Request-ID"] == "corr-7"
    assert generated.headers["X-Request-ID"]
    assert generated.headers["X-Response-Time"].endswith("ms")


def test_unhandled_error_becomes_json_500_with_request_id() -> None:
    """未处理异常转换为带请求 ID 的 JSON 500，而不是裸异常。"""
    client = TestClient(_app())

    response = client.get("/explode", headers={"X-Request-ID": "req-500"})

    assert response.status_code == 500
    body = response.json()
    assert body["error"] == "Internal server error"
    assert body["request_id"] == "req-500"
    assert "timestamp" in body
    assert response.headers["X-Request-ID"] == "req-500"
