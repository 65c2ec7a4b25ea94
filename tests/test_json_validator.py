"""协议校验测试：验证发现文档、JSON-RPC 请求与 SSE 事件的完整违规列表。"""

from __future__ import annotations

import pytest

from superagent.domain.a2a.validation import A2AJsonValidator
from superagent.domain.errors import A2AValidationError


def _request(**overrides: object) -> dict[str, object]:
    payload: dict[str, object] = {
        "jsonrpc": "2.0",
        "method": "invoke",
        "id": "1",
        "params": {"task": {"skill": "echo", "parameters": {"text": "hi"}}},
    }
    payload.update(overrides)
    return payload


def test_valid_jsonrpc_request_has_no_errors() -> None:
    assert A2AJsonValidator.validate_jsonrpc_request(_request()) == []


def test_jsonrpc_request_reports_every_violation() -> None:
    """版本、方法与 id 缺失应一次性全部报告。"""
    errors = A2AJsonValidator.validate_jsonrpc_request({"jsonrpc": "1.0"})

    assert errors == [
        "Invalid or missing JSON-RPC version (must be '2.0')",
        "Missing required field: method",
        "Missing required field: id",
    ]


def test_invoke_params_validated() -> None:
    errors = A2AJsonValidator.validate_jsonrpc_request(
        _request(params={"task": {"skill": " ", "parameters": ["x"]}})
    )

    assert errors == ["params.task.skill is required", "params.task.parameters must be an object"]
    assert A2AJsonValidator.validate_jsonrpc_request(_request(params={})) == ["params.task must be an object"]
    assert A2AJsonValidator.validate_jsonrpc_request("nope") == ["request must be an object"]


def test_agent_card_document_validation() -> None:
    errors = A2AJsonValidator.validate_agent_card(
        {"name": "x", "serviceEndpointURL": "localhost", "capabilities": [{"name": "a"}, "bad"]}
    )

    assert errors == [
        "Missing required field: id",
        "Missing required field: version",
        "Invalid serviceEndpointURL format",
        "capabilities[0]: Missing required field: description",
        "capabilities[1]: must be an object",
    ]


@pytest.mark.parametrize(
    ("event", "expected"),
    [
        ({"event": "start", "data": {"status": "started"}}, []),
        ({"event": "start", "data": {}}, ["start event must include data.status"]),
        ({"event": "complete", "data": {"result": {"a": 1}}}, []),
        ({"event": "task_complete", "data": {}}, ["task_complete event must include data.result or data.status"]),
        ({"event": "error", "data": {"error": ""}}, ["error event must include data.error"]),
        ("raw", ["SSE event data must be an object"]),
    ],
)
def test_sse_event_validation(event: object, expected: list[str]) -> None:
    assert A2AJsonValidator.validate_sse_event(event) == expected


def test_ensure_valid_raises_with_all_errors() -> None:
    with pytest.raises(A2AValidationError) as exc_info:
        A2AJsonValidator.ensure_valid(["a", "b"])

    assert exc_info.value.errors == ["a", "b"]
    assert str(exc_info.value) == "Validation failed: a; b"
    A2AJsonValidator.ensure_valid([])
