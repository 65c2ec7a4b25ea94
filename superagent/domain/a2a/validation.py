"""A2A 协议结构校验：每个校验函数都返回完整违规列表。"""

from __future__ import annotations

from typing import Any, Mapping

from superagent.domain.a2a.agent_card import is_valid_url
from superagent.domain.errors import A2AValidationError

STREAM_EVENT_TYPES = ("start", "task_start", "task_complete", "task_skipped", "task_error", "complete", "error")


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


class A2AJsonValidator:
    """对发现文档、JSON-RPC 请求与 SSE 事件做结构校验。"""

    @staticmethod
    def validate_agent_card(data: Any) -> list[str]:
        if not isinstance(data, Mapping):
            return ["agent card must be an object"]
        errors = [
            f"Missing required field: {key}"
            for key in ("id", "name", "version", "serviceEndpointURL", "capabilities")
            if key not in data
        ]
        url = data.get("serviceEndpointURL")
        if url is not None and not is_valid_url(url):
            errors.append("Invalid serviceEndpointURL format")
        capabilities = data.get("capabilities")
        if capabilities is not None:
            if not isinstance(capabilities, list):
                errors.append("capabilities must be an array")
            elif not capabilities:
                errors.append("capabilities must not be empty")
            else:
                for index, capability in enumerate(capabilities):
                    errors.extend(A2AJsonValidator.validate_capability(capability, index))
        return errors

    @staticmethod
    def validate_capability(capability: Any, index: int | None = None) -> list[str]:
        prefix = f"capabilities[{index}]" if index is not None else "capability"
        if not isinstance(capability, Mapping):
            return [f"{prefix}: must be an object"]
        errors = [
            f"{prefix}: Missing required field: {key}"
            for key in ("name", "description")
            if not _present(capability.get(key))
        ]
        for key in ("parameters", "returns"):
            if capability.get(key) is not None and not isinstance(capability[key], Mapping):
                errors.append(f"{prefix}: {key} must be an object")
        return errors

    @staticmethod
    def validate_jsonrpc_request(data: Any) -> list[str]:
        if not isinstance(data, Mapping):
            return ["request must be an object"]
        errors: list[str] = []
        if data.get("jsonrpc") != "2.0":
            errors.append("Invalid or missing JSON-RPC version (must be '2.0')")
        if not _present(data.get("method")):
            errors.append("Missing required field: method")
        if "id" not in data:
            errors.append("Missing required field: id")
        if data.get("method") == "invoke":
            errors.extend(A2AJsonValidator.validate_invoke_params(data.get("params")))
        return errors

    @staticmethod
    def validate_invoke_params(params: Any) -> list[str]:
        if not isinstance(params, Mapping):
            return ["params must be an object"]
        task = params.get("task")
        if not isinstance(task, Mapping):
            return ["params.task must be an object"]
        errors: list[str] = []
        if not _present(task.get("skill")):
            errors.append("params.task.skill is required")
        if task.get("parameters") is not None and not isinstance(task["parameters"], Mapping):
            errors.append("params.task.parameters must be an object")
        return errors

    @staticmethod
    def validate_sse_event(event: Any) -> list[str]:
        if not isinstance(event, Mapping):
            return ["SSE event data must be an object"]
        name = event.get("event")
        data = event.get("data")
        data = data if isinstance(data, Mapping) else {}
        if name == "start" and not data.get("status"):
            return ["start event must include data.status"]
        if name in ("complete", "task_complete") and data.get("result") is None and not data.get("status"):
            return [f"{name} event must include data.result or data.status"]
        if name == "error" and not data.get("error"):
            return ["error event must include data.error"]
        return []

    @staticmethod
    def ensure_valid(errors: list[str]) -> None:
        """存在违规项时一次性抛出全部错误。"""
        if errors:
            raise A2AValidationError(errors)
