"""领域异常定义：配置、上下文校验、任务执行与 A2A 协议错误分类。"""

from __future__ import annotations

from typing import Any, Iterable


class SuperAgentError(Exception):
    """所有业务异常的根类型。"""


class ConfigurationError(SuperAgentError):
    """任务或客户端配置缺失/非法，执行任何 I/O 之前即失败。"""


class TaskError(SuperAgentError):
    """工作流层任务失败包装，引擎据此终止运行。"""

    def __init__(self, message: str, *, task_name: str | None = None, context: Any = None) -> None:
        super().__init__(message)
        self.task_name = task_name
        self.context = context


class WorkflowTimeoutError(TaskError):
    """工作流运行超过整体时限，在任务之间检测。"""


class ContextValidationError(SuperAgentError):
    """上下文校验失败基类。"""


class MissingContextKeyError(ContextValidationError):
    """一次性列出全部缺失的上下文键。"""

    def __init__(self, missing_keys: Iterable[str]) -> None:
        self.missing_keys = list(missing_keys)
        super().__init__(f"Missing required context keys: {', '.join(self.missing_keys)}")


class TypeMismatchError(ContextValidationError):
    """聚合全部上下文类型不匹配项。"""

    def __init__(self, mismatches: dict[str, tuple[str, str]]) -> None:
        self.mismatches = mismatches
        details = ", ".join(
            f"{key} (expected {expected}, got {actual})" for key, (expected, actual) in mismatches.items()
        )
        super().__init__(f"Context type mismatch: {details}")


class CircuitOpenError(SuperAgentError):
    """熔断器处于打开状态，拒绝执行。"""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"circuit breaker is open for {name}")


class CounterStoreError(SuperAgentError):
    """外部计数存储不可用。"""


class LlmProviderError(SuperAgentError):
    """LLM 提供方调用失败。"""


class A2AError(SuperAgentError):
    """A2A 协议错误基类。"""


class AgentCardError(A2AError):
    """代理卡片获取或解析失败。"""


class InvocationError(A2AError):
    """远端代理返回显式错误或流式调用出现错误事件。"""


class SkillNotFoundError(A2AError):
    """代理可达但不提供目标技能，消息中列出可用技能。"""

    def __init__(self, skill: str, available_skills: Iterable[str]) -> None:
        self.skill = skill
        self.available_skills = list(available_skills)
        available = ", ".join(self.available_skills) or "none"
        super().__init__(f"Skill '{skill}' not found. Available skills: {available}")


class AuthenticationError(A2AError):
    """认证失败，不可重试。"""


class A2AValidationError(A2AError):
    """协议结构校验失败，携带全部违规项。"""

    def __init__(self, errors: Iterable[str]) -> None:
        self.errors = list(errors)
        super().__init__(f"Validation failed: {'; '.join(self.errors)}")


class ProtocolError(A2AError):
    """响应内容不符合协议约定，例如非法 JSON 或错误的内容类型。"""


class NetworkError(A2AError):
    """网络不可达、连接中断等可重试错误。"""


class A2ATimeoutError(NetworkError):
    """请求超时，可重试。"""


class TransientHTTPError(NetworkError):
    """429/502/503 等瞬时 HTTP 状态，可重试。"""

    def __init__(self, message: str, *, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code
