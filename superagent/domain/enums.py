"""领域枚举定义：统一任务状态、运行状态、熔断状态与任务种类取值。"""

from __future__ import annotations

from enum import Enum


class TaskStatus(str, Enum):
    """单个任务执行状态枚举。"""
    pending = "pending"
    running = "running"
    succeeded = "succeeded"
    failed = "failed"
    skipped = "skipped"


class RunStatus(str, Enum):
    """工作流运行生命周期状态枚举。"""
    pending = "pending"
    running = "running"
    completed = "completed"
    failed = "failed"


class CircuitState(str, Enum):
    """熔断器状态枚举。"""
    closed = "closed"
    half_open = "half_open"
    open = "open"


class TaskKind(str, Enum):
    """任务种类枚举，引擎按种类分派执行。"""
    direct = "direct"
    llm = "llm"
    a2a = "a2a"


class MessageRole(str, Enum):
    """A2A 消息角色枚举。"""
    user = "user"
    agent = "agent"
    system = "system"


class HealthStatus(str, Enum):
    """服务健康状态枚举。"""
    healthy = "healthy"
    degraded = "degraded"
    unhealthy = "unhealthy"
