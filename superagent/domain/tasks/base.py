"""任务抽象：名称、配置、失败策略、输入输出声明与条件执行。"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, ClassVar, Mapping

from superagent.config import Settings
from superagent.domain.a2a.agent_card import utc_now_iso
from superagent.domain.context import Context
from superagent.domain.enums import TaskKind
from superagent.domain.errors import ConfigurationError

# 所有任务种类共享的通用配置键，不会透传给具体实现。
COMMON_CONFIG_KEYS = frozenset(
    {"input", "inputs", "output", "if", "fail_on_error", "retries", "description", "timeout"}
)

Condition = Callable[[Context], bool]


def as_key_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set, frozenset)):
        return [str(item) for item in value]
    return [str(value)]


class Task(ABC):
    """工作流任务基类；execute 只能返回新的 Context，不得修改入参。"""

    kind: ClassVar[TaskKind]
    # 每个元素是一组候选键，至少需要其中之一。
    required_config: ClassVar[tuple[tuple[str, ...], ...]] = ()

    def __init__(
        self,
        name: str,
        config: Mapping[str, Any] | None = None,
        *,
        settings: Settings | None = None,
    ) -> None:
        if not name:
            raise ConfigurationError("task name is required")
        self.name = str(name)
        self.config: dict[str, Any] = dict(config or {})
        self.settings = settings or Settings()
        self.fail_on_error = self.config.get("fail_on_error", True) is not False
        self.retries = max(0, int(self.config.get("retries") or 0))
        self.condition: Condition | None = self.config.get("if")
        if self.condition is not None and not callable(self.condition):
            raise ConfigurationError(f"task {self.name}: 'if' must be callable")

    @property
    def input_keys(self) -> list[str]:
        return as_key_list(self.config.get("input", self.config.get("inputs")))

    @property
    def output_key(self) -> str | None:
        output = self.config.get("output")
        return str(output) if output else None

    def required_inputs(self) -> list[str]:
        return self.input_keys

    def provided_outputs(self) -> list[str]:
        return [self.output_key] if self.output_key else [self.name]

    @property
    def error_key(self) -> str:
        return self.output_key or f"{self.name}_error"

    def description(self) -> str:
        return str(self.config.get("description") or "")

    def validate(self) -> None:
        """执行前校验配置，缺失项一次性列出。"""
        missing = [
            " or ".join(options) for options in self.required_config if not any(self.config.get(key) for key in options)
        ]
        if missing:
            raise ConfigurationError(
                f"{type(self).__name__} '{self.name}' requires {', '.join(missing)}. Got: {sorted(self.config)}"
            )

    def should_run(self, context: Context) -> bool:
        return self.condition is None or bool(self.condition(context))

    def contain_failure(self, context: Context, error: BaseException) -> Context:
        """fail_on_error=False 时写入错误标记，供后续任务判断。"""
        return context.set(
            self.error_key,
            {"error": str(error), "failed": True, "timestamp": utc_now_iso()},
        )

    @abstractmethod
    def execute(self, context: Context) -> Context:
        """执行任务并返回更新后的上下文。"""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"
