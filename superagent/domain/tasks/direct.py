"""直接任务：调用进程内 Python 函数处理上下文。"""

from __future__ import annotations

import logging
from typing import Any, Callable, ClassVar, Mapping

from superagent.config import Settings
from superagent.domain.context import Context
from superagent.domain.enums import TaskKind
from superagent.domain.errors import ConfigurationError, TaskError
from superagent.domain.tasks.base import Task

logger = logging.getLogger(__name__)

Handler = Callable[[Context], Any]


class DirectTask(Task):
    """以函数实现的任务；声明 input 时处理函数只看到对应子上下文。"""

    kind: ClassVar[TaskKind] = TaskKind.direct

    def __init__(
        self,
        name: str,
        config: Mapping[str, Any] | None = None,
        *,
        settings: Settings | None = None,
    ) -> None:
        super().__init__(name, config, settings=settings)
        self.handler: Handler | None = self.config.get("handler")
        if self.handler is not None and not callable(self.handler):
            raise ConfigurationError(f"task {self.name}: handler must be callable")

    def validate(self) -> None:
        super().validate()
        if self.handler is None:
            raise ConfigurationError(f"DirectTask '{self.name}' requires handler")

    def execute(self, context: Context) -> Context:
        self.validate()
        view = context.slice(*self.input_keys) if self.input_keys else context
        try:
            result = self.handler(view)
        except TaskError:
            raise
        except Exception as exc:
            raise TaskError(f"Task {self.name} failed: {exc}", task_name=self.name, context=context) from exc
        return self._store(context, result)

    def _store(self, context: Context, result: Any) -> Context:
        if isinstance(result, Context):
            return context.merge(result.to_dict()) if self.input_keys else result
        if self.output_key:
            return context.set(self.output_key, result)
        if result is None:
            return context
        if isinstance(result, Mapping):
            return context.merge(result)
        return context.set(self.name, result)
