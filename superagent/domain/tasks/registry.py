"""任务种类注册中心：按 TaskKind 构造具体任务实例。"""

from __future__ import annotations

from typing import Any, Mapping

from superagent.config import Settings
from superagent.domain.enums import TaskKind
from superagent.domain.tasks.a2a import A2aTask
from superagent.domain.tasks.base import Task
from superagent.domain.tasks.direct import DirectTask
from superagent.domain.tasks.llm import LlmTask


class TaskRegistry:
    """任务种类注册中心；种类集合是封闭的，构造参数按种类注入。"""

    def __init__(self, *, settings: Settings | None = None, **factories: Any) -> None:
        self._settings = settings
        # llm_factory / client_factory 等按种类注入的协作者，测试中替换为桩对象。
        self._factories = factories
        self._kinds: dict[TaskKind, type[Task]] = {}
        self.register(TaskKind.direct, DirectTask)
        self.register(TaskKind.llm, LlmTask)
        self.register(TaskKind.a2a, A2aTask)

    def register(self, kind: TaskKind, task_cls: type[Task]) -> None:
        self._kinds[kind] = task_cls

    def get(self, kind: TaskKind | str) -> type[Task]:
        try:
            return self._kinds[TaskKind(kind)]
        except (KeyError, ValueError) as exc:
            raise KeyError(f"unknown task kind: {kind}") from exc

    def kinds(self) -> list[TaskKind]:
        return list(self._kinds)

    def create(self, kind: TaskKind | str, name: str, config: Mapping[str, Any] | None = None) -> Task:
        """按种类构造任务并注入该种类需要的工厂。"""
        task_cls = self.get(kind)
        kwargs: dict[str, Any] = {"settings": self._settings}
        if task_cls is LlmTask and self._factories.get("llm_factory") is not None:
            kwargs["llm_factory"] = self._factories["llm_factory"]
        if task_cls is A2aTask and self._factories.get("client_factory") is not None:
            kwargs["client_factory"] = self._factories["client_factory"]
        return task_cls(name, config, **kwargs)
