"""工作流定义：有序任务序列、条件、钩子、构建器与按路径注册的工作流目录。"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Mapping

from superagent.config import Settings
from superagent.domain.context import Context
from superagent.domain.enums import TaskKind
from superagent.domain.errors import ConfigurationError
from superagent.domain.tasks.base import Condition, Task
from superagent.domain.tasks.registry import TaskRegistry

Hook = Callable[[Context], Any]
ErrorHook = Callable[[BaseException, Context], Any]

GLOBAL_ERROR_HOOK = "*"


@dataclass(slots=True)
class CompletionJob:
    """运行完成后通过作业队列投递的副作用任务。"""
    job_name: str
    kwargs: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class WorkflowDefinition:
    """一组按声明顺序执行的任务；任务名在工作流内唯一。"""
    name: str
    tasks: list[Task]
    description: str = ""
    version: str = "1.0.0"
    timeout: float | None = None
    before_hooks: list[Hook] = field(default_factory=list)
    after_hooks: list[Hook] = field(default_factory=list)
    error_hooks: dict[str, list[ErrorHook]] = field(default_factory=dict)
    completion_jobs: list[CompletionJob] = field(default_factory=list)

    def __post_init__(self) -> None:
        seen: set[str] = set()
        duplicates = []
        for task in self.tasks:
            if task.name in seen:
                duplicates.append(task.name)
            seen.add(task.name)
        if duplicates:
            raise ConfigurationError(f"duplicate task names in workflow {self.name}: {', '.join(duplicates)}")

    def task_names(self) -> list[str]:
        return [task.name for task in self.tasks]

    def find_task(self, name: str) -> Task | None:
        return next((task for task in self.tasks if task.name == name), None)

    def validate(self) -> None:
        """运行前逐个校验任务配置，任何 I/O 之前失败。"""
        for task in self.tasks:
            task.validate()

    def error_hooks_for(self, task_name: str) -> list[ErrorHook]:
        return [*self.error_hooks.get(task_name, []), *self.error_hooks.get(GLOBAL_ERROR_HOOK, [])]

    def data_flow_problems(self, initial_keys: list[str] | tuple[str, ...] = ()) -> list[str]:
        """静态检查：列出读取了既非初始键也非上游产出的键的任务。"""
        available = set(initial_keys)
        problems: list[str] = []
        for task in self.tasks:
            missing = [key for key in task.required_inputs() if key != "*" and key not in available]
            if missing:
                problems.append(f"{task.name}: missing inputs {', '.join(missing)}")
            available.update(task.provided_outputs())
        return problems


def combine_conditions(config: dict[str, Any]) -> Condition | None:
    """将 run_if/skip_if/run_when/skip_when 与已有 if 以逻辑与合并为单一谓词。"""
    predicates: list[Condition] = []
    if config.get("if") is not None:
        predicates.append(config.pop("if"))
    run_if = config.pop("run_if", None)
    if run_if is not None:
        predicates.append(run_if)
    skip_if = config.pop("skip_if", None)
    if skip_if is not None:
        predicates.append(lambda context, fn=skip_if: not fn(context))
    run_when = config.pop("run_when", None)
    if run_when is not None:
        key, value = _when_pair(run_when)
        predicates.append(lambda context, key=key, value=value: context.get(key) == value)
    skip_when = config.pop("skip_when", None)
    if skip_when is not None:
        key, value = _when_pair(skip_when)
        predicates.append(lambda context, key=key, value=value: context.get(key) != value)
    if not predicates:
        return None
    if len(predicates) == 1:
        return predicates[0]
    return lambda context: all(predicate(context) for predicate in predicates)


def _when_pair(value: Any) -> tuple[str, Any]:
    if isinstance(value, str):
        return value, True
    key, expected = value
    return str(key), expected


class WorkflowBuilder:
    """以方法调用声明工作流，build() 生成不可再修改任务列表的定义。"""

    def __init__(
        self,
        name: str,
        *,
        settings: Settings | None = None,
        task_registry: TaskRegistry | None = None,
        description: str = "",
        version: str = "1.0.0",
    ) -> None:
        self._name = name
        self._settings = settings
        self._registry = task_registry or TaskRegistry(settings=settings)
        self._description = description
        self._version = version
        self._tasks: list[Task] = []
        self._before: list[Hook] = []
        self._after: list[Hook] = []
        self._errors: dict[str, list[ErrorHook]] = {}
        self._timeout: float | None = None
        self._jobs: list[CompletionJob] = []

    def _add(self, kind: TaskKind, name: str, config: dict[str, Any]) -> WorkflowBuilder:
        condition = combine_conditions(config)
        if condition is not None:
            config["if"] = condition
        self._tasks.append(self._registry.create(kind, name, config))
        return self

    def task(self, name: str, handler: Callable[[Context], Any] | None = None, **config: Any) -> WorkflowBuilder:
        """进程内函数任务。"""
        return self._add(TaskKind.direct, name, {"handler": handler, **config})

    def llm(self, name: str, prompt: str | None = None, **config: Any) -> WorkflowBuilder:
        if prompt is not None:
            config["prompt"] = prompt
        return self._add(TaskKind.llm, name, config)

    def a2a_agent(self, name: str, agent_url: str | None = None, **config: Any) -> WorkflowBuilder:
        if agent_url is not None:
            config["agent_url"] = agent_url
        return self._add(TaskKind.a2a, name, config)

    def add_task(self, task: Task) -> WorkflowBuilder:
        self._tasks.append(task)
        return self

    def describe(self, text: str) -> WorkflowBuilder:
        self._description = text
        return self

    def version(self, value: str) -> WorkflowBuilder:
        self._version = value
        return self

    def before_all(self, hook: Hook) -> WorkflowBuilder:
        self._before.append(hook)
        return self

    def after_all(self, hook: Hook) -> WorkflowBuilder:
        self._after.append(hook)
        return self

    def on_error(self, hook: ErrorHook, *, task: str | None = None) -> WorkflowBuilder:
        self._errors.setdefault(task or GLOBAL_ERROR_HOOK, []).append(hook)
        return self

    def timeout(self, seconds: float) -> WorkflowBuilder:
        if seconds <= 0:
            raise ConfigurationError("workflow timeout must be positive")
        self._timeout = seconds
        return self

    def enqueue_on_complete(self, job_name: str, **kwargs: Any) -> WorkflowBuilder:
        self._jobs.append(CompletionJob(job_name=job_name, kwargs=kwargs))
        return self

    def build(self) -> WorkflowDefinition:
        return WorkflowDefinition(
            name=self._name,
            tasks=list(self._tasks),
            description=self._description,
            version=self._version,
            timeout=self._timeout,
            before_hooks=list(self._before),
            after_hooks=list(self._after),
            error_hooks={key: list(value) for key, value in self._errors.items()},
            completion_jobs=list(self._jobs),
        )


def workflow_path(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", name.lower()).strip("_") or "workflow"


class WorkflowRegistry:
    """路径到工作流定义的映射，网关模式下对外暴露多个工作流。"""

    def __init__(self, task_registry: TaskRegistry | None = None) -> None:
        self.task_registry = task_registry or TaskRegistry()
        self._workflows: dict[str, WorkflowDefinition] = {}

    def builder(self, name: str, **options: Any) -> WorkflowBuilder:
        """创建共享本注册表任务工厂的构建器。"""
        return WorkflowBuilder(name, task_registry=self.task_registry, **options)

    def register(self, definition: WorkflowDefinition, path: str | None = None) -> str:
        key = (path or workflow_path(definition.name)).strip("/")
        self._workflows[key] = definition
        return key

    def get(self, path: str) -> WorkflowDefinition:
        try:
            return self._workflows[path.strip("/")]
        except KeyError as exc:
            raise KeyError(f"unknown workflow path: {path}") from exc

    def paths(self) -> list[str]:
        return list(self._workflows)

    def items(self) -> list[tuple[str, WorkflowDefinition]]:
        return list(self._workflows.items())

    def find_by_skill(self, skill: str) -> tuple[str, WorkflowDefinition, str] | None:
        """按技能名定位工作流；兼容网关卡片中带路径前缀的能力名。返回 (路径, 定义, 任务名)。"""
        for path, definition in self._workflows.items():
            if definition.find_task(skill) is not None:
                return path, definition, skill
            prefix = f"{path.replace('/', '_')}_"
            if skill.startswith(prefix) and definition.find_task(skill[len(prefix):]) is not None:
                return path, definition, skill[len(prefix):]
        return None

    def skill_names(self) -> list[str]:
        return [task.name for definition in self._workflows.values() for task in definition.tasks]

    def __len__(self) -> int:
        return len(self._workflows)

    def __iter__(self) -> Iterator[str]:
        return iter(self._workflows)

    def __contains__(self, path: object) -> bool:
        return isinstance(path, str) and path.strip("/") in self._workflows


def build_workflow(name: str, configure: Callable[[WorkflowBuilder], Any], **options: Any) -> WorkflowDefinition:
    """便捷入口：创建构建器、交给 configure 填充并返回定义。"""
    builder = WorkflowBuilder(name, **options)
    configure(builder)
    return builder.build()


def tasks_from_mapping(items: Mapping[str, Mapping[str, Any]], registry: TaskRegistry) -> list[Task]:
    """从 {name: {"kind": ..., ...}} 结构批量构造任务。"""
    tasks = []
    for name, spec in items.items():
        config = dict(spec)
        kind = config.pop("kind", TaskKind.direct.value)
        tasks.append(registry.create(kind, name, config))
    return tasks
