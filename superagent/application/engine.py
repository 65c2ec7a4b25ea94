"""工作流引擎：按声明顺序串行执行任务，线程化传递 Context 并记录执行轨迹。"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Mapping
from uuid import uuid4

from superagent.application.enqueuer import JobEnqueuer
from superagent.config import Settings
from superagent.domain.context import Context
from superagent.domain.enums import RunStatus, TaskStatus
from superagent.domain.errors import A2AError, ConfigurationError, NetworkError, TaskError, WorkflowTimeoutError
from superagent.domain.tasks.base import Task
from superagent.domain.workflow import WorkflowDefinition
from superagent.infra.logging.context import bind_log_context
from superagent.infra.resilience.retry import RetryManager

logger = logging.getLogger(__name__)

# 单任务级重试只覆盖任务失败包装与网络错误；具体是否重试由 is_retryable_task_error 按根因决定。
TASK_RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (TaskError, NetworkError)


def is_retryable_task_error(error: BaseException) -> bool:
    """按根因判断：网络错误可重试；由协议或配置错误包装而来的 TaskError 不重试。"""
    cause = error.__cause__ if isinstance(error, TaskError) else error
    if isinstance(error, NetworkError) or isinstance(cause, NetworkError):
        return True
    return isinstance(error, TaskError) and not isinstance(cause, (A2AError, ConfigurationError))


def _elapsed_ms(started: float) -> float:
    return round((time.perf_counter() - started) * 1000, 2)


@dataclass(slots=True)
class TraceEntry:
    """单个任务的执行记录。"""
    task_name: str
    status: TaskStatus
    duration_ms: float = 0.0
    output_summary: dict[str, Any] = field(default_factory=dict)
    error: str | None = None
    attempts: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "task_name": self.task_name,
            "status": self.status.value,
            "duration_ms": self.duration_ms,
            "output_summary": self.output_summary,
            "error": self.error,
            "attempts": self.attempts,
        }


@dataclass(slots=True)
class WorkflowResult:
    """一次运行的最终结果：状态、上下文与完整轨迹。"""
    run_id: str
    workflow: str
    status: RunStatus
    context: Context
    trace: list[TraceEntry] = field(default_factory=list)
    failed_task_name: str | None = None
    error: str | None = None
    duration_ms: float = 0.0

    @property
    def completed(self) -> bool:
        return self.status == RunStatus.completed

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "workflow": self.workflow,
            "status": self.status.value,
            "failed_task_name": self.failed_task_name,
            "error": self.error,
            "duration_ms": self.duration_ms,
            "trace": [entry.to_dict() for entry in self.trace],
            "context": self.context.filtered_for_logging(),
        }


@dataclass(slots=True)
class RunEvent:
    """iter_execute 产出的运行事件；终止事件携带 result。"""
    type: str
    run_id: str
    task_name: str | None = None
    data: dict[str, Any] = field(default_factory=dict)
    result: WorkflowResult | None = None

    @property
    def is_terminal(self) -> bool:
        return self.type in ("run_completed", "run_failed")


def _coerce_context(value: Any, current: Context) -> Context:
    """钩子返回值：Context 直接替换，映射合并，其余忽略。"""
    if isinstance(value, Context):
        return value
    if isinstance(value, Mapping):
        return current.merge(value)
    return current


def _changed_keys(before: Context, after: Context) -> list[str]:
    return [key for key in after.keys() if key not in before or before.get(key) is not after.get(key)]


class WorkflowEngine:
    """串行工作流引擎；单次运行内任务顺序严格等于声明顺序。"""

    def __init__(
        self,
        settings: Settings,
        *,
        enqueuer: JobEnqueuer | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._settings = settings
        self._enqueuer = enqueuer
        self._sleep = sleep
        self._clock = clock

    def execute(
        self,
        definition: WorkflowDefinition,
        context: Context | Mapping[str, Any] | None = None,
        *,
        run_id: str | None = None,
    ) -> WorkflowResult:
        """阻塞执行整个工作流并返回结果。"""
        result: WorkflowResult | None = None
        for event in self.iter_execute(definition, context, run_id=run_id):
            if event.result is not None:
                result = event.result
        if result is None:
            raise RuntimeError(f"workflow {definition.name} produced no terminal event")
        return result

    def iter_execute(
        self,
        definition: WorkflowDefinition,
        context: Context | Mapping[str, Any] | None = None,
        *,
        run_id: str | None = None,
    ) -> Iterator[RunEvent]:
        """逐步执行并产出运行事件；配置错误在产出任何事件前抛出。"""
        definition.validate()
        run_id = run_id or uuid4().hex
        current = context if isinstance(context, Context) else Context(context or {})
        steps = self._run(definition, current, run_id)
        # 每一步单独绑定日志上下文，消费方可能在不同线程中逐步驱动生成器。
        while True:
            with bind_log_context(run_id=run_id, workflow=definition.name):
                try:
                    event = next(steps)
                except StopIteration:
                    return
            yield event

    def _run(self, definition: WorkflowDefinition, context: Context, run_id: str) -> Iterator[RunEvent]:
        started = time.perf_counter()
        timeout = definition.timeout or self._settings.workflow_timeout
        deadline = self._clock() + timeout if timeout else None
        trace: list[TraceEntry] = []

        def finish(status: RunStatus, final: Context, *, failed: str | None = None, error: str | None = None):
            result = WorkflowResult(
                run_id=run_id,
                workflow=definition.name,
                status=status,
                context=final,
                trace=trace,
                failed_task_name=failed,
                error=error,
                duration_ms=_elapsed_ms(started),
            )
            event_type = "run_completed" if status == RunStatus.completed else "run_failed"
            log = logger.info if status == RunStatus.completed else logger.error
            log(
                f"workflow run {status.value}",
                extra={
                    "event": f"workflow.run.{status.value}",
                    "op": definition.name,
                    "duration_ms": result.duration_ms,
                    "error": error,
                    "payload_preview": {
                        "failed_task_name": failed,
                        "tasks": [f"{entry.task_name}:{entry.status.value}" for entry in trace],
                    },
                },
            )
            return RunEvent(
                type=event_type,
                run_id=run_id,
                task_name=failed,
                data={"status": status.value, "error": error, "duration_ms": result.duration_ms},
                result=result,
            )

        logger.info(
            "workflow run started",
            extra={
                "event": "workflow.run.started",
                "op": definition.name,
                "payload_preview": {"tasks": definition.task_names(), "context": context.summary()},
            },
        )
        yield RunEvent(type="run_started", run_id=run_id, data={"status": RunStatus.running.value})

        try:
            for hook in definition.before_hooks:
                context = _coerce_context(hook(context), context)
        except Exception as exc:
            self._notify_error_hooks(definition, "before_all", exc, context)
            yield finish(RunStatus.failed, context, failed="before_all", error=str(exc))
            return

        for task in definition.tasks:
            if deadline is not None and self._clock() > deadline:
                error = WorkflowTimeoutError(
                    f"workflow {definition.name} exceeded timeout of {timeout}s",
                    task_name=task.name,
                    context=context,
                )
                self._notify_error_hooks(definition, task.name, error, context)
                yield finish(RunStatus.failed, context, failed=task.name, error=str(error))
                return

            try:
                should_run = task.should_run(context)
            except Exception as exc:
                trace.append(TraceEntry(task_name=task.name, status=TaskStatus.failed, error=str(exc)))
                yield RunEvent(type="task_failed", run_id=run_id, task_name=task.name, data={"error": str(exc)})
                yield finish(RunStatus.failed, context, failed=task.name, error=f"condition error: {exc}")
                return
            if not should_run:
                trace.append(TraceEntry(task_name=task.name, status=TaskStatus.skipped))
                logger.info("task skipped", extra={"event": "workflow.task.skipped", "op": task.name})
                yield RunEvent(type="task_skipped", run_id=run_id, task_name=task.name)
                continue

            yield RunEvent(
                type="task_started",
                run_id=run_id,
                task_name=task.name,
                data={"kind": task.kind.value, "description": task.description()},
            )
            task_started = time.perf_counter()
            attempts = 0

            def attempt(task: Task = task, before: Context = context) -> Context:
                nonlocal attempts
                attempts += 1
                return self._execute_task(task, before)

            try:
                updated = self._retry_manager(task).with_retry(attempt)
            except Exception as exc:
                entry = TraceEntry(
                    task_name=task.name,
                    status=TaskStatus.failed,
                    duration_ms=_elapsed_ms(task_started),
                    error=str(exc),
                    attempts=attempts,
                )
                trace.append(entry)
                self._notify_error_hooks(definition, task.name, exc, context)
                logger.error(
                    "task failed",
                    extra={
                        "event": "workflow.task.failed",
                        "op": task.name,
                        "duration_ms": entry.duration_ms,
                        "error_type": type(exc).__name__,
                        "error": str(exc),
                        "retry": attempts - 1,
                    },
                )
                yield RunEvent(
                    type="task_failed",
                    run_id=run_id,
                    task_name=task.name,
                    data={"error": str(exc), "duration_ms": entry.duration_ms, "contained": not task.fail_on_error},
                )
                if task.fail_on_error:
                    final = exc.context if isinstance(exc, TaskError) and isinstance(exc.context, Context) else context
                    yield finish(RunStatus.failed, final, failed=task.name, error=str(exc))
                    return
                context = task.contain_failure(context, exc)
                continue

            changed = _changed_keys(context, updated)
            entry = TraceEntry(
                task_name=task.name,
                status=TaskStatus.succeeded,
                duration_ms=_elapsed_ms(task_started),
                output_summary=updated.slice(*changed).summary() if changed else {},
                attempts=attempts,
            )
            trace.append(entry)
            context = updated
            logger.info(
                "task completed",
                extra={
                    "event": "workflow.task.completed",
                    "op": task.name,
                    "duration_ms": entry.duration_ms,
                    "payload_preview": entry.output_summary,
                },
            )
            yield RunEvent(
                type="task_completed",
                run_id=run_id,
                task_name=task.name,
                data={"duration_ms": entry.duration_ms, "output": entry.output_summary},
            )

        try:
            for hook in definition.after_hooks:
                context = _coerce_context(hook(context), context)
        except Exception as exc:
            self._notify_error_hooks(definition, "after_all", exc, context)
            yield finish(RunStatus.failed, context, failed="after_all", error=str(exc))
            return

        self._enqueue_completion_jobs(definition, run_id)
        yield finish(RunStatus.completed, context)

    def _retry_manager(self, task: Task) -> RetryManager:
        return RetryManager(
            max_retries=task.retries + 1,
            base_delay=self._settings.retry_base_delay,
            max_delay=self._settings.retry_max_delay,
            backoff_factor=self._settings.retry_backoff_factor,
            retryable_errors=TASK_RETRYABLE_ERRORS,
            retry_if=is_retryable_task_error,
            sleep=self._sleep,
            op=task.name,
        )

    def _execute_task(self, task: Task, context: Context) -> Context:
        with bind_log_context(task_name=task.name):
            updated = task.execute(context)
        if not isinstance(updated, Context):
            raise TaskError(
                f"Task {task.name} returned {type(updated).__name__} instead of Context",
                task_name=task.name,
                context=context,
            )
        return updated

    def _notify_error_hooks(
        self, definition: WorkflowDefinition, task_name: str, error: BaseException, context: Context
    ) -> None:
        for hook in definition.error_hooks_for(task_name):
            try:
                hook(error, context)
            except Exception as exc:
                # 错误钩子自身失败不覆盖原始错误。
                logger.exception(
                    "error hook failed",
                    extra={"event": "workflow.hook.failed", "op": task_name, "error_type": type(exc).__name__},
                )

    def _enqueue_completion_jobs(self, definition: WorkflowDefinition, run_id: str) -> None:
        if not definition.completion_jobs:
            return
        if self._enqueuer is None:
            logger.warning(
                "completion jobs skipped without enqueuer",
                extra={
                    "event": "workflow.jobs.skipped",
                    "op": definition.name,
                    "payload_preview": [job.job_name for job in definition.completion_jobs],
                },
            )
            return
        for job in definition.completion_jobs:
            try:
                self._enqueuer.enqueue(job.job_name, run_id=run_id, workflow=definition.name, **job.kwargs)
            except Exception as exc:
                logger.error(
                    "completion job enqueue failed",
                    extra={
                        "event": "workflow.jobs.enqueue_failed",
                        "op": job.job_name,
                        "error_type": type(exc).__name__,
                        "error": str(exc),
                    },
                )
