"""工作流引擎测试：验证串行执行、失败隔离、重试、钩子、超时与完成作业投递。"""

from __future__ import annotations

from typing import Any

import pytest

from superagent.application.engine import WorkflowEngine
from superagent.application.enqueuer import RecordingJobEnqueuer
from superagent.config import Settings
from superagent.domain.a2a.agent_card import Capability
from superagent.domain.context import Context
from superagent.domain.enums import RunStatus, TaskStatus
from superagent.domain.errors import ConfigurationError, InvocationError
from superagent.domain.tasks.registry import TaskRegistry
from superagent.domain.workflow import WorkflowBuilder


class _EchoLlm:
    """把渲染后的提示词原样返回的 LLM 桩对象。"""

    def __init__(self) -> None:
        self.prompts: list[Any] = []

    def complete(self, prompt: Any, **params: Any) -> str:
        self.prompts.append(prompt)
        return prompt


def _settings() -> Settings:
    return Settings(retry_base_delay=0.01, retry_max_delay=0.01, workflow_timeout=300)


def _engine(**kwargs: Any) -> WorkflowEngine:
    return WorkflowEngine(_settings(), sleep=lambda _: None, **kwargs)


def _boom(ctx: Context) -> None:
    raise RuntimeError("boom")


def test_llm_task_renders_value_from_previous_task() -> None:
    """前一任务写入 x=2 后，LLM 任务应渲染出 "value is 2"。"""
    llm = _EchoLlm()
    registry = TaskRegistry(settings=_settings(), llm_factory=lambda provider: llm)
    definition = (
        WorkflowBuilder("render", task_registry=registry)
        .task("set_x", lambda ctx: {"x": 2})
        .llm("describe", "value is {{x}}", output="description")
        .build()
    )

    result = _engine().execute(definition)

    assert result.status is RunStatus.completed
    assert result.context.get("description") == "value is 2"
    assert llm.prompts == ["value is 2"]
    assert [entry.task_name for entry in result.trace] == ["set_x", "describe"]
    assert all(entry.status is TaskStatus.succeeded for entry in result.trace)


def test_events_follow_declaration_order() -> None:
    """事件序列应为 run_started、逐任务开始/完成、run_completed。"""
    definition = (
        WorkflowBuilder("events")
        .task("a", lambda ctx: {"a": 1})
        .task("b", lambda ctx: {"b": 2}, skip_if=lambda ctx: True)
        .task("c", lambda ctx: {"c": 3})
        .build()
    )

    events = list(_engine().iter_execute(definition, {"seed": 0}, run_id="run-1"))

    assert [(event.type, event.task_name) for event in events] == [
        ("run_started", None),
        ("task_started", "a"),
        ("task_completed", "a"),
        ("task_skipped", "b"),
        ("task_started", "c"),
        ("task_completed", "c"),
        ("run_completed", None),
    ]
    assert events[-1].is_terminal
    assert events[-1].result.run_id == "run-1"
    assert events[-1].result.context.to_dict() == {"seed": 0, "a": 1, "c": 3}


def test_failure_halts_run_by_default() -> None:
    """fail_on_error 默认开启，失败任务之后的任务不再执行。"""
    calls: list[str] = []
    definition = (
        WorkflowBuilder("halt")
        .task("first", lambda ctx: calls.append("first"))
        .task("broken", _boom)
        .task("never", lambda ctx: calls.append("never"))
        .build()
    )

    result = _engine().execute(definition)

    assert result.status is RunStatus.failed
    assert result.failed_task_name == "broken"
    assert "boom" in result.error
    assert calls == ["first"]
    assert [entry.task_name for entry in result.trace] == ["first", "broken"]


def test_contained_failure_records_marker_and_continues() -> None:
    """fail_on_error=False 时写入错误标记并继续后续任务。"""
    definition = (
        WorkflowBuilder("contain")
        .task("broken", _boom, fail_on_error=False, output="lookup")
        .task("after", lambda ctx: {"after": ctx.get("lookup", {}).get("failed")})
        .build()
    )

    result = _engine().execute(definition)

    assert result.completed
    marker = result.context.get("lookup")
    assert marker["failed"] is True
    assert "boom" in marker["error"]
    assert result.context.get("after") is True
    assert result.trace[0].status is TaskStatus.failed


def test_task_retries_until_success() -> None:
    attempts: list[int] = []

    def flaky(ctx: Context) -> dict[str, Any]:
        attempts.append(1)
        if len(attempts) < 3:
            raise RuntimeError("flaky")
        return {"ok": True}

    definition = WorkflowBuilder("retry").task("flaky", flaky, retries=2).build()

    result = _engine().execute(definition)

    assert result.completed
    assert result.context.get("ok") is True
    assert result.trace[0].attempts == 3


class _RemoteAgent:
    """只提供 echo 技能的 A2A 客户端桩对象，invoke_skill 可预设异常。"""

    def __init__(self, *, healthy: bool = True, error: Exception | None = None) -> None:
        self.healthy = healthy
        self.error = error
        self.invocations = 0

    def __enter__(self) -> _RemoteAgent:
        return self

    def __exit__(self, *_: object) -> None:
        return None

    def health_check(self) -> bool:
        return self.healthy

    def supports_skill(self, skill: str) -> bool:
        return skill == "echo"

    def list_capabilities(self) -> list[Capability]:
        return [Capability(name="echo", description="echo")]

    def invoke_skill(self, skill: str, parameters: dict[str, Any], **kwargs: Any) -> dict[str, Any]:
        self.invocations += 1
        if self.error is not None:
            raise self.error
        return {"status": "completed", "result": {"echo": parameters}}


def _remote_registry(agent: _RemoteAgent) -> TaskRegistry:
    return TaskRegistry(settings=_settings(), client_factory=lambda agent_url, **kwargs: agent)


def test_missing_skill_is_not_retried() -> None:
    """技能缺失属于确定性错误，即使配置了 retries 也只尝试一次。"""
    sleeps: list[float] = []
    definition = (
        WorkflowBuilder("remote", task_registry=_remote_registry(_RemoteAgent()))
        .a2a_agent("call", "http://agent.test", skill="missing", retries=3)
        .build()
    )

    result = WorkflowEngine(_settings(), sleep=sleeps.append).execute(definition)

    assert result.status is RunStatus.failed
    assert result.trace[0].attempts == 1
    assert sleeps == []
    assert "Available skills: echo" in result.error


def test_invocation_error_is_not_retried() -> None:
    agent = _RemoteAgent(error=InvocationError("bad request"))
    definition = (
        WorkflowBuilder("remote", task_registry=_remote_registry(agent))
        .a2a_agent("call", "http://agent.test", skill="echo", retries=2)
        .build()
    )

    result = _engine().execute(definition)

    assert result.status is RunStatus.failed
    assert agent.invocations == 1
    assert result.trace[0].attempts == 1


def test_unreachable_agent_is_retried() -> None:
    """网络类根因按 retries 重试。"""
    sleeps: list[float] = []
    definition = (
        WorkflowBuilder("remote", task_registry=_remote_registry(_RemoteAgent(healthy=False)))
        .a2a_agent("call", "http://agent.test", skill="echo", retries=2)
        .build()
    )

    result = WorkflowEngine(_settings(), sleep=sleeps.append).execute(definition)

    assert result.status is RunStatus.failed
    assert result.trace[0].attempts == 3
    assert len(sleeps) == 2
    assert "not reachable" in result.error


def test_contained_a2a_failure_writes_error_marker_and_continues() -> None:
    """A2A 任务 fail_on_error=False 时写入 a2a_error 标记，后续任务照常执行。"""
    agent = _RemoteAgent(error=InvocationError("remote exploded"))
    definition = (
        WorkflowBuilder("remote", task_registry=_remote_registry(agent))
        .a2a_agent("call", "http://agent.test", skill="echo", fail_on_error=False)
        .task("after", lambda ctx: {"after_ran": True})
        .build()
    )

    result = _engine().execute(definition)

    assert result.completed
    marker = result.context.get("a2a_error")
    assert marker["failed"] is True
    assert "remote exploded" in marker["error"]
    assert "timestamp" in marker
    assert result.context.get("after_ran") is True
    assert [entry.status for entry in result.trace] == [TaskStatus.failed, TaskStatus.succeeded]


def test_hooks_run_and_error_hooks_receive_failure() -> None:
    """前后钩子可改写上下文，错误钩子收到原始异常。"""
    seen: list[str] = []
    definition = (
        WorkflowBuilder("hooks")
        .before_all(lambda ctx: {"prepared": True})
        .task("check", lambda ctx: {"was_prepared": ctx.get("prepared")})
        .task("broken", _boom, fail_on_error=False)
        .after_all(lambda ctx: ctx.set("finished", True))
        .on_error(lambda exc, ctx: seen.append(f"task:{exc}"), task="broken")
        .on_error(lambda exc, ctx: seen.append("global"))
        .build()
    )

    result = _engine().execute(definition)

    assert result.completed
    assert result.context.get("was_prepared") is True
    assert result.context.get("finished") is True
    assert seen == ["task:Task broken failed: boom", "global"]


def test_failing_error_hook_does_not_mask_failure() -> None:
    def bad_hook(exc: BaseException, ctx: Context) -> None:
        raise ValueError("hook broke")

    definition = WorkflowBuilder("badhook").task("broken", _boom).on_error(bad_hook).build()

    result = _engine().execute(definition)

    assert result.failed_task_name == "broken"
    assert "boom" in result.error


def test_condition_error_fails_run() -> None:
    def explode(ctx: Context) -> bool:
        raise KeyError("flag")

    definition = WorkflowBuilder("cond").task("guarded", lambda ctx: None, run_if=explode).build()

    result = _engine().execute(definition)

    assert result.status is RunStatus.failed
    assert result.error.startswith("condition error")


def test_timeout_checked_between_tasks() -> None:
    """超过整体时限后不再启动下一个任务。"""
    now = [0.0]

    def slow(ctx: Context) -> None:
        now[0] += 10

    definition = WorkflowBuilder("slow").timeout(5).task("slow", slow).task("next", lambda ctx: {"x": 1}).build()

    result = _engine(clock=lambda: now[0]).execute(definition)

    assert result.status is RunStatus.failed
    assert result.failed_task_name == "next"
    assert "exceeded timeout" in result.error


def test_completion_jobs_enqueued_only_on_success() -> None:
    enqueuer = RecordingJobEnqueuer()
    ok = WorkflowBuilder("ok").task("a", lambda ctx: None).enqueue_on_complete("notify", channel="ops").build()
    bad = WorkflowBuilder("bad").task("a", _boom).enqueue_on_complete("notify").build()

    result = _engine(enqueuer=enqueuer).execute(ok, run_id="r1")
    _engine(enqueuer=enqueuer).execute(bad)

    assert result.completed
    assert enqueuer.jobs == [("notify", {"run_id": "r1", "workflow": "ok", "channel": "ops"})]


def test_invalid_task_config_raises_before_any_event() -> None:
    """配置错误在产出任何事件之前抛出。"""
    definition = WorkflowBuilder("invalid").llm("ask").build()

    with pytest.raises(ConfigurationError):
        next(_engine().iter_execute(definition))


def test_input_view_limits_handler_context() -> None:
    seen: dict[str, Any] = {}

    def handler(ctx: Context) -> dict[str, Any]:
        seen.update(ctx.to_dict())
        return {"done": True}

    definition = WorkflowBuilder("view").task("scoped", handler, input=["a"]).build()

    result = _engine().execute(definition, {"a": 1, "b": 2})

    assert seen == {"a": 1}
    assert result.context.to_dict() == {"a": 1, "b": 2, "done": True}
