"""工作流定义测试：验证构建器、条件合并、数据流检查与注册表技能定位。"""

from __future__ import annotations

import pytest

from superagent.domain.context import Context
from superagent.domain.errors import ConfigurationError
from superagent.domain.tasks.registry import TaskRegistry
from superagent.domain.workflow import (
    GLOBAL_ERROR_HOOK,
    WorkflowBuilder,
    WorkflowRegistry,
    build_workflow,
    combine_conditions,
    tasks_from_mapping,
    workflow_path,
)
from superagent.workflows import builtin


def _noop(ctx: Context) -> None:
    return None


def test_builder_keeps_declaration_order_and_metadata() -> None:
    """构建结果应保持任务声明顺序并带上描述、版本、时限与完成作业。"""
    definition = (
        WorkflowBuilder("Order Pipeline")
        .describe("handles orders")
        .version("2.1.0")
        .timeout(30)
        .task("load", _noop, output="order")
        .llm("classify", "Classify {{order}}", input=["order"], output="category")
        .task("store", _noop, input=["category"])
        .enqueue_on_complete("notify", channel="ops")
        .build()
    )

    assert definition.task_names() == ["load", "classify", "store"]
    assert definition.description == "handles orders"
    assert definition.version == "2.1.0"
    assert definition.timeout == 30
    assert definition.completion_jobs[0].job_name == "notify"
    assert definition.completion_jobs[0].kwargs == {"channel": "ops"}
    assert definition.find_task("classify").kind.value == "llm"


def test_duplicate_task_names_rejected() -> None:
    builder = WorkflowBuilder("dup").task("a", _noop).task("a", _noop)
    with pytest.raises(ConfigurationError, match="duplicate task names"):
        builder.build()


def test_non_positive_timeout_rejected() -> None:
    with pytest.raises(ConfigurationError):
        WorkflowBuilder("bad").timeout(0)


def test_combine_conditions_ands_all_predicates() -> None:
    """多个条件键应以逻辑与合并为单一谓词。"""
    config = {
        "run_if": lambda ctx: ctx.get("n", 0) > 1,
        "skip_when": ("mode", "dry"),
        "run_when": "enabled",
    }

    condition = combine_conditions(config)

    assert config == {}
    assert condition(Context({"n": 2, "mode": "live", "enabled": True})) is True
    assert condition(Context({"n": 2, "mode": "dry", "enabled": True})) is False
    assert condition(Context({"n": 0, "mode": "live", "enabled": True})) is False
    assert condition(Context({"n": 2, "mode": "live"})) is False


def test_combine_conditions_returns_none_without_predicates() -> None:
    assert combine_conditions({"output": "x"}) is None


def test_skip_if_negates_predicate() -> None:
    definition = WorkflowBuilder("w").task("t", _noop, skip_if=lambda ctx: ctx.get("skip")).build()
    task = definition.tasks[0]

    assert task.should_run(Context()) is True
    assert task.should_run(Context({"skip": True})) is False


def test_data_flow_problems_reports_unknown_inputs() -> None:
    """读取既非初始键也非上游产出的键时应报告。"""
    definition = (
        WorkflowBuilder("flow")
        .task("first", _noop, input=["text"], output="clean")
        .task("second", _noop, input=["clean", "lang", "region"])
        .build()
    )

    assert definition.data_flow_problems(["text"]) == ["second: missing inputs lang, region"]
    assert definition.data_flow_problems(["text", "lang", "region"]) == []


def test_error_hooks_for_includes_global_hooks() -> None:
    calls: list[str] = []
    definition = (
        WorkflowBuilder("hooks")
        .task("a", _noop)
        .on_error(lambda exc, ctx: calls.append("task"), task="a")
        .on_error(lambda exc, ctx: calls.append("global"))
        .build()
    )

    hooks = definition.error_hooks_for("a")
    for hook in hooks:
        hook(RuntimeError("x"), Context())

    assert calls == ["task", "global"]
    assert len(definition.error_hooks[GLOBAL_ERROR_HOOK]) == 1
    assert len(definition.error_hooks_for("other")) == 1


def test_registry_paths_and_skill_lookup() -> None:
    """注册表应支持按任务名与网关前缀能力名定位技能。"""
    registry = WorkflowRegistry()
    builtin.register(registry)

    assert set(registry.paths()) == {"text_tools", "summarize"}
    assert "text_tools" in registry
    assert "/text_tools/" in registry

    path, definition, task_name = registry.find_by_skill("word_count")
    assert (path, definition.name, task_name) == ("text_tools", "text_tools", "word_count")

    path, _, task_name = registry.find_by_skill("text_tools_keywords")
    assert (path, task_name) == ("text_tools", "keywords")

    assert registry.find_by_skill("unknown") is None
    with pytest.raises(KeyError, match="unknown workflow path"):
        registry.get("missing")


def test_workflow_path_slugifies_names() -> None:
    assert workflow_path("Customer Support Flow!") == "customer_support_flow"
    assert workflow_path("***") == "workflow"


def test_build_workflow_and_tasks_from_mapping() -> None:
    registry = TaskRegistry()
    tasks = tasks_from_mapping(
        {
            "echo": {"handler": lambda ctx: {"echoed": ctx.get("text")}},
            "ask": {"kind": "llm", "prompt": "hi"},
        },
        registry,
    )
    definition = build_workflow("mapped", lambda builder: [builder.add_task(task) for task in tasks])

    assert [task.kind.value for task in definition.tasks] == ["direct", "llm"]
    assert definition.name == "mapped"
