"""日志测试：验证上下文绑定、凭据脱敏、JSON 行格式与 DEBUG 路由。"""

from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from superagent.config import Settings
from superagent.infra.logging.context import bind_log_context, get_log_context
from superagent.infra.logging.setup import (
    DebugRoutingFilter,
    StructuredJsonFormatter,
    configure_logging,
    redact_text,
    render_payload_preview,
    shutdown_logging,
)


def _record(level: int = logging.INFO, name: str = "superagent.test", **extra: object) -> logging.LogRecord:
    record = logging.LogRecord(name, level, __file__, 1, "hello %s", ("world",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_bind_log_context_nests_and_restores() -> None:
    with bind_log_context(run_id="r1", workflow="wf"):
        with bind_log_context(task_name="t1"):
            assert get_log_context() == {"run_id": "r1", "workflow": "wf", "task_name": "t1"}
        assert "task_name" not in get_log_context()
    assert get_log_context() == {}

    with pytest.raises(TypeError, match="job_id"):
        with bind_log_context(job_id="x"):
            pass


def test_redact_text_modes() -> None:
    """standard 遮蔽凭据值，strict 连键名一起遮蔽，off 原样保留。"""
    text = 'Authorization: Bearer abcdef123456 api_key=sk-live-1 {"password": "hunter2"}'

    standard = redact_text(text, "standard")

    assert "abcdef123456" not in standard
    assert "sk-live-1" not in standard
    assert "hunter2" not in standard
    assert "api_key=***" in standard
    assert "password" not in redact_text(text, "strict")
    assert redact_text(text, "off") == text
    assert redact_text(None, "standard") is None


def test_payload_preview_truncates() -> None:
    preview = render_payload_preview({"text": "x" * 50}, max_chars=20, redaction_mode="standard")
    assert preview.endswith("...(truncated)")
    assert len(preview) == 20 + len("...(truncated)")


def test_formatter_emits_context_and_numeric_fields() -> None:
    formatter = StructuredJsonFormatter(process_role="api", redaction_mode="standard", payload_preview_chars=100)
    record = _record(event="workflow.task.completed", run_id="r9", duration_ms="12.5", op="normalize")

    entry = json.loads(formatter.format(record))

    assert entry["message"] == "hello world"
    assert entry["service"] == "superagent"
    assert entry["run_id"] == "r9"
    assert entry["duration_ms"] == 12.5
    assert entry["op"] == "normalize"
    assert entry["ts"].endswith("Z")


def test_debug_routing_by_module_and_run_id() -> None:
    routing = DebugRoutingFilter(
        min_level=logging.INFO, debug_modules={"superagent.infra"}, debug_run_ids={"run-debug"}
    )

    assert routing.filter(_record(logging.WARNING))
    assert not routing.filter(_record(logging.DEBUG))
    assert routing.filter(_record(logging.DEBUG, name="superagent.infra.a2a.client"))
    assert routing.filter(_record(logging.DEBUG, run_id="run-debug"))
    with bind_log_context(run_id="run-debug"):
        assert routing.filter(_record(logging.DEBUG))


def test_configure_logging_writes_json_lines(tmp_path: Path) -> None:
    """日志经队列写入 <log_dir>/<role>.jsonl，上下文字段被固化到记录上。"""
    log_file = configure_logging(Settings(log_dir=tmp_path), process_role="api")
    try:
        with bind_log_context(request_id="req-1"):
            logging.getLogger("superagent.test").info("started", extra={"event": "test.started"})
    finally:
        shutdown_logging()

    lines = [json.loads(line) for line in log_file.read_text(encoding="utf-8").splitlines()]
    assert log_file == tmp_path / "api.jsonl"
    assert any(line["event"] == "test.started" and line["request_id"] == "req-1" for line in lines)
