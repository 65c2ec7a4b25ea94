"""日志上下文：基于 contextvars 透传 request/run/workflow/task 标识。"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Iterator

LOG_CONTEXT_FIELDS = ("request_id", "run_id", "workflow", "task_name")

_VARS: dict[str, ContextVar[str | None]] = {
    field: ContextVar(f"log_{field}", default=None) for field in LOG_CONTEXT_FIELDS
}


def get_log_context() -> dict[str, str]:
    """返回当前协程/线程已绑定（非空）的日志字段。"""
    values = {field: var.get() for field, var in _VARS.items()}
    return {field: value for field, value in values.items() if value is not None}


@contextmanager
def bind_log_context(**fields: str | None) -> Iterator[None]:
    """在 with 范围内绑定日志字段，退出时按相反顺序恢复；只接受 LOG_CONTEXT_FIELDS 中的键。"""
    unknown = set(fields) - set(_VARS)
    if unknown:
        raise TypeError(f"unknown log context fields: {', '.join(sorted(unknown))}")
    tokens: list[tuple[ContextVar[str | None], Token[str | None]]] = [
        (_VARS[field], _VARS[field].set(value)) for field, value in fields.items()
    ]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)
