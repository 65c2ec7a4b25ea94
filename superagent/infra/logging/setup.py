"""日志初始化：JSON 行结构、队列异步写入、凭据脱敏与按模块/运行 ID 放行 DEBUG。"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import datetime, timezone
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path
from queue import SimpleQueue
from typing import Any

from superagent.config import Settings
from superagent.infra.logging.context import LOG_CONTEXT_FIELDS, get_log_context

SERVICE_NAME = "superagent"

_listener: QueueListener | None = None
_queue_handler: QueueHandler | None = None

_SENSITIVE_KEYS = ("authorization", "x-api-key", "api_key", "apikey", "access_token", "password", "token", "secret")
_BEARER = re.compile(r"(?i)\b(bearer|basic)\s+[A-Za-z0-9._~+/=-]{6,}")
_KEY_VALUE = re.compile(
    r"(?i)(\"?(?:%s)\"?\s*[:=]\s*\"?)([^\s,;\"}]+)" % "|".join(re.escape(key) for key in _SENSITIVE_KEYS)
)
_STRICT_KEYS = re.compile(r"(?i)\b(?:%s)\w*" % "|".join(re.escape(key) for key in _SENSITIVE_KEYS))

# 结构化 extra 字段；数值字段写入前统一转换。
_EXTRA_FIELDS = ("external_service", "op", "error_type")
_NUMERIC_FIELDS = ("duration_ms", "status_code", "retry")

_QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "celery": logging.INFO,
}


def redact_text(value: Any, mode: str) -> str | None:
    """off 原样返回；standard 遮蔽认证头与 key=value 凭据；strict 额外遮蔽敏感键名本身。"""
    if value is None:
        return None
    text = str(value)
    mode = mode.lower()
    if mode == "off":
        return text
    text = _BEARER.sub(lambda match: f"{match.group(1)} ***", text)
    text = _KEY_VALUE.sub(r"\1***", text)
    if mode == "strict":
        text = _STRICT_KEYS.sub("[redacted-key]", text)
    return text


def render_payload_preview(payload: Any, *, max_chars: int, redaction_mode: str) -> str | None:
    if payload is None:
        return None
    serialized = payload if isinstance(payload, str) else json.dumps(
        payload, ensure_ascii=False, sort_keys=True, default=str
    )
    redacted = redact_text(serialized, redaction_mode) or ""
    if len(redacted) > max_chars:
        return f"{redacted[:max_chars]}...(truncated)"
    return redacted


def _as_number(value: Any) -> int | float | None:
    if value is None or isinstance(value, (int, float)):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class DebugRoutingFilter(logging.Filter):
    """低于阈值的记录默认丢弃；DEBUG 可按模块前缀或运行 ID 单独放行。"""

    def __init__(self, *, min_level: int, debug_modules: set[str], debug_run_ids: set[str]) -> None:
        super().__init__()
        self.min_level = min_level
        self.debug_modules = debug_modules
        self.debug_run_ids = debug_run_ids

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= self.min_level:
            return True
        if record.levelno != logging.DEBUG:
            return False
        name = record.name
        if any(name == module or name.startswith(f"{module}.") for module in self.debug_modules):
            return True
        run_id = getattr(record, "run_id", None) or get_log_context().get("run_id")
        return run_id in self.debug_run_ids


class ContextInjectionFilter(logging.Filter):
    """入队前把当前线程的 request_id/run_id/workflow/task_name 固化到记录上。"""

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in get_log_context().items():
            if getattr(record, key, None) is None:
                setattr(record, key, value)
        return True


class StructuredJsonFormatter(logging.Formatter):
    """每条记录输出一行 JSON，消息、错误与 payload_preview 均经过脱敏。"""

    def __init__(self, *, process_role: str, redaction_mode: str, payload_preview_chars: int) -> None:
        super().__init__()
        self.process_role = process_role
        self.redaction_mode = redaction_mode
        self.payload_preview_chars = payload_preview_chars

    def _error_text(self, record: logging.LogRecord) -> str | None:
        error = getattr(record, "error", None)
        if error is None and record.exc_info:
            error = self.formatException(record.exc_info)
        return redact_text(error, self.redaction_mode)

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry: dict[str, Any] = {
            "ts": timestamp.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "service": SERVICE_NAME,
            "process_role": self.process_role,
            "module": record.name,
            "event": getattr(record, "event", None),
            "message": redact_text(record.getMessage(), self.redaction_mode),
        }
        entry.update({key: getattr(record, key, None) for key in LOG_CONTEXT_FIELDS})
        entry.update({key: getattr(record, key, None) for key in _EXTRA_FIELDS})
        entry.update({key: _as_number(getattr(record, key, None)) for key in _NUMERIC_FIELDS})
        entry["error"] = self._error_text(record)
        entry["payload_preview"] = render_payload_preview(
            getattr(record, "payload_preview", None),
            max_chars=self.payload_preview_chars,
            redaction_mode=self.redaction_mode,
        )
        return json.dumps(entry, ensure_ascii=False, default=str)


def log_file_for(settings: Settings, process_role: str) -> Path:
    """api 与 worker 各写一个 JSONL 文件：<log_dir>/<role>.jsonl。"""
    log_dir = Path(settings.log_dir)
    if not log_dir.is_absolute():
        log_dir = Path.cwd() / log_dir
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir / f"{process_role}.jsonl"


def configure_logging(settings: Settings, *, process_role: str) -> Path:
    """根日志器只挂一个队列处理器，由后台监听线程写文件与 stderr（仅 ERROR）。"""
    global _listener, _queue_handler
    shutdown_logging()

    log_file = log_file_for(settings, process_role)
    formatter = StructuredJsonFormatter(
        process_role=process_role,
        redaction_mode=settings.log_redaction_mode,
        payload_preview_chars=settings.log_payload_preview_chars,
    )
    file_handler = RotatingFileHandler(
        log_file, maxBytes=settings.log_max_bytes, backupCount=settings.log_backup_count, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.ERROR)
    stderr_handler.setFormatter(formatter)

    records: SimpleQueue[logging.LogRecord] = SimpleQueue()
    _queue_handler = QueueHandler(records)
    _queue_handler.addFilter(ContextInjectionFilter())
    _queue_handler.addFilter(
        DebugRoutingFilter(
            min_level=getattr(logging, settings.log_level.upper(), logging.INFO),
            debug_modules=set(settings.log_debug_modules_list()),
            debug_run_ids=set(settings.log_debug_run_ids_list()),
        )
    )

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    root.addHandler(_queue_handler)
    for name, level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(level)

    _listener = QueueListener(records, file_handler, stderr_handler, respect_handler_level=True)
    _listener.start()
    return log_file


def shutdown_logging() -> None:
    """摘下队列处理器并停止监听线程，剩余记录写完后关闭文件。"""
    global _listener, _queue_handler
    if _queue_handler is not None:
        logging.getLogger().removeHandler(_queue_handler)
        _queue_handler = None
    if _listener is None:
        return
    listener, _listener = _listener, None
    listener.stop()
    for handler in listener.handlers:
        handler.close()
