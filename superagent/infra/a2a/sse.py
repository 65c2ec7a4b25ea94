"""SSE 解析：将文本行流组装为类型化事件，并按全有或全无规则汇总结果。"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator

from superagent.domain.errors import InvocationError

COMPLETE_EVENTS = ("task_complete", "complete")


@dataclass(slots=True)
class StreamEvent:
    """一条 SSE 事件。"""
    event: str
    data: Any = None
    id: str | None = None

    @property
    def is_complete(self) -> bool:
        return self.event in COMPLETE_EVENTS

    @property
    def is_error(self) -> bool:
        return self.event == "error"

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"event": self.event, "data": self.data}
        if self.id is not None:
            payload["id"] = self.id
        return payload


def _parse_json(value: str) -> Any:
    """尽量将字符串解析为 JSON，失败时返回原始字符串。"""
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return value


def iter_sse_events(lines: Iterable[str]) -> Iterator[StreamEvent]:
    """持续读取 SSE 行并组装为事件；流结束时冲刷未以空行结束的事件。"""
    event_name: str | None = None
    event_id: str | None = None
    data_lines: list[str] = []
    for raw_line in lines:
        line = raw_line.rstrip("\r\n")
        if not line.strip():
            if data_lines or event_name:
                # SSE 以空行分隔事件，累积 data 行后统一组装 payload。
                yield StreamEvent(
                    event=event_name or "message",
                    data=_parse_json("\n".join(data_lines)) if data_lines else None,
                    id=event_id,
                )
            event_name, event_id, data_lines = None, None, []
            continue
        if line.startswith(":"):
            # 以冒号开头的是 SSE 注释帧，属于 keep-alive，可直接跳过。
            continue
        field_name, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if field_name == "event":
            event_name = value.strip()
        elif field_name == "data":
            data_lines.append(value)
        elif field_name == "id":
            event_id = value.strip()
    if data_lines or event_name:
        yield StreamEvent(
            event=event_name or "message",
            data=_parse_json("\n".join(data_lines)) if data_lines else None,
            id=event_id,
        )


def format_sse(event: str, data: Any, *, event_id: str | None = None) -> str:
    """将事件编码为 SSE 文本帧。"""
    lines = []
    if event_id is not None:
        lines.append(f"id: {event_id}")
    lines.append(f"event: {event}")
    payload = data if isinstance(data, str) else json.dumps(data, ensure_ascii=False, default=str)
    lines.extend(f"data: {chunk}" for chunk in payload.split("\n"))
    return "\n".join(lines) + "\n\n"


@dataclass(slots=True)
class StreamAccumulator:
    """流式结果汇总：完成事件浅合并结果，错误事件累积消息。"""
    result: dict[str, Any] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    events: int = 0

    def add(self, event: StreamEvent) -> None:
        self.events += 1
        data = event.data if isinstance(event.data, dict) else {}
        if event.is_complete:
            partial = data.get("result")
            if isinstance(partial, dict):
                self.result.update(partial)
            elif partial is not None:
                self.result["result"] = partial
        elif event.is_error:
            message = data.get("error") if data else event.data
            self.errors.append(str(message or "Unknown streaming error"))

    def finish(self) -> dict[str, Any]:
        """任一错误事件都使整体调用失败，即使已收到部分成功结果。"""
        if self.errors:
            raise InvocationError(f"Streaming errors: {', '.join(self.errors)}")
        return {"result": self.result, "status": "completed"}


def collect_stream_result(events: Iterable[StreamEvent]) -> dict[str, Any]:
    accumulator = StreamAccumulator()
    for event in events:
        accumulator.add(event)
    return accumulator.finish()
