"""A2A 消息与分片：Text/File/Data 三种带类型标签的内容单元。"""

from __future__ import annotations

import json
import mimetypes
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, ClassVar, Mapping

from superagent.domain.a2a.agent_card import utc_now_iso
from superagent.domain.enums import MessageRole


@dataclass(slots=True)
class Part:
    """消息分片基类；未知类型按原样保留 type 与 metadata。"""
    type: ClassVar[str] = "unknown"
    metadata: dict[str, Any] = field(default_factory=dict)

    def _specific(self) -> dict[str, Any]:
        return {}

    def validation_errors(self) -> list[str]:
        return []

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "metadata": self.metadata, **self._specific()}

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> Part:
        part_type = data.get("type")
        metadata = dict(data.get("metadata") or {})
        if part_type == "text":
            return TextPart(content=data.get("content", ""), metadata=metadata)
        if part_type == "file":
            return FilePart(
                file_path=data.get("filePath", ""),
                content_type=data.get("contentType"),
                size=data.get("size"),
                filename=data.get("filename"),
                metadata=metadata,
            )
        if part_type == "data":
            return DataPart(
                data=data.get("data"),
                schema=data.get("schema"),
                encoding=data.get("encoding") or "json",
                metadata=metadata,
            )
        return UnknownPart(raw_type=str(part_type), metadata=metadata)


@dataclass(slots=True)
class UnknownPart(Part):
    """无法识别类型的分片。"""
    raw_type: str = "unknown"

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.raw_type, "metadata": self.metadata}


@dataclass(slots=True)
class TextPart(Part):
    """纯文本分片。"""
    type: ClassVar[str] = "text"
    content: str = ""

    def _specific(self) -> dict[str, Any]:
        return {"content": self.content}

    def validation_errors(self) -> list[str]:
        return [] if self.content else ["content can't be blank"]

    def word_count(self) -> int:
        return len(self.content.split())

    def truncate(self, length: int = 100, suffix: str = "...") -> str:
        if len(self.content) <= length:
            return self.content
        return self.content[: length - len(suffix)] + suffix


@dataclass(slots=True)
class FilePart(Part):
    """文件引用分片；本地文件存在时自动补全文件名、大小与 MIME 类型。"""
    type: ClassVar[str] = "file"
    file_path: str = ""
    content_type: str | None = None
    size: int | None = None
    filename: str | None = None

    def __post_init__(self) -> None:
        path = Path(self.file_path) if self.file_path else None
        if path is None or not path.is_file():
            return
        self.size = path.stat().st_size
        self.filename = path.name
        if self.content_type is None:
            self.content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"

    def _specific(self) -> dict[str, Any]:
        fields = {
            "filePath": self.file_path,
            "contentType": self.content_type,
            "size": self.size,
            "filename": self.filename,
        }
        return {key: value for key, value in fields.items() if value is not None}

    def validation_errors(self) -> list[str]:
        return [] if self.file_path else ["file_path can't be blank"]

    def exists(self) -> bool:
        return bool(self.file_path) and Path(self.file_path).is_file()

    def read_content(self) -> bytes | None:
        return Path(self.file_path).read_bytes() if self.exists() else None

    def is_image(self) -> bool:
        return bool(self.content_type and self.content_type.startswith("image/"))


@dataclass(slots=True)
class DataPart(Part):
    """结构化数据分片，可附带 schema 描述。"""
    type: ClassVar[str] = "data"
    data: Any = None
    schema: dict[str, Any] | None = None
    encoding: str = "json"

    def _specific(self) -> dict[str, Any]:
        fields = {"data": self.data, "schema": self.schema, "encoding": self.encoding}
        return {key: value for key, value in fields.items() if value is not None}

    def validation_errors(self) -> list[str]:
        errors: list[str] = []
        if self.data is None:
            errors.append("data can't be blank")
        if self.encoding != "json":
            errors.append(f"unsupported encoding: {self.encoding}")
        expected = (self.schema or {}).get("type")
        if expected == "object" and not isinstance(self.data, dict):
            errors.append("data must be an object")
        elif expected == "array" and not isinstance(self.data, list):
            errors.append("data must be an array")
        return errors

    def serialized(self) -> str:
        return json.dumps(self.data, ensure_ascii=False)


@dataclass(slots=True)
class Message:
    """一条 A2A 消息：角色加有序分片列表。"""
    role: str
    parts: list[Part] = field(default_factory=list)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_now_iso)

    def validation_errors(self) -> list[str]:
        errors: list[str] = []
        if self.role not in {item.value for item in MessageRole}:
            errors.append(f"role is not included in the list: {self.role}")
        if not self.parts:
            errors.append("parts can't be blank")
        for index, part in enumerate(self.parts):
            if not isinstance(part, Part):
                errors.append(f"part at index {index} must be a Part instance")
                continue
            errors.extend(f"part at index {index}: {item}" for item in part.validation_errors())
        return errors

    def is_valid(self) -> bool:
        return not self.validation_errors()

    def add_part(self, part: Part) -> None:
        if not isinstance(part, Part):
            raise TypeError("part must be a Part instance")
        self.parts.append(part)
        self.timestamp = utc_now_iso()

    def add_text_part(self, text: str, *, metadata: dict[str, Any] | None = None) -> None:
        self.add_part(TextPart(content=text, metadata=metadata or {}))

    def add_data_part(self, data: Any, *, schema: dict[str, Any] | None = None) -> None:
        self.add_part(DataPart(data=data, schema=schema))

    def add_file_part(self, file_path: str, *, content_type: str | None = None) -> None:
        self.add_part(FilePart(file_path=file_path, content_type=content_type))

    def text_content(self) -> str:
        return "\n".join(part.content for part in self.parts if isinstance(part, TextPart))

    def data_content(self) -> list[Any]:
        return [part.data for part in self.parts if isinstance(part, DataPart)]

    def file_attachments(self) -> list[FilePart]:
        return [part for part in self.parts if isinstance(part, FilePart)]

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "parts": [part.to_dict() for part in self.parts],
            "metadata": self.metadata,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Message:
        kwargs: dict[str, Any] = {
            "role": data.get("role", ""),
            "parts": [Part.from_dict(item) for item in data.get("parts") or []],
            "metadata": dict(data.get("metadata") or {}),
        }
        if data.get("id"):
            kwargs["id"] = data["id"]
        if data.get("timestamp"):
            kwargs["timestamp"] = data["timestamp"]
        return cls(**kwargs)

    @classmethod
    def text_message(cls, text: str, *, role: str = MessageRole.user.value) -> Message:
        message = cls(role=role)
        message.add_text_part(text)
        return message

    @classmethod
    def data_message(
        cls, data: Any, *, role: str = MessageRole.agent.value, schema: dict[str, Any] | None = None
    ) -> Message:
        message = cls(role=role)
        message.add_data_part(data, schema=schema)
        return message

    @classmethod
    def file_message(
        cls, file_path: str, *, role: str = MessageRole.user.value, content_type: str | None = None
    ) -> Message:
        message = cls(role=role)
        message.add_file_part(file_path, content_type=content_type)
        return message
