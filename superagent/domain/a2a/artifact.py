"""A2A 产物模型：带大小与 SHA-256 校验和的命名输出单元。"""

from __future__ import annotations

import hashlib
import json
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, ClassVar, Mapping

from superagent.domain.a2a.agent_card import utc_now_iso


@dataclass(slots=True)
class Artifact:
    """产物基类；size 与 checksum 由序列化后的内容计算。"""
    kind: ClassVar[str] = "artifact"
    name: str
    content: Any = None
    description: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=utc_now_iso)
    updated_at: str = field(default_factory=utc_now_iso)
    size: int | None = None
    checksum: str | None = None

    def __post_init__(self) -> None:
        if self.content is not None and self.checksum is None:
            self._refresh_digest()

    @property
    def type(self) -> str:
        return self.kind

    def serialized_content(self) -> str:
        if self.content is None:
            return ""
        return str(self.content)

    def compute_checksum(self) -> str | None:
        if self.content is None:
            return None
        return hashlib.sha256(self.serialized_content().encode("utf-8")).hexdigest()

    def _refresh_digest(self) -> None:
        self.size = len(self.serialized_content().encode("utf-8"))
        self.checksum = self.compute_checksum()

    def update_content(self, content: Any) -> None:
        self.content = content
        self.updated_at = utc_now_iso()
        self._refresh_digest()

    def validate_checksum(self) -> bool:
        if self.content is None or self.checksum is None:
            return False
        return self.compute_checksum() == self.checksum

    def is_empty(self) -> bool:
        return self.content is None or (hasattr(self.content, "__len__") and len(self.content) == 0)

    def validation_errors(self) -> list[str]:
        errors: list[str] = []
        if not self.id:
            errors.append("id can't be blank")
        if not self.name:
            errors.append("name can't be blank")
        return errors

    def to_dict(self) -> dict[str, Any]:
        payload = {
            "id": self.id,
            "type": self.type,
            "name": self.name,
            "description": self.description,
            "content": self.serialized_content() if self.content is not None else None,
            "metadata": self.metadata,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "size": self.size,
            "checksum": self.checksum,
        }
        return {key: value for key, value in payload.items() if value is not None}

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> Artifact:
        """按 type 分派到具体产物类型；未知类型落到 GenericArtifact。"""
        artifact_cls = _ARTIFACT_TYPES.get(str(data.get("type")), GenericArtifact)
        kwargs: dict[str, Any] = {
            "name": data.get("name") or "",
            "content": data.get("content"),
            "description": data.get("description"),
            "metadata": dict(data.get("metadata") or {}),
            "size": data.get("size"),
            "checksum": data.get("checksum"),
        }
        for attr, key in (("id", "id"), ("created_at", "createdAt"), ("updated_at", "updatedAt")):
            if data.get(key):
                kwargs[attr] = data[key]
        if artifact_cls is CodeArtifact and data.get("language"):
            kwargs["language"] = data["language"]
        if artifact_cls is ImageArtifact:
            for attr in ("width", "height", "format"):
                if data.get(attr) is not None:
                    kwargs[attr] = data[attr]
        artifact = artifact_cls(**kwargs)
        if isinstance(artifact, GenericArtifact):
            artifact.raw_type = str(data.get("type") or "artifact")
        return artifact


@dataclass(slots=True)
class GenericArtifact(Artifact):
    """未识别类型的产物。"""
    raw_type: str = "artifact"

    @property
    def type(self) -> str:
        return self.raw_type


@dataclass(slots=True)
class DocumentArtifact(Artifact):
    """文本文档产物。"""
    kind: ClassVar[str] = "document"

    def word_count(self) -> int:
        return len(self.content.split()) if isinstance(self.content, str) else 0

    def line_count(self) -> int:
        return len(self.content.splitlines()) if isinstance(self.content, str) else 0

    def extract_headings(self) -> list[str]:
        if not isinstance(self.content, str):
            return []
        return re.findall(r"^#+\s+(.+)$", self.content, flags=re.MULTILINE)


@dataclass(slots=True)
class DataArtifact(Artifact):
    """结构化数据产物；字符串内容按 JSON 解析。"""
    kind: ClassVar[str] = "data"

    def serialized_content(self) -> str:
        if self.content is None:
            return ""
        if isinstance(self.content, str):
            return self.content
        return json.dumps(self.content, ensure_ascii=False, sort_keys=True)

    @property
    def parsed_content(self) -> Any:
        if isinstance(self.content, str):
            try:
                return json.loads(self.content)
            except json.JSONDecodeError:
                return self.content
        return self.content


@dataclass(slots=True)
class ImageArtifact(Artifact):
    """图片产物，内容通常为 base64 文本。"""
    kind: ClassVar[str] = "image"
    width: int | None = None
    height: int | None = None
    format: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = Artifact.to_dict(self)
        for attr in ("width", "height", "format"):
            value = getattr(self, attr)
            if value is not None:
                payload[attr] = value
        return payload


@dataclass(slots=True)
class CodeArtifact(Artifact):
    """源代码产物。"""
    kind: ClassVar[str] = "code"
    language: str | None = None

    def to_dict(self) -> dict[str, Any]:
        payload = Artifact.to_dict(self)
        if self.language:
            payload["language"] = self.language
        return payload


_ARTIFACT_TYPES: dict[str, type[Artifact]] = {
    "document": DocumentArtifact,
    "data": DataArtifact,
    "image": ImageArtifact,
    "code": CodeArtifact,
}
