"""消息与产物测试：验证分片类型分派、校验规则、文件元数据补全与产物校验和。"""

from __future__ import annotations

from pathlib import Path

from superagent.domain.a2a.artifact import (
    Artifact,
    CodeArtifact,
    DataArtifact,
    DocumentArtifact,
    GenericArtifact,
    ImageArtifact,
)
from superagent.domain.a2a.message import DataPart, FilePart, Message, Part, TextPart, UnknownPart


def test_message_from_dict_dispatches_part_types() -> None:
    """按 type 标签还原分片，未知类型保留原始标签。"""
    message = Message.from_dict(
        {
            "id": "m-1",
            "role": "agent",
            "parts": [
                {"type": "text", "content": "hello"},
                {"type": "data", "data": {"k": 1}},
                {"type": "file", "filePath": "/missing/report.pdf", "contentType": "application/pdf"},
                {"type": "video", "metadata": {"codec": "h264"}},
            ],
        }
    )

    text, data, file_part, unknown = message.parts
    assert isinstance(text, TextPart)
    assert isinstance(data, DataPart) and data.encoding == "json"
    assert isinstance(file_part, FilePart) and file_part.content_type == "application/pdf"
    assert isinstance(unknown, UnknownPart)
    assert unknown.to_dict() == {"type": "video", "metadata": {"codec": "h264"}}
    assert message.id == "m-1"
    assert message.text_content() == "hello"
    assert message.data_content() == [{"k": 1}]
    assert message.file_attachments() == [file_part]


def test_message_validation_lists_part_errors() -> None:
    message = Message(role="robot", parts=[TextPart(content=""), DataPart(data=None)])

    assert message.validation_errors() == [
        "role is not included in the list: robot",
        "part at index 0: content can't be blank",
        "part at index 1: data can't be blank",
    ]
    assert Message(role="user").validation_errors() == ["parts can't be blank"]


def test_data_part_checks_schema_type_and_encoding() -> None:
    assert DataPart(data=[1], schema={"type": "object"}).validation_errors() == ["data must be an object"]
    assert DataPart(data={}, schema={"type": "array"}).validation_errors() == ["data must be an array"]
    assert DataPart(data={"a": 1}, encoding="xml").validation_errors() == ["unsupported encoding: xml"]
    assert DataPart(data={"a": 1}, schema={"type": "object"}).validation_errors() == []


def test_file_part_fills_metadata_from_local_file(tmp_path: Path) -> None:
    """本地文件存在时补全文件名、大小与 MIME 类型。"""
    target = tmp_path / "notes.txt"
    target.write_text("abc", encoding="utf-8")

    part = FilePart(file_path=str(target))

    assert part.filename == "notes.txt"
    assert part.size == 3
    assert part.content_type == "text/plain"
    assert part.read_content() == b"abc"
    assert not part.is_image()
    assert Part.from_dict(part.to_dict()).to_dict() == part.to_dict()


def test_message_constructors_and_text_helpers() -> None:
    message = Message.text_message("one two three")
    message.add_text_part("four")

    assert message.role == "user"
    assert message.text_content() == "one two three\nfour"
    assert message.parts[0].word_count() == 3
    assert TextPart(content="x" * 20).truncate(10) == "xxxxxxx..."
    assert Message.data_message({"a": 1}).role == "agent"


def test_artifact_checksum_and_size() -> None:
    artifact = DocumentArtifact(name="doc", content="# One\ntext\n## Two")

    assert artifact.size == len("# One\ntext\n## Two")
    assert artifact.validate_checksum()
    assert artifact.extract_headings() == ["One", "Two"]
    assert artifact.line_count() == 3

    previous = artifact.checksum
    artifact.update_content("changed")
    assert artifact.checksum != previous
    assert artifact.validate_checksum()


def test_tampered_checksum_detected() -> None:
    data = DataArtifact(name="d", content={"b": 1, "a": 2}).to_dict()
    data["checksum"] = "0" * 64

    restored = Artifact.from_dict(data)

    assert isinstance(restored, DataArtifact)
    assert restored.parsed_content == {"a": 2, "b": 1}
    assert not restored.validate_checksum()


def test_artifact_from_dict_dispatch() -> None:
    """按 type 分派具体产物，附加字段随类型保留。"""
    code = Artifact.from_dict({"type": "code", "name": "snippet", "content": "print(1)", "language": "python"})
    image = Artifact.from_dict({"type": "image", "name": "logo", "content": "aGk=", "width": 10, "format": "png"})
    other = Artifact.from_dict({"type": "audio", "name": "clip"})

    assert isinstance(code, CodeArtifact) and code.to_dict()["language"] == "python"
    assert isinstance(image, ImageArtifact) and image.to_dict()["width"] == 10
    assert isinstance(other, GenericArtifact) and other.type == "audio"
    assert other.is_empty()
