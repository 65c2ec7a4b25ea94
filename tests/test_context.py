"""上下文测试：验证不可变写操作、查询、校验与脱敏展示。"""

from __future__ import annotations

import pytest

from superagent.domain.context import FILTERED_PLACEHOLDER, PRIVATE_PLACEHOLDER, Context
from superagent.domain.errors import MissingContextKeyError, TypeMismatchError


def test_set_returns_new_context_and_keeps_original() -> None:
    """写操作应返回新实例，原实例保持不变。"""
    original = Context({"a": 1})

    updated = original.set("b", 2).merge({"c": 3})

    assert original.to_dict() == {"a": 1}
    assert updated.to_dict() == {"a": 1, "b": 2, "c": 3}


def test_merge_safe_drops_none_values() -> None:
    ctx = Context({"a": 1}).merge_safe({"a": None, "b": 2})
    assert ctx.to_dict() == {"a": 1, "b": 2}


def test_slice_and_without_keep_private_keys() -> None:
    """切片与剔除后私有键声明应保留。"""
    ctx = Context({"token": "secret", "x": 1, "y": 2}, private_keys=["token"])

    sliced = ctx.slice("token", "x", "missing")
    trimmed = ctx.without("y")

    assert sliced.to_dict() == {"token": "secret", "x": 1}
    assert sliced.private_keys == ("token",)
    assert trimmed.private_keys == ("token",)
    assert "y" not in trimmed


def test_transform_skips_missing_key() -> None:
    ctx = Context({"n": 2})
    assert ctx.transform("n", lambda value: value * 10).get("n") == 20
    assert ctx.transform("missing", lambda value: value * 10) is ctx


def test_fetch_and_first_value_treat_blank_as_missing() -> None:
    """空白字符串与空集合视为缺失。"""
    ctx = Context({"empty": "  ", "none": None, "items": [], "name": "alice"})

    assert ctx.fetch("none", "fallback") == "fallback"
    assert ctx.first_present("empty", "items", "name") == "name"
    assert ctx.first_value("empty", "none", "name") == "alice"
    assert ctx.present_keys() == ["name"]


def test_dig_walks_mappings_and_sequences() -> None:
    ctx = Context({"user": {"profile": {"tags": ["a", "b"]}}})

    assert ctx.dig("user", "profile", "tags", 1) == "b"
    assert ctx.dig("user", "profile", "tags", 5) is None
    assert ctx.dig("user", "missing", "tags") is None


def test_validate_presence_lists_all_missing_keys() -> None:
    """缺失键应一次性全部列出。"""
    ctx = Context({"a": "x", "b": ""})

    with pytest.raises(MissingContextKeyError) as exc_info:
        ctx.validate_presence("a", "b", "c")

    assert exc_info.value.missing_keys == ["b", "c"]


def test_validate_types_skips_none_and_collects_mismatches() -> None:
    ctx = Context({"count": "3", "ratio": 0.5, "maybe": None})

    ctx.validate_types(ratio=(int, float), maybe=int)
    with pytest.raises(TypeMismatchError) as exc_info:
        ctx.validate_types(count=int, ratio=str)

    assert set(exc_info.value.mismatches) == {"count", "ratio"}


def test_summary_hides_private_and_truncates_large_values() -> None:
    """展示摘要中私有键应隐藏，长字符串与大集合截断。"""
    ctx = Context(
        {"api_key": "sk-123", "text": "x" * 80, "items": [1, 2, 3, 4], "small": {"a": 1}},
        private_keys=["api_key"],
    )

    summary = ctx.summary()

    assert summary["api_key"] == PRIVATE_PLACEHOLDER
    assert summary["text"] == "x" * 50 + "..."
    assert summary["items"] == "[List with 4 items]"
    assert summary["small"] == {"a": 1}
    assert ctx.filtered_for_logging()["api_key"] == FILTERED_PLACEHOLDER
    assert ctx.to_dict()["api_key"] == "sk-123"


def test_stats_and_equality() -> None:
    ctx = Context({"a": 1, "b": "", "c": "x"}, private_keys=["c"])

    stats = ctx.stats()

    assert stats["total_keys"] == 3
    assert stats["present_keys"] == 2
    assert stats["private_keys"] == 1
    assert stats["data_types"] == {"int": 1, "str": 2}
    assert ctx == Context({"a": 1, "b": "", "c": "x"})
    assert len({Context({"a": 1}), Context({"a": 1})}) == 1
