"""工作流上下文：任务之间传递的不可变键值状态容器。"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable, Iterator, Mapping
from types import MappingProxyType
from typing import Any

from superagent.domain.errors import MissingContextKeyError, TypeMismatchError

PRIVATE_PLACEHOLDER = "[PRIVATE]"
FILTERED_PLACEHOLDER = "[FILTERED]"


def is_blank(value: Any) -> bool:
    """None、空白字符串与空集合均视为缺失。"""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, set, frozenset, dict)):
        return not value
    return False


def _type_name(expected: type | tuple[type, ...]) -> str:
    if isinstance(expected, tuple):
        return " | ".join(item.__name__ for item in expected)
    return expected.__name__


class Context(Mapping[str, Any]):
    """不可变上下文：所有写操作都返回新实例，原实例保持不变。"""

    __slots__ = ("_data", "_private_keys")

    def __init__(
        self,
        data: Mapping[str, Any] | None = None,
        *,
        private_keys: Iterable[str] = (),
        **kwargs: Any,
    ) -> None:
        merged = {str(key): value for key, value in (data or {}).items()}
        merged.update(kwargs)
        self._data: Mapping[str, Any] = MappingProxyType(merged)
        self._private_keys: tuple[str, ...] = tuple(dict.fromkeys(str(key) for key in private_keys))

    @property
    def private_keys(self) -> tuple[str, ...]:
        return self._private_keys

    def _derive(self, data: Mapping[str, Any]) -> Context:
        return Context(data, private_keys=self._private_keys)

    # 基础读写

    def get(self, key: str, default: Any = None) -> Any:
        """读取键值；缺失时返回 default，永不抛错。"""
        return self._data.get(str(key), default)

    def set(self, key: str, value: Any) -> Context:
        data = dict(self._data)
        data[str(key)] = value
        return self._derive(data)

    def merge(self, values: Mapping[str, Any]) -> Context:
        data = dict(self._data)
        data.update({str(key): value for key, value in values.items()})
        return self._derive(data)

    def merge_safe(self, values: Mapping[str, Any]) -> Context:
        """丢弃值为 None 的条目后再合并。"""
        return self.merge({key: value for key, value in values.items() if value is not None})

    def without(self, *keys: str) -> Context:
        excluded = {str(key) for key in keys}
        return self._derive({key: value for key, value in self._data.items() if key not in excluded})

    def slice(self, *keys: str) -> Context:
        wanted = [str(key) for key in keys]
        return self._derive({key: self._data[key] for key in wanted if key in self._data})

    def transform(self, key: str, fn: Callable[[Any], Any]) -> Context:
        value = self.get(key)
        if value is None:
            return self
        return self.set(key, fn(value))

    # 查询

    def fetch(self, key: str, default: Any = None) -> Any:
        value = self.get(key)
        return default if value is None else value

    def extract(self, *keys: str) -> list[Any]:
        return [self.get(key) for key in keys]

    def dig(self, *path: str | int) -> Any:
        """沿映射/序列逐层安全下钻，任一环节断开即返回 None。"""
        current: Any = self._data
        for step in path:
            if isinstance(current, Mapping):
                if step in current:
                    current = current[step]
                elif str(step) in current:
                    current = current[str(step)]
                else:
                    return None
            elif isinstance(current, (list, tuple)) and isinstance(step, int):
                if -len(current) <= step < len(current):
                    current = current[step]
                else:
                    return None
            else:
                current = getattr(current, str(step), None) if isinstance(step, str) else None
            if current is None:
                return None
        return current

    def has_key(self, key: str) -> bool:
        return str(key) in self._data

    def has_all(self, *keys: str) -> bool:
        return all(self.has_key(key) for key in keys)

    def has_any(self, *keys: str) -> bool:
        return any(self.has_key(key) for key in keys)

    def first_present(self, *keys: str) -> str | None:
        return next((key for key in keys if not is_blank(self.get(key))), None)

    def first_value(self, *keys: str) -> Any:
        key = self.first_present(*keys)
        return None if key is None else self.get(key)

    def select_keys(self, predicate: Callable[[str, Any], bool]) -> list[str]:
        return [key for key, value in self._data.items() if predicate(key, value)]

    def present_keys(self) -> list[str]:
        return [key for key, value in self._data.items() if not is_blank(value)]

    def keys(self):  # type: ignore[override]
        return list(self._data.keys())

    def is_empty(self) -> bool:
        return not self._data

    def to_dict(self) -> dict[str, Any]:
        """返回原始数据副本，私有键不做脱敏。"""
        return dict(self._data)

    # 校验

    def validate_presence(self, *keys: str) -> None:
        """任一键为空时抛出 MissingContextKeyError，并列出全部缺失键。"""
        missing = [str(key) for key in keys if is_blank(self.get(key))]
        if missing:
            raise MissingContextKeyError(missing)

    def validate_types(self, **specs: type | tuple[type, ...]) -> None:
        """校验类型；None 值跳过，所有不匹配项一次性汇总。"""
        mismatches: dict[str, tuple[str, str]] = {}
        for key, expected in specs.items():
            value = self.get(key)
            if value is None:
                continue
            if not isinstance(value, expected):
                mismatches[key] = (_type_name(expected), type(value).__name__)
        if mismatches:
            raise TypeMismatchError(mismatches)

    # 展示

    def filtered_for_logging(self) -> dict[str, Any]:
        return {
            key: FILTERED_PLACEHOLDER if key in self._private_keys else value for key, value in self._data.items()
        }

    def summary(self, max_length: int = 50) -> dict[str, Any]:
        """生成可展示摘要：私有键隐藏，长字符串与大集合截断。"""
        result: dict[str, Any] = {}
        for key, value in self._data.items():
            if key in self._private_keys:
                result[key] = PRIVATE_PLACEHOLDER
            elif isinstance(value, str) and len(value) > max_length:
                result[key] = f"{value[:max_length]}..."
            elif isinstance(value, (list, tuple)) and len(value) > 3:
                result[key] = f"[List with {len(value)} items]"
            elif isinstance(value, Mapping) and len(value) > 3:
                result[key] = f"[Dict with {len(value)} keys]"
            else:
                result[key] = value
        return result

    def stats(self) -> dict[str, Any]:
        data_types: dict[str, int] = {}
        for value in self._data.values():
            name = type(value).__name__
            data_types[name] = data_types.get(name, 0) + 1
        return {
            "total_keys": len(self._data),
            "present_keys": len(self.present_keys()),
            "private_keys": len(self._private_keys),
            "data_types": data_types,
        }

    def pretty(self, *, include_private: bool = False) -> str:
        data = self.to_dict() if include_private else self.filtered_for_logging()
        return json.dumps(data, ensure_ascii=False, indent=2, default=str)

    # 协议方法

    def __getitem__(self, key: str) -> Any:
        return self._data[str(key)]

    def __contains__(self, key: object) -> bool:
        return str(key) in self._data

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Context):
            return NotImplemented
        return dict(self._data) == dict(other._data)

    def __hash__(self) -> int:
        return hash(json.dumps(dict(self._data), sort_keys=True, default=repr))

    def __repr__(self) -> str:
        return f"Context(keys={list(self._data)})"
