"""外部计数存储：熔断器使用的原子 incr/expire 键值接口及其内存/Redis 实现。"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Protocol

import redis

from superagent.config import Settings
from superagent.domain.errors import ConfigurationError, CounterStoreError

logger = logging.getLogger(__name__)


class CounterStore(Protocol):
    """计数存储协议：所有写操作都带 TTL。"""

    def get(self, key: str) -> Any: ...

    def set(self, key: str, value: Any, ttl_seconds: int) -> None: ...

    def incr(self, key: str, ttl_seconds: int) -> int: ...

    def expire(self, key: str, ttl_seconds: int) -> None: ...

    def delete(self, *keys: str) -> None: ...


class InMemoryCounterStore:
    """进程内计数存储，供测试与单进程部署使用。"""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._items: dict[str, tuple[Any, float | None]] = {}

    def _live(self, key: str) -> tuple[Any, float | None] | None:
        item = self._items.get(key)
        if item is None:
            return None
        _, expires_at = item
        if expires_at is not None and expires_at <= self._clock():
            del self._items[key]
            return None
        return item

    def get(self, key: str) -> Any:
        with self._lock:
            item = self._live(key)
            return None if item is None else item[0]

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        with self._lock:
            self._items[key] = (value, self._clock() + ttl_seconds)

    def incr(self, key: str, ttl_seconds: int) -> int:
        with self._lock:
            item = self._live(key)
            value = int(item[0]) + 1 if item is not None else 1
            self._items[key] = (value, self._clock() + ttl_seconds)
            return value

    def expire(self, key: str, ttl_seconds: int) -> None:
        with self._lock:
            item = self._live(key)
            if item is not None:
                self._items[key] = (item[0], self._clock() + ttl_seconds)

    def delete(self, *keys: str) -> None:
        with self._lock:
            for key in keys:
                self._items.pop(key, None)


class RedisCounterStore:
    """Redis 计数存储；incr 与 expire 通过事务管道原子提交。"""

    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    @classmethod
    def from_url(cls, url: str) -> RedisCounterStore:
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def get(self, key: str) -> Any:
        try:
            return self._client.get(key)
        except redis.RedisError as exc:
            raise CounterStoreError(f"redis get failed: {exc}") from exc

    def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            self._client.set(key, value, ex=ttl_seconds)
        except redis.RedisError as exc:
            raise CounterStoreError(f"redis set failed: {exc}") from exc

    def incr(self, key: str, ttl_seconds: int) -> int:
        try:
            pipe = self._client.pipeline(transaction=True)
            pipe.incr(key)
            pipe.expire(key, ttl_seconds)
            value, _ = pipe.execute()
        except redis.RedisError as exc:
            raise CounterStoreError(f"redis incr failed: {exc}") from exc
        return int(value)

    def expire(self, key: str, ttl_seconds: int) -> None:
        try:
            self._client.expire(key, ttl_seconds)
        except redis.RedisError as exc:
            raise CounterStoreError(f"redis expire failed: {exc}") from exc

    def delete(self, *keys: str) -> None:
        if not keys:
            return
        try:
            self._client.delete(*keys)
        except redis.RedisError as exc:
            raise CounterStoreError(f"redis delete failed: {exc}") from exc

    def close(self) -> None:
        self._client.close()


def build_counter_store(settings: Settings) -> CounterStore:
    """按配置选择计数存储后端。"""
    backend = settings.counter_store_backend.lower()
    if backend == "memory":
        return InMemoryCounterStore()
    if backend == "redis":
        logger.info(
            "counter store configured",
            extra={"event": "counter_store.configured", "external_service": "redis", "op": "from_url"},
        )
        return RedisCounterStore.from_url(settings.redis_url)
    raise ConfigurationError(f"unsupported counter_store_backend: {settings.counter_store_backend}")
