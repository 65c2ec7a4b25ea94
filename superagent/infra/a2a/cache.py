"""代理卡片缓存：按 URL 缓存发现文档，带 TTL 与线程安全。"""

from __future__ import annotations

import threading
import time
from functools import lru_cache
from typing import Callable

from superagent.domain.a2a.agent_card import AgentCard


class AgentCardCache:
    """线程安全的 TTL 缓存；ttl 由调用方在读取时给出。"""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._items: dict[str, tuple[AgentCard, float]] = {}

    def get(self, key: str, *, ttl_seconds: float) -> AgentCard | None:
        with self._lock:
            item = self._items.get(key)
            if item is None:
                return None
            card, stored_at = item
            if self._clock() - stored_at >= ttl_seconds:
                del self._items[key]
                return None
            return card

    def set(self, key: str, card: AgentCard) -> None:
        with self._lock:
            self._items[key] = (card, self._clock())

    def contains(self, key: str, *, ttl_seconds: float) -> bool:
        return self.get(key, ttl_seconds=ttl_seconds) is not None

    def delete(self, key: str) -> None:
        with self._lock:
            self._items.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()

    def size(self) -> int:
        with self._lock:
            return len(self._items)


@lru_cache(maxsize=1)
def get_shared_card_cache() -> AgentCardCache:
    """进程级共享缓存，使每次任务执行新建的客户端也能复用发现结果。"""
    return AgentCardCache()
