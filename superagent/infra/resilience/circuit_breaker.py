"""熔断器：基于外部计数存储的失败阈值跳闸、半开试探与复位。"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, TypeVar

from superagent.config import Settings
from superagent.domain.enums import CircuitState
from superagent.domain.errors import CircuitOpenError, CounterStoreError
from superagent.infra.cache.counter_store import CounterStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

COUNTER_TTL_SECONDS = 60 * 60


@dataclass(slots=True)
class CircuitBreakerState:
    """熔断器状态快照。"""
    name: str
    failure_count: int
    last_failure_time: float | None
    state: CircuitState


class CircuitBreaker:
    """按名称（通常是作业类名）隔离的熔断器，计数存放在共享存储中。"""

    def __init__(
        self,
        name: str,
        store: CounterStore,
        *,
        failure_threshold: int = 5,
        recovery_timeout: float = 60,
        expected_errors: tuple[type[BaseException], ...] = (),
        counter_ttl: int = COUNTER_TTL_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_errors = expected_errors
        self._store = store
        self._counter_ttl = counter_ttl
        self._clock = clock
        self._half_open = False

    @classmethod
    def from_settings(cls, name: str, store: CounterStore, settings: Settings, **kwargs: Any) -> CircuitBreaker:
        kwargs.setdefault("failure_threshold", settings.circuit_breaker_failure_threshold)
        kwargs.setdefault("recovery_timeout", settings.circuit_breaker_recovery_timeout)
        return cls(name, store, **kwargs)

    @property
    def failures_key(self) -> str:
        return f"circuit_breaker:{self.name}:failures"

    @property
    def last_failure_key(self) -> str:
        return f"circuit_breaker:{self.name}:last_failure"

    def _store_call(self, op: str, fn: Callable[..., Any], *args: Any, default: Any = None) -> Any:
        """计数存储不可用时记录告警并放行（fail open）。"""
        try:
            return fn(*args)
        except CounterStoreError as exc:
            logger.warning(
                "circuit breaker store unavailable",
                extra={
                    "event": "circuit_breaker.store.unavailable",
                    "external_service": "counter_store",
                    "op": op,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            return default

    @property
    def failure_count(self) -> int:
        value = self._store_call("get", self._store.get, self.failures_key, default=None)
        return int(value) if value is not None else 0

    @property
    def last_failure_time(self) -> float | None:
        value = self._store_call("get", self._store.get, self.last_failure_key, default=None)
        return float(value) if value is not None else None

    @property
    def state(self) -> CircuitState:
        if self._half_open:
            return CircuitState.half_open
        if self.failure_count >= self.failure_threshold:
            return CircuitState.open
        return CircuitState.closed

    def is_open(self) -> bool:
        return self.state is CircuitState.open

    def is_closed(self) -> bool:
        return self.state is CircuitState.closed

    def is_half_open(self) -> bool:
        return self.state is CircuitState.half_open

    def should_trip(self) -> bool:
        return self.failure_count >= self.failure_threshold

    def should_attempt_reset(self) -> bool:
        if not self.is_open():
            return False
        last_failure = self.last_failure_time
        if last_failure is None:
            return True
        return self._clock() - last_failure > self.recovery_timeout

    def attempt_reset(self) -> None:
        self._half_open = True
        logger.info("circuit breaker half open", extra={"event": "circuit_breaker.half_open", "op": self.name})

    def record_success(self) -> None:
        was_recovering = self._half_open or self.failure_count > 0
        self._half_open = False
        self._store_call("delete", self._store.delete, self.failures_key, self.last_failure_key)
        if was_recovering:
            logger.info("circuit breaker closed", extra={"event": "circuit_breaker.closed", "op": self.name})

    def record_failure(self) -> None:
        self._half_open = False
        count = self._store_call("incr", self._store.incr, self.failures_key, self._counter_ttl, default=0)
        self._store_call("set", self._store.set, self.last_failure_key, self._clock(), self._counter_ttl)
        if count and count >= self.failure_threshold:
            logger.warning(
                "circuit breaker tripped",
                extra={
                    "event": "circuit_breaker.tripped",
                    "op": self.name,
                    "payload_preview": {"failure_count": count, "threshold": self.failure_threshold},
                },
            )

    def _counts_as_failure(self, error: BaseException) -> bool:
        if not self.expected_errors:
            return True
        return isinstance(error, self.expected_errors)

    def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """在熔断保护下执行 fn；打开且未到恢复时间时抛 CircuitOpenError。"""
        if self.is_open():
            if not self.should_attempt_reset():
                raise CircuitOpenError(self.name)
            self.attempt_reset()
        try:
            result = fn(*args, **kwargs)
        except Exception as exc:
            if self._counts_as_failure(exc):
                self.record_failure()
            raise
        self.record_success()
        return result

    def snapshot(self) -> CircuitBreakerState:
        return CircuitBreakerState(
            name=self.name,
            failure_count=self.failure_count,
            last_failure_time=self.last_failure_time,
            state=self.state,
        )
