"""弹性组件测试：验证指数退避重试、熔断器跳闸与恢复以及计数存储 TTL。"""

from __future__ import annotations

import pytest
import redis

from superagent.config import Settings
from superagent.domain.enums import CircuitState
from superagent.domain.errors import (
    CircuitOpenError,
    ConfigurationError,
    CounterStoreError,
    InvocationError,
    NetworkError,
)
from superagent.infra.cache.counter_store import (
    InMemoryCounterStore,
    RedisCounterStore,
    build_counter_store,
)
from superagent.infra.resilience.circuit_breaker import CircuitBreaker
from superagent.infra.resilience.retry import RetryManager


class _Clock:
    """可手动推进的时钟。"""

    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class _BrokenRedis:
    """所有操作都抛出连接错误的 Redis 桩对象。"""

    def get(self, key: str) -> None:
        raise redis.ConnectionError("down")

    def pipeline(self, transaction: bool = True) -> None:
        raise redis.ConnectionError("down")

    def set(self, *args: object, **kwargs: object) -> None:
        raise redis.ConnectionError("down")

    def delete(self, *keys: str) -> None:
        raise redis.ConnectionError("down")


def test_calculate_delay_is_capped_exponential() -> None:
    manager = RetryManager(base_delay=1, backoff_factor=2, max_delay=5)
    assert [manager.calculate_delay(attempt) for attempt in range(1, 5)] == [1, 2, 4, 5]


def test_with_retry_retries_only_retryable_errors() -> None:
    """网络错误按退避重试，业务错误立即上抛。"""
    sleeps: list[float] = []
    manager = RetryManager(max_retries=3, base_delay=0.5, sleep=sleeps.append)
    calls: list[int] = []

    def flaky() -> str:
        calls.append(1)
        if len(calls) < 3:
            raise NetworkError("reset")
        return "ok"

    assert manager.with_retry(flaky) == "ok"
    assert sleeps == [0.5, 1.0]

    def fatal() -> None:
        calls.append(1)
        raise InvocationError("bad request")

    calls.clear()
    with pytest.raises(InvocationError):
        manager.with_retry(fatal)
    assert len(calls) == 1


def test_retry_if_vetoes_retryable_error() -> None:
    manager = RetryManager(max_retries=3, retry_if=lambda error: "transient" in str(error), sleep=lambda _: None)

    assert manager.should_retry(NetworkError("transient reset"), 1)
    assert not manager.should_retry(NetworkError("dns failure"), 1)


def test_with_retry_raises_last_error_after_exhaustion() -> None:
    manager = RetryManager(max_retries=2, sleep=lambda _: None)
    errors = iter([NetworkError("first"), NetworkError("second")])

    def always_fails() -> None:
        raise next(errors)

    with pytest.raises(NetworkError, match="second"):
        manager.with_retry(always_fails)


def test_retry_manager_from_settings() -> None:
    settings = Settings(a2a_max_retries=5, retry_base_delay=2, retry_max_delay=10, retry_backoff_factor=3)
    manager = RetryManager.from_settings(settings)
    assert (manager.max_retries, manager.base_delay, manager.max_delay) == (5, 2, 10)
    assert RetryManager.from_settings(settings, max_retries=1).max_retries == 1


def _breaker(clock: _Clock, **kwargs: object) -> CircuitBreaker:
    return CircuitBreaker(
        "payments",
        InMemoryCounterStore(clock=clock),
        failure_threshold=3,
        recovery_timeout=60,
        clock=clock,
        **kwargs,
    )


def _fail() -> None:
    raise RuntimeError("down")


def test_breaker_opens_after_threshold_and_rejects_calls() -> None:
    clock = _Clock()
    breaker = _breaker(clock)

    for _ in range(3):
        with pytest.raises(RuntimeError):
            breaker.call(_fail)

    assert breaker.state is CircuitState.open
    assert breaker.failure_count == 3
    with pytest.raises(CircuitOpenError, match="payments"):
        breaker.call(lambda: "never")


def test_breaker_half_open_trial_closes_on_success() -> None:
    """恢复时间过后放行一次试探，成功即清零并闭合。"""
    clock = _Clock()
    breaker = _breaker(clock)
    for _ in range(3):
        with pytest.raises(RuntimeError):
            breaker.call(_fail)

    clock.now += 61
    assert breaker.should_attempt_reset()
    assert breaker.call(lambda: "ok") == "ok"

    assert breaker.state is CircuitState.closed
    assert breaker.failure_count == 0
    assert breaker.last_failure_time is None


def test_breaker_manual_transitions() -> None:
    clock = _Clock()
    breaker = _breaker(clock)
    for _ in range(3):
        breaker.record_failure()

    assert breaker.should_trip()
    assert not breaker.should_attempt_reset()
    clock.now += 61
    breaker.attempt_reset()
    assert breaker.is_half_open()
    breaker.record_success()
    assert breaker.is_closed()
    assert breaker.failure_count == 0


def test_breaker_half_open_trial_failure_reopens() -> None:
    clock = _Clock()
    breaker = _breaker(clock)
    for _ in range(3):
        with pytest.raises(RuntimeError):
            breaker.call(_fail)

    clock.now += 61
    with pytest.raises(RuntimeError):
        breaker.call(_fail)

    assert breaker.state is CircuitState.open
    assert breaker.snapshot().failure_count == 4
    with pytest.raises(CircuitOpenError):
        breaker.call(lambda: "still closed off")


def test_breaker_ignores_unexpected_errors() -> None:
    clock = _Clock()
    breaker = _breaker(clock, expected_errors=(NetworkError,))

    for _ in range(5):
        with pytest.raises(ValueError):
            breaker.call(lambda: int("x"))

    assert breaker.is_closed()


def test_breaker_fails_open_when_store_unavailable() -> None:
    """计数存储不可用时熔断器放行调用。"""
    breaker = CircuitBreaker("svc", RedisCounterStore(_BrokenRedis()), failure_threshold=1)

    assert breaker.call(lambda: 42) == 42
    with pytest.raises(RuntimeError):
        breaker.call(_fail)
    assert breaker.state is CircuitState.closed


def test_in_memory_store_expires_keys() -> None:
    clock = _Clock()
    store = InMemoryCounterStore(clock=clock)

    assert store.incr("hits", 10) == 1
    assert store.incr("hits", 10) == 2
    store.set("flag", "x", 5)
    clock.now += 6
    assert store.get("flag") is None
    assert store.get("hits") == 2
    store.expire("hits", 1)
    clock.now += 2
    assert store.get("hits") is None


def test_redis_store_wraps_errors() -> None:
    store = RedisCounterStore(_BrokenRedis())
    with pytest.raises(CounterStoreError, match="redis incr failed"):
        store.incr("k", 10)
    store.delete()


def test_build_counter_store_selects_backend() -> None:
    assert isinstance(build_counter_store(Settings(counter_store_backend="memory")), InMemoryCounterStore)
    with pytest.raises(ConfigurationError):
        build_counter_store(Settings(counter_store_backend="memcached"))
