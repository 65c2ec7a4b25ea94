"""重试管理：对白名单内的瞬时错误执行指数退避重试。"""

from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

import httpx

from superagent.config import Settings
from superagent.domain.errors import NetworkError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# 仅网络层瞬时错误可重试；业务错误（技能不存在、认证失败等）立即上抛。
DEFAULT_RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    NetworkError,
    httpx.TimeoutException,
    httpx.NetworkError,
    httpx.RemoteProtocolError,
)


class RetryManager:
    """指数退避重试器；max_retries 为总尝试次数上限。"""

    def __init__(
        self,
        *,
        max_retries: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 32.0,
        backoff_factor: float = 2.0,
        retryable_errors: tuple[type[BaseException], ...] = DEFAULT_RETRYABLE_ERRORS,
        retry_if: Callable[[BaseException], bool] | None = None,
        sleep: Callable[[float], None] = time.sleep,
        op: str = "retry",
    ) -> None:
        self.max_retries = max(1, int(max_retries))
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.backoff_factor = backoff_factor
        self.retryable_errors = retryable_errors
        self.retry_if = retry_if
        self._sleep = sleep
        self._op = op

    @classmethod
    def from_settings(cls, settings: Settings, *, max_retries: int | None = None, **kwargs) -> RetryManager:
        return cls(
            max_retries=settings.a2a_max_retries if max_retries is None else max_retries,
            base_delay=settings.retry_base_delay,
            max_delay=settings.retry_max_delay,
            backoff_factor=settings.retry_backoff_factor,
            **kwargs,
        )

    def calculate_delay(self, attempt: int) -> float:
        """第 attempt 次失败后的等待秒数，封顶 max_delay。"""
        return min(self.base_delay * (self.backoff_factor ** (attempt - 1)), self.max_delay)

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        if attempt >= self.max_retries:
            return False
        if not isinstance(error, self.retryable_errors):
            return False
        return self.retry_if is None or self.retry_if(error)

    def with_retry(self, fn: Callable[..., T], *args, **kwargs) -> T:
        """执行 fn；可重试错误按退避策略重试，耗尽后抛出最后一次错误。"""
        attempt = 0
        while True:
            attempt += 1
            try:
                return fn(*args, **kwargs)
            except Exception as exc:
                if not self.should_retry(exc, attempt):
                    raise
                delay = self.calculate_delay(attempt)
                logger.warning(
                    "retry scheduled",
                    extra={
                        "event": "retry.scheduled",
                        "op": self._op,
                        "retry": attempt,
                        "error_type": type(exc).__name__,
                        "error": str(exc),
                        "payload_preview": {"delay_seconds": delay, "max_retries": self.max_retries},
                    },
                )
                self._sleep(delay)
