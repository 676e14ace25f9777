"""指数退避 + 抖动的重试引擎。

每次尝试的状态流转：Pending -> Success | RetryableFailure -> Pending(等待后) | TerminalFailure。
尝试序号 0..max_retries；不可重试、已取消或已到最后一次时直接以分类后的错误结束。
"""

import asyncio
import random
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar

from dm_core.domain.exceptions import ServiceError, ServiceErrorKind
from dm_core.infrastructure.logging.logger import get_logger
from dm_core.resilience.cancellation import CancellationToken
from dm_core.resilience.classifier import classify_error

T = TypeVar("T")

logger = get_logger("retry")


@dataclass
class RetryPolicy:
    """重试参数，时间单位为秒。"""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    backoff_multiplier: float = 2.0
    jitter_ratio: float = 0.1

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            self.max_retries = 0

    def delay_for(self, attempt: int, jitter: float = 0.0) -> float:
        """第 attempt 次失败后的等待时间，jitter 取值 [0, 1)。"""

        exponential = self.base_delay * (self.backoff_multiplier ** attempt)
        return min(exponential + jitter * self.jitter_ratio * exponential, self.max_delay)


class RetryEngine:
    def __init__(
        self,
        policy: Optional[RetryPolicy] = None,
        sleep: Optional[Callable[[float, CancellationToken], Awaitable[None]]] = None,
        rng: Optional[random.Random] = None,
    ):
        self.policy = policy or RetryPolicy()
        self._sleep = sleep or _token_sleep
        self._rng = rng or random.Random()

    async def execute(
        self,
        operation: Callable[[CancellationToken], Awaitable[T]],
        *,
        token: Optional[CancellationToken] = None,
        context: str = "",
        max_retries: Optional[int] = None,
    ) -> T:
        token = token or CancellationToken()
        if max_retries is None:
            max_retries = self.policy.max_retries
        for attempt in range(max_retries + 1):
            try:
                result = await operation(token)
            except asyncio.CancelledError:
                raise
            except Exception as exc:  # noqa: BLE001 - 统一交给分类器
                error = classify_error(exc, context)
                if token.cancelled and not error.cancelled:
                    error = ServiceError.timeout(
                        f"Request cancelled: {token.reason}",
                        cancelled=True,
                        request_id=token.request_id,
                    )
                if not error.retryable or error.cancelled or attempt == max_retries:
                    logger.warning(
                        "Operation failed",
                        extra={"extra": {
                            "context": context,
                            "attempt": attempt + 1,
                            "max_retries": max_retries,
                            **error.to_dict(),
                        }},
                    )
                    raise error from exc
                delay = self._next_delay(attempt, error)
                logger.info(
                    "Retrying operation",
                    extra={"extra": {
                        "context": context,
                        "attempt": attempt + 1,
                        "delay_seconds": round(delay, 3),
                        "code": error.code,
                    }},
                )
                await self._sleep(delay, token)
            else:
                if attempt > 0:
                    logger.info(
                        "Operation succeeded after retry",
                        extra={"extra": {"context": context, "attempt": attempt + 1}},
                    )
                return result
        # range 至少执行一次，且每次要么 return 要么 raise
        raise AssertionError("unreachable")

    def _next_delay(self, attempt: int, error: ServiceError) -> float:
        delay = self.policy.delay_for(attempt, self._rng.random())
        if error.kind is ServiceErrorKind.RATE_LIMIT and error.retry_after:
            delay = min(max(delay, error.retry_after), self.policy.max_delay)
        return delay


async def _token_sleep(delay: float, token: CancellationToken) -> None:
    await token.sleep(delay)
