"""弹性请求管线。

把 TTLCache、RetryEngine、分类器与 RequestSlots 组合在对 Provider 的调用外层：

1. 可缓存调用先查缓存，命中则完全跳过重试与网络。
2. 带 request_id 的调用会先取消同 id 的在途请求。
3. 每次尝试都受 timeout 约束，失败交给 RetryEngine 分类与退避。
4. 成功且可缓存的结果写回缓存。

管线不决定“最终失败后返回什么”，那是各调用点（DungeonMasterService）的策略。
"""

import time
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Optional, TypeVar

from dm_core.config.settings import Settings
from dm_core.infrastructure.logging.logger import get_logger
from dm_core.resilience.cache import TTLCache, make_cache_key
from dm_core.resilience.cancellation import CancellationToken, RequestSlots
from dm_core.resilience.retry import RetryEngine, RetryPolicy

T = TypeVar("T")

logger = get_logger("pipeline")


@dataclass
class PipelineConfig:
    """管线配置，时间单位为毫秒（与 Settings 一致）。"""

    timeout_ms: int = 30000
    max_retries: int = 3
    base_delay_ms: int = 1000
    max_delay_ms: int = 10000
    backoff_multiplier: float = 2.0
    jitter_ratio: float = 0.1
    cache_enabled: bool = True

    @classmethod
    def from_settings(cls, s: Settings) -> "PipelineConfig":
        return cls(
            timeout_ms=s.timeout_ms,
            max_retries=s.max_retries,
            base_delay_ms=s.base_delay_ms,
            max_delay_ms=s.max_delay_ms,
            backoff_multiplier=s.backoff_multiplier,
            jitter_ratio=s.jitter_ratio,
            cache_enabled=s.cache_enabled,
        )

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.max_retries,
            base_delay=self.base_delay_ms / 1000.0,
            max_delay=self.max_delay_ms / 1000.0,
            backoff_multiplier=self.backoff_multiplier,
            jitter_ratio=self.jitter_ratio,
        )


class RequestPipeline:
    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        *,
        cache: Optional[TTLCache] = None,
        retry_engine: Optional[RetryEngine] = None,
    ):
        self._config = config or PipelineConfig()
        self._cache = cache if cache is not None else TTLCache(enabled=self._config.cache_enabled)
        self._retry = retry_engine if retry_engine is not None else RetryEngine(self._config.retry_policy())
        self._slots = RequestSlots()

    @property
    def config(self) -> PipelineConfig:
        return replace(self._config)

    @property
    def slots(self) -> RequestSlots:
        return self._slots

    def update_config(self, **changes: Any) -> PipelineConfig:
        """更新配置并同步到重试策略与缓存开关。未知字段直接报错。"""

        self._config = replace(self._config, **changes)
        self._retry.policy = self._config.retry_policy()
        self._cache.enabled = self._config.cache_enabled
        return self.config

    async def execute(
        self,
        operation: Callable[[CancellationToken], Awaitable[T]],
        *,
        method: str,
        params: Any = None,
        cacheable: bool = False,
        ttl_ms: Optional[int] = None,
        request_id: Optional[str] = None,
        max_retries: Optional[int] = None,
    ) -> T:
        """执行一次对外调用。

        Args:
            operation: 接收 CancellationToken 的异步调用，实际发起网络请求。
            method: 逻辑方法名，用于日志与缓存键。
            params: 参与缓存键的参数。
            cacheable: 是否为幂等、可缓存调用；变更类调用必须为 False。
            ttl_ms: 缓存有效期（毫秒），cacheable 时必填。
            request_id: 逻辑请求 id；同 id 的新请求会取消旧请求。
            max_retries: 覆盖本次调用的重试次数（例如健康检查不重试）。

        Raises:
            ServiceError: 重试耗尽、不可重试或被取消。
        """

        cache_key = make_cache_key(method, params) if cacheable else None
        if cache_key is not None:
            hit, value = self._cache.lookup(cache_key)
            if hit:
                logger.debug("Cache hit", extra={"extra": {"method": method, "key": cache_key}})
                return value

        token = self._slots.acquire(request_id)
        timeout = self._config.timeout_ms / 1000.0
        start = time.monotonic()
        log_ctx = {"method": method, "request_id": request_id}
        logger.info("Starting request", extra={"extra": log_ctx})

        async def attempt(tok: CancellationToken) -> T:
            return await tok.run(operation(tok), timeout=timeout)

        try:
            result = await self._retry.execute(
                attempt, token=token, context=method, max_retries=max_retries
            )
        except Exception:
            logger.error(
                "Request failed",
                extra={"extra": {**log_ctx, "duration_ms": _elapsed_ms(start)}},
            )
            raise
        finally:
            self._slots.release(token)

        if cache_key is not None:
            self._cache.set(cache_key, result, (ttl_ms or 0) / 1000.0)
        logger.info(
            "Completed request",
            extra={"extra": {**log_ctx, "duration_ms": _elapsed_ms(start)}},
        )
        return result

    def clear_cache(self) -> None:
        self._cache.clear()

    def cancel_all_requests(self) -> int:
        count = self._slots.cancel_all()
        if count:
            logger.info("Cancelled in-flight requests", extra={"extra": {"count": count}})
        return count


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
