"""Provider 调用的弹性层：错误分类、重试、缓存、取消与组合管线。"""

from dm_core.resilience.cache import CacheEntry, TTLCache, make_cache_key
from dm_core.resilience.cancellation import CancellationToken, RequestSlots
from dm_core.resilience.classifier import classify_error, classify_status
from dm_core.resilience.pipeline import PipelineConfig, RequestPipeline
from dm_core.resilience.retry import RetryEngine, RetryPolicy

__all__ = [
    "CacheEntry",
    "TTLCache",
    "make_cache_key",
    "CancellationToken",
    "RequestSlots",
    "classify_error",
    "classify_status",
    "PipelineConfig",
    "RequestPipeline",
    "RetryEngine",
    "RetryPolicy",
]
