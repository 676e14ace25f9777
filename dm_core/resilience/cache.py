import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, Optional, TypeVar

T = TypeVar("T")

_MISSING = object()


@dataclass
class CacheEntry(Generic[T]):
    data: T
    timestamp: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.timestamp > self.ttl


def make_cache_key(method: str, params: Any = None) -> str:
    """method + 序列化参数，参数为空时只保留冒号。"""

    if params is None:
        return f"{method}:"
    return f"{method}:{json.dumps(params, sort_keys=True, ensure_ascii=False, default=str)}"


class TTLCache:
    """惰性过期的内存缓存：过期条目只在读取时被淘汰，不做后台清扫。"""

    def __init__(self, enabled: bool = True, clock: Optional[Callable[[], float]] = None):
        self.enabled = enabled
        self._clock = clock or time.monotonic
        self._entries: Dict[str, CacheEntry[Any]] = {}

    def get(self, key: str, default: Any = None) -> Any:
        if not self.enabled:
            return default
        entry = self._entries.get(key)
        if entry is None:
            return default
        if entry.expired(self._clock()):
            del self._entries[key]
            return default
        return entry.data

    def lookup(self, key: str) -> tuple[bool, Any]:
        """区分“未命中”与“命中但值为 None/False”。"""

        value = self.get(key, _MISSING)
        if value is _MISSING:
            return False, None
        return True, value

    def set(self, key: str, data: Any, ttl: float) -> None:
        if not self.enabled:
            return
        self._entries[key] = CacheEntry(data=data, timestamp=self._clock(), ttl=ttl)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)
