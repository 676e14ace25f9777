"""请求取消与去重。

CancellationToken 贯穿重试循环与网络调用：取消 token 会立即中止正在进行的
调用以及重试之间的等待。RequestSlots 维护 request_id -> token 的映射，
同一个 request_id 上的新请求会先取消旧请求。
"""

import asyncio
import inspect
from typing import Awaitable, Dict, Optional, TypeVar

from dm_core.domain.exceptions import ServiceError
from dm_core.infrastructure.logging.logger import get_logger

T = TypeVar("T")

logger = get_logger("cancellation")


class CancellationToken:
    def __init__(self, request_id: Optional[str] = None):
        self.request_id = request_id
        self._event = asyncio.Event()
        self._reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._event.is_set():
            self._reason = reason
            self._event.set()

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise self._cancelled_error()

    def _cancelled_error(self) -> ServiceError:
        return ServiceError.timeout(
            f"Request cancelled: {self._reason}",
            cancelled=True,
            request_id=self.request_id,
        )

    async def run(self, awaitable: Awaitable[T], timeout: Optional[float] = None) -> T:
        """在 token 与超时的约束下等待 awaitable。

        取消或超时都会中止内部任务并抛出 TIMEOUT 类 ServiceError；
        计时器与等待任务在任何结束路径上都会被清理。
        """

        if self.cancelled:
            if inspect.iscoroutine(awaitable):
                awaitable.close()
            raise self._cancelled_error()
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait(
                {task, waiter},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            # 任何结束路径上都不留下挂起的等待任务
            if not waiter.done():
                waiter.cancel()
                try:
                    await waiter
                except asyncio.CancelledError:
                    pass
            if not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception as exc:  # noqa: BLE001
                    logger.debug("Abandoned request raised after cancellation: %r", exc)

        if task in done:
            return task.result()
        if self.cancelled:
            raise self._cancelled_error()
        raise ServiceError.timeout(
            f"Request timed out after {timeout:.3f}s",
            request_id=self.request_id,
        )

    async def sleep(self, delay: float) -> None:
        """可被取消的等待，用于重试退避。"""

        if delay <= 0:
            self.raise_if_cancelled()
            return
        await self.run(asyncio.sleep(delay))


class RequestSlots:
    """request_id -> 当前在途请求的 token，每个 id 至多一个存活条目。"""

    def __init__(self):
        self._slots: Dict[str, CancellationToken] = {}

    def acquire(self, request_id: Optional[str]) -> CancellationToken:
        token = CancellationToken(request_id)
        if request_id is None:
            return token
        previous = self._slots.get(request_id)
        if previous is not None:
            previous.cancel("superseded")
        self._slots[request_id] = token
        return token

    def release(self, token: CancellationToken) -> None:
        """只释放自己占有的槽位，避免误删后来者。"""

        if token.request_id is None:
            return
        if self._slots.get(token.request_id) is token:
            del self._slots[token.request_id]

    def cancel_all(self, reason: str = "cancel_all") -> int:
        count = len(self._slots)
        for token in list(self._slots.values()):
            token.cancel(reason)
        self._slots.clear()
        return count

    def in_flight(self, request_id: str) -> bool:
        return request_id in self._slots

    def __len__(self) -> int:
        return len(self._slots)
