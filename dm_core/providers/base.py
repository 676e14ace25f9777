"""Provider 抽象接口。

DungeonMasterService 不直接依赖具体厂商的 HTTP 细节，而是依赖此协议。
实现者负责把 ChatRequest 转成 HTTP 请求，并把非 2xx 响应转换为
已分类的 ServiceError。
"""

from typing import Optional, Protocol

from dm_core.domain.models import ChatMessage, ChatRequest, ChatResult, ModelList, UsageStats


class ProviderClient(Protocol):
    name: str
    default_model: str
    base_url: str

    def create_request(
        self,
        messages: list[ChatMessage],
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        top_p: Optional[float] = None,
    ) -> ChatRequest:
        ...

    async def chat(self, req: ChatRequest, *, timeout: Optional[float] = None) -> ChatResult:
        ...

    async def list_models(self, *, timeout: Optional[float] = None) -> ModelList:
        ...

    def usage_snapshot(self) -> UsageStats:
        ...
