"""OpenAI 兼容 completions 接口的适配器（xAI Grok / OpenAI 等）。

本模块负责：

1. 接收统一的 ChatRequest，转换为 POST /chat/completions 请求。
2. 调用 GET /models 列出可用模型（同时用作连通性探测）。
3. 把网络异常与非 2xx 响应交给分类器，统一抛出 ServiceError。
4. 解析响应 JSON 为 ChatResult，并累计请求数与 token 用量。

重试、超时与取消不在这里处理，由 RequestPipeline 负责。
"""

from typing import Any, Dict, Optional

import httpx

from dm_core.domain.exceptions import ValidationError
from dm_core.infrastructure.logging.logger import get_logger
from dm_core.domain.models import (
    ChatChoice,
    ChatMessage,
    ChatRequest,
    ChatResult,
    ChatUsage,
    ModelInfo,
    ModelList,
    UsageStats,
)
from dm_core.providers.registry import ProviderConfig
from dm_core.resilience.classifier import classify_error, classify_status

logger = get_logger("provider")

USER_AGENT = "AI-Dungeon-Master/1.0.0"


class CompletionsClient:
    """OpenAI 兼容 Provider 客户端。

    - name: Provider 名称（供日志/调试使用）。
    - chat / list_models: 对外调用入口。
    - usage_snapshot: 本实例发出的请求与 token 累计。
    """

    def __init__(
        self,
        provider: ProviderConfig,
        *,
        api_key: Optional[str],
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: float = 30.0,
        cost_per_token: float = 0.00001,
    ):
        self.name = provider.name
        self._provider = provider
        self._api_key = api_key
        self.base_url = base_url or provider.base_url
        self.default_model = model or provider.default_model
        self._timeout = timeout
        self._cost_per_token = cost_per_token
        self._request_count = 0
        self._total_tokens = 0

    def create_request(
        self,
        messages: list[ChatMessage],
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        top_p: Optional[float] = None,
    ) -> ChatRequest:
        """用 Provider 默认值补全一次 completions 请求，top_p 仅在显式给出时发送。"""

        return ChatRequest(
            model=model or self.default_model,
            messages=list(messages),
            temperature=temperature if temperature is not None else self._provider.default_temperature,
            max_tokens=max_tokens or self._provider.max_tokens,
            top_p=top_p,
        )

    async def chat(self, req: ChatRequest, *, timeout: Optional[float] = None) -> ChatResult:
        data = await self._request("POST", "/chat/completions", json=req.to_payload(), timeout=timeout)
        result = self._parse_response(data, req)
        self._request_count += 1
        self._total_tokens += result.usage.total_tokens
        logger.info(
            "Provider response received",
            extra={"extra": {
                "provider": self.name,
                "id": result.id,
                "model": result.model,
                "tokens_used": result.usage.total_tokens,
                "finish_reason": result.choices[0].finish_reason if result.choices else None,
            }},
        )
        return result

    async def list_models(self, *, timeout: Optional[float] = None) -> ModelList:
        data = await self._request("GET", "/models", timeout=timeout)
        models = [
            ModelInfo(id=str(item.get("id", "")), owned_by=item.get("owned_by"))
            for item in data.get("data") or []
            if isinstance(item, dict)
        ]
        logger.info("Available models fetched", extra={"extra": {"provider": self.name, "model_count": len(models)}})
        return ModelList(data=models)

    def usage_snapshot(self) -> UsageStats:
        return UsageStats(
            requests_today=self._request_count,
            tokens_used=self._total_tokens,
            cost_estimate=self._total_tokens * self._cost_per_token,
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[dict] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        if not self._api_key:
            # 配置缺失走 ValidationError，不进入重试
            raise ValidationError(code="MISSING_API_KEY", message=f"API key for {self.name} not set")
        url = f"{self.base_url.rstrip('/')}{path}"
        logger.debug(
            "Making API request",
            extra={"extra": {"method": method, "url": url, "has_body": json is not None}},
        )
        try:
            async with httpx.AsyncClient(timeout=timeout or self._timeout, trust_env=False) as client:
                resp = await client.request(
                    method,
                    url,
                    json=json,
                    headers={
                        "Authorization": f"Bearer {self._api_key}",
                        "Content-Type": "application/json",
                        "User-Agent": USER_AGENT,
                    },
                )
        except httpx.RequestError as e:
            # DNS 失败、连接超时等
            raise classify_error(e, context=path) from e
        if resp.status_code >= 400:
            raise classify_status(
                resp.status_code,
                _safe_json(resp),
                retry_after=resp.headers.get("retry-after"),
                context=path,
            )
        data = _safe_json(resp)
        if not isinstance(data, dict):
            raise classify_error(ValueError(f"Invalid JSON response from {path}"), context=path)
        return data

    def _parse_response(self, data: dict, req: ChatRequest) -> ChatResult:
        choices: list[ChatChoice] = []
        for i, ch in enumerate(data.get("choices") or []):
            msg = ch.get("message") or {}
            choices.append(
                ChatChoice(
                    index=ch.get("index", i),
                    message=ChatMessage(role=msg.get("role") or "assistant", content=msg.get("content") or ""),
                    finish_reason=ch.get("finish_reason"),
                )
            )
        usage_raw = data.get("usage") or {}
        usage = ChatUsage(
            prompt_tokens=usage_raw.get("prompt_tokens", 0),
            completion_tokens=usage_raw.get("completion_tokens", 0),
            total_tokens=usage_raw.get("total_tokens", 0),
        )
        return ChatResult(
            id=str(data.get("id") or ""),
            model=data.get("model") or req.model,
            choices=choices,
            usage=usage,
            raw=data,
        )


def _safe_json(resp) -> Any:
    try:
        return resp.json()
    except ValueError:
        return None
