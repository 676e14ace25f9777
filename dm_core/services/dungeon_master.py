"""DungeonMasterService：面向游戏调用方的 AI DM 接口。

每个方法都经过 RequestPipeline（缓存 / 重试 / 取消），并在最终失败时
按调用点各自的策略降级：

- process_action：永不抛错，返回带 error 的兜底 DMResponse。
- test_connection / is_available：返回 False。
- get_usage_stats / start_session：返回 None。
- list_models：直接抛出 ServiceError，由调用方决定。
"""

import json
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Dict, List, Optional, Union

from dm_core.config.settings import Settings
from dm_core.domain.conversation import ConversationContext
from dm_core.domain.exceptions import ServiceError
from dm_core.infrastructure.logging.logger import get_logger
from dm_core.domain.models import ChatMessage, ChatUsage, DMResponse, ModelList, PlayerIntent, UsageStats
from dm_core.providers.base import ProviderClient
from dm_core.resilience.cancellation import CancellationToken
from dm_core.resilience.pipeline import PipelineConfig, RequestPipeline
from dm_core.services.fallback import fallback_dm_response

logger = get_logger("service")

DM_SYSTEM_PROMPT = (
    "You are an expert Dungeon Master for Dungeons & Dragons 5th Edition. "
    "Create immersive, engaging narratives that respond to player actions, "
    "keep the campaign world consistent and always respect player agency. "
    "When an action changes the game state, reply with a JSON object "
    "{\"narrative\": str, \"game_effects\": [...], \"dashboard_updates\": [...]}; "
    "otherwise reply with plain narration."
)


@dataclass
class DMServiceConfig:
    connection_test_ttl_ms: int = 30000
    usage_stats_ttl_ms: int = 60000
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None

    @classmethod
    def from_settings(cls, s: Settings) -> "DMServiceConfig":
        return cls(
            connection_test_ttl_ms=s.connection_test_ttl_ms,
            usage_stats_ttl_ms=s.usage_stats_ttl_ms,
            temperature=s.temperature,
            max_tokens=s.max_tokens,
        )


_PIPELINE_FIELDS = {f.name for f in fields(PipelineConfig)}
_SERVICE_FIELDS = {f.name for f in fields(DMServiceConfig)}
_PROVIDER_FIELDS = {"base_url", "model"}


class DungeonMasterService:
    def __init__(
        self,
        provider: ProviderClient,
        pipeline: Optional[RequestPipeline] = None,
        config: Optional[DMServiceConfig] = None,
    ):
        self._provider = provider
        self._pipeline = pipeline if pipeline is not None else RequestPipeline()
        self._config = config or DMServiceConfig()

    @property
    def provider(self) -> ProviderClient:
        return self._provider

    @property
    def pipeline(self) -> RequestPipeline:
        return self._pipeline

    async def process_action(
        self,
        context: ConversationContext,
        intent: Union[PlayerIntent, str],
        *,
        request_id: Optional[str] = None,
    ) -> DMResponse:
        """把玩家行动连同上下文发给模型，返回叙事回复。

        不传 request_id 的调用彼此独立；传入相同 request_id 时新调用会取消旧调用，
        被取代的调用拿到兜底回复。
        """

        text = intent.describe() if isinstance(intent, PlayerIntent) else str(intent)
        messages = self._build_messages(context, text)
        req = self._provider.create_request(
            messages,
            temperature=self._config.temperature,
            max_tokens=self._config.max_tokens,
        )

        async def call(token: CancellationToken) -> DMResponse:
            result = await self._provider.chat(req)
            response = parse_dm_reply(result.content, result.usage)
            if not response.narrative.strip():
                raise ServiceError.api_error("Empty response from provider")
            return response

        try:
            return await self._pipeline.execute(call, method="process_action", request_id=request_id)
        except ServiceError as e:
            logger.warning(
                "Returning fallback response",
                extra={"extra": {"method": "process_action", **e.to_dict()}},
            )
            return fallback_dm_response(e)

    async def test_connection(self) -> bool:
        async def call(token: CancellationToken) -> bool:
            await self._provider.list_models()
            return True

        try:
            return await self._pipeline.execute(
                call,
                method="test_connection",
                cacheable=True,
                ttl_ms=self._config.connection_test_ttl_ms,
            )
        except ServiceError:
            logger.error("Connection test failed", extra={"extra": {"method": "test_connection"}})
            return False

    async def get_usage_stats(self) -> Optional[UsageStats]:
        async def call(token: CancellationToken) -> UsageStats:
            return self._provider.usage_snapshot()

        try:
            return await self._pipeline.execute(
                call,
                method="get_usage_stats",
                cacheable=True,
                ttl_ms=self._config.usage_stats_ttl_ms,
            )
        except ServiceError:
            logger.error("Failed to get usage stats", extra={"extra": {"method": "get_usage_stats"}})
            return None

    async def start_session(
        self,
        character_name: str,
        location: Optional[str] = None,
        *,
        request_id: Optional[str] = None,
    ) -> Optional[str]:
        """请模型为新冒险生成开场白。每次调用都会真正请求，不走缓存。"""

        prompt = f"Welcome {character_name} to a new adventure."
        if location:
            prompt += f" The story begins in {location}."
        prompt += " Describe the opening scene."
        req = self._provider.create_request(
            [ChatMessage("system", DM_SYSTEM_PROMPT), ChatMessage("user", prompt)],
            temperature=self._config.temperature,
            max_tokens=self._config.max_tokens,
        )

        async def call(token: CancellationToken) -> str:
            result = await self._provider.chat(req)
            return result.content

        try:
            welcome = await self._pipeline.execute(call, method="start_session", request_id=request_id)
        except ServiceError:
            logger.error("Failed to start session", extra={"extra": {"method": "start_session"}})
            return None
        return welcome or None

    async def is_available(self) -> bool:
        """健康检查：单次请求，不重试、不缓存。"""

        async def call(token: CancellationToken) -> bool:
            await self._provider.list_models()
            return True

        try:
            return await self._pipeline.execute(call, method="is_available", max_retries=0)
        except ServiceError:
            logger.error("Health check failed", extra={"extra": {"method": "is_available"}})
            return False

    async def list_models(self) -> ModelList:
        async def call(token: CancellationToken) -> ModelList:
            return await self._provider.list_models()

        return await self._pipeline.execute(call, method="list_models")

    def update_config(self, **changes: Any) -> Dict[str, Any]:
        """按字段归属分发配置变更；未知字段抛 ValueError，且不做部分更新。"""

        unknown = set(changes) - _PIPELINE_FIELDS - _SERVICE_FIELDS - _PROVIDER_FIELDS
        if unknown:
            raise ValueError(f"Unknown config fields: {sorted(unknown)}")

        pipeline_changes = {k: v for k, v in changes.items() if k in _PIPELINE_FIELDS}
        service_changes = {k: v for k, v in changes.items() if k in _SERVICE_FIELDS}
        if pipeline_changes:
            self._pipeline.update_config(**pipeline_changes)
        if service_changes:
            self._config = replace(self._config, **service_changes)
        if "base_url" in changes:
            self._provider.base_url = changes["base_url"]
        if "model" in changes:
            self._provider.default_model = changes["model"]
        logger.info("Service configuration updated", extra={"extra": {"fields": sorted(changes)}})
        return self.get_config()

    def get_config(self) -> Dict[str, Any]:
        return {
            **asdict(self._pipeline.config),
            **asdict(self._config),
            "base_url": self._provider.base_url,
            "model": self._provider.default_model,
        }

    def clear_cache(self) -> None:
        self._pipeline.clear_cache()

    def cancel_all_requests(self) -> int:
        return self._pipeline.cancel_all_requests()

    def _build_messages(self, context: ConversationContext, text: str) -> List[ChatMessage]:
        messages = [ChatMessage(m.role, m.content) for m in context.messages]
        if not any(m.role == "system" for m in messages):
            messages.insert(0, ChatMessage("system", DM_SYSTEM_PROMPT))
        # 调用方通常已先把玩家输入写入会话，避免重复发送
        if not messages or messages[-1].role != "user" or messages[-1].content != text:
            messages.append(ChatMessage("user", text))
        return messages


def parse_dm_reply(content: str, usage: Optional[ChatUsage] = None) -> DMResponse:
    """把模型回复解析为 DMResponse。

    回复为带字符串 narrative 的 JSON 对象时，取出 game_effects / dashboard_updates
    （兼容 camelCase 键名，非列表按空列表处理）；否则整段文本作为叙事。
    """

    text = content.strip()
    if text.startswith("{"):
        try:
            data = json.loads(text)
        except ValueError:
            data = None
        if isinstance(data, dict) and isinstance(data.get("narrative"), str):
            return DMResponse(
                narrative=data["narrative"],
                game_effects=_dict_items(data, "game_effects", "gameEffects"),
                dashboard_updates=_dict_items(data, "dashboard_updates", "dashboardUpdates"),
                usage=usage,
            )
    return DMResponse(narrative=content, usage=usage)


def _dict_items(data: Dict[str, Any], *keys: str) -> List[Dict[str, Any]]:
    for key in keys:
        value = data.get(key)
        if isinstance(value, list):
            return [item for item in value if isinstance(item, dict)]
    return []
