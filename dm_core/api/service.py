"""对外 API 服务模块。

把会话管理器、DungeonMasterService 与持久化存储组装成一个可直接调用的
DungeonMasterSession。每一回合的流程：

    记录玩家输入 -> 按 token 预算取上下文 -> 请求 AI DM -> 记录 DM 回复
"""

from typing import Any, Dict, Optional, Union

from dm_core.config.settings import Settings, settings as default_settings
from dm_core.conversation.manager import ConversationConfig, ConversationManager
from dm_core.domain.conversation import ConversationSession
from dm_core.domain.models import DMResponse, PlayerIntent
from dm_core.infrastructure.logging.logger import logger
from dm_core.infrastructure.storage.json_store import JsonConversationStore
from dm_core.providers import create_provider
from dm_core.resilience.pipeline import PipelineConfig, RequestPipeline
from dm_core.services.dungeon_master import DungeonMasterService, DMServiceConfig


class DungeonMasterSession:
    """一个玩家会话：一个 ConversationManager 搭配一个 DungeonMasterService。"""

    def __init__(self, conversation: ConversationManager, service: DungeonMasterService):
        self.conversation = conversation
        self.service = service

    async def start(
        self,
        character_name: Optional[str] = None,
        location: Optional[str] = None,
        *,
        user_id: Optional[str] = None,
        title: Optional[str] = None,
    ) -> ConversationSession:
        """初始化会话；给出角色名时请求开场白并作为 assistant 消息写入。"""

        session = await self.conversation.initialize_session(user_id=user_id, title=title)
        if character_name:
            welcome = await self.service.start_session(character_name, location)
            if welcome:
                await self.conversation.add_message("assistant", welcome)
        return session

    async def take_turn(
        self,
        player_input: Union[PlayerIntent, str],
        *,
        max_context_tokens: Optional[int] = None,
    ) -> DMResponse:
        """执行一回合。

        Args:
            player_input: 玩家输入文本或结构化的 PlayerIntent
            max_context_tokens: 本回合上下文预算（可选，默认取配置）

        Returns:
            DMResponse；Provider 不可用时为兜底回复（error 不为空），且不写入会话历史。

        Raises:
            NoActiveSessionError: 尚未调用 start()/initialize_session
        """
        text = player_input.describe() if isinstance(player_input, PlayerIntent) else str(player_input)
        await self.conversation.add_message("user", text)
        context = self.conversation.get_context(max_context_tokens)
        # 同一会话内新的一回合会取代仍在进行的上一回合
        session_id = self.conversation.current_session.id
        response = await self.service.process_action(
            context, player_input, request_id=f"process-action-{session_id}"
        )
        if response.is_fallback:
            logger.warning(
                "Turn completed with fallback response",
                extra={"extra": {"error": response.error}},
            )
            return response
        tokens = response.usage.completion_tokens if response.usage else None
        await self.conversation.add_message("assistant", response.narrative, tokens or None)
        return response

    def status(self) -> Dict[str, Any]:
        stats = self.conversation.get_stats()
        session = self.conversation.current_session
        return {
            "session_id": session.id if session else None,
            "message_count": stats.message_count,
            "total_tokens": stats.total_tokens,
            "session_duration_seconds": stats.session_duration_seconds,
        }

    async def close(self) -> None:
        """取消在途请求并等待后台持久化完成。"""
        self.service.cancel_all_requests()
        await self.conversation.wait_for_persistence()


def build_session(settings: Optional[Settings] = None) -> DungeonMasterSession:
    """按配置组装 DungeonMasterSession。每次调用都返回相互独立的实例。"""
    cfg = settings or default_settings
    store = JsonConversationStore(root=cfg.storage_root) if cfg.enable_persistence else None
    conversation = ConversationManager(ConversationConfig.from_settings(cfg), store=store)
    service = DungeonMasterService(
        create_provider(settings=cfg),
        RequestPipeline(PipelineConfig.from_settings(cfg)),
        DMServiceConfig.from_settings(cfg),
    )
    logger.info(
        "Dungeon master session built",
        extra={"extra": {"provider": cfg.provider, "persistence": cfg.enable_persistence}},
    )
    return DungeonMasterSession(conversation, service)
