"""AI Dungeon Master 核心包。

提供 AI 编排层：会话与上下文管理（token 预算选择、历史裁剪、持久化），
以及对 LLM Provider 的弹性调用管线（错误分类、重试退避、缓存、取消去重、降级回复）。
"""

from dm_core.api.service import DungeonMasterSession, build_session

__all__ = ["DungeonMasterSession", "build_session"]
