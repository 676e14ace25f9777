from dm_core.conversation.manager import ConversationConfig, ConversationManager
from dm_core.conversation.selection import select_context, trim_history
from dm_core.conversation.tokens import CharRatioEstimator, TokenEstimator

__all__ = [
    "ConversationConfig",
    "ConversationManager",
    "select_context",
    "trim_history",
    "CharRatioEstimator",
    "TokenEstimator",
]
