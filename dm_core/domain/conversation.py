from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Protocol, Tuple

from .models import Role


@dataclass(frozen=True)
class ConversationMessage:
    id: str
    role: Role
    content: str
    timestamp: datetime
    tokens: Optional[int] = None


@dataclass
class ConversationSession:
    id: str
    created_at: datetime
    updated_at: datetime
    user_id: Optional[str] = None
    title: Optional[str] = None
    messages: List[ConversationMessage] = field(default_factory=list)
    total_tokens: int = 0


@dataclass
class ConversationContext:
    """按 token 预算选出的上下文窗口，只读派生结果，不回写会话。"""

    messages: List[ConversationMessage]
    total_tokens: int
    max_tokens: int


@dataclass
class ConversationStats:
    message_count: int = 0
    total_tokens: int = 0
    session_duration_seconds: int = 0


@dataclass
class SessionRecord:
    id: str
    created_at: datetime
    updated_at: datetime
    user_id: Optional[str] = None
    title: Optional[str] = None


@dataclass
class MessageRecord:
    id: str
    session_id: str
    role: Role
    content: str
    created_at: datetime
    tokens: Optional[int] = None


class ConversationStore(Protocol):
    """会话持久化协作方：按 id upsert 两类记录，并能整体加载一个会话。"""

    async def upsert_session(self, record: SessionRecord) -> None:
        ...

    async def upsert_message(self, record: MessageRecord) -> None:
        ...

    async def load_session(self, session_id: str) -> Tuple[SessionRecord, List[MessageRecord]]:
        ...
