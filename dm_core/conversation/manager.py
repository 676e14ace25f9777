"""会话管理器。

维护当前会话与消息历史，负责历史裁剪与按 token 预算选择上下文，
并可通过注入的 ConversationStore 做持久化：

- initialize_session / add_message 触发的持久化是“发出即忘”的后台任务，
  失败只记日志，不影响内存中的操作结果。
- save_to_database / load_from_database 是显式调用，失败会抛出 PersistenceError。
"""

import asyncio
import random
import string
import time
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Awaitable, Optional, Set

from dm_core.config.settings import Settings
from dm_core.infrastructure.logging.logger import get_logger
from dm_core.conversation.selection import select_context, trim_history
from dm_core.conversation.tokens import TokenEstimator, default_estimator
from dm_core.domain.conversation import (
    ConversationContext,
    ConversationMessage,
    ConversationSession,
    ConversationStats,
    ConversationStore,
    MessageRecord,
    SessionRecord,
)
from dm_core.domain.exceptions import NoActiveSessionError, PersistenceError, ValidationError
from dm_core.domain.models import ROLES, Role

logger = get_logger("conversation")
persistence_logger = get_logger("persistence")


@dataclass
class ConversationConfig:
    max_context_tokens: int = 4000
    max_history_messages: int = 50
    enable_persistence: bool = False

    @classmethod
    def from_settings(cls, s: Settings) -> "ConversationConfig":
        return cls(
            max_context_tokens=s.max_context_tokens,
            max_history_messages=s.max_history_messages,
            enable_persistence=s.enable_persistence,
        )


def _random_suffix(length: int = 9) -> str:
    alphabet = string.ascii_lowercase + string.digits
    return "".join(random.choices(alphabet, k=length))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationManager:
    def __init__(
        self,
        config: Optional[ConversationConfig] = None,
        store: Optional[ConversationStore] = None,
        estimator: Optional[TokenEstimator] = None,
        clock=None,
    ):
        self._config = config or ConversationConfig()
        self._store = store
        self._estimator = estimator or default_estimator
        self._clock = clock or _utcnow
        self._session: Optional[ConversationSession] = None
        self._pending: Set[asyncio.Task] = set()
        if self._config.enable_persistence and store is None:
            logger.warning("Persistence enabled but no store configured; running in memory only")

    @property
    def config(self) -> ConversationConfig:
        return replace(self._config)

    @property
    def current_session(self) -> Optional[ConversationSession]:
        return self._session

    @property
    def persistence_enabled(self) -> bool:
        return self._config.enable_persistence and self._store is not None

    async def initialize_session(
        self,
        user_id: Optional[str] = None,
        title: Optional[str] = None,
    ) -> ConversationSession:
        now = self._clock()
        session = ConversationSession(
            id=f"session_{int(time.time() * 1000)}_{_random_suffix()}",
            user_id=user_id or None,
            title=title or f"D&D Session {now.strftime('%Y-%m-%d')}",
            created_at=now,
            updated_at=now,
        )
        self._session = session
        logger.info(
            "New conversation session initialized",
            extra={"extra": {"session_id": session.id, "user_id": user_id, "title": session.title}},
        )
        if self.persistence_enabled:
            self._spawn_persist(self._store.upsert_session(_session_record(session)), "session", session.id)
        return session

    async def add_message(
        self,
        role: Role,
        content: str,
        tokens: Optional[int] = None,
    ) -> ConversationMessage:
        session = self._require_session()
        if role not in ROLES:
            raise ValidationError(code="INVALID_ROLE", message=f"Unsupported message role: {role!r}")
        if tokens is not None and tokens < 0:
            raise ValidationError(code="INVALID_TOKENS", message="tokens must be >= 0")

        message = ConversationMessage(
            id=f"msg_{int(time.time() * 1000)}_{_random_suffix()}",
            role=role,
            content=content,
            timestamp=self._clock(),
            tokens=tokens,
        )
        session.messages.append(message)
        session.updated_at = self._clock()
        if tokens:
            session.total_tokens += tokens

        logger.debug(
            "Message added to conversation",
            extra={"extra": {
                "session_id": session.id,
                "role": role,
                "message_length": len(content),
                "tokens": tokens,
                "total_messages": len(session.messages),
            }},
        )

        if self.persistence_enabled:
            self._spawn_persist(
                self._store.upsert_message(_message_record(session.id, message)),
                "message",
                message.id,
            )

        self._trim_history_if_needed(session)
        return message

    def get_context(self, max_tokens: Optional[int] = None) -> ConversationContext:
        budget = max_tokens if max_tokens is not None else self._config.max_context_tokens
        if self._session is None:
            return ConversationContext(messages=[], total_tokens=0, max_tokens=budget)

        messages, used = select_context(self._session.messages, budget, self._estimator)
        logger.debug(
            "Context prepared",
            extra={"extra": {
                "session_id": self._session.id,
                "context_messages": len(messages),
                "total_messages": len(self._session.messages),
                "total_tokens": used,
                "max_tokens": budget,
            }},
        )
        return ConversationContext(messages=messages, total_tokens=used, max_tokens=budget)

    def clear_history(self) -> None:
        if self._session is None:
            return
        self._session.messages = []
        self._session.total_tokens = 0
        self._session.updated_at = self._clock()
        logger.info("Conversation history cleared", extra={"extra": {"session_id": self._session.id}})

    def get_stats(self) -> ConversationStats:
        if self._session is None:
            return ConversationStats()
        duration = self._clock() - self._session.created_at
        return ConversationStats(
            message_count=len(self._session.messages),
            total_tokens=self._session.total_tokens,
            session_duration_seconds=max(0, int(duration.total_seconds())),
        )

    async def save_to_database(self) -> None:
        if not self.persistence_enabled or self._session is None:
            logger.warning("Cannot save to database: persistence disabled or no active session")
            return
        session = self._session
        try:
            await self._store.upsert_session(_session_record(session))
            for message in list(session.messages):
                await self._store.upsert_message(_message_record(session.id, message))
        except PersistenceError:
            logger.error("Failed to save conversation to database", exc_info=True)
            raise
        except Exception as exc:
            logger.error("Failed to save conversation to database", exc_info=True)
            raise PersistenceError(code="STORE_WRITE_ERROR", message=str(exc), session_id=session.id) from exc
        logger.info(
            "Conversation saved to database",
            extra={"extra": {"session_id": session.id, "message_count": len(session.messages)}},
        )

    async def load_from_database(self, session_id: str) -> ConversationSession:
        if not self.persistence_enabled:
            raise PersistenceError(code="PERSISTENCE_DISABLED", message="Database persistence is not enabled")
        try:
            session_rec, message_recs = await self._store.load_session(session_id)
        except PersistenceError:
            logger.error("Failed to load conversation from database", exc_info=True)
            raise
        except Exception as exc:
            logger.error("Failed to load conversation from database", exc_info=True)
            raise PersistenceError(code="STORE_READ_ERROR", message=str(exc), session_id=session_id) from exc

        messages = [
            ConversationMessage(
                id=rec.id,
                role=rec.role,
                content=rec.content,
                timestamp=rec.created_at,
                tokens=rec.tokens,
            )
            for rec in sorted(message_recs, key=lambda r: r.created_at)
        ]
        session = ConversationSession(
            id=session_rec.id,
            user_id=session_rec.user_id,
            title=session_rec.title,
            created_at=session_rec.created_at,
            updated_at=session_rec.updated_at,
            messages=messages,
            total_tokens=sum(m.tokens or 0 for m in messages),
        )
        self._session = session
        logger.info(
            "Conversation loaded from database",
            extra={"extra": {
                "session_id": session_id,
                "message_count": len(messages),
                "total_tokens": session.total_tokens,
            }},
        )
        return session

    async def wait_for_persistence(self) -> None:
        """等待所有后台持久化任务结束（进程退出或测试时使用）。"""

        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _require_session(self) -> ConversationSession:
        if self._session is None:
            raise NoActiveSessionError()
        return self._session

    def _trim_history_if_needed(self, session: ConversationSession) -> None:
        max_messages = self._config.max_history_messages
        if len(session.messages) <= max_messages:
            return
        session.messages = trim_history(session.messages, max_messages)
        logger.debug(
            "Conversation history trimmed",
            extra={"extra": {
                "session_id": session.id,
                "new_message_count": len(session.messages),
                "max_messages": max_messages,
            }},
        )

    def _spawn_persist(self, coro: Awaitable[None], kind: str, record_id: str) -> None:
        task = asyncio.ensure_future(_persist_quietly(coro, kind, record_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)


async def _persist_quietly(coro: Awaitable[None], kind: str, record_id: str) -> None:
    try:
        await coro
    except Exception:  # noqa: BLE001 - 后台持久化失败只记录，不影响内存状态
        persistence_logger.error(
            "Failed to persist %s",
            kind,
            exc_info=True,
            extra={"extra": {"kind": kind, "record_id": record_id}},
        )


def _session_record(session: ConversationSession) -> SessionRecord:
    return SessionRecord(
        id=session.id,
        user_id=session.user_id,
        title=session.title,
        created_at=session.created_at,
        updated_at=session.updated_at,
    )


def _message_record(session_id: str, message: ConversationMessage) -> MessageRecord:
    return MessageRecord(
        id=message.id,
        session_id=session_id,
        role=message.role,
        content=message.content,
        tokens=message.tokens,
        created_at=message.timestamp,
    )
