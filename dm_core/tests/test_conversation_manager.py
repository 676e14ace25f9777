import asyncio
import logging
from datetime import datetime, timedelta, timezone

import pytest

from dm_core.conversation.manager import ConversationConfig, ConversationManager
from dm_core.domain.exceptions import NoActiveSessionError, PersistenceError, ValidationError


class TickClock:
    """每次调用前进一秒，保证消息时间戳严格递增。"""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 3, 5, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


class MemoryStore:
    def __init__(self):
        self.sessions = {}
        self.messages = {}

    async def upsert_session(self, record):
        self.sessions[record.id] = record

    async def upsert_message(self, record):
        self.messages[record.id] = record

    async def load_session(self, session_id):
        if session_id not in self.sessions:
            raise PersistenceError(code="SESSION_NOT_FOUND", message=session_id)
        msgs = [m for m in self.messages.values() if m.session_id == session_id]
        return self.sessions[session_id], msgs


class FailingStore(MemoryStore):
    async def upsert_session(self, record):
        raise RuntimeError("disk full")

    async def upsert_message(self, record):
        raise RuntimeError("disk full")


def _manager(**kw):
    store = kw.pop("store", None)
    return ConversationManager(ConversationConfig(**kw), store=store, clock=TickClock())


def test_add_message_without_session_raises():
    mgr = _manager()

    with pytest.raises(NoActiveSessionError):
        asyncio.run(mgr.add_message("user", "hello"))


def test_initialize_session_defaults():
    mgr = _manager()
    session = asyncio.run(mgr.initialize_session())
    assert session.id.startswith("session_")
    assert len(session.id.split("_")[-1]) == 9
    assert session.title == "D&D Session 2024-03-05"
    assert session.messages == []
    assert session.total_tokens == 0
    assert mgr.current_session is session


def test_add_message_validates_role_and_tokens():
    mgr = _manager()

    async def run():
        await mgr.initialize_session()
        with pytest.raises(ValidationError):
            await mgr.add_message("narrator", "x")
        with pytest.raises(ValidationError):
            await mgr.add_message("user", "x", -1)

    asyncio.run(run())
    assert mgr.current_session.messages == []


def test_total_tokens_only_counts_known_tokens():
    mgr = _manager()

    async def run():
        await mgr.initialize_session()
        await mgr.add_message("user", "a", 5)
        await mgr.add_message("assistant", "b" * 40)
        await mgr.add_message("user", "c", 7)

    asyncio.run(run())
    stats = mgr.get_stats()
    assert stats.message_count == 3
    assert stats.total_tokens == 12


def test_get_context_worked_example():
    mgr = _manager()

    async def run():
        await mgr.initialize_session()
        await mgr.add_message("system", "You are a DM.", 10)
        for i in range(1, 6):
            await mgr.add_message("user", f"msg{i}", 20)

    asyncio.run(run())
    ctx = mgr.get_context(60)
    assert [m.content for m in ctx.messages] == ["You are a DM.", "msg4", "msg5"]
    assert ctx.total_tokens == 50
    assert ctx.max_tokens == 60
    # get_context 不修改会话
    assert len(mgr.current_session.messages) == 6


def test_get_context_without_session_is_empty():
    mgr = _manager(max_context_tokens=123)
    ctx = mgr.get_context()
    assert ctx.messages == []
    assert ctx.total_tokens == 0
    assert ctx.max_tokens == 123


def test_history_trimmed_to_max_messages():
    mgr = _manager(max_history_messages=5)

    async def run():
        await mgr.initialize_session()
        await mgr.add_message("system", "You are a DM.")
        for i in range(1, 9):
            await mgr.add_message("user", f"u{i}")

    asyncio.run(run())
    contents = [m.content for m in mgr.current_session.messages]
    assert contents == ["You are a DM.", "u5", "u6", "u7", "u8"]


def test_clear_history_keeps_session():
    mgr = _manager()

    async def run():
        session = await mgr.initialize_session(title="Tomb of Horrors")
        await mgr.add_message("user", "hi", 3)
        return session

    session = asyncio.run(run())
    mgr.clear_history()
    assert mgr.current_session is session
    assert session.title == "Tomb of Horrors"
    assert mgr.get_stats().message_count == 0
    assert mgr.get_stats().total_tokens == 0


def test_get_stats_without_session_is_zero():
    stats = _manager().get_stats()
    assert (stats.message_count, stats.total_tokens, stats.session_duration_seconds) == (0, 0, 0)


def test_persistence_writes_session_and_messages():
    store = MemoryStore()
    mgr = _manager(enable_persistence=True, store=store)

    async def run():
        session = await mgr.initialize_session(user_id="u1")
        await mgr.add_message("user", "open the door", 4)
        await mgr.wait_for_persistence()
        return session

    session = asyncio.run(run())
    assert store.sessions[session.id].user_id == "u1"
    [rec] = store.messages.values()
    assert rec.session_id == session.id
    assert rec.content == "open the door"
    assert rec.tokens == 4


def test_background_persist_failure_is_logged_not_raised(caplog):
    mgr = _manager(enable_persistence=True, store=FailingStore())

    async def run():
        await mgr.initialize_session()
        msg = await mgr.add_message("user", "still works")
        await mgr.wait_for_persistence()
        return msg

    with caplog.at_level(logging.ERROR, logger="dm_core.persistence"):
        msg = asyncio.run(run())
    assert msg.content == "still works"
    assert mgr.get_stats().message_count == 1
    assert any(r.name == "dm_core.persistence" for r in caplog.records)


def test_save_to_database_wraps_store_errors():
    mgr = _manager(enable_persistence=True, store=FailingStore())

    async def run():
        await mgr.initialize_session()
        await mgr.wait_for_persistence()
        await mgr.save_to_database()

    with pytest.raises(PersistenceError) as ei:
        asyncio.run(run())
    assert ei.value.code == "STORE_WRITE_ERROR"


def test_save_to_database_disabled_is_noop():
    store = MemoryStore()
    mgr = _manager(store=store)

    async def run():
        await mgr.initialize_session()
        await mgr.save_to_database()

    asyncio.run(run())
    assert store.sessions == {}


def test_load_from_database_restores_session():
    store = MemoryStore()
    writer = _manager(enable_persistence=True, store=store)

    async def write():
        session = await writer.initialize_session(title="Saved")
        await writer.add_message("system", "You are a DM.", 10)
        await writer.add_message("user", "look around")
        await writer.add_message("assistant", "A dark cave.", 6)
        await writer.save_to_database()
        await writer.wait_for_persistence()
        return session.id

    session_id = asyncio.run(write())

    reader = _manager(enable_persistence=True, store=store)
    session = asyncio.run(reader.load_from_database(session_id))
    assert reader.current_session is session
    assert session.title == "Saved"
    assert [m.role for m in session.messages] == ["system", "user", "assistant"]
    assert session.total_tokens == 16


def test_load_from_database_requires_persistence():
    mgr = _manager(store=MemoryStore())

    with pytest.raises(PersistenceError) as ei:
        asyncio.run(mgr.load_from_database("session_x"))
    assert ei.value.code == "PERSISTENCE_DISABLED"


def test_load_from_database_missing_session():
    mgr = _manager(enable_persistence=True, store=MemoryStore())

    with pytest.raises(PersistenceError) as ei:
        asyncio.run(mgr.load_from_database("nope"))
    assert ei.value.code == "SESSION_NOT_FOUND"
