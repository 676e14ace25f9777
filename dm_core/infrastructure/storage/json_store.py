import asyncio
import json
import os
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Tuple
from uuid import uuid4

from dm_core.config.settings import settings
from dm_core.domain.conversation import ConversationStore, MessageRecord, SessionRecord
from dm_core.domain.exceptions import PersistenceError


def _iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


def _parse_dt(value: str) -> datetime:
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


class JsonConversationStore(ConversationStore):
    """基于目录的会话存储：sessions/<id>/meta.json + messages/<msg_id>.json。

    每条消息单独一个文件，重复写入同一 id 即覆盖，实现 upsert 语义。
    文件 IO 放到线程中执行，不阻塞事件循环。
    """

    def __init__(self, root: str | Path | None = None):
        self._root = Path(root or settings.storage_root).resolve()
        self._sessions_root = self._root / "sessions"
        self._sessions_root.mkdir(parents=True, exist_ok=True)

    async def upsert_session(self, record: SessionRecord) -> None:
        await asyncio.to_thread(self._write_session, record)

    async def upsert_message(self, record: MessageRecord) -> None:
        await asyncio.to_thread(self._write_message, record)

    async def load_session(self, session_id: str) -> Tuple[SessionRecord, List[MessageRecord]]:
        return await asyncio.to_thread(self._read_session, session_id)

    def list_session_ids(self) -> List[str]:
        return sorted(p.name for p in self._sessions_root.iterdir() if (p / "meta.json").exists())

    def _write_session(self, record: SessionRecord) -> None:
        sdir = self._sessions_root / record.id
        sdir.mkdir(parents=True, exist_ok=True)
        obj = {
            "id": record.id,
            "user_id": record.user_id,
            "title": record.title,
            "created_at": _iso(record.created_at),
            "updated_at": _iso(record.updated_at),
        }
        self._atomic_write(sdir / "meta.json", obj)

    def _write_message(self, record: MessageRecord) -> None:
        sdir = self._sessions_root / record.session_id
        mdir = sdir / "messages"
        mdir.mkdir(parents=True, exist_ok=True)
        payload = asdict(record)
        payload["created_at"] = _iso(record.created_at)
        self._atomic_write(mdir / f"{record.id}.json", payload)

    def _read_session(self, session_id: str) -> Tuple[SessionRecord, List[MessageRecord]]:
        sdir = self._sessions_root / session_id
        meta_path = sdir / "meta.json"
        if not meta_path.exists():
            raise PersistenceError(code="SESSION_NOT_FOUND", message=session_id)
        try:
            data = json.loads(meta_path.read_text(encoding="utf-8"))
            session = SessionRecord(
                id=data["id"],
                user_id=data.get("user_id"),
                title=data.get("title"),
                created_at=_parse_dt(data["created_at"]),
                updated_at=_parse_dt(data["updated_at"]),
            )
            messages: List[MessageRecord] = []
            mdir = sdir / "messages"
            if mdir.exists():
                for path in mdir.glob("*.json"):
                    messages.append(self._to_message(json.loads(path.read_text(encoding="utf-8"))))
        except (OSError, ValueError, KeyError) as e:
            raise PersistenceError(code="STORE_READ_ERROR", message=str(e)) from e
        messages.sort(key=lambda m: m.created_at)
        return session, messages

    def _atomic_write(self, path: Path, obj: Dict[str, Any]) -> None:
        tmp_path = path.with_name(f"{path.stem}.{uuid4().hex}.tmp")
        try:
            tmp_path.write_text(json.dumps(obj, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp_path, path)
        except OSError as e:
            raise PersistenceError(code="STORE_WRITE_ERROR", message=str(e)) from e

    def _to_message(self, data: Dict[str, Any]) -> MessageRecord:
        tokens = data.get("tokens")
        return MessageRecord(
            id=data["id"],
            session_id=data["session_id"],
            role=data["role"],
            content=data.get("content") or "",
            tokens=int(tokens) if tokens is not None else None,
            created_at=_parse_dt(data["created_at"]),
        )
