from __future__ import annotations

from dataclasses import dataclass
from threading import RLock
from typing import List, Optional, Protocol
import os

from ..domain.chat_models import ChatMessage
from .database import Database, get_database, now_iso


class MessageStore(Protocol):
    """Append-only log of chat turns keyed by project and conversation.

    ``conversation_id=None`` on :meth:`add_message` and
    :meth:`recent_messages` addresses the project's default (conversation-less)
    scope. On the listing, counting and deleting calls it means "no filter",
    i.e. the whole project.
    """

    def add_message(
        self,
        project_id: int,
        role: str,
        content: str,
        conversation_id: Optional[int] = None,
    ) -> ChatMessage: ...

    def recent_messages(
        self,
        project_id: int,
        conversation_id: Optional[int],
        limit: int = 20,
        exclude_id: Optional[int] = None,
    ) -> List[ChatMessage]: ...

    def list_messages(
        self,
        project_id: int,
        conversation_id: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[ChatMessage]: ...

    def count_messages(self, project_id: int, conversation_id: Optional[int] = None) -> int: ...

    def delete_messages(self, project_id: int, conversation_id: Optional[int] = None) -> int: ...


class SqlMessageStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    def add_message(
        self,
        project_id: int,
        role: str,
        content: str,
        conversation_id: Optional[int] = None,
    ) -> ChatMessage:
        now = now_iso()
        res = self._db.run(
            "INSERT INTO messages (project_id, conversation_id, role, content, created_at) VALUES (?, ?, ?, ?, ?)",
            project_id,
            conversation_id,
            role,
            content,
            now,
        )
        return ChatMessage(
            id=int(res.last_insert_id or 0),
            project_id=project_id,
            conversation_id=conversation_id,
            role=role,  # type: ignore[arg-type]
            content=content,
            created_at=now,
        )

    def recent_messages(
        self,
        project_id: int,
        conversation_id: Optional[int],
        limit: int = 20,
        exclude_id: Optional[int] = None,
    ) -> List[ChatMessage]:
        # Newest first for the bound, then flipped back to chronological order.
        rows = self._db.all(
            """
            SELECT * FROM messages
            WHERE project_id = ? AND conversation_id IS ? AND id != ?
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            project_id,
            conversation_id,
            exclude_id if exclude_id is not None else -1,
            max(0, limit),
        )
        return [ChatMessage(**r) for r in reversed(rows)]

    def list_messages(
        self,
        project_id: int,
        conversation_id: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[ChatMessage]:
        if conversation_id is None:
            rows = self._db.all(
                "SELECT * FROM messages WHERE project_id = ? ORDER BY created_at ASC, id ASC LIMIT ? OFFSET ?",
                project_id,
                limit,
                offset,
            )
        else:
            rows = self._db.all(
                """
                SELECT * FROM messages WHERE project_id = ? AND conversation_id = ?
                ORDER BY created_at ASC, id ASC LIMIT ? OFFSET ?
                """,
                project_id,
                conversation_id,
                limit,
                offset,
            )
        return [ChatMessage(**r) for r in rows]

    def count_messages(self, project_id: int, conversation_id: Optional[int] = None) -> int:
        if conversation_id is None:
            row = self._db.get("SELECT COUNT(*) AS count FROM messages WHERE project_id = ?", project_id)
        else:
            row = self._db.get(
                "SELECT COUNT(*) AS count FROM messages WHERE project_id = ? AND conversation_id = ?",
                project_id,
                conversation_id,
            )
        return int(row["count"]) if row else 0

    def delete_messages(self, project_id: int, conversation_id: Optional[int] = None) -> int:
        if conversation_id is None:
            res = self._db.run("DELETE FROM messages WHERE project_id = ?", project_id)
        else:
            res = self._db.run(
                "DELETE FROM messages WHERE project_id = ? AND conversation_id = ?",
                project_id,
                conversation_id,
            )
        return res.changes


@dataclass
class _Message:
    id: int
    project_id: int
    conversation_id: Optional[int]
    role: str
    content: str
    created_at: str


class InMemoryMessageStore:
    """Process-local store, handy for tests and throwaway dev servers."""

    def __init__(self) -> None:
        self._messages: List[_Message] = []
        self._counter = 0
        self._lock = RLock()

    def _model(self, message: _Message) -> ChatMessage:
        return ChatMessage(**message.__dict__)

    def _sorted(self, project_id: int) -> List[_Message]:
        items = [m for m in self._messages if m.project_id == project_id]
        return sorted(items, key=lambda m: (m.created_at, m.id))

    def add_message(
        self,
        project_id: int,
        role: str,
        content: str,
        conversation_id: Optional[int] = None,
    ) -> ChatMessage:
        with self._lock:
            self._counter += 1
            msg = _Message(
                id=self._counter,
                project_id=project_id,
                conversation_id=conversation_id,
                role=role,
                content=content,
                created_at=now_iso(),
            )
            self._messages.append(msg)
            return self._model(msg)

    def recent_messages(
        self,
        project_id: int,
        conversation_id: Optional[int],
        limit: int = 20,
        exclude_id: Optional[int] = None,
    ) -> List[ChatMessage]:
        with self._lock:
            scoped = [
                m
                for m in self._sorted(project_id)
                if m.conversation_id == conversation_id and m.id != exclude_id
            ]
            if limit <= 0:
                return []
            return [self._model(m) for m in scoped[-limit:]]

    def list_messages(
        self,
        project_id: int,
        conversation_id: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[ChatMessage]:
        with self._lock:
            items = self._sorted(project_id)
            if conversation_id is not None:
                items = [m for m in items if m.conversation_id == conversation_id]
            return [self._model(m) for m in items[offset : offset + max(0, limit)]]

    def count_messages(self, project_id: int, conversation_id: Optional[int] = None) -> int:
        with self._lock:
            return len(
                [
                    m
                    for m in self._messages
                    if m.project_id == project_id
                    and (conversation_id is None or m.conversation_id == conversation_id)
                ]
            )

    def delete_messages(self, project_id: int, conversation_id: Optional[int] = None) -> int:
        with self._lock:
            keep: List[_Message] = []
            removed = 0
            for m in self._messages:
                if m.project_id == project_id and (conversation_id is None or m.conversation_id == conversation_id):
                    removed += 1
                    continue
                keep.append(m)
            self._messages = keep
            return removed


_store: MessageStore | None = None


def get_chat_store() -> MessageStore:
    global _store
    if _store is not None:
        return _store
    impl = os.getenv("CHATBOT_CHAT_STORE_IMPL", "sql").lower()
    if impl == "memory":
        _store = InMemoryMessageStore()
    else:
        _store = SqlMessageStore(get_database())
    return _store
