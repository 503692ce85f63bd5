from __future__ import annotations

"""SQLite handle exposing the small get/all/run query contract.

Every statement is self-contained; callers never hold a transaction open
across an await point.

Env vars:
- CHATBOT_DB_PATH (default ":memory:")
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from threading import RLock
from typing import Any, Dict, List, Optional
import logging
import os
import sqlite3


logger = logging.getLogger(__name__)


SCHEMA = """
CREATE TABLE IF NOT EXISTS projects (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT NOT NULL,
    name TEXT NOT NULL,
    description TEXT,
    system_prompt TEXT NOT NULL DEFAULT '',
    model TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS conversations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    title TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    conversation_id INTEGER REFERENCES conversations(id) ON DELETE CASCADE,
    role TEXT NOT NULL CHECK (role IN ('system', 'user', 'assistant')),
    content TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_messages_scope
    ON messages (project_id, conversation_id, created_at, id);

CREATE TABLE IF NOT EXISTS prompts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    content TEXT NOT NULL,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS files (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    project_id INTEGER NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    filename TEXT NOT NULL,
    original_name TEXT NOT NULL,
    mime_type TEXT NOT NULL,
    size INTEGER NOT NULL DEFAULT 0,
    extracted_text TEXT,
    extraction_method TEXT,
    created_at TEXT NOT NULL
);
"""


def now_iso() -> str:
    # Microsecond precision keeps created_at ordering meaningful within a turn.
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


@dataclass
class RunResult:
    last_insert_id: Optional[int]
    changes: int


class Database:
    """Thread-safe wrapper over a single sqlite3 connection."""

    def __init__(self, path: Optional[str] = None) -> None:
        self._path = path or os.getenv("CHATBOT_DB_PATH", ":memory:")
        self._lock = RLock()
        self._conn = sqlite3.connect(self._path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._conn.executescript(SCHEMA)
        self._conn.commit()
        logger.info("Database ready path=%s", self._path)

    @property
    def path(self) -> str:
        return self._path

    def get(self, sql: str, *params: Any) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._conn.execute(sql, params).fetchone()
            return dict(row) if row is not None else None

    def all(self, sql: str, *params: Any) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(r) for r in self._conn.execute(sql, params).fetchall()]

    def run(self, sql: str, *params: Any) -> RunResult:
        with self._lock:
            try:
                cur = self._conn.execute(sql, params)
                self._conn.commit()
            except sqlite3.Error:
                self._conn.rollback()
                logger.exception("DB run failed sql=%s", sql.strip().splitlines()[0])
                raise
            return RunResult(last_insert_id=cur.lastrowid, changes=cur.rowcount)

    def close(self) -> None:
        with self._lock:
            self._conn.close()


_database: Database | None = None


def get_database() -> Database:
    global _database
    if _database is None:
        _database = Database()
    return _database


def reset_database(db: Optional[Database] = None) -> Database:
    """Replace the process-wide handle (fresh in-memory database by default)."""
    global _database
    _database = db or Database()
    return _database
