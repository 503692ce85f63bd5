from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Protocol, Sequence
import os

from ..domain.models import (
    Conversation,
    Project,
    ProjectCreate,
    ProjectFile,
    ProjectFileCreate,
    ProjectUpdate,
    Prompt,
)
from .database import Database, get_database, now_iso


DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant."
DEFAULT_MODEL = "openai/gpt-3.5-turbo"


def default_system_prompt() -> str:
    return os.getenv("CHATBOT_DEFAULT_SYSTEM_PROMPT", DEFAULT_SYSTEM_PROMPT)


def default_model() -> str:
    return os.getenv("DEFAULT_MODEL", DEFAULT_MODEL)


class ProjectRepository(Protocol):
    def create_project(self, user_id: str, payload: ProjectCreate) -> Project: ...
    def list_projects(self, user_id: str) -> List[Project]: ...
    def get_project(self, project_id: int, user_id: str) -> Optional[Project]: ...
    def update_project(self, project_id: int, user_id: str, payload: ProjectUpdate) -> Optional[Project]: ...
    def delete_project(self, project_id: int, user_id: str) -> bool: ...

    def list_conversations(self, project_id: int) -> List[Conversation]: ...
    def create_conversation(self, project_id: int, title: Optional[str] = None) -> Conversation: ...
    def get_conversation(self, conversation_id: int, user_id: str) -> Optional[Conversation]: ...
    def rename_conversation(self, conversation_id: int, title: str) -> Optional[Conversation]: ...
    def touch_conversation(self, conversation_id: int) -> str: ...
    def delete_conversation(self, conversation_id: int) -> bool: ...

    def list_prompts(self, project_id: int) -> List[Prompt]: ...
    def create_prompt(self, project_id: int, name: str, content: str) -> Prompt: ...
    def get_prompt(self, prompt_id: int, project_id: int) -> Optional[Prompt]: ...
    def get_owned_prompt(self, prompt_id: int, user_id: str) -> Optional[Prompt]: ...
    def update_prompt(self, prompt_id: int, name: Optional[str], content: Optional[str]) -> Optional[Prompt]: ...
    def delete_prompt(self, prompt_id: int, project_id: int) -> bool: ...

    def list_files(self, project_id: int) -> List[ProjectFile]: ...
    def add_file(self, project_id: int, payload: ProjectFileCreate) -> ProjectFile: ...
    def get_files(self, project_id: int, file_ids: Sequence[int]) -> List[ProjectFile]: ...
    def get_owned_file(self, file_id: int, user_id: str) -> Optional[ProjectFile]: ...
    def delete_file(self, file_id: int, project_id: int) -> bool: ...


def _parse_iso(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _format_iso(value: datetime) -> str:
    return value.isoformat(timespec="microseconds").replace("+00:00", "Z")


class SqlProjectRepository:
    """Owner-scoped lookups and writes for the records a chat turn reads.

    Every read that takes a ``user_id`` only resolves rows owned by that
    user; a foreign id behaves exactly like a missing one.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------
    def create_project(self, user_id: str, payload: ProjectCreate) -> Project:
        now = now_iso()
        res = self._db.run(
            """
            INSERT INTO projects (user_id, name, description, system_prompt, model, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            user_id,
            payload.name,
            payload.description,
            payload.system_prompt if payload.system_prompt is not None else default_system_prompt(),
            payload.model or default_model(),
            now,
            now,
        )
        row = self._db.get("SELECT * FROM projects WHERE id = ?", res.last_insert_id)
        return Project(**row)

    def list_projects(self, user_id: str) -> List[Project]:
        rows = self._db.all("SELECT * FROM projects WHERE user_id = ? ORDER BY updated_at DESC, id DESC", user_id)
        return [Project(**r) for r in rows]

    def get_project(self, project_id: int, user_id: str) -> Optional[Project]:
        row = self._db.get("SELECT * FROM projects WHERE id = ? AND user_id = ?", project_id, user_id)
        return Project(**row) if row else None

    def update_project(self, project_id: int, user_id: str, payload: ProjectUpdate) -> Optional[Project]:
        if not self.get_project(project_id, user_id):
            return None
        self._db.run(
            """
            UPDATE projects SET
                name = COALESCE(?, name),
                description = COALESCE(?, description),
                system_prompt = COALESCE(?, system_prompt),
                model = COALESCE(?, model),
                updated_at = ?
            WHERE id = ? AND user_id = ?
            """,
            payload.name or None,
            payload.description,
            payload.system_prompt,
            payload.model or None,
            now_iso(),
            project_id,
            user_id,
        )
        return self.get_project(project_id, user_id)

    def delete_project(self, project_id: int, user_id: str) -> bool:
        res = self._db.run("DELETE FROM projects WHERE id = ? AND user_id = ?", project_id, user_id)
        return res.changes > 0

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------
    def list_conversations(self, project_id: int) -> List[Conversation]:
        rows = self._db.all(
            """
            SELECT * FROM conversations
            WHERE project_id = ?
            ORDER BY updated_at DESC, id DESC
            """,
            project_id,
        )
        return [Conversation(**r) for r in rows]

    def create_conversation(self, project_id: int, title: Optional[str] = None) -> Conversation:
        now = now_iso()
        res = self._db.run(
            "INSERT INTO conversations (project_id, title, created_at, updated_at) VALUES (?, ?, ?, ?)",
            project_id,
            (title or "").strip() or "New Chat",
            now,
            now,
        )
        row = self._db.get("SELECT * FROM conversations WHERE id = ?", res.last_insert_id)
        return Conversation(**row)

    def get_conversation(self, conversation_id: int, user_id: str) -> Optional[Conversation]:
        row = self._db.get(
            """
            SELECT c.* FROM conversations c
            JOIN projects p ON c.project_id = p.id
            WHERE c.id = ? AND p.user_id = ?
            """,
            conversation_id,
            user_id,
        )
        return Conversation(**row) if row else None

    def rename_conversation(self, conversation_id: int, title: str) -> Optional[Conversation]:
        stamp = self.touch_conversation(conversation_id)
        if not stamp:
            return None
        self._db.run("UPDATE conversations SET title = ? WHERE id = ?", title, conversation_id)
        row = self._db.get("SELECT * FROM conversations WHERE id = ?", conversation_id)
        return Conversation(**row) if row else None

    def touch_conversation(self, conversation_id: int) -> str:
        """Move ``updated_at`` strictly forward and return the new stamp ("" if missing)."""
        row = self._db.get("SELECT updated_at FROM conversations WHERE id = ?", conversation_id)
        if not row:
            return ""
        now = _parse_iso(now_iso())
        previous = _parse_iso(row["updated_at"])
        if now <= previous:
            now = previous + timedelta(microseconds=1)
        stamp = _format_iso(now)
        self._db.run("UPDATE conversations SET updated_at = ? WHERE id = ?", stamp, conversation_id)
        return stamp

    def delete_conversation(self, conversation_id: int) -> bool:
        # messages go with it via ON DELETE CASCADE
        res = self._db.run("DELETE FROM conversations WHERE id = ?", conversation_id)
        return res.changes > 0

    # ------------------------------------------------------------------
    # Prompts
    # ------------------------------------------------------------------
    def list_prompts(self, project_id: int) -> List[Prompt]:
        rows = self._db.all("SELECT * FROM prompts WHERE project_id = ? ORDER BY created_at DESC, id DESC", project_id)
        return [Prompt(**r) for r in rows]

    def create_prompt(self, project_id: int, name: str, content: str) -> Prompt:
        now = now_iso()
        res = self._db.run(
            "INSERT INTO prompts (project_id, name, content, created_at, updated_at) VALUES (?, ?, ?, ?, ?)",
            project_id,
            name,
            content,
            now,
            now,
        )
        row = self._db.get("SELECT * FROM prompts WHERE id = ?", res.last_insert_id)
        return Prompt(**row)

    def get_prompt(self, prompt_id: int, project_id: int) -> Optional[Prompt]:
        row = self._db.get("SELECT * FROM prompts WHERE id = ? AND project_id = ?", prompt_id, project_id)
        return Prompt(**row) if row else None

    def get_owned_prompt(self, prompt_id: int, user_id: str) -> Optional[Prompt]:
        row = self._db.get(
            """
            SELECT pr.* FROM prompts pr
            JOIN projects p ON pr.project_id = p.id
            WHERE pr.id = ? AND p.user_id = ?
            """,
            prompt_id,
            user_id,
        )
        return Prompt(**row) if row else None

    def update_prompt(self, prompt_id: int, name: Optional[str], content: Optional[str]) -> Optional[Prompt]:
        """Blank fields keep their stored value."""
        res = self._db.run(
            """
            UPDATE prompts SET
                name = COALESCE(?, name),
                content = COALESCE(?, content),
                updated_at = ?
            WHERE id = ?
            """,
            (name or "").strip() or None,
            (content or "").strip() or None,
            now_iso(),
            prompt_id,
        )
        if not res.changes:
            return None
        row = self._db.get("SELECT * FROM prompts WHERE id = ?", prompt_id)
        return Prompt(**row) if row else None

    def delete_prompt(self, prompt_id: int, project_id: int) -> bool:
        res = self._db.run("DELETE FROM prompts WHERE id = ? AND project_id = ?", prompt_id, project_id)
        return res.changes > 0

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------
    def list_files(self, project_id: int) -> List[ProjectFile]:
        rows = self._db.all("SELECT * FROM files WHERE project_id = ? ORDER BY created_at DESC, id DESC", project_id)
        return [ProjectFile(**r) for r in rows]

    def add_file(self, project_id: int, payload: ProjectFileCreate) -> ProjectFile:
        res = self._db.run(
            """
            INSERT INTO files (project_id, filename, original_name, mime_type, size,
                               extracted_text, extraction_method, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            project_id,
            payload.filename,
            payload.original_name,
            payload.mime_type,
            payload.size,
            payload.extracted_text,
            payload.extraction_method,
            now_iso(),
        )
        row = self._db.get("SELECT * FROM files WHERE id = ?", res.last_insert_id)
        return ProjectFile(**row)

    def get_files(self, project_id: int, file_ids: Sequence[int]) -> List[ProjectFile]:
        """Return the project's files among ``file_ids``, in request order."""
        out: List[ProjectFile] = []
        seen: set[int] = set()
        for fid in file_ids:
            if fid in seen:
                continue
            seen.add(fid)
            row: Optional[Dict[str, Any]] = self._db.get(
                "SELECT * FROM files WHERE id = ? AND project_id = ?", fid, project_id
            )
            if row:
                out.append(ProjectFile(**row))
        return out

    def get_owned_file(self, file_id: int, user_id: str) -> Optional[ProjectFile]:
        row = self._db.get(
            """
            SELECT f.* FROM files f
            JOIN projects p ON f.project_id = p.id
            WHERE f.id = ? AND p.user_id = ?
            """,
            file_id,
            user_id,
        )
        return ProjectFile(**row) if row else None

    def delete_file(self, file_id: int, project_id: int) -> bool:
        res = self._db.run("DELETE FROM files WHERE id = ? AND project_id = ?", file_id, project_id)
        return res.changes > 0


_repo: ProjectRepository | None = None


def get_repo() -> ProjectRepository:
    global _repo
    if _repo is None:
        _repo = SqlProjectRepository(get_database())
    return _repo
