from __future__ import annotations

"""Build the ordered role/content bundle sent upstream for one turn.

Order is fixed: project system prompt, attached-file excerpts, saved prompt,
bounded history of the same conversation scope, then the new user message.
Truncation is by characters, not tokens.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Sequence
import logging

from ..domain.chat_models import ContextMessage
from ..domain.errors import ChatValidationError, NotFoundError
from ..domain.models import Conversation, Project, ProjectFile
from ..infrastructure.chat_store import MessageStore
from ..infrastructure.repository import ProjectRepository


logger = logging.getLogger(__name__)

HISTORY_LIMIT = 20
FILE_EXCERPT_CHARS = 4000
FILE_BLOCK_HEADER = "The user has attached the following reference files:"
FILE_END_MARKER = "--- END FILE ---"


def normalize_message(text: Optional[str]) -> str:
    """Return the trimmed user text or raise when nothing is left."""
    cleaned = (text or "").strip()
    if not cleaned:
        raise ChatValidationError("Message content is required")
    return cleaned


def file_block(files: Sequence[ProjectFile]) -> Optional[str]:
    parts: List[str] = []
    for f in files:
        text = f.extracted_text
        if not isinstance(text, str) or not text.strip():
            continue
        parts.append(f"FILE: {f.original_name}\n{text[:FILE_EXCERPT_CHARS]}\n{FILE_END_MARKER}")
    if not parts:
        return None
    return FILE_BLOCK_HEADER + "\n\n" + "\n\n".join(parts)


@dataclass
class ContextBundle:
    project: Project
    messages: List[ContextMessage] = field(default_factory=list)
    conversation: Optional[Conversation] = None

    @property
    def model(self) -> str:
        return self.project.model

    def as_payload(self) -> List[dict]:
        return [m.model_dump() for m in self.messages]


class ContextBuilder:
    def __init__(
        self,
        repo: ProjectRepository,
        store: MessageStore,
        history_limit: int = HISTORY_LIMIT,
    ) -> None:
        self._repo = repo
        self._store = store
        self._history_limit = history_limit

    def resolve_project(self, project_id: int, user_id: str) -> Project:
        project = self._repo.get_project(project_id, user_id)
        if not project:
            raise NotFoundError("Project", project_id)
        return project

    def resolve_conversation(self, project: Project, conversation_id: Optional[int], user_id: str) -> Optional[Conversation]:
        if conversation_id is None:
            return None
        conversation = self._repo.get_conversation(conversation_id, user_id)
        if not conversation or conversation.project_id != project.id:
            raise NotFoundError("Conversation", conversation_id)
        return conversation

    def build(
        self,
        project: Project,
        user_message: str,
        conversation_id: Optional[int] = None,
        file_ids: Optional[Sequence[int]] = None,
        prompt_id: Optional[int] = None,
        exclude_message_id: Optional[int] = None,
    ) -> List[ContextMessage]:
        """Assemble the bundle from current stored state.

        Reads only; calling it twice for the same pending message yields the
        same list.
        """
        text = normalize_message(user_message)
        messages: List[ContextMessage] = []

        # Read at assembly time, never cached across turns.
        if project.system_prompt and project.system_prompt.strip():
            messages.append(ContextMessage(role="system", content=project.system_prompt))

        if file_ids:
            files = self._repo.get_files(project.id, file_ids)
            block = file_block(files)
            if block:
                messages.append(ContextMessage(role="system", content=block))
            else:
                logger.debug("No file text contributed project=%s requested=%s", project.id, list(file_ids))

        if prompt_id is not None:
            prompt = self._repo.get_prompt(prompt_id, project.id)
            if prompt:
                messages.append(ContextMessage(role="system", content=prompt.content))
            else:
                logger.debug("Saved prompt %s not found for project %s; ignoring", prompt_id, project.id)

        history = self._store.recent_messages(
            project.id,
            conversation_id,
            limit=self._history_limit,
            exclude_id=exclude_message_id,
        )
        for m in history:
            messages.append(ContextMessage(role=m.role, content=m.content))

        messages.append(ContextMessage(role="user", content=text))
        return messages
