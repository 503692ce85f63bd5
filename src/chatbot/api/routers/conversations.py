from __future__ import annotations

from typing import List
from fastapi import APIRouter, Depends, HTTPException, Response, status

from ...domain.models import Conversation, ConversationCreate, ConversationUpdate, Project
from ...infrastructure.chat_store import MessageStore
from ...infrastructure.repository import ProjectRepository
from ...security.auth import User, get_current_user
from ..deps import get_message_store, get_project_repo, require_project


router = APIRouter(tags=["conversations"])


def _owned_conversation(conversation_id: int, user: User, repo: ProjectRepository) -> Conversation:
    conv = repo.get_conversation(conversation_id, user.user_id)
    if not conv:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
    return conv


def _with_activity(conv: Conversation, store: MessageStore) -> Conversation:
    # Messages may live outside sqlite (memory store).
    latest = store.recent_messages(conv.project_id, conv.id, limit=1)
    return conv.model_copy(
        update={
            "message_count": store.count_messages(conv.project_id, conversation_id=conv.id),
            "last_message": latest[-1].content if latest else None,
        }
    )


@router.get("/projects/{project_id}/conversations", response_model=List[Conversation])
def list_conversations(
    project: Project = Depends(require_project),
    repo: ProjectRepository = Depends(get_project_repo),
    store: MessageStore = Depends(get_message_store),
) -> List[Conversation]:
    return [_with_activity(c, store) for c in repo.list_conversations(project.id)]


@router.post(
    "/projects/{project_id}/conversations",
    response_model=Conversation,
    status_code=status.HTTP_201_CREATED,
)
def create_conversation(
    payload: ConversationCreate,
    project: Project = Depends(require_project),
    repo: ProjectRepository = Depends(get_project_repo),
) -> Conversation:
    return repo.create_conversation(project.id, payload.title)


@router.put("/conversations/{conversation_id}", response_model=Conversation)
def rename_conversation(
    conversation_id: int,
    payload: ConversationUpdate,
    user: User = Depends(get_current_user),
    repo: ProjectRepository = Depends(get_project_repo),
) -> Conversation:
    conv = _owned_conversation(conversation_id, user, repo)
    title = (payload.title or "").strip() or conv.title
    updated = repo.rename_conversation(conv.id, title)
    if not updated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
    return updated


@router.delete("/conversations/{conversation_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_conversation(
    conversation_id: int,
    user: User = Depends(get_current_user),
    repo: ProjectRepository = Depends(get_project_repo),
    store: MessageStore = Depends(get_message_store),
) -> Response:
    conv = _owned_conversation(conversation_id, user, repo)
    # Explicit so stores without foreign keys cascade too.
    store.delete_messages(conv.project_id, conversation_id=conv.id)
    repo.delete_conversation(conv.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
