from __future__ import annotations

from fastapi import Depends, HTTPException, status

from ..domain.models import Project
from ..infrastructure.chat_store import MessageStore, get_chat_store
from ..infrastructure.repository import ProjectRepository, get_repo
from ..security.auth import User, get_current_user
from ..services.chat_turns import ChatTurnService
from ..services.llm_client import ProviderClient, get_provider_client


def get_project_repo() -> ProjectRepository:
    return get_repo()


def get_message_store() -> MessageStore:
    return get_chat_store()


def get_llm_client() -> ProviderClient:
    return get_provider_client()


def get_turn_service(
    repo: ProjectRepository = Depends(get_project_repo),
    store: MessageStore = Depends(get_message_store),
    client: ProviderClient = Depends(get_llm_client),
) -> ChatTurnService:
    return ChatTurnService(repo, store, client)


def require_project(
    project_id: int,
    user: User = Depends(get_current_user),
    repo: ProjectRepository = Depends(get_project_repo),
) -> Project:
    proj = repo.get_project(project_id, user.user_id)
    if not proj:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    return proj
