from __future__ import annotations

from typing import List
from fastapi import APIRouter, Depends, HTTPException, Response, status

from ...domain.models import Project, ProjectCreate, ProjectUpdate
from ...infrastructure.chat_store import MessageStore
from ...infrastructure.repository import ProjectRepository
from ...security.auth import User, get_current_user
from ..deps import get_message_store, get_project_repo, require_project


router = APIRouter(prefix="/projects", tags=["projects"])


@router.get("", response_model=List[Project])
def list_projects(
    user: User = Depends(get_current_user),
    repo: ProjectRepository = Depends(get_project_repo),
) -> List[Project]:
    return repo.list_projects(user.user_id)


@router.post("", response_model=Project, status_code=status.HTTP_201_CREATED)
def create_project(
    payload: ProjectCreate,
    user: User = Depends(get_current_user),
    repo: ProjectRepository = Depends(get_project_repo),
) -> Project:
    if not payload.name.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Project name is required")
    return repo.create_project(user.user_id, payload)


@router.get("/{project_id}", response_model=Project)
def get_project(project: Project = Depends(require_project)) -> Project:
    return project


@router.put("/{project_id}", response_model=Project)
def update_project(
    payload: ProjectUpdate,
    project: Project = Depends(require_project),
    user: User = Depends(get_current_user),
    repo: ProjectRepository = Depends(get_project_repo),
) -> Project:
    updated = repo.update_project(project.id, user.user_id, payload)
    if not updated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Project not found")
    return updated


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_project(
    project: Project = Depends(require_project),
    user: User = Depends(get_current_user),
    repo: ProjectRepository = Depends(get_project_repo),
    store: MessageStore = Depends(get_message_store),
) -> Response:
    store.delete_messages(project.id)
    repo.delete_project(project.id, user.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
