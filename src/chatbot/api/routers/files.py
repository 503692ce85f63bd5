from __future__ import annotations

from typing import List
from fastapi import APIRouter, Depends, HTTPException, Response, status

from ...domain.models import Project, ProjectFile, ProjectFileCreate
from ...infrastructure.repository import ProjectRepository
from ...security.auth import User, get_current_user
from ..deps import get_project_repo, require_project


router = APIRouter(tags=["files"])


@router.get("/projects/{project_id}/files", response_model=List[ProjectFile])
def list_files(
    project: Project = Depends(require_project),
    repo: ProjectRepository = Depends(get_project_repo),
) -> List[ProjectFile]:
    return repo.list_files(project.id)


@router.post("/projects/{project_id}/files", response_model=ProjectFile, status_code=status.HTTP_201_CREATED)
def register_file(
    payload: ProjectFileCreate,
    project: Project = Depends(require_project),
    repo: ProjectRepository = Depends(get_project_repo),
) -> ProjectFile:
    """Record an uploaded file together with the text already extracted from it."""
    return repo.add_file(project.id, payload)


@router.delete("/projects/{project_id}/files/{file_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_file(
    file_id: int,
    project: Project = Depends(require_project),
    repo: ProjectRepository = Depends(get_project_repo),
) -> Response:
    if not repo.delete_file(file_id, project.id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/files/{file_id}", response_model=ProjectFile)
def get_file(
    file_id: int,
    user: User = Depends(get_current_user),
    repo: ProjectRepository = Depends(get_project_repo),
) -> ProjectFile:
    f = repo.get_owned_file(file_id, user.user_id)
    if not f:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="File not found")
    return f
