from __future__ import annotations

from typing import List
from fastapi import APIRouter, Depends, HTTPException, Response, status

from ...domain.models import Project, Prompt, PromptCreate, PromptUpdate
from ...infrastructure.repository import ProjectRepository
from ...security.auth import User, get_current_user
from ..deps import get_project_repo, require_project


router = APIRouter(tags=["prompts"])


@router.get("/projects/{project_id}/prompts", response_model=List[Prompt])
def list_prompts(
    project: Project = Depends(require_project),
    repo: ProjectRepository = Depends(get_project_repo),
) -> List[Prompt]:
    return repo.list_prompts(project.id)


@router.post("/projects/{project_id}/prompts", response_model=Prompt, status_code=status.HTTP_201_CREATED)
def create_prompt(
    payload: PromptCreate,
    project: Project = Depends(require_project),
    repo: ProjectRepository = Depends(get_project_repo),
) -> Prompt:
    return repo.create_prompt(project.id, payload.name.strip(), payload.content)


@router.delete("/projects/{project_id}/prompts/{prompt_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_prompt(
    prompt_id: int,
    project: Project = Depends(require_project),
    repo: ProjectRepository = Depends(get_project_repo),
) -> Response:
    if not repo.delete_prompt(prompt_id, project.id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Prompt not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


def _owned_prompt(prompt_id: int, user: User, repo: ProjectRepository) -> Prompt:
    prompt = repo.get_owned_prompt(prompt_id, user.user_id)
    if not prompt:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Prompt not found")
    return prompt


@router.get("/prompts/{prompt_id}", response_model=Prompt)
def get_prompt(
    prompt_id: int,
    user: User = Depends(get_current_user),
    repo: ProjectRepository = Depends(get_project_repo),
) -> Prompt:
    return _owned_prompt(prompt_id, user, repo)


@router.put("/prompts/{prompt_id}", response_model=Prompt)
def update_prompt(
    prompt_id: int,
    payload: PromptUpdate,
    user: User = Depends(get_current_user),
    repo: ProjectRepository = Depends(get_project_repo),
) -> Prompt:
    prompt = _owned_prompt(prompt_id, user, repo)
    updated = repo.update_prompt(prompt.id, payload.name, payload.content)
    if not updated:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Prompt not found")
    return updated
