from __future__ import annotations

from typing import Optional
from pydantic import BaseModel, Field


class ProjectCreate(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    system_prompt: Optional[str] = Field(default=None, description="Defaults to the platform system prompt")
    model: Optional[str] = Field(default=None, description="Provider model id, e.g. openai/gpt-3.5-turbo")


class ProjectUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    system_prompt: Optional[str] = None
    model: Optional[str] = None


class Project(BaseModel):
    id: int
    user_id: str
    name: str
    description: Optional[str] = None
    system_prompt: str = ""
    model: str
    created_at: str
    updated_at: str


class ConversationCreate(BaseModel):
    title: Optional[str] = None


class ConversationUpdate(BaseModel):
    title: Optional[str] = None


class Conversation(BaseModel):
    id: int
    project_id: int
    title: str
    created_at: str
    updated_at: str
    message_count: Optional[int] = None
    last_message: Optional[str] = None


class PromptCreate(BaseModel):
    name: str = Field(min_length=1)
    content: str = Field(min_length=1)


class PromptUpdate(BaseModel):
    name: Optional[str] = None
    content: Optional[str] = None


class Prompt(BaseModel):
    id: int
    project_id: int
    name: str
    content: str
    created_at: str
    updated_at: str


class ProjectFileCreate(BaseModel):
    """File record whose text was already extracted upstream of this service."""

    filename: str
    original_name: str
    mime_type: str = "text/plain"
    size: int = 0
    extracted_text: Optional[str] = None
    extraction_method: Optional[str] = None


class ProjectFile(BaseModel):
    id: int
    project_id: int
    filename: str
    original_name: str
    mime_type: str
    size: int
    extracted_text: Optional[str] = None
    extraction_method: Optional[str] = None
    created_at: str
