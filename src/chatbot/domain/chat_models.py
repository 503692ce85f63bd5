from __future__ import annotations

from typing import Any, Dict, List, Optional, Literal
from pydantic import BaseModel, ConfigDict, Field


Role = Literal["system", "user", "assistant"]


class ContextMessage(BaseModel):
    """One role/content pair of the bundle sent upstream."""

    role: Role
    content: str


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    conversation_id: Optional[int] = Field(default=None, alias="conversationId")
    file_ids: List[int] = Field(default_factory=list, alias="fileIds")
    use_prompt: Optional[int] = Field(default=None, alias="usePrompt")


class ChatMessage(BaseModel):
    id: int
    project_id: int
    conversation_id: Optional[int] = None
    role: Role
    content: str
    created_at: str


class MessageHistory(BaseModel):
    messages: List[ChatMessage]
    total: int


class ChatReply(BaseModel):
    message: str
    usage: Optional[Dict[str, Any]] = None
