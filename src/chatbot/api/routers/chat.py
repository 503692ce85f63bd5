from __future__ import annotations

from typing import Optional
import logging
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import StreamingResponse

from ...domain.chat_models import ChatReply, ChatRequest, MessageHistory
from ...domain.errors import ChatValidationError, NotFoundError, UpstreamError
from ...domain.models import Project
from ...infrastructure.chat_store import MessageStore
from ...security.auth import User, get_current_user
from ...services.chat_turns import ChatTurnService
from ..deps import get_message_store, get_turn_service, require_project


logger = logging.getLogger(__name__)

router = APIRouter(tags=["chat"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.get("/projects/{project_id}/messages", response_model=MessageHistory)
def list_messages(
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    conversation_id: Optional[int] = Query(None, alias="conversationId"),
    project: Project = Depends(require_project),
    store: MessageStore = Depends(get_message_store),
) -> MessageHistory:
    messages = store.list_messages(project.id, conversation_id=conversation_id, limit=limit, offset=offset)
    total = store.count_messages(project.id, conversation_id=conversation_id)
    return MessageHistory(messages=messages, total=total)


@router.post("/projects/{project_id}/chat", response_model=None)
async def send_message(
    project_id: int,
    req: ChatRequest,
    stream: bool = Query(True),
    user: User = Depends(get_current_user),
    service: ChatTurnService = Depends(get_turn_service),
) -> StreamingResponse | ChatReply:
    try:
        turn = await service.open_turn(project_id, user.user_id, req)
    except ChatValidationError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))

    if stream:
        return StreamingResponse(
            service.stream_turn(turn),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    try:
        return await service.complete_turn(turn)
    except UpstreamError as e:
        logger.warning("Chat completion failed project=%s: %s", project_id, e)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e) or "Failed to get AI response")


@router.delete("/projects/{project_id}/messages")
def clear_messages(
    conversation_id: Optional[int] = Query(None, alias="conversationId"),
    project: Project = Depends(require_project),
    store: MessageStore = Depends(get_message_store),
) -> dict:
    removed = store.delete_messages(project.id, conversation_id=conversation_id)
    logger.info("Cleared chat history project=%s conversation=%s removed=%d", project.id, conversation_id, removed)
    return {"message": "Chat history cleared", "deleted": removed}
