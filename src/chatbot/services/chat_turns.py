from __future__ import annotations

"""Turn persistence around the relay.

A turn writes the user message before anything goes upstream and the
assistant message only after the relay has concluded with non-empty text.
The two writes are independent appends: a crash or a dropped client between
them leaves an unanswered user message, which is accepted.
"""

from contextlib import aclosing
from dataclasses import dataclass
from typing import AsyncIterator, Optional
import asyncio
import logging

from ..domain.chat_models import ChatMessage, ChatReply, ChatRequest
from ..infrastructure.chat_store import MessageStore
from ..infrastructure.repository import ProjectRepository
from ..observability.metrics import CHAT_TURNS
from .chunk_shapes import extract_content
from .context_builder import HISTORY_LIMIT, ContextBuilder, ContextBundle, normalize_message
from .llm_client import ProviderClient
from .relay import RelayEvent, RelayRun, StreamingRelay, error_event, format_sse


logger = logging.getLogger(__name__)

PERSIST_FAILED_MESSAGE = "Failed to save assistant reply"


@dataclass
class PreparedTurn:
    bundle: ContextBundle
    user_message: ChatMessage

    @property
    def project_id(self) -> int:
        return self.bundle.project.id

    @property
    def conversation_id(self) -> Optional[int]:
        return self.user_message.conversation_id


class ChatTurnService:
    def __init__(
        self,
        repo: ProjectRepository,
        store: MessageStore,
        client: ProviderClient,
        history_limit: int = HISTORY_LIMIT,
    ) -> None:
        self._repo = repo
        self._store = store
        self._client = client
        self._builder = ContextBuilder(repo, store, history_limit=history_limit)
        self._relay = StreamingRelay(client)

    def begin_turn(self, project_id: int, user_id: str, request: ChatRequest) -> PreparedTurn:
        """Validate, record the user message, then assemble the context.

        Validation and lookup failures raise before anything is written.
        """
        text = normalize_message(request.message)
        project = self._builder.resolve_project(project_id, user_id)
        conversation = self._builder.resolve_conversation(project, request.conversation_id, user_id)
        conversation_id = conversation.id if conversation else None

        user_msg = self._store.add_message(project.id, "user", text, conversation_id=conversation_id)
        if conversation is not None:
            self._repo.touch_conversation(conversation.id)

        messages = self._builder.build(
            project,
            text,
            conversation_id=conversation_id,
            file_ids=request.file_ids,
            prompt_id=request.use_prompt,
            exclude_message_id=user_msg.id,
        )
        logger.info(
            "Turn started project=%s conversation=%s context_messages=%d",
            project.id,
            conversation_id,
            len(messages),
        )
        return PreparedTurn(
            bundle=ContextBundle(project=project, messages=messages, conversation=conversation),
            user_message=user_msg,
        )

    async def open_turn(self, project_id: int, user_id: str, request: ChatRequest) -> PreparedTurn:
        """Run :meth:`begin_turn` off the event loop; its storage calls block."""
        return await asyncio.to_thread(self.begin_turn, project_id, user_id, request)

    def _persist_assistant(self, turn: PreparedTurn, text: str) -> Optional[ChatMessage]:
        if not text:
            return None
        return self._store.add_message(turn.project_id, "assistant", text, conversation_id=turn.conversation_id)

    async def _conclude_stream(self, turn: PreparedTurn, run: RelayRun, event: RelayEvent) -> RelayEvent:
        """Persist the reply, then return the terminal event to forward.

        A failed write turns ``done`` into ``error`` so the client never shows
        a reply that history does not hold.
        """
        try:
            await asyncio.to_thread(self._persist_assistant, turn, run.text)
        except Exception:
            logger.exception(
                "Failed to save assistant reply project=%s conversation=%s chars=%d",
                turn.project_id,
                turn.conversation_id,
                len(run.text),
            )
            CHAT_TURNS.labels(mode="stream", outcome="error").inc()
            return event if "error" in event else error_event(PERSIST_FAILED_MESSAGE)
        outcome = "error" if "error" in event else ("done" if run.text else "empty")
        CHAT_TURNS.labels(mode="stream", outcome=outcome).inc()
        return event

    async def stream_turn(self, turn: PreparedTurn) -> AsyncIterator[str]:
        """Yield the normalized SSE frames for the turn.

        The assistant message is written once the relay reports ``done`` or
        ``error`` and before that terminal frame is forwarded. If the client
        goes away first, nothing further is written.
        """
        run = self._relay.start(turn.bundle.as_payload(), turn.bundle.model)
        try:
            async with aclosing(run.events()) as events:
                async for event in events:
                    if "done" in event or "error" in event:
                        event = await self._conclude_stream(turn, run, event)
                    yield format_sse(event)
        except (asyncio.CancelledError, GeneratorExit):
            if not run.finished and run.error is None:
                CHAT_TURNS.labels(mode="stream", outcome="disconnected").inc()
                logger.info(
                    "Client disconnected mid-stream project=%s conversation=%s discarded_chars=%d",
                    turn.project_id,
                    turn.conversation_id,
                    len(run.text),
                )
            raise

    async def complete_turn(self, turn: PreparedTurn) -> ChatReply:
        """Non-streaming variant; UpstreamError propagates after the user turn is stored."""
        try:
            data = await self._client.complete(turn.bundle.as_payload(), turn.bundle.model)
        except Exception:
            CHAT_TURNS.labels(mode="single", outcome="error").inc()
            raise
        text = extract_content(data)
        await asyncio.to_thread(self._persist_assistant, turn, text)
        CHAT_TURNS.labels(mode="single", outcome="done" if text else "empty").inc()
        usage = data.get("usage")
        return ChatReply(message=text, usage=usage if isinstance(usage, dict) else None)
