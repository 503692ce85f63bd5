"""Async client for the chat API."""

from __future__ import annotations

from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from ..domain.chat_models import ChatReply, MessageHistory
from .stream_consumer import ChunkCallback, StreamItem, collect_items, consume_stream


class ChatClientError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _error_detail(resp: httpx.Response, default: str) -> str:
    try:
        data = resp.json()
    except ValueError:
        return default
    if isinstance(data, dict):
        for key in ("detail", "message", "error"):
            value = data.get(key)
            if isinstance(value, str) and value:
                return value
    return default


class ChatApiClient:
    """Async client for the chat endpoints.

    Usage::

        async with ChatApiClient("http://localhost:8000/api", token=jwt) as client:
            reply = await client.send_message_stream(1, "Hello", on_chunk=print_fragment)
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000/api",
        *,
        token: str = "",
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        headers: Dict[str, str] = {}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(base_url=base_url, timeout=timeout, headers=headers, transport=transport)

    # -- lifecycle ----------------------------------------------------------

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "ChatApiClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()

    # -- API methods --------------------------------------------------------

    @staticmethod
    def _body(
        message: str,
        conversation_id: Optional[int],
        file_ids: Optional[List[int]],
        use_prompt: Optional[int],
    ) -> Dict[str, Any]:
        body: Dict[str, Any] = {"message": message}
        if conversation_id is not None:
            body["conversationId"] = conversation_id
        if file_ids:
            body["fileIds"] = list(file_ids)
        if use_prompt is not None:
            body["usePrompt"] = use_prompt
        return body

    async def send_message(
        self,
        project_id: int,
        message: str,
        *,
        conversation_id: Optional[int] = None,
        file_ids: Optional[List[int]] = None,
        use_prompt: Optional[int] = None,
    ) -> ChatReply:
        """Send one message and wait for the whole reply."""
        resp = await self._client.post(
            f"/projects/{project_id}/chat",
            params={"stream": "false"},
            json=self._body(message, conversation_id, file_ids, use_prompt),
        )
        if resp.status_code >= 400:
            raise ChatClientError(_error_detail(resp, "Failed to send message"), resp.status_code)
        return ChatReply.model_validate(resp.json())

    async def stream_message(
        self,
        project_id: int,
        message: str,
        *,
        conversation_id: Optional[int] = None,
        file_ids: Optional[List[int]] = None,
        use_prompt: Optional[int] = None,
    ) -> AsyncIterator[StreamItem]:
        """Send one message and yield reply items as they arrive."""
        async with self._client.stream(
            "POST",
            f"/projects/{project_id}/chat",
            params={"stream": "true"},
            json=self._body(message, conversation_id, file_ids, use_prompt),
        ) as resp:
            if resp.status_code >= 400:
                await resp.aread()
                raise ChatClientError(_error_detail(resp, "Failed to send message"), resp.status_code)
            async for item in consume_stream(resp.aiter_bytes()):
                yield item

    async def send_message_stream(
        self,
        project_id: int,
        message: str,
        on_chunk: Optional[ChunkCallback] = None,
        *,
        conversation_id: Optional[int] = None,
        file_ids: Optional[List[int]] = None,
        use_prompt: Optional[int] = None,
    ) -> str:
        """Stream a reply, reporting each fragment, and return the full text."""
        items = self.stream_message(
            project_id,
            message,
            conversation_id=conversation_id,
            file_ids=file_ids,
            use_prompt=use_prompt,
        )
        return await collect_items(items, on_chunk)

    async def get_messages(
        self,
        project_id: int,
        *,
        conversation_id: Optional[int] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> MessageHistory:
        params: Dict[str, Any] = {"limit": limit, "offset": offset}
        if conversation_id is not None:
            params["conversationId"] = conversation_id
        resp = await self._client.get(f"/projects/{project_id}/messages", params=params)
        if resp.status_code >= 400:
            raise ChatClientError(_error_detail(resp, "Failed to fetch messages"), resp.status_code)
        return MessageHistory.model_validate(resp.json())

    async def clear_messages(self, project_id: int, *, conversation_id: Optional[int] = None) -> int:
        params: Dict[str, Any] = {}
        if conversation_id is not None:
            params["conversationId"] = conversation_id
        resp = await self._client.delete(f"/projects/{project_id}/messages", params=params)
        if resp.status_code >= 400:
            raise ChatClientError(_error_detail(resp, "Failed to clear chat history"), resp.status_code)
        return int(resp.json().get("deleted", 0))
