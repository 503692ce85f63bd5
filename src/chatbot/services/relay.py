from __future__ import annotations

"""Upstream streaming relay.

Turns a provider's streaming completion into the normalized event sequence
``{"content": str}`` ... ``{"done": True}``, or a single ``{"error": str}``
when the request cannot be opened or breaks mid-stream. When the stream ends
without any content, exactly one non-streaming completion is attempted.
"""

from typing import Any, AsyncIterator, Dict, List, Optional
import json
import logging

import httpx

from ..domain.errors import UpstreamError
from ..observability.metrics import RELAY_CHUNK_ANOMALIES, RELAY_FALLBACKS
from .chunk_shapes import extract_content, match_chunk
from .llm_client import ProviderClient


LOG = logging.getLogger("chatbot.llm")

EVENT_PREFIX = "data:"
PROVIDER_DONE_SENTINEL = "[DONE]"

RelayEvent = Dict[str, Any]


def content_event(text: str) -> RelayEvent:
    return {"content": text}


def done_event() -> RelayEvent:
    return {"done": True}


def error_event(message: str) -> RelayEvent:
    return {"error": message}


def format_sse(event: RelayEvent) -> str:
    return f"data: {json.dumps(event)}\n\n"


def sse_payload(line: str) -> Optional[str]:
    """Return the payload of a ``data:`` line, or None for any other line."""
    if not line.startswith(EVENT_PREFIX):
        return None
    payload = line[len(EVENT_PREFIX):]
    if payload.startswith(" "):
        payload = payload[1:]
    return payload.strip()


class RelayRun:
    """One relay of one context bundle; ``text`` holds everything emitted."""

    def __init__(self, client: ProviderClient, messages: List[Dict[str, str]], model: Optional[str]) -> None:
        self._client = client
        self._messages = messages
        self._model = model
        self.text = ""
        self.error: Optional[str] = None
        self.fallback_used = False
        self.finished = False

    def _decode_line(self, line: str) -> str:
        payload = sse_payload(line)
        if not payload or payload == PROVIDER_DONE_SENTINEL:
            return ""
        try:
            parsed = json.loads(payload)
        except json.JSONDecodeError:
            # Usually a chunk split across network reads.
            RELAY_CHUNK_ANOMALIES.labels(kind="unparsed").inc()
            LOG.debug("relay_chunk_unparsed", extra={"chunk": payload[:200]})
            return ""
        match = match_chunk(parsed)
        if not match.matched:
            RELAY_CHUNK_ANOMALIES.labels(kind="unmatched").inc()
            if isinstance(parsed, dict) and parsed.get("error"):
                LOG.warning("relay_chunk_provider_error", extra={"chunk": payload[:200]})
            else:
                LOG.debug("relay_chunk_unmatched", extra={"chunk": payload[:200]})
            return ""
        return match.text

    async def _fallback(self) -> str:
        self.fallback_used = True
        try:
            data = await self._client.complete(self._messages, self._model)
        except UpstreamError as exc:
            RELAY_FALLBACKS.labels(outcome="failed").inc()
            LOG.warning("relay_fallback_failed", extra={"err": str(exc), "model": self._model})
            return ""
        text = extract_content(data)
        RELAY_FALLBACKS.labels(outcome="content" if text else "empty").inc()
        LOG.info("relay_fallback", extra={"model": self._model, "chars": len(text)})
        return text

    async def events(self) -> AsyncIterator[RelayEvent]:
        try:
            async with self._client.open_stream(self._messages, self._model) as resp:
                async for line in resp.aiter_lines():
                    fragment = self._decode_line(line)
                    if not fragment:
                        continue
                    self.text += fragment
                    yield content_event(fragment)
        except UpstreamError as exc:
            self.error = str(exc)
            LOG.warning("relay_upstream_failed", extra={"err": self.error, "status": exc.status_code})
            yield error_event(self.error)
            return
        except httpx.HTTPError as exc:
            self.error = f"Upstream stream interrupted: {exc}"
            LOG.warning("relay_stream_interrupted", extra={"err": str(exc), "chars": len(self.text)})
            yield error_event(self.error)
            return

        if not self.text:
            text = await self._fallback()
            if text:
                self.text = text
                yield content_event(text)

        self.finished = True
        yield done_event()


class StreamingRelay:
    def __init__(self, client: ProviderClient) -> None:
        self._client = client

    def start(self, messages: List[Dict[str, str]], model: Optional[str] = None) -> RelayRun:
        return RelayRun(self._client, messages, model)
