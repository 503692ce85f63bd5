"""Decode the chat API's event stream on the client side.

The server sends ``data: {json}`` lines: zero or more ``{"content": ...}``,
then either ``{"done": true}`` or ``{"error": ...}``. :func:`consume_stream`
turns the raw byte chunks into :class:`Content`, :class:`Done` and
:class:`Error` items; :func:`collect_stream` drives it to a single string.
"""

from __future__ import annotations

import codecs
import json
import logging
from dataclasses import dataclass
from typing import AsyncIterable, AsyncIterator, Callable, Optional, Union


logger = logging.getLogger(__name__)

EVENT_PREFIX = "data:"


@dataclass(frozen=True)
class Content:
    text: str
    total: str


@dataclass(frozen=True)
class Done:
    text: str


@dataclass(frozen=True)
class Error:
    message: str


StreamItem = Union[Content, Done, Error]
ChunkCallback = Callable[[str, str], None]


class StreamError(RuntimeError):
    """The server reported an ``error`` event for the turn."""


async def iter_lines(chunks: AsyncIterable[bytes]) -> AsyncIterator[str]:
    """Yield complete text lines from arbitrarily split UTF-8 byte chunks."""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    buffer = ""
    async for chunk in chunks:
        buffer += decoder.decode(chunk)
        *lines, buffer = buffer.split("\n")
        for line in lines:
            yield line.rstrip("\r")
    buffer += decoder.decode(b"", final=True)
    if buffer:
        yield buffer.rstrip("\r")


def _payload(line: str) -> Optional[str]:
    if not line.startswith(EVENT_PREFIX):
        return None
    payload = line[len(EVENT_PREFIX):]
    if payload.startswith(" "):
        payload = payload[1:]
    return payload.strip() or None


async def consume_stream(chunks: AsyncIterable[bytes]) -> AsyncIterator[StreamItem]:
    """Yield stream items; stops reading after the first ``Done`` or ``Error``.

    A stream that ends without a terminal event still finishes with ``Done``
    carrying whatever text arrived.
    """
    total = ""
    async for line in iter_lines(chunks):
        payload = _payload(line)
        if payload is None:
            continue
        try:
            data = json.loads(payload)
        except json.JSONDecodeError:
            logger.debug("Skipping incomplete stream line: %.200s", payload)
            continue
        if not isinstance(data, dict):
            logger.warning("Unexpected stream payload: %.200s", payload)
            continue
        if data.get("done"):
            yield Done(total)
            return
        content = data.get("content")
        if isinstance(content, str) and content:
            total += content
            yield Content(content, total)
        error = data.get("error")
        if error:
            yield Error(str(error))
            return
    yield Done(total)


async def collect_items(items: AsyncIterable[StreamItem], on_chunk: Optional[ChunkCallback] = None) -> str:
    """Return the final text, calling ``on_chunk(fragment, total)`` per content item."""
    text = ""
    async for item in items:
        if isinstance(item, Content):
            text = item.total
            if on_chunk is not None:
                on_chunk(item.text, item.total)
        elif isinstance(item, Error):
            raise StreamError(item.message)
        elif isinstance(item, Done):
            return item.text
    return text


async def collect_stream(chunks: AsyncIterable[bytes], on_chunk: Optional[ChunkCallback] = None) -> str:
    return await collect_items(consume_stream(chunks), on_chunk)
