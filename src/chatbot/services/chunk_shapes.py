"""Known response shapes of upstream completion chunks.

Providers disagree on where the generated text lives. Each shape below is
tried in priority order and the first one yielding a non-empty string wins.
A chunk that matches none of them is reported as ``NO_MATCH`` so callers can
log it instead of silently dropping it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple


class ResponseShape(str, Enum):
    CHOICE_DELTA_CONTENT = "choices.delta.content"
    CHOICE_MESSAGE_CONTENT = "choices.message.content"
    CHOICE_TEXT = "choices.text"
    CONTENT = "content"
    DELTA_TEXT = "delta.text"
    COMPLETION = "completion"


@dataclass(frozen=True)
class ChunkMatch:
    shape: Optional[ResponseShape]
    text: str = ""

    @property
    def matched(self) -> bool:
        return self.shape is not None


NO_MATCH = ChunkMatch(shape=None)


def _first_choice(chunk: Dict[str, Any]) -> Dict[str, Any]:
    choices = chunk.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        return choices[0]
    return {}


def _nested(obj: Any, key: str) -> Dict[str, Any]:
    value = obj.get(key) if isinstance(obj, dict) else None
    return value if isinstance(value, dict) else {}


def _choice_delta_content(chunk: Dict[str, Any]) -> Any:
    return _nested(_first_choice(chunk), "delta").get("content")


def _choice_message_content(chunk: Dict[str, Any]) -> Any:
    return _nested(_first_choice(chunk), "message").get("content")


def _choice_text(chunk: Dict[str, Any]) -> Any:
    return _first_choice(chunk).get("text")


def _content(chunk: Dict[str, Any]) -> Any:
    return chunk.get("content")


def _delta_text(chunk: Dict[str, Any]) -> Any:
    return _nested(chunk, "delta").get("text")


def _completion(chunk: Dict[str, Any]) -> Any:
    return chunk.get("completion")


SHAPE_PRIORITY: List[Tuple[ResponseShape, Callable[[Dict[str, Any]], Any]]] = [
    (ResponseShape.CHOICE_DELTA_CONTENT, _choice_delta_content),
    (ResponseShape.CHOICE_MESSAGE_CONTENT, _choice_message_content),
    (ResponseShape.CHOICE_TEXT, _choice_text),
    (ResponseShape.CONTENT, _content),
    (ResponseShape.DELTA_TEXT, _delta_text),
    (ResponseShape.COMPLETION, _completion),
]


def match_chunk(chunk: Any) -> ChunkMatch:
    """Return the first shape in priority order carrying non-empty text."""
    if not isinstance(chunk, dict):
        return NO_MATCH
    for shape, extract in SHAPE_PRIORITY:
        value = extract(chunk)
        if isinstance(value, str) and value:
            return ChunkMatch(shape=shape, text=value)
    return NO_MATCH


def extract_content(chunk: Any) -> str:
    return match_chunk(chunk).text
