from __future__ import annotations

from typing import Optional


class ChatValidationError(ValueError):
    """Request rejected before any persistence or upstream call."""


class NotFoundError(LookupError):
    """A project, conversation, prompt or file does not resolve for the caller."""

    def __init__(self, resource: str, identifier: object = None) -> None:
        self.resource = resource
        self.identifier = identifier
        super().__init__(f"{resource} not found")


class UpstreamError(RuntimeError):
    """The LLM provider could not be reached or answered with a failure status."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code
