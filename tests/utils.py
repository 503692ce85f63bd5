from __future__ import annotations

from typing import Any, AsyncIterator, Callable, Dict, Iterable, List, Optional, Union
import json

import httpx

from src.chatbot.security.auth import User, create_access_token
from src.chatbot.services.llm_client import ProviderClient, ProviderSettings


PROVIDER_BASE_URL = "http://provider.test/api/v1"


def auth_headers(user_id: str = "user-1") -> Dict[str, str]:
    token = create_access_token(User(user_id=user_id, email=f"{user_id}@example.com"))
    return {"Authorization": f"Bearer {token}"}


def sse(*payloads: Union[Dict[str, Any], str], done: bool = True) -> bytes:
    """Build a provider stream body; dicts are JSON encoded, strings sent raw."""
    lines = []
    for p in payloads:
        body = p if isinstance(p, str) else json.dumps(p)
        lines.append(f"data: {body}\n\n")
    if done:
        lines.append("data: [DONE]\n\n")
    return "".join(lines).encode("utf-8")


def delta(text: str) -> Dict[str, Any]:
    return {"choices": [{"delta": {"content": text}}]}


def completion(text: str, usage: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    data: Dict[str, Any] = {"choices": [{"message": {"role": "assistant", "content": text}}]}
    if usage is not None:
        data["usage"] = usage
    return data


async def chunked(parts: Iterable[bytes], fail_with: Optional[Exception] = None) -> AsyncIterator[bytes]:
    for part in parts:
        yield part
    if fail_with is not None:
        raise fail_with


class FakeProvider:
    """OpenAI-compatible provider served through ``httpx.MockTransport``.

    ``stream_body`` may be bytes or a zero-argument callable returning an
    async byte iterator (to simulate split reads or a dropped connection).
    """

    def __init__(self) -> None:
        self.stream_body: Union[bytes, Callable[[], AsyncIterator[bytes]]] = sse(delta("Hi"))
        self.stream_status = 200
        self.completion: Dict[str, Any] = completion("")
        self.completion_status = 200
        self.error_body: Dict[str, Any] = {"error": {"message": "Rate limit exceeded"}}
        self.models: List[Dict[str, Any]] = [{"id": "openai/gpt-3.5-turbo", "name": "GPT-3.5 Turbo"}]
        self.requests: List[httpx.Request] = []
        self.on_request: Optional[Callable[[httpx.Request], None]] = None

    # -- request log ------------------------------------------------------

    def _bodies(self) -> List[Dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests if r.method == "POST"]

    @property
    def stream_calls(self) -> int:
        return sum(1 for b in self._bodies() if b.get("stream"))

    @property
    def complete_calls(self) -> int:
        return sum(1 for b in self._bodies() if not b.get("stream"))

    @property
    def last_body(self) -> Dict[str, Any]:
        return self._bodies()[-1]

    # -- transport --------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.on_request is not None:
            self.on_request(request)
        if request.method == "GET" and request.url.path.endswith("/models"):
            return httpx.Response(200, json={"data": self.models})
        body = json.loads(request.content)
        if body.get("stream"):
            if self.stream_status >= 400:
                return httpx.Response(self.stream_status, json=self.error_body)
            content = self.stream_body if isinstance(self.stream_body, bytes) else self.stream_body()
            return httpx.Response(200, content=content, headers={"content-type": "text/event-stream"})
        if self.completion_status >= 400:
            return httpx.Response(self.completion_status, json=self.error_body)
        return httpx.Response(200, json=self.completion)

    def client(self) -> ProviderClient:
        settings = ProviderSettings(base_url=PROVIDER_BASE_URL, api_key="test-key")
        return ProviderClient(settings=settings, transport=httpx.MockTransport(self.handler))
