from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional
import json
import logging
import os

import httpx

from ..domain.errors import UpstreamError


logger = logging.getLogger(__name__)
LOG = logging.getLogger("chatbot.llm")

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "openai/gpt-3.5-turbo"


@dataclass
class ProviderSettings:
    base_url: str = DEFAULT_BASE_URL
    api_key: str = ""
    default_model: str = DEFAULT_MODEL
    temperature: float = 0.7
    max_tokens: int = 1000
    connect_timeout: float = 5.0
    read_timeout: float = 120.0
    referer: str = "http://localhost:3001"
    app_title: str = "AI Chatbot Platform"

    @staticmethod
    def from_env() -> "ProviderSettings":
        return ProviderSettings(
            base_url=os.getenv("OPENROUTER_BASE_URL", DEFAULT_BASE_URL),
            api_key=os.getenv("OPENROUTER_API_KEY", ""),
            default_model=os.getenv("DEFAULT_MODEL", DEFAULT_MODEL),
            temperature=float(os.getenv("CHATBOT_LLM_TEMPERATURE", "0.7")),
            max_tokens=int(os.getenv("CHATBOT_LLM_MAX_TOKENS", "1000")),
            connect_timeout=float(os.getenv("CHATBOT_LLM_CONNECT_TIMEOUT", "5")),
            read_timeout=float(os.getenv("CHATBOT_LLM_READ_TIMEOUT", "120")),
            referer=os.getenv("CHATBOT_HTTP_REFERER", "http://localhost:3001"),
            app_title=os.getenv("CHATBOT_APP_TITLE", "AI Chatbot Platform"),
        )


def _error_message(resp: httpx.Response) -> str:
    fallback = f"Provider API error: {resp.status_code}"
    try:
        data = resp.json()
    except (json.JSONDecodeError, ValueError):
        return fallback
    if not isinstance(data, dict):
        return fallback
    err = data.get("error")
    if isinstance(err, dict) and isinstance(err.get("message"), str) and err["message"]:
        return err["message"]
    if isinstance(err, str) and err:
        return err
    msg = data.get("message")
    if isinstance(msg, str) and msg:
        return msg
    return fallback


class ProviderClient:
    """OpenAI-compatible chat completions client (OpenRouter by default).

    A fresh ``httpx.AsyncClient`` is opened per call so the client is safe to
    share between requests running on different event loops.
    """

    def __init__(
        self,
        settings: Optional[ProviderSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.settings = settings or ProviderSettings.from_env()
        self._transport = transport

    @property
    def base_url(self) -> str:
        return self.settings.base_url.rstrip("/")

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "HTTP-Referer": self.settings.referer,
            "X-Title": self.settings.app_title,
        }
        if self.settings.api_key:
            headers["Authorization"] = f"Bearer {self.settings.api_key}"
        return headers

    def _timeout(self) -> httpx.Timeout:
        return httpx.Timeout(self.settings.read_timeout, connect=self.settings.connect_timeout)

    def _http(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self._transport, timeout=self._timeout(), headers=self._headers())

    def _payload(self, messages: List[Dict[str, str]], model: Optional[str], stream: bool) -> Dict[str, Any]:
        return {
            "model": model or self.settings.default_model,
            "messages": messages,
            "temperature": self.settings.temperature,
            "max_tokens": self.settings.max_tokens,
            "stream": stream,
        }

    @asynccontextmanager
    async def open_stream(
        self,
        messages: List[Dict[str, str]],
        model: Optional[str] = None,
    ) -> AsyncIterator[httpx.Response]:
        """Open a streaming completion; raise UpstreamError if it cannot start."""
        payload = self._payload(messages, model, stream=True)
        LOG.debug("provider_stream_open", extra={"model": payload["model"], "base_url": self.base_url})
        async with self._http() as http:
            try:
                request = http.build_request("POST", f"{self.base_url}/chat/completions", json=payload)
                resp = await http.send(request, stream=True)
            except httpx.HTTPError as exc:
                raise UpstreamError(f"Provider unreachable: {exc}") from exc
            try:
                if resp.status_code >= 400:
                    await resp.aread()
                    raise UpstreamError(_error_message(resp), status_code=resp.status_code)
                yield resp
            finally:
                await resp.aclose()

    async def complete(self, messages: List[Dict[str, str]], model: Optional[str] = None) -> Dict[str, Any]:
        payload = self._payload(messages, model, stream=False)
        LOG.debug("provider_complete", extra={"model": payload["model"], "base_url": self.base_url})
        async with self._http() as http:
            try:
                resp = await http.post(f"{self.base_url}/chat/completions", json=payload)
            except httpx.HTTPError as exc:
                raise UpstreamError(f"Provider unreachable: {exc}") from exc
        if resp.status_code >= 400:
            raise UpstreamError(_error_message(resp), status_code=resp.status_code)
        try:
            data = resp.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise UpstreamError("Provider returned a non-JSON body") from exc
        return data if isinstance(data, dict) else {}

    async def list_models(self) -> List[Dict[str, Any]]:
        async with self._http() as http:
            try:
                resp = await http.get(f"{self.base_url}/models")
            except httpx.HTTPError as exc:
                raise UpstreamError(f"Provider unreachable: {exc}") from exc
        if resp.status_code >= 400:
            raise UpstreamError(f"Failed to fetch models: {resp.status_code}", status_code=resp.status_code)
        try:
            data = resp.json()
        except (json.JSONDecodeError, ValueError) as exc:
            raise UpstreamError("Provider returned a non-JSON model list") from exc
        models = data.get("data") if isinstance(data, dict) else None
        return models if isinstance(models, list) else []


_client: ProviderClient | None = None


def get_provider_client() -> ProviderClient:
    global _client
    if _client is None:
        _client = ProviderClient()
    return _client
