import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)


@pytest.fixture(autouse=True)
def _fresh_state(monkeypatch):
    """Give every test an empty in-memory database and fresh singletons."""
    from src.chatbot.infrastructure import chat_store, database, repository
    from src.chatbot.services import llm_client

    monkeypatch.setenv("JWT_SECRET", "test-secret")
    monkeypatch.delenv("CHATBOT_DB_PATH", raising=False)
    monkeypatch.delenv("CHATBOT_CHAT_STORE_IMPL", raising=False)
    monkeypatch.delenv("CHATBOT_DEFAULT_SYSTEM_PROMPT", raising=False)

    database.reset_database()
    monkeypatch.setattr(repository, "_repo", None)
    monkeypatch.setattr(chat_store, "_store", None)
    monkeypatch.setattr(llm_client, "_client", None)
    yield


@pytest.fixture
def provider(monkeypatch):
    """Fake upstream provider wired in as the process-wide LLM client."""
    from src.chatbot.services import llm_client
    from .utils import FakeProvider

    fake = FakeProvider()
    monkeypatch.setattr(llm_client, "_client", fake.client())
    return fake


@pytest.fixture
def repo():
    from src.chatbot.infrastructure.repository import get_repo

    return get_repo()


@pytest.fixture
def store():
    from src.chatbot.infrastructure.chat_store import get_chat_store

    return get_chat_store()
