import json
import sqlite3

from fastapi.testclient import TestClient

from src.chatbot.api.main import app
from .utils import auth_headers, completion, delta, sse


client = TestClient(app)


def _project(headers=None, **body):
    body.setdefault("name", "Helper")
    res = client.post("/api/projects", json=body, headers=headers or auth_headers())
    assert res.status_code == 201, res.text
    return res.json()


def _events(res):
    return [json.loads(line[len("data: "):]) for line in res.text.split("\n") if line.startswith("data: ")]


def _history(project_id, **params):
    res = client.get(f"/api/projects/{project_id}/messages", params=params, headers=auth_headers())
    assert res.status_code == 200, res.text
    return res.json()


def test_stream_chat_relays_and_persists(provider):
    project = _project(system_prompt="You are Helper.")
    res = client.post(
        f"/api/projects/{project['id']}/chat",
        json={"message": "Hello"},
        headers=auth_headers(),
    )
    assert res.status_code == 200
    assert res.headers["content-type"].startswith("text/event-stream")
    assert res.headers["cache-control"] == "no-cache"
    assert res.headers["x-accel-buffering"] == "no"
    assert _events(res) == [{"content": "Hi"}, {"done": True}]

    history = _history(project["id"])
    assert history["total"] == 2
    assert [(m["role"], m["content"]) for m in history["messages"]] == [("user", "Hello"), ("assistant", "Hi")]
    assert provider.last_body["messages"][0] == {"role": "system", "content": "You are Helper."}


def test_non_stream_mode_returns_message_and_usage(provider):
    provider.completion = completion("Complete reply", usage={"total_tokens": 7})
    project = _project()
    res = client.post(
        f"/projects/{project['id']}/chat",
        params={"stream": "false"},
        json={"message": "Hello"},
        headers=auth_headers(),
    )
    assert res.status_code == 200, res.text
    assert res.json() == {"message": "Complete reply", "usage": {"total_tokens": 7}}
    assert provider.stream_calls == 0


def test_non_stream_upstream_failure_is_bad_gateway(provider):
    provider.completion_status = 500
    provider.error_body = {"error": {"message": "model overloaded"}}
    project = _project()
    res = client.post(
        f"/api/projects/{project['id']}/chat?stream=false",
        json={"message": "Hello"},
        headers=auth_headers(),
    )
    assert res.status_code == 502
    assert res.json()["detail"] == "model overloaded"
    assert [m["role"] for m in _history(project["id"])["messages"]] == ["user"]


def test_stream_upstream_failure_is_error_event(provider):
    provider.stream_status = 401
    provider.error_body = {"error": {"message": "Invalid API key"}}
    project = _project()
    res = client.post(f"/api/projects/{project['id']}/chat", json={"message": "Hello"}, headers=auth_headers())
    assert res.status_code == 200
    assert _events(res) == [{"error": "Invalid API key"}]
    assert [m["role"] for m in _history(project["id"])["messages"]] == ["user"]


def test_blank_message_rejected_without_side_effects(provider):
    project = _project()
    res = client.post(f"/api/projects/{project['id']}/chat", json={"message": "   "}, headers=auth_headers())
    assert res.status_code == 400
    assert res.json()["detail"] == "Message content is required"
    assert _history(project["id"])["total"] == 0
    assert provider.requests == []


def test_unknown_project_and_conversation_are_404(provider):
    res = client.post("/api/projects/999/chat", json={"message": "hi"}, headers=auth_headers())
    assert res.status_code == 404

    project = _project()
    res = client.post(
        f"/api/projects/{project['id']}/chat",
        json={"message": "hi", "conversationId": 12345},
        headers=auth_headers(),
    )
    assert res.status_code == 404
    assert res.json()["detail"] == "Conversation not found"
    assert _history(project["id"])["total"] == 0
    assert provider.requests == []


def test_other_users_project_is_404(provider):
    project = _project(headers=auth_headers("alice"))
    res = client.post(
        f"/api/projects/{project['id']}/chat",
        json={"message": "hi"},
        headers=auth_headers("mallory"),
    )
    assert res.status_code == 404


def test_chat_requires_authentication():
    res = client.post("/api/projects/1/chat", json={"message": "hi"})
    assert res.status_code == 401


def test_conversation_turns_update_timestamp_and_scope(provider):
    project = _project()
    conv = client.post(
        f"/api/projects/{project['id']}/conversations", json={"title": "Plans"}, headers=auth_headers()
    ).json()

    stamps = [conv["updated_at"]]
    for text in ("first", "second"):
        res = client.post(
            f"/api/projects/{project['id']}/chat",
            json={"message": text, "conversationId": conv["id"]},
            headers=auth_headers(),
        )
        assert res.status_code == 200
        [listed] = client.get(f"/api/projects/{project['id']}/conversations", headers=auth_headers()).json()
        stamps.append(listed["updated_at"])

    assert stamps == sorted(stamps) and len(set(stamps)) == 3
    assert _history(project["id"], conversationId=conv["id"])["total"] == 4

    # The second turn saw the first turn's exchange as history.
    contents = [m["content"] for m in provider.last_body["messages"]]
    assert contents == ["You are a helpful AI assistant.", "first", "Hi", "second"]


def test_turn_without_conversation_touches_no_conversation(provider):
    project = _project()
    conv = client.post(f"/api/projects/{project['id']}/conversations", json={}, headers=auth_headers()).json()
    client.post(f"/api/projects/{project['id']}/chat", json={"message": "hi"}, headers=auth_headers())
    [listed] = client.get(f"/api/projects/{project['id']}/conversations", headers=auth_headers()).json()
    assert listed["updated_at"] == conv["updated_at"]
    assert listed["message_count"] == 0


def test_file_and_prompt_references_flow_into_context(provider):
    project = _project()
    pid = project["id"]
    f = client.post(
        f"/api/projects/{pid}/files",
        json={"filename": "a-1.txt", "original_name": "A.txt", "extracted_text": "foo"},
        headers=auth_headers(),
    ).json()
    prompt = client.post(
        f"/api/projects/{pid}/prompts", json={"name": "tone", "content": "Be brief."}, headers=auth_headers()
    ).json()

    res = client.post(
        f"/api/projects/{pid}/chat",
        json={"message": "summarize", "fileIds": [f["id"]], "usePrompt": prompt["id"]},
        headers=auth_headers(),
    )
    assert res.status_code == 200
    sent = provider.last_body["messages"]
    assert any("FILE: A.txt\nfoo" in m["content"] for m in sent if m["role"] == "system")
    assert {"role": "system", "content": "Be brief."} in sent


def test_history_pagination_and_clear(provider):
    provider.stream_body = sse(delta("ok"))
    project = _project()
    pid = project["id"]
    for i in range(3):
        client.post(f"/api/projects/{pid}/chat", json={"message": f"q{i}"}, headers=auth_headers())

    page = _history(pid, limit=2, offset=1)
    assert page["total"] == 6
    assert [m["content"] for m in page["messages"]] == ["ok", "q1"]
    assert set(page["messages"][0]) >= {"id", "role", "content", "created_at"}

    res = client.delete(f"/api/projects/{pid}/messages", headers=auth_headers())
    assert res.status_code == 200
    assert res.json() == {"message": "Chat history cleared", "deleted": 6}
    assert _history(pid)["total"] == 0


def test_models_endpoint_passes_through_catalog(provider):
    res = client.get("/api/models", headers=auth_headers())
    assert res.status_code == 200
    assert res.json()["models"][0]["id"] == "openai/gpt-3.5-turbo"


def test_failed_reply_save_ends_stream_with_error_event(provider, store, monkeypatch):
    original = store.add_message

    def add_message(project_id, role, content, conversation_id=None):
        if role == "assistant":
            raise sqlite3.OperationalError("disk I/O error")
        return original(project_id, role, content, conversation_id=conversation_id)

    monkeypatch.setattr(store, "add_message", add_message)
    project = _project()
    res = client.post(f"/api/projects/{project['id']}/chat", json={"message": "Hello"}, headers=auth_headers())
    assert res.status_code == 200
    assert _events(res) == [{"content": "Hi"}, {"error": "Failed to save assistant reply"}]
    assert [m["role"] for m in _history(project["id"])["messages"]] == ["user"]


def test_models_endpoint_non_json_body_is_bad_gateway(provider, monkeypatch):
    import httpx
    from src.chatbot.services import llm_client

    def handler(request):
        return httpx.Response(200, text="<html>maintenance</html>")

    broken = provider.client()
    broken._transport = httpx.MockTransport(handler)
    monkeypatch.setattr(llm_client, "_client", broken)
    res = client.get("/api/models", headers=auth_headers())
    assert res.status_code == 502
