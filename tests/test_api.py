"""Tests for the HTTP API."""
import importlib
import json
import logging

import pytest
from fastapi.testclient import TestClient

from app.config import Settings
from app.main import create_app


@pytest.fixture
def kb_path(tmp_path):
    entries = [
        {"id": "E1", "questions": ["opening hours", "when are you open"], "answer": "9-5", "follow_up_prompt_ids": ["E2"]},
        {"id": "E2", "questions": ["weekend opening hours"], "answer": "closed"},
        {"id": "E3", "questions": ["where can I park"], "answer": "Car park B"},
    ]
    path = tmp_path / "kb.json"
    path.write_text(json.dumps(entries), encoding="utf-8")
    return path


@pytest.fixture
def client(kb_path):
    settings = Settings(knowledge_base_path=str(kb_path), min_confidence=0.5, storage_backend="memory")
    with TestClient(create_app(settings)) as test_client:
        yield test_client


def send(client, conversation_id, text):
    response = client.post(f"/api/v1/conversations/{conversation_id}/messages", json={"text": text})
    assert response.status_code == 200
    return response.json()


def test_root(client):
    response = client.get("/")

    assert response.status_code == 200
    assert response.json()["api_prefix"] == "/api/v1"


def test_health(client):
    data = client.get("/api/v1/health").json()

    assert data["status"] == "healthy"
    assert data["knowledge_base_entries"] == 3


def test_conversation_flow(client):
    first = send(client, "web-1", "what are your opening hours")
    assert first["text"] == "9-5"
    assert first["phase"] == "in_prompt"
    assert first["suggested_prompts"] == [{"entry_id": "E2", "display_text": "weekend opening hours"}]

    second = send(client, "web-1", "weekend opening hours")
    assert second["text"] == "closed"
    assert second["scope"] == "prompt"
    assert second["phase"] == "root"

    state = client.get("/api/v1/conversations/web-1/state").json()
    assert state["last_entry_id"] == "E2"
    assert state["active_prompt_context"] is None
    assert state["turn_count"] == 2


def test_fallback_message(client):
    data = send(client, "web-2", "zzz qqq")

    assert data["fallback"] is True
    assert data["text"] == "Sorry, I couldn't find an answer to that question."


def test_message_too_long_rejected(client):
    response = client.post("/api/v1/conversations/web-3/messages", json={"text": "x" * 1001})

    assert response.status_code == 422
    assert response.json()["error_code"] == "VALIDATION_ERROR"


def test_state_and_delete(client):
    assert client.get("/api/v1/conversations/web-4/state").status_code == 404

    send(client, "web-4", "when are you open")
    assert client.get("/api/v1/conversations/web-4/state").status_code == 200

    assert client.delete("/api/v1/conversations/web-4").status_code == 200
    assert client.delete("/api/v1/conversations/web-4").status_code == 404
    assert client.get("/api/v1/conversations/web-4/state").status_code == 404


def test_match_ranks_knowledge_base(client):
    response = client.post("/api/v1/match", json={"query": "opening hours", "min_confidence": 0.1})

    data = response.json()
    assert response.status_code == 200
    assert [r["entry_id"] for r in data["results"]] == ["E1", "E2"]
    assert data["results"][0]["score"] == 1.0
    assert data["total_results"] == 2

    limited = client.post("/api/v1/match", json={"query": "opening hours", "limit": 1, "min_confidence": 0.1}).json()
    assert limited["total_results"] == 1


def test_reload(client, kb_path):
    kb_path.write_text(json.dumps({
        "min_confidence": 0.7,
        "entries": [{"id": "only", "questions": ["parking"], "answer": "Lot C"}],
    }), encoding="utf-8")

    data = client.post("/api/v1/knowledge-base/reload").json()

    assert data["success"] is True
    assert data["entry_count"] == 1
    assert data["min_confidence"] == 0.7
    assert send(client, "web-5", "parking")["text"] == "Lot C"


def test_invalid_reload_keeps_serving_old_knowledge_base(client, kb_path):
    kb_path.write_text(json.dumps([
        {"id": "a", "questions": ["q"], "answer": "x", "follow_up_prompt_ids": ["missing"]},
    ]), encoding="utf-8")

    response = client.post("/api/v1/knowledge-base/reload")

    assert response.status_code == 422
    assert any("missing" in err for err in response.json()["details"]["errors"])
    assert client.get("/api/v1/health").json()["knowledge_base_entries"] == 3


def test_startup_fails_on_missing_knowledge_base(tmp_path):
    from app.errors import ConfigError

    app = create_app(Settings(knowledge_base_path=str(tmp_path / "missing.json")))

    with pytest.raises(ConfigError):
        with TestClient(app):
            pass


def test_logging_configured_when_app_module_is_imported(monkeypatch):
    import app.main as main_module

    calls = []
    monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))

    importlib.reload(main_module)

    assert len(calls) == 1
    assert calls[0]["format"] == main_module.default_settings.log_format
    assert calls[0]["level"] == getattr(logging, main_module.default_settings.log_level.upper(), logging.INFO)


def test_endpoint_docstrings_feed_openapi(client):
    paths = client.get("/openapi.json").json()["paths"]

    state_op = paths["/api/v1/conversations/{conversation_id}/state"]["get"]
    assert state_op["description"].startswith("Get the stored dialog state of a conversation.")
    assert paths["/"]["get"]["description"].startswith("Root endpoint with basic API information.")
