from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

import assistant.services.orchestrator as orchestrator
from assistant.routes.assistant import router
from assistant.services.actors import Hrm8User
from assistant.services.config import get_settings
from assistant.services.llm import LLMStep, TextDelta


class AttachActor:
    """Stands in for the upstream auth layer that sets request.state.actor."""

    def __init__(self, app, actor) -> None:
        self.app = app
        self.actor = actor

    async def __call__(self, scope, receive, send) -> None:
        if scope["type"] == "http" and self.actor is not None:
            scope.setdefault("state", {})["actor"] = self.actor
        await self.app(scope, receive, send)


def make_client(actor) -> TestClient:
    app = FastAPI()
    app.add_middleware(AttachActor, actor=actor)
    app.include_router(router)
    return TestClient(app)


def enable_provider(monkeypatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "test-key")
    get_settings.cache_clear()


def test_missing_actor_is_unauthenticated() -> None:
    response = make_client(None).get("/api/assistant/tools")

    assert response.status_code == 401


def test_invalid_actor_is_rejected() -> None:
    empty_admin = Hrm8User("h-3", "empty@hrm8.com", "REGIONAL_LICENSEE", assigned_region_ids=())

    response = make_client(empty_admin).get("/api/assistant/tools")

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "invalid_actor"


def test_tool_catalog_for_company_user(company_user) -> None:
    response = make_client(company_user).get("/api/assistant/tools")
    body = response.json()
    names = {tool["name"] for tool in body["tools"]}

    assert response.status_code == 200
    assert body["accessLevel"] == "COMPANY_USER"
    assert "get_company_financial_summary" not in names
    assert "get_job_status" in names
    assert all(tool["sensitivity"] in {"LOW", "MEDIUM", "HIGH", "CRITICAL"} for tool in body["tools"])


def test_actor_claims_are_accepted() -> None:
    claims = {"actorType": "CONSULTANT", "userId": "c1", "email": "priya@hrm8.com", "consultantId": "c1", "regionId": "r1"}

    response = make_client(claims).get("/api/assistant/tools")

    assert response.status_code == 200
    assert response.json()["accessLevel"] == "CONSULTANT"


def test_chat_without_provider_is_bad_request(consultant) -> None:
    response = make_client(consultant).post("/api/assistant/chat", json={"message": "hello"})

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "provider_error"


def test_chat_rejects_invalid_body(consultant, monkeypatch) -> None:
    enable_provider(monkeypatch)

    response = make_client(consultant).post("/api/assistant/chat", json={"message": "x"})

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "invalid_request"


def test_chat_returns_answer(demo_db, consultant, monkeypatch) -> None:
    enable_provider(monkeypatch)

    async def fake_generate_step(messages, tools, model=None, temperature=None):  # noqa: ARG001
        return LLMStep(content="Hello Priya.")

    monkeypatch.setattr(orchestrator, "generate_step", fake_generate_step)

    response = make_client(consultant).post("/api/assistant/chat", json={"message": "hello"})

    assert response.status_code == 200
    assert response.json() == {"answer": "Hello Priya.", "toolsUsed": [], "model": get_settings().openai_model}


def test_stream_without_provider_returns_json_error(consultant) -> None:
    response = make_client(consultant).post("/api/assistant/chat/stream", json={"message": "hello"})

    assert response.status_code == 500
    assert response.json()["error"] == "Failed to initialize AI stream"
    assert "OPENAI_API_KEY" in response.json()["message"]


def test_stream_sends_sse_frames(demo_db, consultant, monkeypatch) -> None:
    enable_provider(monkeypatch)

    async def fake_stream_step(messages, tools, model=None, temperature=None):  # noqa: ARG001
        yield TextDelta("Hi")
        yield LLMStep(content="Hi")

    monkeypatch.setattr(orchestrator, "stream_step", fake_stream_step)

    response = make_client(consultant).post(
        "/api/assistant/chat/stream",
        json={"messages": [{"role": "user", "parts": [{"type": "text", "text": "hello"}]}]},
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"
    frames = [frame for frame in response.text.split("\n\n") if frame]
    assert [frame.splitlines()[0] for frame in frames] == ["event: meta", "event: delta", "event: done"]
    assert frames[1].splitlines()[1] == 'data: {"text": "Hi"}'


def test_stream_error_after_start_becomes_error_event(demo_db, consultant, monkeypatch) -> None:
    enable_provider(monkeypatch)

    async def flaky_stream_step(messages, tools, model=None, temperature=None):  # noqa: ARG001
        yield TextDelta("Partial")
        raise orchestrator.ProviderError("Model provider stream failed: reset")

    monkeypatch.setattr(orchestrator, "stream_step", flaky_stream_step)

    response = make_client(consultant).post("/api/assistant/chat/stream", json={"message": "hello"})

    assert response.status_code == 200
    assert "event: delta" in response.text
    assert "event: error" in response.text
    assert "Model provider stream failed: reset" in response.text


def test_stream_with_empty_body_is_bad_request(consultant, monkeypatch) -> None:
    enable_provider(monkeypatch)

    response = make_client(consultant).post("/api/assistant/chat/stream", json={})

    assert response.status_code == 400
    assert response.headers["content-type"].startswith("application/json")
    assert response.json() == {"error": "invalid_request", "message": "No messages provided."}


def test_health_endpoint() -> None:
    from assistant.main import app

    response = TestClient(app).get("/api/health")

    assert response.json() == {"status": "ok", "real_llm_enabled": "false"}


def test_stream_stops_when_client_disconnects(demo_db, consultant, monkeypatch, caplog) -> None:
    enable_provider(monkeypatch)

    async def chatty_stream_step(messages, tools, model=None, temperature=None):  # noqa: ARG001
        for word in ("one", "two", "three"):
            yield TextDelta(word)
        yield LLMStep(content="one two three")

    async def gone(self) -> bool:  # noqa: ARG001
        return True

    monkeypatch.setattr(orchestrator, "stream_step", chatty_stream_step)
    monkeypatch.setattr(Request, "is_disconnected", gone)

    with caplog.at_level(logging.INFO, logger="assistant.routes.assistant"):
        response = make_client(consultant).post("/api/assistant/chat/stream", json={"message": "hello"})

    frames = [frame for frame in response.text.split("\n\n") if frame]
    assert [frame.splitlines()[0] for frame in frames] == ["event: meta"]
    assert "event: done" not in response.text
    assert "Client disconnected" in caplog.text
