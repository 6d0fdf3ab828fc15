"""Tests for the chat HTTP endpoints — streaming handshake and non-streaming send."""

import json

import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from llm_gateway.core.config import GatewayConfig
from llm_gateway.core.metrics import MetricsCollector
from llm_gateway.http.chat import NO_PENDING_REQUEST, create_chat_router
from llm_gateway.llm.contracts import ERROR_SENTINEL
from llm_gateway.llm.orchestrator import StreamingOrchestrator
from llm_gateway.providers.catalog import default_catalog
from llm_gateway.providers.credentials import Credential, InMemoryCredentialStore
from llm_gateway.providers.registry import create_default_registry
from llm_gateway.session.context import SessionContextStore
from llm_gateway.session.store import InMemorySessionRepository
from llm_gateway.usage.sink import InMemoryUsageSink


class Upstream:
    """Streams 'Hel' + 'lo' for streaming calls, 'Hello' for blocking ones."""

    def __init__(self, status: int = 200):
        self.status = status
        self.bodies: list[dict] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.bodies.append(body)
        if self.status != 200:
            return httpx.Response(
                self.status, json={"error": {"message": "Incorrect API key provided"}}
            )
        if body.get("stream"):
            frames = [
                {"choices": [{"delta": {"content": "Hel"}}]},
                {"choices": [{"delta": {"content": "lo"}, "finish_reason": "stop"}]},
            ]
            return httpx.Response(
                200, text="".join(f"data: {json.dumps(f)}\n\n" for f in frames)
            )
        return httpx.Response(
            200,
            json={
                "id": "chatcmpl-1",
                "object": "chat.completion",
                "created": 0,
                "model": "gpt-3.5-turbo",
                "choices": [
                    {
                        "index": 0,
                        "message": {"role": "assistant", "content": "Hello"},
                        "finish_reason": "stop",
                    }
                ],
            },
        )


def _build(upstream, *, api_key="sk-test", repository=None):
    """A chat app over a mocked upstream; returns the client and its usage sink."""
    http = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
    contexts = SessionContextStore(repository or InMemorySessionRepository())
    usage = InMemoryUsageSink()
    orchestrator = StreamingOrchestrator(
        context_store=contexts,
        registry=create_default_registry(http),
        catalog=default_catalog(),
        credentials=InMemoryCredentialStore([Credential("OpenAI", api_key=api_key)]),
        usage_sink=usage,
        config=GatewayConfig(),
        metrics=MetricsCollector(),
    )
    app = FastAPI()
    app.include_router(create_chat_router(orchestrator, contexts, usage))
    return TestClient(app), usage


@pytest.fixture
def upstream():
    return Upstream()


@pytest.fixture
def app_and_usage(upstream):
    return _build(upstream)


@pytest.fixture
def client(app_and_usage):
    """Create a test client with the chat router."""
    return app_and_usage[0]


@pytest.fixture
def usage(app_and_usage):
    return app_and_usage[1]


def _frames(body: str) -> list[dict]:
    return [
        json.loads(block[len("data: "):])
        for block in body.split("\n\n")
        if block.startswith("data: ")
    ]


# ─── Streaming handshake ──────────────────────────────────────


def test_stream_handshake(client, upstream):
    response = client.post(
        "/v1/chat/stream",
        json={"message": "hi", "sessionId": "s1", "systemPrompt": "Be brief."},
    )
    assert response.status_code == 200

    response = client.get("/v1/chat/stream", params={"sessionId": "s1"})
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"

    frames = _frames(response.text)
    assert [(f["chunk"], f["isComplete"]) for f in frames] == [
        ("Hel", False),
        ("lo", False),
        ("Hello", True),
    ]
    assert all(f["sessionId"] == "s1" for f in frames)
    assert upstream.bodies[0]["messages"][0] == {"role": "system", "content": "Be brief."}


def test_stream_without_pending_request(client, upstream):
    response = client.get("/v1/chat/stream", params={"sessionId": "ghost"})

    assert response.status_code == 200
    assert _frames(response.text) == [
        {"chunk": NO_PENDING_REQUEST, "isComplete": True, "sessionId": "ghost"}
    ]
    assert upstream.bodies == []


def test_pending_request_is_consumed_once(client):
    client.post("/v1/chat/stream", json={"message": "hi", "sessionId": "s1"})
    client.get("/v1/chat/stream", params={"sessionId": "s1"})

    again = client.get("/v1/chat/stream", params={"sessionId": "s1"})
    assert _frames(again.text)[0]["chunk"] == NO_PENDING_REQUEST


def test_second_post_overwrites_pending(client, upstream):
    client.post("/v1/chat/stream", json={"message": "first", "sessionId": "s1"})
    client.post("/v1/chat/stream", json={"message": "second", "sessionId": "s1"})
    client.get("/v1/chat/stream", params={"sessionId": "s1"})

    assert len(upstream.bodies) == 1
    assert upstream.bodies[0]["messages"][-1]["content"] == "second"


def test_history_carries_across_streams(client, upstream):
    for text in ("one", "two"):
        client.post("/v1/chat/stream", json={"message": text, "sessionId": "s1"})
        client.get("/v1/chat/stream", params={"sessionId": "s1"})

    assert [m["content"] for m in upstream.bodies[1]["messages"]] == ["one", "Hello", "two"]


@pytest.mark.parametrize(
    "body,error",
    [
        ({"sessionId": "s1"}, "Message is required"),
        ({"message": "hi"}, "SessionId is required"),
        ({"message": "", "sessionId": "s1"}, "Message is required"),
    ],
)
def test_stream_post_validation(client, body, error):
    response = client.post("/v1/chat/stream", json=body)
    assert response.status_code == 400
    assert response.json()["error"] == error


def test_stream_post_rejects_non_json(client):
    response = client.post(
        "/v1/chat/stream", content="nope", headers={"content-type": "application/json"}
    )
    assert response.status_code == 400


# ─── Non-streaming ────────────────────────────────────────────


def test_send_returns_full_reply(client, upstream):
    response = client.post("/v1/chat/send", json={"message": "hi", "sessionId": "s1"})

    assert response.status_code == 200
    assert response.json() == {"sessionId": "s1", "output": "Hello"}
    assert not upstream.bodies[0].get("stream")


def test_send_validation(client):
    response = client.post("/v1/chat/send", json={"sessionId": "s1"})
    assert response.status_code == 400


def test_send_auth_failure_maps_to_401():
    client, _ = _build(Upstream(status=401), api_key="sk-bad")

    response = client.post("/v1/chat/send", json={"message": "hi", "sessionId": "s1"})

    assert response.status_code == 401
    body = response.json()
    assert body["provider"] == "OpenAI"
    assert "Incorrect API key provided" in body["details"]


@pytest.mark.parametrize(
    "body,error",
    [
        ({"message": "hi", "sessionId": "s1", "metadata": []}, "metadata must be an object"),
        ({"message": "hi", "sessionId": "s1", "temperature": "hot"}, "temperature must be a number"),
        ({"message": "hi", "sessionId": "s1", "maxTokens": 1.5}, "maxTokens must be an integer"),
    ],
)
def test_mistyped_fields_are_rejected(client, upstream, body, error):
    for path in ("/v1/chat/stream", "/v1/chat/send"):
        response = client.post(path, json=body)
        assert response.status_code == 400
        assert response.json()["error"] == error
    assert upstream.bodies == []


# ─── Exchanges that break ─────────────────────────────────────


class BrokenRepository(InMemorySessionRepository):
    async def get(self, session_id):
        raise RuntimeError("database is locked")


class ExplodingOrchestrator:
    """Raises straight out of run_exchange without sending anything."""

    async def run_exchange(self, inbound, channel):
        raise RuntimeError("boom")


def test_stream_ends_with_error_frame_when_repository_fails(upstream):
    client, usage = _build(upstream, repository=BrokenRepository())
    client.post("/v1/chat/stream", json={"message": "hi", "sessionId": "s1"})

    frames = _frames(client.get("/v1/chat/stream", params={"sessionId": "s1"}).text)

    assert len(frames) == 1
    assert frames[0]["isComplete"] is True
    assert frames[0]["chunk"].startswith(ERROR_SENTINEL + "Internal error")
    assert [r.success for r in usage.records] == [False]
    assert upstream.bodies == []


def test_stream_ends_with_error_frame_when_exchange_raises():
    contexts = SessionContextStore(InMemorySessionRepository())
    app = FastAPI()
    app.include_router(
        create_chat_router(ExplodingOrchestrator(), contexts, InMemoryUsageSink())
    )
    client = TestClient(app)
    client.post("/v1/chat/stream", json={"message": "hi", "sessionId": "s1"})

    frames = _frames(client.get("/v1/chat/stream", params={"sessionId": "s1"}).text)

    assert frames == [{"chunk": "Internal server error", "isComplete": True, "sessionId": "s1"}]


# ─── Sessions ─────────────────────────────────────────────────


def test_session_usage_lists_records_and_totals(client, usage):
    client.post("/v1/chat/send", json={"message": "hi", "sessionId": "s1"})
    client.post("/v1/chat/send", json={"message": "again", "sessionId": "s1"})
    client.post("/v1/chat/send", json={"message": "elsewhere", "sessionId": "s2"})

    response = client.get("/v1/chat/sessions/s1/usage")

    assert response.status_code == 200
    body = response.json()
    assert body["sessionId"] == "s1"
    assert len(body["records"]) == 2
    assert all(r["session_id"] == "s1" and r["success"] for r in body["records"])
    own = [r for r in usage.records if r.session_id == "s1"]
    assert body["totalInputTokens"] == sum(r.input_tokens for r in own)
    assert body["totalOutputTokens"] == sum(r.output_tokens for r in own)
    assert body["totalCost"] == pytest.approx(sum(r.estimated_cost for r in own))


def test_session_usage_for_unknown_session_is_empty(client):
    body = client.get("/v1/chat/sessions/nobody/usage").json()
    assert body["records"] == []
    assert body["totalInputTokens"] == 0


def test_delete_session(client, upstream):
    client.post("/v1/chat/send", json={"message": "remember me", "sessionId": "s1"})

    response = client.delete("/v1/chat/sessions/s1")
    assert response.status_code == 200
    assert response.json() == {"sessionId": "s1", "deleted": True}

    assert client.delete("/v1/chat/sessions/s1").status_code == 404

    # History is gone: the next exchange starts fresh
    client.post("/v1/chat/send", json={"message": "hello again", "sessionId": "s1"})
    assert [m["content"] for m in upstream.bodies[-1]["messages"]] == ["hello again"]
