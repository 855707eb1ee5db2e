from __future__ import annotations

import asyncio
import gzip
import json
from pathlib import Path

import httpx
import pytest
from fastapi.testclient import TestClient

from app.anthropic.adapter import create_messages_stream
from app.anthropic.schemas import MessagesRequest
from app.anthropic.upstream import UpstreamClient
from app.core.config import Settings
from app.core.types import REQUIRED_SYSTEM_PROMPT
from app.main import create_app
from app.transform.model_mapper import ModelMapper

REQUIRED = REQUIRED_SYSTEM_PROMPT.to_dict()

MESSAGE_RESPONSE = {
    "id": "msg_123",
    "type": "message",
    "role": "assistant",
    "model": "claude-sonnet-4-5",
    "content": [{"type": "text", "text": "Hello there."}],
    "stop_reason": "end_turn",
    "stop_sequence": None,
    "usage": {"input_tokens": 12, "output_tokens": 4},
}


class FakeUpstream:
    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.response: httpx.Response | Exception = httpx.Response(200, json=MESSAGE_RESPONSE)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if isinstance(self.response, Exception):
            raise self.response
        return self.response

    @property
    def last_request(self) -> httpx.Request:
        return self.requests[-1]

    @property
    def last_json(self) -> dict:
        return json.loads(self.last_request.content)


class TrackingStream(httpx.AsyncByteStream):
    def __init__(self, *chunks: bytes) -> None:
        self.chunks = chunks
        self.closed = False

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk

    async def aclose(self) -> None:
        self.closed = True


def _sse(*events: dict) -> bytes:
    return "".join(
        f"event: {event['type']}\ndata: {json.dumps(event)}\n\n" for event in events
    ).encode("utf-8")


@pytest.fixture()
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(mappings_file=tmp_path / "router-mappings.json")


@pytest.fixture()
def client(settings: Settings, upstream: FakeUpstream) -> TestClient:
    app = create_app(settings, upstream_transport=httpx.MockTransport(upstream.handler))
    return TestClient(app)


def test_messages_maps_model_and_injects_system_prompt(client: TestClient, upstream: FakeUpstream):
    payload = {
        "model": "gpt-4",
        "max_tokens": 100,
        "messages": [{"role": "user", "content": "Say hello in one sentence."}],
    }

    response = client.post("/v1/messages", json=payload, headers={"x-api-key": "sk-test"})

    assert response.status_code == 200
    assert response.json() == MESSAGE_RESPONSE
    assert response.headers["x-router-model-mapping"] == (
        "gpt-4 -> claude-sonnet-4-5 (default pattern)"
    )

    forwarded = upstream.last_json
    assert upstream.last_request.url.path == "/v1/messages"
    assert forwarded["model"] == "claude-sonnet-4-5"
    assert forwarded["system"] == [REQUIRED]
    assert forwarded["max_tokens"] == 100
    assert forwarded["messages"] == payload["messages"]
    assert upstream.last_request.headers["x-api-key"] == "sk-test"
    assert upstream.last_request.headers["anthropic-version"] == "2023-06-01"


def test_messages_keeps_existing_required_prompt(client: TestClient, upstream: FakeUpstream):
    system = [REQUIRED, {"type": "text", "text": "You are also a helpful assistant."}]
    payload = {
        "model": "claude-sonnet-4-5",
        "max_tokens": 100,
        "system": system,
        "messages": [{"role": "user", "content": "What are you?"}],
    }

    response = client.post("/v1/messages", json=payload)

    assert response.status_code == 200
    assert upstream.last_json["system"] == system


def test_messages_forwards_claude_models_unmapped(client: TestClient, upstream: FakeUpstream):
    payload = {
        "model": "claude-opus-4-5",
        "messages": [{"role": "user", "content": "Hi"}],
    }

    response = client.post("/v1/messages", json=payload)

    assert response.status_code == 200
    assert upstream.last_json["model"] == "claude-opus-4-5"
    assert upstream.last_json["max_tokens"] == 4096
    assert "x-router-model-mapping" not in response.headers


def test_messages_maps_claude_models_when_passthrough_disabled(
    tmp_path: Path,
    upstream: FakeUpstream,
):
    settings = Settings(
        mappings_file=tmp_path / "router-mappings.json",
        passthrough_claude_models=False,
    )
    client = TestClient(
        create_app(settings, upstream_transport=httpx.MockTransport(upstream.handler))
    )

    response = client.post(
        "/v1/messages",
        json={"model": "claude-opus-4-5", "messages": [{"role": "user", "content": "Hi"}]},
    )

    assert response.status_code == 200
    assert upstream.last_json["model"] == "claude-sonnet-4-5"


def test_messages_uses_custom_mapping_file(
    client: TestClient,
    settings: Settings,
    upstream: FakeUpstream,
):
    settings.mappings_file.write_text(json.dumps({"gpt-4": "claude-opus-4-5"}), encoding="utf-8")

    response = client.post(
        "/v1/messages",
        json={"model": "gpt-4", "messages": [{"role": "user", "content": "Hi"}]},
    )

    assert response.status_code == 200
    assert upstream.last_json["model"] == "claude-opus-4-5"
    assert response.headers["x-router-model-mapping"].endswith("(custom mapping)")


def test_messages_streaming_is_passed_through(client: TestClient, upstream: FakeUpstream):
    events = _sse(
        {"type": "message_start", "message": {"id": "msg_1", "usage": {"input_tokens": 3}}},
        {
            "type": "content_block_delta",
            "index": 0,
            "delta": {"type": "text_delta", "text": "Hello"},
        },
        {"type": "message_stop"},
    )
    upstream.response = httpx.Response(
        200,
        content=events,
        headers={"content-type": "text/event-stream", "request-id": "req_1"},
    )

    payload = {
        "model": "o3",
        "stream": True,
        "messages": [{"role": "user", "content": "Stream please."}],
    }

    with client.stream("POST", "/v1/messages", json=payload) as response:
        body = "".join(response.iter_text())

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["request-id"] == "req_1"
    assert body == events.decode("utf-8")
    assert upstream.last_json["stream"] is True
    assert upstream.last_json["model"] == "claude-opus-4-5"


def test_compressed_stream_is_decoded_before_passthrough(
    client: TestClient,
    upstream: FakeUpstream,
):
    events = _sse(
        {"type": "message_start", "message": {"id": "msg_1", "usage": {"input_tokens": 3}}},
        {"type": "message_stop"},
    )
    upstream.response = httpx.Response(
        200,
        content=gzip.compress(events),
        headers={"content-type": "text/event-stream", "content-encoding": "gzip"},
    )

    payload = {
        "model": "gpt-4",
        "stream": True,
        "messages": [{"role": "user", "content": "Stream please."}],
    }

    with client.stream("POST", "/v1/messages", json=payload) as response:
        body = response.read()

    assert response.status_code == 200
    assert "content-encoding" not in response.headers
    assert body == events


def test_stream_closer_releases_upstream_without_iteration(
    settings: Settings,
    upstream: FakeUpstream,
):
    body = TrackingStream(_sse({"type": "message_stop"}))
    upstream.response = httpx.Response(
        200,
        stream=body,
        headers={"content-type": "text/event-stream"},
    )
    request = MessagesRequest.model_validate(
        {"model": "gpt-4", "stream": True, "messages": [{"role": "user", "content": "Hi"}]}
    )

    async def open_and_close() -> None:
        _iterator, _headers, close_stream = await create_messages_stream(
            request,
            mapper=ModelMapper.from_settings(settings),
            upstream=UpstreamClient(settings, transport=httpx.MockTransport(upstream.handler)),
            settings=settings,
        )
        await close_stream()
        await close_stream()

    asyncio.run(open_and_close())

    assert body.closed


def test_upstream_error_status_is_passed_through(client: TestClient, upstream: FakeUpstream):
    error_body = {
        "type": "error",
        "error": {"type": "authentication_error", "message": "invalid x-api-key"},
    }
    upstream.response = httpx.Response(401, json=error_body)

    response = client.post(
        "/v1/messages",
        json={"model": "gpt-4", "messages": [{"role": "user", "content": "Hi"}]},
    )

    assert response.status_code == 401
    assert response.json() == error_body


def test_upstream_error_before_stream_is_passed_through(client: TestClient, upstream: FakeUpstream):
    error_body = {
        "type": "error",
        "error": {"type": "overloaded_error", "message": "Overloaded"},
    }
    upstream.response = httpx.Response(529, json=error_body)

    response = client.post(
        "/v1/messages",
        json={"model": "gpt-4", "stream": True, "messages": [{"role": "user", "content": "Hi"}]},
    )

    assert response.status_code == 529
    assert response.json() == error_body


def test_upstream_unreachable_maps_to_502(client: TestClient, upstream: FakeUpstream):
    upstream.response = httpx.ConnectError("connection refused")

    response = client.post(
        "/v1/messages",
        json={"model": "gpt-4", "messages": [{"role": "user", "content": "Hi"}]},
    )

    assert response.status_code == 502
    body = response.json()
    assert body["type"] == "error"
    assert body["error"]["type"] == "api_error"


def test_upstream_timeout_maps_to_504(client: TestClient, upstream: FakeUpstream):
    upstream.response = httpx.ReadTimeout("too slow")

    response = client.post(
        "/v1/messages",
        json={"model": "gpt-4", "messages": [{"role": "user", "content": "Hi"}]},
    )

    assert response.status_code == 504
    assert response.json()["error"]["type"] == "api_error"


def test_count_tokens_is_transformed_and_forwarded(client: TestClient, upstream: FakeUpstream):
    upstream.response = httpx.Response(200, json={"input_tokens": 42})
    payload = {
        "model": "gpt-3.5-turbo",
        "system": "A",
        "messages": [{"role": "user", "content": [{"type": "text", "text": "abcd"}]}],
    }

    response = client.post("/v1/messages/count_tokens", json=payload)

    assert response.status_code == 200
    assert response.json() == {"input_tokens": 42}
    assert upstream.last_request.url.path == "/v1/messages/count_tokens"
    forwarded = upstream.last_json
    assert forwarded["model"] == "claude-haiku-4-5"
    assert forwarded["system"] == [REQUIRED, {"type": "text", "text": "A"}]
    assert "max_tokens" not in forwarded


def test_invalid_payload_returns_anthropic_error(client: TestClient, upstream: FakeUpstream):
    response = client.post("/v1/messages", json={"model": "gpt-4"})

    assert response.status_code == 400
    body = response.json()
    assert body["type"] == "error"
    assert body["error"]["type"] == "invalid_request_error"
    assert upstream.requests == []
