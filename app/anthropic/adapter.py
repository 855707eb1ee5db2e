from __future__ import annotations

import json
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, AsyncIterator

from app.core.config import Settings
from app.transform.model_mapper import ModelMapper
from app.transform.pipeline import (
    TransformResult,
    is_anthropic_model,
    mapping_headers,
    transform_request,
)

from .errors import map_anthropic_error
from .schemas import CountTokensRequest, MessagesRequest
from .upstream import UpstreamClient

MESSAGES_PATH = "/v1/messages"
COUNT_TOKENS_PATH = "/v1/messages/count_tokens"


def prepare_request(
    request: MessagesRequest | CountTokensRequest,
    mapper: ModelMapper,
    settings: Settings,
) -> TransformResult:
    map_model = not (settings.passthrough_claude_models and is_anthropic_model(request.model))
    return transform_request(request, mapper, map_model=map_model)


async def create_messages_response(
    request: MessagesRequest,
    *,
    mapper: ModelMapper,
    upstream: UpstreamClient,
    settings: Settings,
    inbound_headers: Mapping[str, str] | None = None,
) -> tuple[dict[str, Any], dict[str, str]]:
    prepared = prepare_request(request, mapper, settings)
    payload = prepared.request.to_upstream_payload()
    payload.setdefault("max_tokens", settings.default_max_tokens)

    response = await upstream.post_json(MESSAGES_PATH, payload, inbound_headers)

    headers = dict(response.headers)
    headers.update(mapping_headers(prepared.resolution))
    return response.payload, headers


async def create_messages_stream(
    request: MessagesRequest,
    *,
    mapper: ModelMapper,
    upstream: UpstreamClient,
    settings: Settings,
    inbound_headers: Mapping[str, str] | None = None,
) -> tuple[AsyncIterator[bytes], dict[str, str], Callable[[], Awaitable[None]]]:
    prepared = prepare_request(request, mapper, settings)
    payload = prepared.request.to_upstream_payload()
    payload.setdefault("max_tokens", settings.default_max_tokens)
    payload["stream"] = True

    stream = await upstream.open_stream(MESSAGES_PATH, payload, inbound_headers)

    headers = stream.headers
    headers.update(mapping_headers(prepared.resolution))

    async def _iterator() -> AsyncIterator[bytes]:
        try:
            async for chunk in stream.iter_bytes():
                yield chunk
        except Exception as exc:
            mapped = map_anthropic_error(exc)
            error_event = {
                "type": "error",
                "error": {
                    "type": mapped.error_type,
                    "message": mapped.message,
                },
            }
            yield _anthropic_sse_event("error", error_event)

        finally:
            await stream.aclose()

    return _iterator(), headers, stream.aclose


async def count_tokens(
    request: CountTokensRequest,
    *,
    mapper: ModelMapper,
    upstream: UpstreamClient,
    settings: Settings,
    inbound_headers: Mapping[str, str] | None = None,
) -> tuple[dict[str, Any], dict[str, str]]:
    prepared = prepare_request(request, mapper, settings)
    payload = prepared.request.to_upstream_payload()

    response = await upstream.post_json(COUNT_TOKENS_PATH, payload, inbound_headers)

    headers = dict(response.headers)
    headers.update(mapping_headers(prepared.resolution))
    return response.payload, headers


def _anthropic_sse_event(event: str, payload: dict[str, Any]) -> bytes:
    serialized = json.dumps(payload, ensure_ascii=False)
    return f"event: {event}\ndata: {serialized}\n\n".encode("utf-8")
