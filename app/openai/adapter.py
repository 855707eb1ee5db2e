from __future__ import annotations

import json
import logging
import time
import uuid
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any, AsyncIterator

from app.anthropic.schemas import MessageContentBlock, MessagesMessage, MessagesRequest
from app.anthropic.upstream import UpstreamClient
from app.core.config import Settings
from app.core.errors import UpstreamStatusError
from app.core.types import TierModels
from app.transform.model_mapper import ModelMapper, ModelResolution
from app.transform.pipeline import mapping_headers, transform_request

from .errors import OpenAICompatError, map_openai_error
from .schemas import ChatCompletionMessage, ChatCompletionRequest

logger = logging.getLogger(__name__)

MESSAGES_PATH = "/v1/messages"

_FINISH_REASONS = {
    "end_turn": "stop",
    "stop_sequence": "stop",
    "pause_turn": "stop",
    "max_tokens": "length",
    "tool_use": "tool_calls",
    "refusal": "content_filter",
}


@dataclass
class PreparedChatRequest:
    model: str
    messages_request: MessagesRequest
    resolution: ModelResolution | None
    include_stream_usage: bool
    warnings: list[str]


def model_cards(tier_models: TierModels) -> list[dict[str, Any]]:
    return [
        {
            "id": model_id,
            "object": "model",
            "created": 0,
            "owned_by": "anthropic",
        }
        for model_id in _dedupe_preserve_order(tier_models.ordered())
    ]


def warning_headers(warnings: list[str]) -> dict[str, str]:
    if not warnings:
        return {}

    value = " | ".join(_dedupe_preserve_order(warnings))
    if len(value) > 2048:
        value = value[:2045] + "..."
    return {"X-OpenAI-Compat-Warnings": value}


def prepare_chat_request(
    request: ChatCompletionRequest,
    mapper: ModelMapper,
    settings: Settings,
) -> PreparedChatRequest:
    system_blocks, messages, message_warnings = _convert_messages(request.messages)

    messages_request = MessagesRequest(
        model=request.model,
        messages=messages,
        system=system_blocks or None,
        max_tokens=request.max_completion_tokens or request.max_tokens or settings.default_max_tokens,
        stream=request.stream,
        temperature=request.temperature,
        top_p=request.top_p,
        stop_sequences=_stop_sequences(request.stop),
        metadata={"user_id": request.user} if request.user else None,
    )

    transformed = transform_request(messages_request, mapper)

    warnings = _collect_warnings(request)
    warnings.extend(message_warnings)

    return PreparedChatRequest(
        model=request.model,
        messages_request=transformed.request,
        resolution=transformed.resolution,
        include_stream_usage=bool(
            request.stream_options is not None and request.stream_options.include_usage
        ),
        warnings=_dedupe_preserve_order(warnings),
    )


async def create_chat_completion(
    request: ChatCompletionRequest,
    *,
    mapper: ModelMapper,
    upstream: UpstreamClient,
    settings: Settings,
    inbound_headers: Mapping[str, str] | None = None,
) -> tuple[dict[str, Any], dict[str, str]]:
    prepared = prepare_chat_request(request, mapper, settings)

    try:
        response = await upstream.post_json(
            MESSAGES_PATH,
            prepared.messages_request.to_upstream_payload(),
            inbound_headers,
        )
    except Exception as exc:
        raise map_openai_error(exc) from exc

    message = response.payload
    usage = message.get("usage") or {}

    payload = {
        "id": _new_chat_completion_id(),
        "object": "chat.completion",
        "created": int(time.time()),
        "model": prepared.model,
        "choices": [
            {
                "index": 0,
                "message": {
                    "role": "assistant",
                    "content": _message_text(message),
                },
                "finish_reason": _finish_reason(message.get("stop_reason")),
            }
        ],
        "usage": _usage_payload(
            int(usage.get("input_tokens") or 0),
            int(usage.get("output_tokens") or 0),
        ),
    }

    return payload, _response_headers(prepared)


async def create_chat_completion_stream(
    request: ChatCompletionRequest,
    *,
    mapper: ModelMapper,
    upstream: UpstreamClient,
    settings: Settings,
    inbound_headers: Mapping[str, str] | None = None,
) -> tuple[AsyncIterator[bytes], dict[str, str], Callable[[], Awaitable[None]]]:
    prepared = prepare_chat_request(request, mapper, settings)
    completion_id = _new_chat_completion_id()
    created_at = int(time.time())

    try:
        stream = await upstream.open_stream(
            MESSAGES_PATH,
            prepared.messages_request.to_upstream_payload(),
            inbound_headers,
        )
    except Exception as exc:
        raise map_openai_error(exc) from exc

    def _chunk(delta: dict[str, Any], finish_reason: str | None = None) -> dict[str, Any]:
        return {
            "id": completion_id,
            "object": "chat.completion.chunk",
            "created": created_at,
            "model": prepared.model,
            "choices": [
                {
                    "index": 0,
                    "delta": delta,
                    "finish_reason": finish_reason,
                }
            ],
        }

    async def _iterator() -> AsyncIterator[bytes]:
        prompt_tokens = 0
        completion_tokens = 0
        finish_reason = "stop"

        try:
            yield _sse_data(_chunk({"role": "assistant"}))

            async for event in _iter_sse_events(stream.iter_lines()):
                event_type = event.get("type")

                if event_type == "message_start":
                    usage = (event.get("message") or {}).get("usage") or {}
                    prompt_tokens = int(usage.get("input_tokens") or 0)

                elif event_type == "content_block_delta":
                    delta = event.get("delta") or {}
                    if delta.get("type") == "text_delta" and delta.get("text"):
                        yield _sse_data(_chunk({"content": delta["text"]}))

                elif event_type == "message_delta":
                    delta = event.get("delta") or {}
                    finish_reason = _finish_reason(delta.get("stop_reason"))
                    usage = event.get("usage") or {}
                    completion_tokens = int(usage.get("output_tokens") or completion_tokens)

                elif event_type == "error":
                    raise UpstreamStatusError(status_code=500, payload=event)

            yield _sse_data(_chunk({}, finish_reason))

            if prepared.include_stream_usage:
                usage_chunk = {
                    "id": completion_id,
                    "object": "chat.completion.chunk",
                    "created": created_at,
                    "model": prepared.model,
                    "choices": [],
                    "usage": _usage_payload(prompt_tokens, completion_tokens),
                }
                yield _sse_data(usage_chunk)

        except Exception as exc:
            mapped = map_openai_error(exc)
            yield _sse_data({"error": mapped.to_error()})

        finally:
            await stream.aclose()

        yield b"data: [DONE]\n\n"

    return _iterator(), _response_headers(prepared), stream.aclose


def _convert_messages(
    messages: list[ChatCompletionMessage],
) -> tuple[list[MessageContentBlock], list[MessagesMessage], list[str]]:
    if not messages:
        raise OpenAICompatError(
            status_code=400,
            message="messages must contain at least one item.",
            error_type="invalid_request_error",
            code="empty_messages",
            param="messages",
        )

    warnings: list[str] = []
    system_blocks: list[MessageContentBlock] = []
    converted: list[MessagesMessage] = []

    for idx, message in enumerate(messages):
        role = message.role.lower()
        text, content_warnings = _extract_text_content(message, idx)
        warnings.extend(content_warnings)

        if role in {"system", "developer"}:
            if text:
                system_blocks.append(MessageContentBlock(type="text", text=text))
            continue

        if role in {"tool", "function"}:
            warnings.append(
                f"Converted {role} message in messages[{idx}] to user text; "
                "tool calling is not forwarded."
            )
            role = "user"
            text = f"{_tool_label(message)}: {text}" if text else ""

        if role not in {"user", "assistant"}:
            warnings.append(f"Ignored message with unsupported role '{message.role}' in messages[{idx}].")
            continue

        if not text:
            warnings.append(f"Skipped empty message in messages[{idx}].")
            continue

        converted.append(MessagesMessage(role=role, content=text))

    if not converted:
        raise OpenAICompatError(
            status_code=400,
            message="messages must include at least one non-system message.",
            error_type="invalid_request_error",
            code="missing_conversation",
            param="messages",
        )

    return system_blocks, converted, warnings


def _extract_text_content(
    message: ChatCompletionMessage,
    message_index: int,
) -> tuple[str, list[str]]:
    content = message.content
    warnings: list[str] = []

    if content is None:
        return "", warnings

    if isinstance(content, str):
        return content.strip(), warnings

    parts: list[str] = []
    ignored_non_text = False

    for part in content:
        if not isinstance(part, dict):
            ignored_non_text = True
            continue

        if part.get("type") == "text" and isinstance(part.get("text"), str):
            parts.append(part["text"])
        else:
            ignored_non_text = True

    if ignored_non_text:
        warnings.append(
            f"Ignored non-text content parts in messages[{message_index}]."
        )

    return "".join(parts).strip(), warnings


def _tool_label(message: ChatCompletionMessage) -> str:
    if message.name:
        return f"Tool({message.name})"
    if message.tool_call_id:
        return f"Tool[{message.tool_call_id}]"
    return "Tool"


def _stop_sequences(stop: str | list[str] | None) -> list[str] | None:
    if stop is None:
        return None
    if isinstance(stop, str):
        return [stop] if stop else None
    return [item for item in stop if item] or None


def _collect_warnings(request: ChatCompletionRequest) -> list[str]:
    warnings: list[str] = []

    if request.tools is not None or request.tool_choice is not None:
        warnings.append(
            "Received tools/tool_choice, but tool calling is not forwarded."
        )

    if request.response_format is not None and request.response_format.get("type") != "text":
        warnings.append("Ignored response_format; only plain text responses are supported.")

    ignored_fields: list[str] = []
    for field_name in (
        "frequency_penalty",
        "presence_penalty",
        "logprobs",
        "n",
        "seed",
        "parallel_tool_calls",
        "metadata",
    ):
        value = getattr(request, field_name)
        if value is not None:
            ignored_fields.append(field_name)

    if request.model_extra:
        ignored_fields.extend(sorted(request.model_extra.keys()))

    if ignored_fields:
        warnings.append(
            "Ignored unsupported request fields: "
            + ", ".join(_dedupe_preserve_order(ignored_fields))
        )

    return warnings


async def _iter_sse_events(lines: AsyncIterator[str]) -> AsyncIterator[dict[str, Any]]:
    async for line in lines:
        if not line.startswith("data:"):
            continue

        raw_payload = line[len("data:") :].strip()
        if not raw_payload or raw_payload == "[DONE]":
            continue

        try:
            event = json.loads(raw_payload)
        except ValueError:
            logger.warning(f"Skipping malformed upstream SSE payload: {raw_payload[:200]}")
            continue

        if isinstance(event, dict):
            yield event


def _message_text(message: dict[str, Any]) -> str:
    parts = [
        block.get("text", "")
        for block in message.get("content") or []
        if isinstance(block, dict) and block.get("type") == "text"
    ]
    return "".join(parts)


def _finish_reason(stop_reason: str | None) -> str:
    if stop_reason is None:
        return "stop"
    return _FINISH_REASONS.get(stop_reason, "stop")


def _response_headers(prepared: PreparedChatRequest) -> dict[str, str]:
    headers = warning_headers(prepared.warnings)
    headers.update(mapping_headers(prepared.resolution))
    return headers


def _usage_payload(prompt_tokens: int, completion_tokens: int) -> dict[str, int]:
    return {
        "prompt_tokens": prompt_tokens,
        "completion_tokens": completion_tokens,
        "total_tokens": prompt_tokens + completion_tokens,
    }


def _new_chat_completion_id() -> str:
    return f"chatcmpl-{uuid.uuid4().hex}"


def _sse_data(payload: dict[str, Any]) -> bytes:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode("utf-8")


def _dedupe_preserve_order(items: list[str]) -> list[str]:
    seen: set[str] = set()
    deduped: list[str] = []

    for item in items:
        if item in seen:
            continue
        seen.add(item)
        deduped.append(item)

    return deduped
