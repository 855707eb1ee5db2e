from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict


class ChatCompletionStreamOptions(BaseModel):
    include_usage: bool = False

    model_config = ConfigDict(extra="allow")


class ChatCompletionMessage(BaseModel):
    role: str
    content: str | list[dict[str, Any]] | None = None
    name: str | None = None
    tool_call_id: str | None = None

    model_config = ConfigDict(extra="allow")


class ChatCompletionRequest(BaseModel):
    model: str
    messages: list[ChatCompletionMessage]
    stream: bool = False
    stream_options: ChatCompletionStreamOptions | None = None

    # Translated to the Anthropic messages request
    max_tokens: int | None = None
    max_completion_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    stop: str | list[str] | None = None
    user: str | None = None

    # Accepted but not forwarded (ignored with warning)
    response_format: dict[str, Any] | None = None
    tools: list[dict[str, Any]] | None = None
    tool_choice: Any = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None
    logprobs: bool | None = None
    n: int | None = None
    seed: int | None = None
    parallel_tool_calls: bool | None = None
    metadata: dict[str, Any] | None = None

    model_config = ConfigDict(extra="allow")
