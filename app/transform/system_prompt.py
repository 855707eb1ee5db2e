from __future__ import annotations

from typing import TypeVar

from app.anthropic.schemas import CountTokensRequest, MessageContentBlock, MessagesRequest
from app.core.types import REQUIRED_SYSTEM_PROMPT

RequestT = TypeVar("RequestT", MessagesRequest, CountTokensRequest)


def required_system_block() -> MessageContentBlock:
    return MessageContentBlock(**REQUIRED_SYSTEM_PROMPT.to_dict())


def has_required_system_prompt(system: str | list[MessageContentBlock] | None) -> bool:
    """Only the first system block is checked, and only for an exact text match."""
    blocks = _as_blocks(system)
    if not blocks:
        return False

    first = blocks[0]
    return first.type == REQUIRED_SYSTEM_PROMPT.type and first.text == REQUIRED_SYSTEM_PROMPT.text


def ensure_required_system_prompt(request: RequestT) -> RequestT:
    """Return ``request`` with the required prompt as its first system block.

    The input is never mutated. When the prompt is already first the same
    object is returned; otherwise a copy is returned with the prompt
    prepended to the existing blocks.
    """
    if isinstance(request.system, list) and has_required_system_prompt(request.system):
        return request

    existing = _as_blocks(request.system)
    if existing and has_required_system_prompt(existing):
        return request.model_copy(update={"system": existing})

    return request.model_copy(update={"system": [required_system_block(), *existing]})


def _as_blocks(system: str | list[MessageContentBlock] | None) -> list[MessageContentBlock]:
    if not system:
        return []

    if isinstance(system, str):
        return [MessageContentBlock(type="text", text=system)]

    return list(system)
