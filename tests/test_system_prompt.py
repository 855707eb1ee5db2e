from __future__ import annotations

import pytest

from app.anthropic.schemas import CountTokensRequest, MessagesRequest
from app.core.types import REQUIRED_SYSTEM_PROMPT
from app.transform.system_prompt import (
    ensure_required_system_prompt,
    has_required_system_prompt,
)

REQUIRED = REQUIRED_SYSTEM_PROMPT.to_dict()
HELPFUL = {"type": "text", "text": "You are also a helpful assistant."}


def _request(**overrides) -> MessagesRequest:
    payload = {
        "model": "claude-sonnet-4-5",
        "max_tokens": 100,
        "messages": [{"role": "user", "content": "Say hello in one sentence."}],
    }
    payload.update(overrides)
    return MessagesRequest.model_validate(payload)


def _system(request: MessagesRequest) -> list[dict]:
    return [block.model_dump(exclude_none=True) for block in request.system]


def test_absent_system_gets_required_prompt():
    request = _request()

    normalized = ensure_required_system_prompt(request)

    assert _system(normalized) == [REQUIRED]
    assert request.system is None


def test_empty_system_list_gets_required_prompt():
    normalized = ensure_required_system_prompt(_request(system=[]))

    assert _system(normalized) == [REQUIRED]


def test_required_prompt_first_returns_same_object():
    request = _request(system=[REQUIRED, HELPFUL])

    assert ensure_required_system_prompt(request) is request


def test_other_system_blocks_are_preserved_after_required_prompt():
    request = _request(system=[HELPFUL])

    normalized = ensure_required_system_prompt(request)

    assert _system(normalized) == [REQUIRED, HELPFUL]
    assert _system(request) == [HELPFUL]


def test_string_system_is_treated_as_single_block():
    normalized = ensure_required_system_prompt(_request(system="Be brief."))

    assert _system(normalized) == [REQUIRED, {"type": "text", "text": "Be brief."}]


def test_string_system_equal_to_required_prompt_is_not_duplicated():
    normalized = ensure_required_system_prompt(_request(system=REQUIRED["text"]))

    assert _system(normalized) == [REQUIRED]


def test_required_prompt_in_later_position_is_prepended_again():
    request = _request(system=[HELPFUL, REQUIRED])

    normalized = ensure_required_system_prompt(request)

    assert _system(normalized) == [REQUIRED, HELPFUL, REQUIRED]


@pytest.mark.parametrize(
    "first_block",
    [
        {"type": "text", "text": REQUIRED["text"] + " "},
        {"type": "text", "text": REQUIRED["text"].lower()},
        {"type": "image", "text": REQUIRED["text"]},
    ],
)
def test_near_matches_do_not_count(first_block: dict):
    assert not has_required_system_prompt(
        _request(system=[first_block]).system
    )


@pytest.mark.parametrize(
    "system",
    [None, [], "Be brief.", [HELPFUL], [REQUIRED], [HELPFUL, REQUIRED], [REQUIRED, HELPFUL]],
)
def test_normalization_is_idempotent(system):
    once = ensure_required_system_prompt(_request(system=system))
    twice = ensure_required_system_prompt(once)

    assert twice is once
    assert twice == once


def test_passthrough_fields_survive_normalization():
    request = _request(system=[HELPFUL], temperature=0.3, anthropic_extra={"a": 1})

    normalized = ensure_required_system_prompt(request)

    payload = normalized.to_upstream_payload()
    assert payload["temperature"] == 0.3
    assert payload["anthropic_extra"] == {"a": 1}
    assert payload["messages"] == [{"role": "user", "content": "Say hello in one sentence."}]


def test_count_tokens_request_is_normalized():
    request = CountTokensRequest.model_validate(
        {
            "model": "claude-sonnet-4-5",
            "messages": [{"role": "user", "content": "hi"}],
        }
    )

    normalized = ensure_required_system_prompt(request)

    assert isinstance(normalized, CountTokensRequest)
    assert normalized.system[0].text == REQUIRED["text"]
