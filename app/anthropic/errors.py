from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from app.core.errors import GatewayError, UpstreamStatusError


@dataclass
class AnthropicCompatError(Exception):
    status_code: int
    message: str
    error_type: str = "invalid_request_error"

    def to_error(self) -> dict[str, Any]:
        return {
            "type": "error",
            "error": {
                "type": self.error_type,
                "message": self.message,
            },
        }


def map_anthropic_error(exc: Exception) -> AnthropicCompatError:
    if isinstance(exc, AnthropicCompatError):
        return exc

    if isinstance(exc, UpstreamStatusError):
        return AnthropicCompatError(
            status_code=exc.status_code,
            message=exc.message,
            error_type=exc.error_type or _error_type_for_status(exc.status_code),
        )

    if isinstance(exc, GatewayError):
        return AnthropicCompatError(
            status_code=exc.status_code,
            message=exc.message,
            error_type=_error_type_for_status(exc.status_code),
        )

    return AnthropicCompatError(500, f"Unexpected server error: {exc}", "api_error")


def _error_type_for_status(status_code: int) -> str:
    if status_code == 401:
        return "authentication_error"
    if status_code == 403:
        return "permission_error"
    if status_code == 404:
        return "not_found_error"
    if status_code == 429:
        return "rate_limit_error"
    if status_code == 529:
        return "overloaded_error"
    if status_code >= 500:
        return "api_error"
    return "invalid_request_error"
