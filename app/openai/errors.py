from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from app.core.errors import GatewayError, UpstreamStatusError

_UPSTREAM_ERROR_TYPES = {
    "invalid_request_error": "invalid_request_error",
    "authentication_error": "authentication_error",
    "permission_error": "permission_error",
    "not_found_error": "invalid_request_error",
    "request_too_large": "invalid_request_error",
    "rate_limit_error": "rate_limit_error",
    "api_error": "server_error",
    "overloaded_error": "server_error",
}


@dataclass
class OpenAICompatError(Exception):
    """OpenAI-style error wrapper with HTTP metadata."""

    status_code: int
    message: str
    error_type: str = "invalid_request_error"
    code: str | None = None
    param: str | None = None

    def to_error(self) -> dict[str, Any]:
        return {
            "message": self.message,
            "type": self.error_type,
            "param": self.param,
            "code": self.code,
        }


def map_openai_error(exc: Exception) -> OpenAICompatError:
    """Map proxy and upstream failures to OpenAI-style API errors."""

    if isinstance(exc, OpenAICompatError):
        return exc

    if isinstance(exc, UpstreamStatusError):
        upstream_type = exc.error_type
        error_type = _UPSTREAM_ERROR_TYPES.get(upstream_type or "")
        if error_type is None:
            error_type = _error_type_for_status(exc.status_code)

        return OpenAICompatError(
            status_code=exc.status_code,
            message=exc.message,
            error_type=error_type,
            code=upstream_type,
        )

    if isinstance(exc, GatewayError):
        return OpenAICompatError(
            status_code=exc.status_code,
            message=exc.message,
            error_type=_error_type_for_status(exc.status_code),
            code=exc.code,
            param=exc.param,
        )

    return OpenAICompatError(
        status_code=500,
        message=f"Unexpected server error: {exc}",
        error_type="server_error",
        code="internal_error",
    )


def _error_type_for_status(status_code: int) -> str:
    if status_code == 401:
        return "authentication_error"
    if status_code == 403:
        return "permission_error"
    if status_code == 429:
        return "rate_limit_error"
    if status_code >= 500:
        return "server_error"
    return "invalid_request_error"
