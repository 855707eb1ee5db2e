from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass
class GatewayError(Exception):
    status_code: int
    message: str
    code: str | None = None
    param: str | None = None

    def __str__(self) -> str:
        return self.message


@dataclass
class UpstreamStatusError(Exception):
    """Non-2xx reply from the upstream messages API, kept as-is."""

    status_code: int
    payload: dict[str, Any] = field(default_factory=dict)

    @property
    def error_type(self) -> str | None:
        error = self.payload.get("error")
        if isinstance(error, dict) and isinstance(error.get("type"), str):
            return error["type"]
        return None

    @property
    def message(self) -> str:
        error = self.payload.get("error")
        if isinstance(error, dict) and isinstance(error.get("message"), str):
            return error["message"]
        return f"Upstream returned HTTP {self.status_code}."

    def __str__(self) -> str:
        return self.message
