from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, AsyncIterator

import httpx

from app.core.config import Settings
from app.core.errors import GatewayError, UpstreamStatusError

logger = logging.getLogger(__name__)

FORWARDED_REQUEST_HEADERS = ("x-api-key", "authorization", "anthropic-beta")
RETURNED_RESPONSE_HEADER_PREFIXES = ("request-id", "anthropic-ratelimit-", "retry-after")


@dataclass(slots=True)
class UpstreamResponse:
    status_code: int
    payload: dict[str, Any]
    headers: dict[str, str]


class UpstreamStream:
    """An open streaming response; iterating it releases the connection."""

    def __init__(self, client: httpx.AsyncClient, response: httpx.Response) -> None:
        self._client = client
        self._response = response

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def headers(self) -> dict[str, str]:
        return returned_headers(self._response.headers)

    async def iter_bytes(self) -> AsyncIterator[bytes]:
        try:
            async for chunk in self._response.aiter_bytes():
                yield chunk
        except httpx.HTTPError as exc:
            raise _transport_error(exc) from exc
        finally:
            await self.aclose()

    async def iter_lines(self) -> AsyncIterator[str]:
        try:
            async for line in self._response.aiter_lines():
                yield line
        except httpx.HTTPError as exc:
            raise _transport_error(exc) from exc
        finally:
            await self.aclose()

    async def aclose(self) -> None:
        await self._response.aclose()
        await self._client.aclose()


class UpstreamClient:
    """Forwards requests to the Anthropic messages API.

    A fresh ``httpx.AsyncClient`` is opened per call. Non-2xx replies are
    raised as ``UpstreamStatusError`` with the upstream body attached;
    transport failures become ``GatewayError`` (502, or 504 on timeout).
    """

    def __init__(
        self,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.settings = settings
        self.transport = transport

    def build_headers(self, inbound: Mapping[str, str] | None = None) -> dict[str, str]:
        inbound = inbound or {}
        headers = {
            "content-type": "application/json",
            "anthropic-version": inbound.get("anthropic-version") or self.settings.anthropic_version,
        }

        for name in FORWARDED_REQUEST_HEADERS:
            value = inbound.get(name)
            if value:
                headers[name] = value

        return headers

    async def post_json(
        self,
        path: str,
        payload: dict[str, Any],
        inbound_headers: Mapping[str, str] | None = None,
    ) -> UpstreamResponse:
        async with self._new_client() as client:
            try:
                response = await client.post(
                    path,
                    json=payload,
                    headers=self.build_headers(inbound_headers),
                )
            except httpx.HTTPError as exc:
                raise _transport_error(exc) from exc

        if response.status_code >= 400:
            body = _error_payload(response)
            logger.warning(f"Upstream {path} returned HTTP {response.status_code}")
            raise UpstreamStatusError(status_code=response.status_code, payload=body)

        try:
            body = response.json()
        except ValueError as exc:
            raise GatewayError(
                status_code=502,
                message="Upstream returned a response that is not valid JSON.",
                code="upstream_invalid_response",
            ) from exc

        return UpstreamResponse(
            status_code=response.status_code,
            payload=body,
            headers=returned_headers(response.headers),
        )

    async def open_stream(
        self,
        path: str,
        payload: dict[str, Any],
        inbound_headers: Mapping[str, str] | None = None,
    ) -> UpstreamStream:
        client = self._new_client()
        request = client.build_request(
            "POST",
            path,
            json=payload,
            headers=self.build_headers(inbound_headers),
        )

        try:
            response = await client.send(request, stream=True)
        except httpx.HTTPError as exc:
            await client.aclose()
            raise _transport_error(exc) from exc

        if response.status_code >= 400:
            try:
                await response.aread()
                body = _error_payload(response)
            finally:
                await response.aclose()
                await client.aclose()
            logger.warning(f"Upstream {path} stream returned HTTP {response.status_code}")
            raise UpstreamStatusError(status_code=response.status_code, payload=body)

        return UpstreamStream(client, response)

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.settings.upstream_base_url,
            timeout=httpx.Timeout(self.settings.upstream_timeout),
            transport=self.transport,
        )


def returned_headers(headers: httpx.Headers) -> dict[str, str]:
    return {
        name: value
        for name, value in headers.items()
        if name.lower().startswith(RETURNED_RESPONSE_HEADER_PREFIXES)
    }


def _error_payload(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        return body

    return {
        "type": "error",
        "error": {
            "type": "api_error",
            "message": response.text[:500] or f"Upstream returned HTTP {response.status_code}.",
        },
    }


def _transport_error(exc: httpx.HTTPError) -> GatewayError:
    if isinstance(exc, httpx.TimeoutException):
        logger.error(f"Upstream request timed out: {exc}")
        return GatewayError(
            status_code=504,
            message="Timed out waiting for the upstream API.",
            code="upstream_timeout",
        )

    logger.error(f"Upstream request failed: {exc!r}")
    return GatewayError(
        status_code=502,
        message=f"Could not reach the upstream API: {exc}",
        code="upstream_unavailable",
    )
