from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.anthropic.errors import AnthropicCompatError, map_anthropic_error
from app.anthropic.upstream import UpstreamClient
from app.core.config import Settings
from app.core.errors import GatewayError, UpstreamStatusError
from app.openai.errors import OpenAICompatError, map_openai_error
from app.transform.model_mapper import ModelMapper


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_model_mapper(request: Request) -> ModelMapper:
    return request.app.state.model_mapper


def get_upstream_client(request: Request) -> UpstreamClient:
    return request.app.state.upstream_client


def _is_anthropic_path(request: Request) -> bool:
    return request.url.path.startswith("/v1/messages")


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(OpenAICompatError)
    async def handle_openai_error(
        _request: Request,
        exc: OpenAICompatError,
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.to_error()},
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(
        request: Request,
        exc: RequestValidationError,
    ) -> JSONResponse:
        first_error = exc.errors()[0]["msg"] if exc.errors() else "Invalid request"

        if _is_anthropic_path(request):
            compat_error = AnthropicCompatError(
                status_code=400,
                message=first_error,
                error_type="invalid_request_error",
            )
            return JSONResponse(
                status_code=compat_error.status_code,
                content=compat_error.to_error(),
            )

        compat_error = OpenAICompatError(
            status_code=400,
            message=first_error,
            error_type="invalid_request_error",
            code="invalid_request",
        )
        return JSONResponse(
            status_code=compat_error.status_code,
            content={"error": compat_error.to_error()},
        )

    @app.exception_handler(AnthropicCompatError)
    async def handle_anthropic_error(
        _request: Request,
        exc: AnthropicCompatError,
    ) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=exc.to_error(),
        )

    @app.exception_handler(UpstreamStatusError)
    async def handle_upstream_status(
        request: Request,
        exc: UpstreamStatusError,
    ) -> JSONResponse:
        # Anthropic clients get the upstream body untouched
        if _is_anthropic_path(request):
            return JSONResponse(status_code=exc.status_code, content=exc.payload)

        compat_error = map_openai_error(exc)
        return JSONResponse(
            status_code=compat_error.status_code,
            content={"error": compat_error.to_error()},
        )

    @app.exception_handler(GatewayError)
    async def handle_gateway_error(
        request: Request,
        exc: GatewayError,
    ) -> JSONResponse:
        if _is_anthropic_path(request):
            anthropic_error = map_anthropic_error(exc)
            return JSONResponse(
                status_code=anthropic_error.status_code,
                content=anthropic_error.to_error(),
            )

        compat_error = map_openai_error(exc)
        return JSONResponse(
            status_code=compat_error.status_code,
            content={"error": compat_error.to_error()},
        )
