from __future__ import annotations

import httpx
from fastapi import FastAPI

from app.anthropic.upstream import UpstreamClient
from app.core.config import Settings
from app.dependencies import register_exception_handlers
from app.internal import admin
from app.routers import anthropic, openai
from app.transform.model_mapper import ModelMapper


def create_app(
    settings: Settings | None = None,
    *,
    model_mapper: ModelMapper | None = None,
    upstream_transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    settings = settings or Settings.from_env()

    app = FastAPI(
        title="max-plan-router",
        version="0.1.0",
        docs_url="/docs",
        redoc_url=None,
    )

    app.state.settings = settings
    app.state.model_mapper = model_mapper or ModelMapper.from_settings(settings)
    app.state.upstream_client = UpstreamClient(settings, transport=upstream_transport)

    register_exception_handlers(app)

    app.include_router(openai.router)
    app.include_router(anthropic.router)
    app.include_router(admin.router)

    return app


app = create_app()
