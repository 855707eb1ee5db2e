from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse

from app.anthropic.upstream import UpstreamClient
from app.core.config import Settings
from app.dependencies import get_model_mapper, get_settings, get_upstream_client
from app.openai.adapter import (
    create_chat_completion,
    create_chat_completion_stream,
    model_cards,
)
from app.openai.schemas import ChatCompletionRequest
from app.transform.model_mapper import ModelMapper

router = APIRouter(prefix="/v1", tags=["openai"])


@router.get("/models")
async def list_models(settings: Settings = Depends(get_settings)) -> dict:
    return {
        "object": "list",
        "data": model_cards(settings.tier_models),
    }


@router.post("/chat/completions")
async def chat_completions(
    payload: ChatCompletionRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    mapper: ModelMapper = Depends(get_model_mapper),
    upstream: UpstreamClient = Depends(get_upstream_client),
    settings: Settings = Depends(get_settings),
):
    if payload.stream:
        iterator, headers, close_stream = await create_chat_completion_stream(
            payload,
            mapper=mapper,
            upstream=upstream,
            settings=settings,
            inbound_headers=request.headers,
        )
        headers["Cache-Control"] = "no-cache"
        background_tasks.add_task(close_stream)

        return StreamingResponse(
            iterator,
            media_type="text/event-stream",
            headers=headers,
        )

    response_payload, headers = await create_chat_completion(
        payload,
        mapper=mapper,
        upstream=upstream,
        settings=settings,
        inbound_headers=request.headers,
    )
    return JSONResponse(content=response_payload, headers=headers)
