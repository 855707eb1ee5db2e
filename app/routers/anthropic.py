from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse

from app.anthropic.adapter import (
    count_tokens,
    create_messages_response,
    create_messages_stream,
)
from app.anthropic.schemas import CountTokensRequest, MessagesRequest
from app.anthropic.upstream import UpstreamClient
from app.core.config import Settings
from app.dependencies import get_model_mapper, get_settings, get_upstream_client
from app.transform.model_mapper import ModelMapper

router = APIRouter(prefix="/v1", tags=["anthropic"])


@router.post("/messages")
async def messages(
    payload: MessagesRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    mapper: ModelMapper = Depends(get_model_mapper),
    upstream: UpstreamClient = Depends(get_upstream_client),
    settings: Settings = Depends(get_settings),
):
    if payload.stream:
        iterator, headers, close_stream = await create_messages_stream(
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

    response_payload, headers = await create_messages_response(
        payload,
        mapper=mapper,
        upstream=upstream,
        settings=settings,
        inbound_headers=request.headers,
    )
    return JSONResponse(content=response_payload, headers=headers)


@router.post("/messages/count_tokens")
async def messages_count_tokens(
    payload: CountTokensRequest,
    request: Request,
    mapper: ModelMapper = Depends(get_model_mapper),
    upstream: UpstreamClient = Depends(get_upstream_client),
    settings: Settings = Depends(get_settings),
):
    response_payload, headers = await count_tokens(
        payload,
        mapper=mapper,
        upstream=upstream,
        settings=settings,
        inbound_headers=request.headers,
    )
    return JSONResponse(content=response_payload, headers=headers)
