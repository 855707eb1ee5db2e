from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Generic, TypeVar

from app.anthropic.schemas import CountTokensRequest, MessagesRequest

from .model_mapper import ModelMapper, ModelResolution
from .system_prompt import ensure_required_system_prompt

logger = logging.getLogger(__name__)

RequestT = TypeVar("RequestT", MessagesRequest, CountTokensRequest)

ANTHROPIC_MODEL_PREFIX = "claude-"


@dataclass(frozen=True, slots=True)
class TransformResult(Generic[RequestT]):
    request: RequestT
    resolution: ModelResolution | None = None


def is_anthropic_model(model_name: str) -> bool:
    return model_name.startswith(ANTHROPIC_MODEL_PREFIX)


def transform_request(
    request: RequestT,
    mapper: ModelMapper,
    *,
    map_model: bool = True,
) -> TransformResult[RequestT]:
    """Rewrite ``model`` through the mapper, then normalize ``system``.

    With ``map_model=False`` the model is forwarded untouched and no
    resolution is reported.
    """
    resolution: ModelResolution | None = None
    transformed = request

    if map_model:
        resolution = mapper.resolve_with_reason(request.model)
        logger.info(f"Model mapping: {resolution.describe()}")
        if resolution.resolved != request.model:
            transformed = transformed.model_copy(update={"model": resolution.resolved})

    transformed = ensure_required_system_prompt(transformed)
    return TransformResult(request=transformed, resolution=resolution)


def mapping_headers(resolution: ModelResolution | None) -> dict[str, str]:
    if resolution is None:
        return {}
    value = resolution.describe().encode("latin-1", "replace").decode("latin-1")
    return {"X-Router-Model-Mapping": value}
