from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from app.core.config import Settings
from app.dependencies import get_model_mapper, get_settings
from app.transform.model_mapper import ModelMapper

router = APIRouter(tags=["internal"])


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/internal/mappings")
async def mappings(
    mapper: ModelMapper = Depends(get_model_mapper),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    return {
        "custom_mappings": mapper.custom_mappings(),
        "mappings_file": str(settings.mappings_file),
        "default_model_override": mapper.default_model_override,
        "tiers": {
            "high": mapper.tier_models.high,
            "default": mapper.tier_models.default,
            "low": mapper.tier_models.low,
        },
    }


@router.get("/internal/resolve")
async def resolve(
    model: str = Query(..., min_length=1),
    mapper: ModelMapper = Depends(get_model_mapper),
) -> dict[str, str | None]:
    resolution = mapper.resolve_with_reason(model)
    return {
        "model": resolution.requested,
        "resolved": resolution.resolved,
        "reason": resolution.reason.value,
        "tier": resolution.tier.value if resolution.tier is not None else None,
    }
