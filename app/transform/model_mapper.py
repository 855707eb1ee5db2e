"""
Model name mapping from OpenAI-style identifiers to Anthropic identifiers.

Resolution order, first match wins:

1. Exact-key lookup in the operator's custom mappings file.
2. ``ANTHROPIC_DEFAULT_MODEL`` override, applied to every model.
3. Pattern-based tier detection on the lower-cased name:
   - ``-pro``, ``-max``, ``-ultra`` and o-series (``o1``, ``o3``; not ``-mini``) -> high tier
   - ``-nano``, ``gpt-3.5``, ``gpt-3`` or a leading ``nano`` -> low tier
   - everything else -> default tier
4. The tier is turned into an outbound identifier via ``TierModels``.
"""

from __future__ import annotations

import json
import logging
import re
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Protocol

from app.core.config import Settings
from app.core.types import ModelTier, TierModels

logger = logging.getLogger(__name__)

_HIGH_TIER_SUFFIXES = ("-pro", "-max", "-ultra")
_LOW_TIER_PATTERNS = ("-nano", "gpt-3.5", "gpt-3")
_LOW_TIER_PREFIXES = ("nano",)
_O_SERIES_PATTERN = re.compile(r"^o\d+")


class MappingReason(str, Enum):
    CUSTOM_MAPPING = "custom mapping"
    ENVIRONMENT_OVERRIDE = "environment variable override"
    HIGH_TIER_PATTERN = "high-tier pattern match"
    HIGH_TIER_O_SERIES = "high-tier o-series match"
    LOW_TIER_PATTERN = "low-tier pattern match"
    DEFAULT_PATTERN = "default pattern"


@dataclass(frozen=True, slots=True)
class ModelResolution:
    requested: str
    resolved: str
    reason: MappingReason
    tier: ModelTier | None = None

    def describe(self) -> str:
        return f"{self.requested} -> {self.resolved} ({self.reason.value})"


class CustomMappingSource(Protocol):
    def load(self) -> dict[str, str]: ...


@dataclass(frozen=True)
class StaticMappingSource:
    """In-memory mappings, mostly useful for embedding and tests."""

    mappings: Mapping[str, str] = field(default_factory=dict)

    def load(self) -> dict[str, str]:
        return _clean_mappings(dict(self.mappings), origin="static mappings")


class JsonFileMappingSource:
    """Mappings stored as a flat JSON object ``{"gpt-4": "claude-opus-4-5"}``.

    The file is read on every ``load()`` so edits are picked up live. That
    read is synchronous and runs inside the async request handlers, which is
    fine for a small file; with ``cache=True`` (``ROUTER_CACHE_MAPPINGS``)
    the first read is kept until ``reload()`` and the event loop no longer
    touches the disk per request.
    A missing file means no mappings; an unreadable or malformed one is
    logged and also treated as empty.
    """

    def __init__(self, path: str | Path, *, cache: bool = False) -> None:
        self.path = Path(path)
        self.cache = cache
        self._snapshot: dict[str, str] | None = None
        self._lock = threading.Lock()

    def load(self) -> dict[str, str]:
        if not self.cache:
            return self._read()

        with self._lock:
            if self._snapshot is None:
                self._snapshot = self._read()
            return dict(self._snapshot)

    def reload(self) -> dict[str, str]:
        with self._lock:
            self._snapshot = None
        return self.load()

    def _read(self) -> dict[str, str]:
        try:
            content = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except (OSError, UnicodeDecodeError) as exc:
            logger.warning(f"Failed to load custom model mappings from {self.path}: {exc}")
            return {}

        try:
            data = json.loads(content)
        except (ValueError, RecursionError) as exc:
            logger.warning(f"Failed to parse custom model mappings from {self.path}: {exc}")
            return {}

        return _clean_mappings(data, origin=str(self.path))


def classify_model_tier(model_name: str) -> tuple[ModelTier, MappingReason]:
    model = model_name.lower()

    if any(suffix in model for suffix in _HIGH_TIER_SUFFIXES):
        return ModelTier.HIGH, MappingReason.HIGH_TIER_PATTERN

    if _is_high_tier_o_series(model):
        return ModelTier.HIGH, MappingReason.HIGH_TIER_O_SERIES

    if model.startswith(_LOW_TIER_PREFIXES) or any(
        pattern in model for pattern in _LOW_TIER_PATTERNS
    ):
        return ModelTier.LOW, MappingReason.LOW_TIER_PATTERN

    return ModelTier.DEFAULT, MappingReason.DEFAULT_PATTERN


class ModelMapper:
    def __init__(
        self,
        mapping_source: CustomMappingSource | None = None,
        default_model_override: str | None = None,
        tier_models: TierModels | None = None,
    ) -> None:
        self.mapping_source = mapping_source or StaticMappingSource()
        self.default_model_override = default_model_override or None
        self.tier_models = tier_models or TierModels()

    @classmethod
    def from_settings(cls, settings: Settings) -> ModelMapper:
        return cls(
            mapping_source=JsonFileMappingSource(
                settings.mappings_file,
                cache=settings.cache_mappings,
            ),
            default_model_override=settings.default_model_override,
            tier_models=settings.tier_models,
        )

    def resolve_with_reason(self, model_name: str) -> ModelResolution:
        custom = self.mapping_source.load()
        if model_name in custom:
            return ModelResolution(model_name, custom[model_name], MappingReason.CUSTOM_MAPPING)

        if self.default_model_override:
            return ModelResolution(
                model_name,
                self.default_model_override,
                MappingReason.ENVIRONMENT_OVERRIDE,
            )

        tier, reason = classify_model_tier(model_name)
        return ModelResolution(model_name, self.tier_models.for_tier(tier), reason, tier)

    def resolve(self, model_name: str) -> str:
        return self.resolve_with_reason(model_name).resolved

    def explain(self, model_name: str) -> str:
        return self.resolve_with_reason(model_name).reason.value

    def custom_mappings(self) -> dict[str, str]:
        return self.mapping_source.load()


def resolve_model(model_name: str, mapper: ModelMapper | None = None) -> str:
    return (mapper or _mapper_from_environment()).resolve(model_name)


def explain_model_resolution(model_name: str, mapper: ModelMapper | None = None) -> str:
    return (mapper or _mapper_from_environment()).explain(model_name)


def get_custom_mappings(mapper: ModelMapper | None = None) -> dict[str, str]:
    return (mapper or _mapper_from_environment()).custom_mappings()


def _mapper_from_environment() -> ModelMapper:
    return ModelMapper.from_settings(Settings.from_env())


def _is_high_tier_o_series(model: str) -> bool:
    return bool(_O_SERIES_PATTERN.match(model)) and "-mini" not in model


def _clean_mappings(data: Any, *, origin: str) -> dict[str, str]:
    if not isinstance(data, dict):
        logger.warning(
            f"Ignoring custom model mappings from {origin}: expected a JSON object, "
            f"got {type(data).__name__}"
        )
        return {}

    mappings: dict[str, str] = {}
    for key, value in data.items():
        if not isinstance(value, str) or not value:
            logger.warning(f"Ignoring custom model mapping for '{key}' in {origin}: {value!r}")
            continue
        mappings[str(key)] = value

    return mappings
