"""
Runtime configuration for the router.

Every setting is read from the environment with a fixed default. Settings
are built once per application (or per call for the module-level helpers in
``app.transform.model_mapper``) and passed down explicitly.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from .types import TierModels

logger = logging.getLogger(__name__)

DEFAULT_UPSTREAM_BASE_URL = "https://api.anthropic.com"
DEFAULT_ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_MAPPINGS_FILE = ".router-mappings.json"
DEFAULT_MAX_TOKENS = 4096
DEFAULT_UPSTREAM_TIMEOUT = 600.0
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3000
DEFAULT_LOG_LEVEL = "INFO"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


@dataclass(frozen=True, slots=True)
class Settings:
    upstream_base_url: str = DEFAULT_UPSTREAM_BASE_URL
    anthropic_version: str = DEFAULT_ANTHROPIC_VERSION
    default_model_override: str | None = None
    mappings_file: Path = Path(DEFAULT_MAPPINGS_FILE)
    cache_mappings: bool = False
    passthrough_claude_models: bool = True
    tier_models: TierModels = field(default_factory=TierModels)
    default_max_tokens: int = DEFAULT_MAX_TOKENS
    upstream_timeout: float = DEFAULT_UPSTREAM_TIMEOUT
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    log_level: str = DEFAULT_LOG_LEVEL

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        env = os.environ if environ is None else environ
        defaults = TierModels()

        return cls(
            upstream_base_url=env.get("ANTHROPIC_BASE_URL", DEFAULT_UPSTREAM_BASE_URL).rstrip("/"),
            anthropic_version=env.get("ANTHROPIC_VERSION", DEFAULT_ANTHROPIC_VERSION),
            default_model_override=env.get("ANTHROPIC_DEFAULT_MODEL") or None,
            mappings_file=Path(env.get("ROUTER_MAPPINGS_FILE", DEFAULT_MAPPINGS_FILE)).expanduser(),
            cache_mappings=_parse_bool(env, "ROUTER_CACHE_MAPPINGS", False),
            passthrough_claude_models=_parse_bool(env, "ROUTER_PASSTHROUGH_CLAUDE_MODELS", True),
            tier_models=TierModels(
                high=env.get("ROUTER_HIGH_TIER_MODEL") or defaults.high,
                default=env.get("ROUTER_DEFAULT_TIER_MODEL") or defaults.default,
                low=env.get("ROUTER_LOW_TIER_MODEL") or defaults.low,
            ),
            default_max_tokens=_parse_int(env, "ROUTER_DEFAULT_MAX_TOKENS", DEFAULT_MAX_TOKENS),
            upstream_timeout=_parse_float(env, "UPSTREAM_TIMEOUT", DEFAULT_UPSTREAM_TIMEOUT),
            host=env.get("HOST", DEFAULT_HOST),
            port=_parse_int(env, "PORT", DEFAULT_PORT),
            log_level=env.get("LOG_LEVEL", DEFAULT_LOG_LEVEL).upper(),
        )


def _parse_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default

    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False

    logger.warning(f"Could not parse {name}='{raw}' as a boolean, using {default}")
    return default


def _parse_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default

    try:
        value = int(raw.strip())
    except ValueError:
        logger.warning(f"Could not parse {name}='{raw}' as an integer, using {default}")
        return default

    if value <= 0:
        logger.warning(f"{name} must be positive, got {value}; using {default}")
        return default
    return value


def _parse_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or not raw.strip():
        return default

    try:
        value = float(raw.strip())
    except ValueError:
        logger.warning(f"Could not parse {name}='{raw}' as a number, using {default}")
        return default

    if value <= 0:
        logger.warning(f"{name} must be positive, got {value}; using {default}")
        return default
    return value


LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


def setup_logging(level: str = DEFAULT_LOG_LEVEL) -> None:
    """Configure root and uvicorn loggers. Safe to call more than once."""
    root_logger = logging.getLogger()

    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        logger.warning(f"Invalid log level: {level}, using INFO")
        log_level = logging.INFO

    root_logger.setLevel(log_level)

    logging.getLogger("uvicorn").setLevel(log_level)
    logging.getLogger("uvicorn.error").setLevel(log_level)

    # Access logs only at INFO or more verbose
    access_logger = logging.getLogger("uvicorn.access")
    if log_level <= logging.INFO:
        access_logger.setLevel(logging.INFO)
    else:
        access_logger.setLevel(logging.WARNING)

    # httpx logs every request at INFO
    if log_level <= logging.DEBUG:
        logging.getLogger("httpx").setLevel(logging.INFO)
    else:
        logging.getLogger("httpx").setLevel(logging.WARNING)

    if root_logger.hasHandlers():
        return

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(stream_handler)

    logger.debug("Logging configured")
