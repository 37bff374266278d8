"""Configuration helpers for Chat Completions upstream access."""

from __future__ import annotations

import os
from typing import Any

import structlog

from chat_gateway.config_model_map import (
    load_model_map,
    resolve_model_name,
)

OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/")

logger = structlog.get_logger(__name__)


def _env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        return default


OBS_LOG_ENABLED = _env_bool("OBS_LOG_ENABLED", False)
OBS_LOG_ALL = _env_bool("OBS_LOG_ALL", False)
OBS_LOG_FILE = os.getenv("OBS_LOG_FILE", "./logs/requests.log")
OBS_REDACTION_MODE = os.getenv("OBS_REDACTION_MODE", "full")
OBS_LOG_PRETTY = _env_bool("OBS_LOG_PRETTY", True)
OBS_STREAM_LOG_ENABLED = _env_bool("OBS_STREAM_LOG_ENABLED", False)
OBS_STREAM_LOG_FILE = os.getenv("OBS_STREAM_LOG_FILE", "./logs/streaming.log")

UPSTREAM_TIMEOUT_SECONDS = _env_float("UPSTREAM_TIMEOUT_SECONDS", 300.0)
MODEL_CATALOG_REFRESH = _env_bool("MODEL_CATALOG_REFRESH", True)


class MissingUpstreamCredentialsError(ValueError):
    """Raised when no credentials are configured for the upstream backend."""


def require_openai_api_key() -> str:
    """Return the API key or raise if missing."""
    if not OPENAI_API_KEY:
        raise MissingUpstreamCredentialsError("OPENAI_API_KEY is required")
    return OPENAI_API_KEY


def get_openai_default_model() -> str:
    return os.getenv("OPENAI_DEFAULT_MODEL", "gpt-4o")


def get_model_catalog_json() -> str | None:
    return os.getenv("MODEL_CATALOG_JSON")


def _clear_model_map_cache_for_tests() -> None:
    load_model_map.cache_clear()


def resolve_openai_model(anthropic_model: Any) -> str:
    """Resolve an Anthropic model name to a backend model name."""
    # Imported lazily: the catalog module depends on this one.
    from chat_gateway.model_catalog import catalog_model_ids

    model_map = load_model_map(os.getenv("MODEL_MAP_JSON"))
    resolution = resolve_model_name(
        anthropic_model,
        model_map,
        catalog_model_ids(),
        get_openai_default_model(),
    )

    if OBS_LOG_ENABLED:
        logger.info(
            "model_resolved",
            model_anthropic=resolution.requested,
            match_type=resolution.source,
            model_openai=resolution.model,
            map_entries=len(model_map.entries),
            nested=model_map.nested,
        )

    return resolution.model
