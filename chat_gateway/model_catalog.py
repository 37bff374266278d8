"""Cached view of the backend's advertised models and their output limits."""

from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict, List, Optional

import structlog

from chat_gateway import config
from chat_gateway.transport.openai_client import list_openai_models

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ModelInfo:
    id: str
    max_output_tokens: Optional[int] = None


_catalog: Dict[str, ModelInfo] = {}


def _positive_int(value: Any) -> Optional[int]:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return value if value > 0 else None


def _max_output_tokens_from_entry(entry: Dict[str, Any]) -> Optional[int]:
    capabilities = entry.get("capabilities")
    if isinstance(capabilities, dict):
        limits = capabilities.get("limits")
        if isinstance(limits, dict):
            found = _positive_int(limits.get("max_output_tokens"))
            if found is not None:
                return found
    for key in ("max_output_tokens", "max_completion_tokens", "max_tokens"):
        found = _positive_int(entry.get(key))
        if found is not None:
            return found
    return None


def parse_models_payload(payload: Any) -> List[ModelInfo]:
    """Parse a `/models` listing, keeping entries that carry a string id."""
    entries = payload.get("data") if isinstance(payload, dict) else payload
    if not isinstance(entries, list):
        return []
    models: List[ModelInfo] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        model_id = entry.get("id")
        if not isinstance(model_id, str) or not model_id:
            continue
        models.append(
            ModelInfo(id=model_id, max_output_tokens=_max_output_tokens_from_entry(entry))
        )
    return models


@lru_cache(maxsize=8)
def _parse_catalog_override(raw: str | None) -> Dict[str, int]:
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("MODEL_CATALOG_JSON must be valid JSON") from exc
    if not isinstance(parsed, dict):
        raise ValueError("MODEL_CATALOG_JSON must be a JSON object")
    limits: Dict[str, int] = {}
    for model_id, limit in parsed.items():
        value = _positive_int(limit)
        if value is None:
            raise ValueError(
                f"MODEL_CATALOG_JSON value for '{model_id}' must be a positive integer"
            )
        limits[str(model_id)] = value
    return limits


def set_catalog(models: List[ModelInfo]) -> None:
    global _catalog
    _catalog = {model.id: model for model in models}


def clear_catalog() -> None:
    set_catalog([])
    _parse_catalog_override.cache_clear()


def catalog_models() -> List[ModelInfo]:
    return list(_catalog.values())


def get_max_output_tokens(model: str) -> Optional[int]:
    """Return the advertised output-token ceiling for a backend model."""
    override = _parse_catalog_override(config.get_model_catalog_json())
    if model in override:
        return override[model]
    info = _catalog.get(model)
    if info is None:
        return None
    return info.max_output_tokens


def catalog_model_ids() -> List[str]:
    return list(_catalog)


async def refresh_model_catalog() -> int:
    """Fetch `/models` from the backend and replace the cached catalog."""
    payload = await list_openai_models()
    models = parse_models_payload(payload)
    set_catalog(models)
    logger.info("model_catalog_refreshed", model_count=len(models))
    return len(models)
