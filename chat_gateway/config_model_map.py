"""Anthropic -> backend model name resolution.

Resolution order: ``MODEL_MAP_JSON`` exact key, then the longest matching key
prefix, then an advertised catalog model (one mentioning "claude" first), then
the configured default model.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Dict, Iterable, List, NamedTuple, Optional


def normalize_model_key(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    return value.strip().casefold() or None


class ModelResolution(NamedTuple):
    model: str
    source: str  # exact | prefix | catalog | default
    requested: Optional[str]


@dataclass(frozen=True)
class ModelMap:
    entries: Dict[str, str] = field(default_factory=dict)
    nested: bool = False

    def lookup(self, anthropic_model: Any) -> tuple[Optional[str], Optional[str]]:
        """Return (backend model, match kind) or (None, None) on a miss."""
        requested = normalize_model_key(anthropic_model)
        if requested is None:
            return None, None
        if requested in self.entries:
            return self.entries[requested], "exact"
        prefixes = [key for key in self.entries if requested.startswith(key)]
        if not prefixes:
            return None, None
        return self.entries[max(prefixes, key=len)], "prefix"


def _mapping_section(parsed: Dict[str, Any]) -> tuple[Dict[str, Any], bool]:
    if "models" not in parsed:
        return parsed, False
    if len(parsed) > 1:
        raise ValueError(
            "MODEL_MAP_JSON cannot contain both top-level mappings and a 'models' object"
        )
    if not isinstance(parsed["models"], dict):
        raise ValueError("MODEL_MAP_JSON['models'] must be a JSON object")
    return parsed["models"], True


@lru_cache(maxsize=16)
def load_model_map(raw: Optional[str]) -> ModelMap:
    """Parse a ``MODEL_MAP_JSON`` value; cached per raw string."""
    if not raw:
        return ModelMap()
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("MODEL_MAP_JSON must be valid JSON") from exc
    if not isinstance(parsed, dict):
        raise ValueError("MODEL_MAP_JSON must be a JSON object")

    section, nested = _mapping_section(parsed)
    entries: Dict[str, str] = {}
    sources: Dict[str, List[str]] = {}
    for raw_key, target in section.items():
        key = normalize_model_key(raw_key)
        if key is None:
            raise ValueError("MODEL_MAP_JSON keys must be non-empty strings")
        if not isinstance(target, str) or not target.strip():
            raise ValueError(
                f"MODEL_MAP_JSON value for '{raw_key}' must be a non-empty string"
            )
        sources.setdefault(key, []).append(raw_key)
        entries.setdefault(key, target.strip())

    duplicates = [
        f"{key}: {raw_keys}" for key, raw_keys in sources.items() if len(raw_keys) > 1
    ]
    if duplicates:
        raise ValueError(
            "MODEL_MAP_JSON has duplicate keys after normalization: "
            + "; ".join(duplicates)
        )
    return ModelMap(entries=entries, nested=nested)


def pick_catalog_model(model_ids: Iterable[str]) -> Optional[str]:
    """Prefer an advertised Claude model, else the first advertised model."""
    candidates = list(model_ids)
    for model_id in candidates:
        if "claude" in model_id.lower():
            return model_id
    return candidates[0] if candidates else None


def resolve_model_name(
    anthropic_model: Any,
    model_map: ModelMap,
    catalog_ids: Iterable[str],
    default_model: str,
) -> ModelResolution:
    requested = normalize_model_key(anthropic_model)
    mapped, kind = model_map.lookup(anthropic_model)
    if mapped is not None and kind is not None:
        return ModelResolution(mapped, kind, requested)
    from_catalog = pick_catalog_model(catalog_ids)
    if from_catalog is not None:
        return ModelResolution(from_catalog, "catalog", requested)
    return ModelResolution(default_model, "default", requested)
