"""Shared redaction primitives and constants."""

from __future__ import annotations

from typing import Any, List, Optional, Tuple

from chat_gateway.config import OBS_REDACTION_MODE

REDACTION_TOKEN = "[REDACTED]"
LOG_ARRAY_LIMIT = 50
REDACTION_MODES = frozenset({"full", "none"})


def redaction_mode(override: Optional[str] = None) -> str:
    """Return ``full`` or ``none``; unknown values redact fully."""
    mode = (override or OBS_REDACTION_MODE or "full").strip().lower()
    return mode if mode in REDACTION_MODES else "full"


def redact_text(text: Any, mode: Optional[str] = None) -> Any:
    if not isinstance(text, str):
        return text
    if redaction_mode(mode) == "none":
        return text
    return REDACTION_TOKEN


def normalize_payload(payload: Any) -> Any:
    if hasattr(payload, "model_dump"):
        return payload.model_dump(exclude_none=True)
    return payload


def redact_value(value: Any, mode: Optional[str]) -> Any:
    if isinstance(value, str):
        return redact_text(value, mode)
    if isinstance(value, list):
        return [redact_value(item, mode) for item in value]
    if isinstance(value, dict):
        return {key: redact_value(val, mode) for key, val in value.items()}
    return value


def truncate_list(items: List[Any], limit: int) -> Tuple[List[Any], bool]:
    if limit <= 0:
        return [], bool(items)
    if len(items) <= limit:
        return items, False
    return items[:limit], True
