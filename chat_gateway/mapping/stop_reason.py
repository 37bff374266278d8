"""Finish reason -> Anthropic stop_reason table shared by both response paths."""

from __future__ import annotations

from types import MappingProxyType
from typing import Any, Mapping

DEFAULT_STOP_REASON = "end_turn"

STOP_REASON_MAP: Mapping[str, str] = MappingProxyType(
    {
        "stop": "end_turn",
        "length": "max_tokens",
        "tool_calls": "tool_use",
        "function_call": "tool_use",
        "content_filter": "stop_sequence",
    }
)


def map_finish_reason(finish_reason: Any) -> str:
    """Map a Chat Completions finish_reason; unknown values become end_turn."""
    if not isinstance(finish_reason, str):
        return DEFAULT_STOP_REASON
    return STOP_REASON_MAP.get(finish_reason, DEFAULT_STOP_REASON)
