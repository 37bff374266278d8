"""Redaction helpers for response and error envelopes."""

from __future__ import annotations

from typing import Any, Dict, List

from chat_gateway.observability.redaction_shared import (
    normalize_payload,
    redact_text,
    redact_value,
    redaction_mode,
)


def _redact_response_block(block: Any, mode: str) -> Any:
    if not isinstance(block, dict):
        return block
    updated = dict(block)
    if block.get("type") == "text":
        updated["text"] = redact_text(block.get("text", ""), mode)
    elif block.get("type") == "tool_use" and "input" in updated:
        updated["input"] = redact_value(updated.get("input"), mode)
    return updated


def redact_anthropic_response(payload: Dict[str, Any]) -> Dict[str, Any]:
    data = normalize_payload(payload)
    if not isinstance(data, dict):
        return {}

    mode = redaction_mode(None)
    if mode == "none":
        return data
    redacted = dict(data)
    content = data.get("content")
    if isinstance(content, list):
        updated_content: List[Any] = [
            _redact_response_block(block, mode) for block in content
        ]
        redacted["content"] = updated_content
    return redacted


def redact_openai_error(payload: Any) -> Dict[str, Any]:
    data = normalize_payload(payload)
    if not isinstance(data, dict):
        return {}

    mode = redaction_mode(None)
    if mode == "none":
        return data
    redacted = dict(data)
    error = data.get("error")
    if isinstance(error, dict):
        updated_error = dict(error)
        if "message" in updated_error:
            updated_error["message"] = redact_text(updated_error.get("message"), mode)
        if "param" in updated_error:
            updated_error["param"] = redact_text(updated_error.get("param"), mode)
        redacted["error"] = updated_error
    return redacted
