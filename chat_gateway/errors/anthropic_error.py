"""Anthropic error envelope helpers."""

from __future__ import annotations

from typing import Any, Dict, Optional

STATUS_ERROR_TYPES = {
    400: "invalid_request_error",
    401: "authentication_error",
    403: "permission_error",
    404: "not_found_error",
    413: "request_too_large",
    429: "rate_limit_error",
    529: "overloaded_error",
}


def _extract_openai_error(openai_error: Any) -> Dict[str, Any]:
    if isinstance(openai_error, dict):
        inner = openai_error.get("error")
        if isinstance(inner, dict):
            return inner
        return openai_error
    return {}


def error_type_for_status(status_code: int) -> str:
    """Anthropic error type for an HTTP status with no typed upstream payload."""
    if status_code in STATUS_ERROR_TYPES:
        return STATUS_ERROR_TYPES[status_code]
    if 400 <= status_code < 500:
        return "invalid_request_error"
    return "api_error"


def map_openai_error_type(openai_error: Any, default: str = "api_error") -> str:
    """Map OpenAI error payloads to an Anthropic error type."""

    error_type = _extract_openai_error(openai_error).get("type")
    if isinstance(error_type, str) and error_type:
        return error_type
    return default


def extract_openai_error_message(openai_error: Any, default: str) -> str:
    message = _extract_openai_error(openai_error).get("message")
    if isinstance(message, str) and message:
        return message
    return default


def build_anthropic_error(
    status_code: int,
    error_type: Optional[str],
    message: str,
    param: Optional[str] = None,
    code: Optional[str] = None,
    openai_error: Any = None,
) -> Dict[str, Any]:
    """Return Anthropic error envelope with optional OpenAI details."""

    resolved_type = error_type or map_openai_error_type(
        openai_error, default=error_type_for_status(status_code)
    )
    error: Dict[str, Any] = {"type": resolved_type, "message": message}
    if param is not None:
        error["param"] = param
    if code is not None:
        error["code"] = code
    if openai_error is not None:
        error["openai"] = openai_error
    return {"type": "error", "error": error}
