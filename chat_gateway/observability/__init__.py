"""Observability helpers."""

from chat_gateway.observability.logging import configure_logging, logging_enabled
from chat_gateway.observability.redaction_payloads import (
    redact_anthropic_response,
    redact_openai_error,
)
from chat_gateway.observability.redaction_requests import (
    redact_chat_request,
    redact_messages_request,
    summarize_messages_request,
)
from chat_gateway.observability.redaction_shared import redact_text

__all__ = [
    "configure_logging",
    "logging_enabled",
    "redact_anthropic_response",
    "redact_chat_request",
    "redact_messages_request",
    "redact_openai_error",
    "redact_text",
    "summarize_messages_request",
]
