"""Shared helpers for /v1/messages handlers."""

from __future__ import annotations

import json
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Tuple

from asgi_correlation_id import correlation_id
from fastapi import Request

from chat_gateway.config import MissingUpstreamCredentialsError, resolve_openai_model
from chat_gateway.errors.anthropic_error import (
    build_anthropic_error,
    error_type_for_status,
    extract_openai_error_message,
    map_openai_error_type,
)
from chat_gateway.mapping.openai_to_anthropic import normalize_openai_usage
from chat_gateway.observability.logging import logging_enabled
from chat_gateway.observability.redaction_payloads import redact_openai_error
from chat_gateway.observability.redaction_requests import (
    redact_chat_request,
    redact_messages_request,
    summarize_messages_request,
)
from chat_gateway.schema.anthropic import MessagesRequest
from chat_gateway.transport.upstream_common import OpenAIUpstreamError

TOOLS_UNSUPPORTED_HINT = (
    "The upstream model rejected a request that includes tools; "
    "it may not support tool calling."
)

ErrorResult = Tuple[int, Dict[str, Any], Any]


@dataclass(frozen=True)
class MessageRequestContext:
    model_anthropic: str
    model_openai: Optional[str]
    correlation_id: Optional[str]
    request_id: str
    has_tools: bool
    payload_summary: Optional[Dict[str, Any]]


def normalize_openai_payload(payload: Any) -> Dict[str, Any]:
    """Dump a Chat Completions request, keeping ``content: null`` on tool-call turns."""
    data = payload.model_dump(exclude_none=True) if hasattr(payload, "model_dump") else payload
    for message in data.get("messages", []):
        if isinstance(message, dict):
            message.setdefault("content", None)
    return data


def get_correlation_id(request: Request) -> Optional[str]:
    return getattr(request.state, "correlation_id", None) or correlation_id.get()


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if not request_id:
        request_id = uuid.uuid4().hex
        request.state.request_id = request_id
    return request_id


def duration_ms(request: Request) -> Optional[int]:
    start_time = getattr(request.state, "start_time", None)
    if start_time is None:
        return None
    return int((time.perf_counter() - start_time) * 1000)


def parse_sse_payload(payload: str) -> Tuple[Optional[str], Optional[Dict[str, Any]]]:
    """Split one outbound SSE frame back into its event name and JSON body."""
    fields = dict(
        line.split(":", 1) for line in payload.splitlines() if ":" in line
    )
    event_name = fields["event"].strip() if "event" in fields else None
    try:
        data = json.loads(fields.get("data", ""))
    except json.JSONDecodeError:
        return event_name, None
    return event_name, data if isinstance(data, dict) else None


@dataclass
class StreamStats:
    """Lifecycle counters for one transcoded stream."""

    estimated_input_tokens: int
    started_at: float = field(default_factory=time.perf_counter)
    first_event_at: Optional[float] = None
    event_count: int = 0
    byte_count: int = 0
    stop_reason: Optional[str] = None
    token_usage: Optional[Dict[str, Any]] = None
    failed: bool = False
    error_type: Optional[str] = None
    error_message: Optional[str] = None

    def observe(self, frame: str) -> None:
        if self.first_event_at is None:
            self.first_event_at = time.perf_counter()
        self.event_count += 1
        self.byte_count += len(frame)
        event_name, data = parse_sse_payload(frame)
        data = data or {}
        if event_name == "message_delta":
            usage = data.get("usage")
            if isinstance(usage, dict):
                self.token_usage = {
                    "input_tokens": self.estimated_input_tokens,
                    **usage,
                }
            delta = data.get("delta")
            if isinstance(delta, dict):
                self.stop_reason = delta.get("stop_reason")
        elif event_name == "error":
            error = data.get("error")
            error = error if isinstance(error, dict) else {}
            self.mark_failed(error.get("type"), error.get("message"))

    def mark_failed(self, error_type: Optional[str], message: Optional[str]) -> None:
        self.failed = True
        self.error_type = error_type
        self.error_message = message

    def summary(self) -> Dict[str, Any]:
        first_event_ms = None
        if self.first_event_at is not None:
            first_event_ms = int((self.first_event_at - self.started_at) * 1000)
        return {
            "duration_ms": int((time.perf_counter() - self.started_at) * 1000),
            "time_to_first_event_ms": first_event_ms,
            "event_count": self.event_count,
            "byte_count": self.byte_count,
            "stop_reason": self.stop_reason,
            "stream_failed": self.failed,
            "error_type": self.error_type,
            "error_message": self.error_message,
            "token_usage": self.token_usage,
        }


def prepare_request_context(
    logger: Any,
    http_request: Request,
    request: MessagesRequest,
    include_stream_logging: bool = False,
) -> MessageRequestContext:
    try:
        model_openai: Optional[str] = resolve_openai_model(request.model)
    except ValueError:
        model_openai = None

    summarize = logging_enabled() or include_stream_logging
    context = MessageRequestContext(
        model_anthropic=request.model,
        model_openai=model_openai,
        correlation_id=get_correlation_id(http_request),
        request_id=get_request_id(http_request),
        has_tools=bool(request.tools),
        payload_summary=summarize_messages_request(request) if summarize else None,
    )
    _emit(
        logger.info,
        "request",
        http_request,
        context,
        method=http_request.method,
        payload=redact_messages_request(request),
        payload_summary=context.payload_summary,
    )
    return context


def _emit(
    log_method: Callable[..., Any],
    event: str,
    http_request: Request,
    context: MessageRequestContext,
    **fields: Any,
) -> None:
    if not logging_enabled():
        return
    log_method(
        event,
        endpoint=str(http_request.url.path),
        correlation_id=context.correlation_id,
        model_anthropic=context.model_anthropic,
        model_openai=context.model_openai,
        **fields,
    )


def log_upstream_request(
    logger: Any,
    http_request: Request,
    context: MessageRequestContext,
    payload: Dict[str, Any],
) -> None:
    _emit(
        logger.debug,
        "upstream_request",
        http_request,
        context,
        payload=redact_chat_request(payload),
    )


def log_error(
    logger: Any,
    http_request: Request,
    context: MessageRequestContext,
    status_code: int,
    payload: Any,
) -> None:
    _emit(
        logger.info,
        "error",
        http_request,
        context,
        status_code=status_code,
        duration_ms=duration_ms(http_request),
        payload=redact_openai_error(payload),
    )


def log_success_response(
    logger: Any,
    http_request: Request,
    context: MessageRequestContext,
    token_usage: Optional[Dict[str, Any]],
    payload: Optional[Dict[str, Any]] = None,
) -> None:
    extra = {} if payload is None else {"payload": payload}
    _emit(
        logger.info,
        "response",
        http_request,
        context,
        status_code=200,
        duration_ms=duration_ms(http_request),
        token_usage=token_usage,
        **extra,
    )


def resolve_response_usage(
    response: Dict[str, Any], estimated_input_tokens: int
) -> Dict[str, int]:
    """Backend usage when reported, else the local input estimate."""
    usage = response.get("usage") if isinstance(response, dict) else None
    if isinstance(usage, dict) and usage:
        return normalize_openai_usage(usage)
    return {"input_tokens": estimated_input_tokens, "output_tokens": 0}


def build_invalid_request_error(exc: Exception) -> ErrorResult:
    message = str(exc) or "Invalid request"
    return 400, build_anthropic_error(400, "invalid_request_error", message), {
        "error": {"message": message}
    }


def build_missing_credentials_error(exc: Exception) -> ErrorResult:
    message = str(exc) or "Missing upstream credentials"
    openai_error = {"error": {"message": message}}
    error_payload = build_anthropic_error(
        401,
        "authentication_error",
        message,
        openai_error=openai_error,
    )
    return 401, error_payload, openai_error


def build_upstream_error(exc: OpenAIUpstreamError, has_tools: bool = False) -> ErrorResult:
    upstream = exc.error_payload
    inner = upstream.get("error") if isinstance(upstream, dict) else None
    inner = inner if isinstance(inner, dict) else {}
    error_type = map_openai_error_type(
        upstream, default=error_type_for_status(exc.status_code)
    )
    message = extract_openai_error_message(upstream, "OpenAI upstream error")
    if exc.status_code == 400 and has_tools:
        message = f"{message} ({TOOLS_UNSUPPORTED_HINT})"
    param = inner.get("param")
    code = inner.get("code")
    error_payload = build_anthropic_error(
        exc.status_code,
        error_type,
        message,
        param=param if isinstance(param, str) else None,
        code=code if isinstance(code, str) else None,
        openai_error=upstream,
    )
    return exc.status_code, error_payload, upstream


def build_error_result(exc: BaseException, has_tools: bool = False) -> ErrorResult:
    if isinstance(exc, MissingUpstreamCredentialsError):
        return build_missing_credentials_error(exc)
    if isinstance(exc, OpenAIUpstreamError):
        return build_upstream_error(exc, has_tools=has_tools)
    message = str(exc) or "An unexpected error occurred"
    return 500, build_anthropic_error(500, "api_error", message), {
        "error": {"message": message}
    }


def stream_error_payload_builder(
    logger: Any,
    http_request: Request,
    context: MessageRequestContext,
) -> Callable[[BaseException], Dict[str, Any]]:
    """Build the transcoder's error frame payload and log the failure."""

    def _build(exc: BaseException) -> Dict[str, Any]:
        status_code, error_payload, error_source = build_error_result(
            exc, has_tools=context.has_tools
        )
        log_error(logger, http_request, context, status_code, error_source)
        return error_payload

    return _build
