"""/v1/messages handler."""

from __future__ import annotations

import asyncio
from typing import Any, AsyncIterator

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse

from chat_gateway.config import MissingUpstreamCredentialsError
from chat_gateway.handlers.messages_common import (
    ErrorResult,
    MessageRequestContext,
    StreamStats,
    build_error_result,
    build_invalid_request_error,
    log_error,
    log_success_response,
    log_upstream_request,
    normalize_openai_payload,
    prepare_request_context,
    resolve_response_usage,
    stream_error_payload_builder,
)
from chat_gateway.mapping.anthropic_to_openai import map_anthropic_request_to_openai
from chat_gateway.mapping.openai_stream_to_anthropic import translate_openai_chunks
from chat_gateway.mapping.openai_to_anthropic import map_openai_response_to_anthropic
from chat_gateway.observability.logging import (
    get_stream_logger,
    streaming_logging_enabled,
)
from chat_gateway.observability.redaction_payloads import redact_anthropic_response
from chat_gateway.schema.anthropic import MessagesRequest
from chat_gateway.schema.openai import ChatCompletionsRequest
from chat_gateway.token_counting.openai_count import estimate_token_usage
from chat_gateway.transport.openai_client import create_chat_completion
from chat_gateway.transport.openai_stream import stream_chat_completion
from chat_gateway.transport.upstream_common import OpenAIUpstreamError

router = APIRouter()
logger = structlog.get_logger(__name__)


def _estimated_prompt_tokens(openai_request: ChatCompletionsRequest) -> int:
    estimate = estimate_token_usage(openai_request.messages)
    return estimate["input"] + estimate["output"]


def _respond(
    http_request: Request, context: MessageRequestContext, result: ErrorResult
) -> JSONResponse:
    status_code, error_payload, error_source = result
    log_error(logger, http_request, context, status_code, error_source)
    return JSONResponse(status_code=status_code, content=error_payload)


def _error_response(
    http_request: Request,
    context: MessageRequestContext,
    exc: Exception,
) -> JSONResponse:
    if isinstance(exc, ValueError) and not isinstance(exc, MissingUpstreamCredentialsError):
        return _respond(http_request, context, build_invalid_request_error(exc))
    return _respond(
        http_request, context, build_error_result(exc, has_tools=context.has_tools)
    )


def _backend_error_response(
    http_request: Request,
    context: MessageRequestContext,
    exc: Exception,
) -> JSONResponse:
    if not isinstance(exc, (MissingUpstreamCredentialsError, OpenAIUpstreamError)):
        logger.exception("messages_backend_failure", request_id=context.request_id)
    return _respond(
        http_request, context, build_error_result(exc, has_tools=context.has_tools)
    )


@router.post("/v1/messages")
async def create_message(http_request: Request, request: MessagesRequest) -> Any:
    """Translate an Anthropic Messages request into a Chat Completions call."""

    if request.stream:
        return await stream_messages(http_request, request)

    context = prepare_request_context(logger, http_request, request)
    try:
        openai_request = map_anthropic_request_to_openai(request)
    except ValueError as exc:
        return _error_response(http_request, context, exc)

    payload = normalize_openai_payload(openai_request)
    log_upstream_request(logger, http_request, context, payload)
    try:
        response = await create_chat_completion(payload)
        response_payload = map_openai_response_to_anthropic(
            response, request.model, context.request_id
        )
        response_payload["usage"] = resolve_response_usage(
            response, _estimated_prompt_tokens(openai_request)
        )
    except Exception as exc:
        return _backend_error_response(http_request, context, exc)

    log_success_response(
        logger,
        http_request,
        context,
        token_usage=response_payload["usage"],
        payload=redact_anthropic_response(response_payload),
    )
    return response_payload


async def stream_messages(http_request: Request, request: MessagesRequest) -> Any:
    """Stream Anthropic SSE events transcoded from Chat Completions chunks."""
    stream_logger = get_stream_logger() if streaming_logging_enabled() else None
    context = prepare_request_context(
        logger,
        http_request,
        request,
        include_stream_logging=stream_logger is not None,
    )
    try:
        openai_request = map_anthropic_request_to_openai(request)
    except ValueError as exc:
        return _error_response(http_request, context, exc)

    stream_fields = {
        "endpoint": str(http_request.url.path),
        "correlation_id": context.correlation_id,
        "request_id": context.request_id,
        "model_anthropic": context.model_anthropic,
        "model_openai": context.model_openai,
    }
    if stream_logger:
        stream_logger.info(
            "stream_start", payload_summary=context.payload_summary, **stream_fields
        )

    payload = normalize_openai_payload(openai_request)
    payload["stream"] = True
    log_upstream_request(logger, http_request, context, payload)
    try:
        estimated_input_tokens = _estimated_prompt_tokens(openai_request)
    except Exception as exc:
        return _backend_error_response(http_request, context, exc)
    stats = StreamStats(estimated_input_tokens=estimated_input_tokens)

    async def event_stream() -> AsyncIterator[str]:
        frames = translate_openai_chunks(
            stream_chat_completion(payload),
            request.model,
            stats.estimated_input_tokens,
            context.request_id,
            error_payload_builder=stream_error_payload_builder(
                logger, http_request, context
            ),
        )
        try:
            async for frame in frames:
                stats.observe(frame)
                yield frame
        except asyncio.CancelledError:
            stats.mark_failed("client_disconnect", "stream cancelled")
            raise
        finally:
            if not stats.failed:
                log_success_response(
                    logger, http_request, context, token_usage=stats.token_usage
                )
            if stream_logger:
                stream_logger.info("stream_end", **stream_fields, **stats.summary())

    headers = {"Cache-Control": "no-cache", "Connection": "keep-alive"}
    return StreamingResponse(
        event_stream(), media_type="text/event-stream", headers=headers
    )
