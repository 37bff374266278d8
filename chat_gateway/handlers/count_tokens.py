"""/v1/messages/count_tokens handler."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from chat_gateway.config import resolve_openai_model
from chat_gateway.handlers.messages_common import (
    build_invalid_request_error,
    duration_ms,
    get_correlation_id,
)
from chat_gateway.mapping.anthropic_to_openai import (
    map_anthropic_messages_to_openai,
    map_anthropic_tools_to_openai,
)
from chat_gateway.observability.logging import logging_enabled
from chat_gateway.observability.redaction_payloads import redact_openai_error
from chat_gateway.observability.redaction_requests import (
    redact_messages_request,
    summarize_messages_request,
)
from chat_gateway.schema.anthropic import CountTokensRequest, CountTokensResponse
from chat_gateway.schema.openai import ChatCompletionsRequest
from chat_gateway.token_counting.openai_count import count_openai_request_tokens

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.post("/v1/messages/count_tokens", response_model=CountTokensResponse)
async def count_tokens(http_request: Request, request: CountTokensRequest):
    """Return OpenAI-aligned input token counts for an Anthropic request."""

    correlation_id_value = get_correlation_id(http_request)
    if logging_enabled():
        logger.info(
            "request",
            endpoint=str(http_request.url.path),
            method=http_request.method,
            correlation_id=correlation_id_value,
            model_anthropic=request.model,
            payload=redact_messages_request(request),
            payload_summary=summarize_messages_request(request),
        )

    model_openai = None
    try:
        model_openai = resolve_openai_model(request.model)
        openai_request = ChatCompletionsRequest(
            model=model_openai,
            messages=map_anthropic_messages_to_openai(request.messages, request.system),
            tools=map_anthropic_tools_to_openai(request.tools),
        )
        input_tokens = count_openai_request_tokens(openai_request)
    except ValueError as exc:
        status_code, error_payload, error_source = build_invalid_request_error(exc)
        if logging_enabled():
            logger.info(
                "error",
                endpoint=str(http_request.url.path),
                status_code=status_code,
                duration_ms=duration_ms(http_request),
                correlation_id=correlation_id_value,
                model_anthropic=request.model,
                model_openai=model_openai,
                payload=redact_openai_error(error_source),
            )
        return JSONResponse(status_code=status_code, content=error_payload)

    if logging_enabled():
        logger.info(
            "response",
            endpoint=str(http_request.url.path),
            status_code=200,
            duration_ms=duration_ms(http_request),
            correlation_id=correlation_id_value,
            model_anthropic=request.model,
            model_openai=model_openai,
            token_usage={"input_tokens": input_tokens},
        )
    return CountTokensResponse(input_tokens=input_tokens)
