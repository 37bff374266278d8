"""OpenAI Chat Completions transport client."""

from __future__ import annotations

from typing import Any, Dict

import httpx
import structlog

from chat_gateway.transport.upstream_common import (
    OpenAIUpstreamError,
    build_client,
    build_upstream_request,
    decode_response_json,
    raise_transport_error,
    safe_json,
)

logger = structlog.get_logger(__name__)


async def create_chat_completion(payload: Dict[str, Any]) -> Dict[str, Any]:
    """POST a non-streaming Chat Completions payload and return the JSON response."""
    url, headers = build_upstream_request("/chat/completions")
    request_payload = dict(payload)
    request_payload["stream"] = False

    async with build_client() as client:
        try:
            response = await client.post(url, json=request_payload, headers=headers)
        except httpx.TransportError as exc:
            raise_transport_error(exc, url)

    if response.is_error:
        raise OpenAIUpstreamError(response.status_code, safe_json(response))
    return decode_response_json(response, url)


async def list_openai_models() -> Any:
    """GET the backend model listing."""
    url, headers = build_upstream_request("/models")

    async with build_client() as client:
        try:
            response = await client.get(url, headers=headers)
        except httpx.TransportError as exc:
            raise_transport_error(exc, url)

    if response.is_error:
        raise OpenAIUpstreamError(response.status_code, safe_json(response))
    return decode_response_json(response, url)
