"""OpenAI Chat Completions streaming transport client."""

from __future__ import annotations

import json
from typing import Any, AsyncGenerator, Dict, List, Optional

import httpx

from chat_gateway.observability.logging import get_stream_logger, streaming_logging_enabled
from chat_gateway.transport.upstream_common import (
    OpenAIUpstreamError,
    build_client,
    build_upstream_request,
    raise_transport_error,
    safe_json,
)


def _parse_data(data_lines: List[str]) -> Any:
    raw = "\n".join(data_lines)
    if raw == "":
        return ""
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


async def iter_sse_records(
    lines: AsyncGenerator[str, None],
) -> AsyncGenerator[Dict[str, Any], None]:
    """Group SSE lines into ``{"event", "data"}`` records."""
    current_event: Optional[str] = None
    data_lines: List[str] = []

    async for line in lines:
        if line == "":
            if current_event is None and not data_lines:
                continue
            yield {"event": current_event or "message", "data": _parse_data(data_lines)}
            current_event = None
            data_lines = []
            continue

        if line.startswith(":"):
            continue

        if line.startswith("event:"):
            current_event = line[len("event:") :].lstrip()
            continue

        if line.startswith("data:"):
            data_lines.append(line[len("data:") :].lstrip())
            continue

    if current_event is not None or data_lines:
        yield {"event": current_event or "message", "data": _parse_data(data_lines)}


async def stream_chat_completion(
    payload: Dict[str, Any],
) -> AsyncGenerator[Dict[str, Any], None]:
    """Stream Chat Completions chunks as parsed SSE records."""
    stream_logger = get_stream_logger() if streaming_logging_enabled() else None

    url, headers = build_upstream_request("/chat/completions")
    stream_payload = dict(payload)
    stream_payload["stream"] = True

    if stream_logger:
        stream_logger.info(
            "upstream_connect_start",
            endpoint="/v1/messages",
            upstream_url=url,
            correlation_id=headers.get("X-Correlation-ID"),
        )

    async with build_client() as client:
        try:
            async with client.stream(
                "POST", url, json=stream_payload, headers=headers
            ) as response:
                if response.is_error:
                    await response.aread()
                    raise OpenAIUpstreamError(response.status_code, safe_json(response))
                async for record in iter_sse_records(response.aiter_lines()):
                    yield record
        except httpx.TransportError as exc:
            raise_transport_error(exc, url)
