"""Shared state and helper functions for Chat Completions -> Anthropic stream translation."""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional

import structlog

from chat_gateway.errors.anthropic_error import build_anthropic_error

logger = structlog.get_logger(__name__)

PLACEHOLDER_TOOL_ID_PREFIX = "tool_ph_"
DONE_SENTINEL = "[DONE]"


def format_sse(event: str, payload: Dict[str, Any]) -> str:
    return f"event: {event}\ndata: {json.dumps(payload)}\n\n"


def estimate_text_tokens(text: str) -> int:
    """Rough output-token estimate: one token per four characters."""
    return math.ceil(len(text) / 4)


@dataclass
class StreamBlockState:
    index: int
    kind: Literal["text", "tool_use"]
    id: Optional[str] = None
    name: Optional[str] = None
    arguments_buffer: str = ""
    pending_fragments: List[str] = field(default_factory=list)
    placeholder_id: bool = False
    started: bool = False
    stopped: bool = False

    def openable(self) -> bool:
        return bool(self.id) and not self.placeholder_id and bool(self.name)


@dataclass
class StreamState:
    next_block_index: int = 0
    text_block_index: Optional[int] = None
    tool_block_by_source_index: Dict[int, int] = field(default_factory=dict)
    blocks: Dict[int, StreamBlockState] = field(default_factory=dict)
    started_tool_blocks: List[int] = field(default_factory=list)
    output_tokens: int = 0
    stop_reason: str = "end_turn"
    finish_reason_received: bool = False

    def allocate_block_index(self) -> int:
        index = self.next_block_index
        self.next_block_index += 1
        return index

    def open_text_block(self) -> StreamBlockState:
        index = self.allocate_block_index()
        block = StreamBlockState(index=index, kind="text", started=True)
        self.blocks[index] = block
        self.text_block_index = index
        return block

    def bind_tool_block(
        self, source_index: int, call_id: Optional[str], request_id: str
    ) -> StreamBlockState:
        index = self.tool_block_by_source_index.get(source_index)
        if index is not None:
            return self.blocks[index]
        index = self.allocate_block_index()
        self.tool_block_by_source_index[source_index] = index
        block = StreamBlockState(index=index, kind="tool_use")
        if call_id:
            block.id = call_id
        else:
            block.id = f"{PLACEHOLDER_TOOL_ID_PREFIX}{request_id}_{index}"
            block.placeholder_id = True
        self.blocks[index] = block
        return block

    def unstarted_tool_blocks(self) -> List[StreamBlockState]:
        return [
            block
            for block in self.blocks.values()
            if block.kind == "tool_use" and not block.started
        ]


def parse_chunk(chunk: Any) -> Optional[Dict[str, Any]]:
    """Unwrap a raw upstream chunk into its parsed JSON object.

    Accepts bare JSON text (optionally ``data:``-prefixed), an SSE record whose
    ``data`` field holds JSON text or a parsed object, or a parsed chunk.
    Returns None for sentinels and unparseable input.
    """
    payload = chunk
    if isinstance(chunk, dict) and "data" in chunk and "choices" not in chunk:
        payload = chunk.get("data")
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8", errors="replace")
    if isinstance(payload, str):
        text = payload.strip()
        if text.startswith("data:"):
            text = text[len("data:") :].strip()
        if not text or text == DONE_SENTINEL:
            return None
        try:
            payload = json.loads(text)
        except json.JSONDecodeError:
            logger.warning("stream_chunk_unparseable", chunk=text[:200])
            return None
    if payload is None:
        return None
    if not isinstance(payload, dict):
        logger.warning("stream_chunk_unparseable", chunk_type=type(payload).__name__)
        return None
    return payload


def tool_arguments_are_valid_json(arguments: str) -> bool:
    try:
        json.loads(arguments)
    except json.JSONDecodeError:
        return False
    return True


def build_message_start_payload(
    message_id: str, model: str, estimated_input_tokens: int
) -> Dict[str, Any]:
    return {
        "type": "message_start",
        "message": {
            "id": message_id,
            "type": "message",
            "role": "assistant",
            "model": model,
            "content": [],
            "stop_reason": None,
            "stop_sequence": None,
            "usage": {"input_tokens": estimated_input_tokens, "output_tokens": 0},
        },
    }


def emit_ping() -> str:
    return format_sse("ping", {"type": "ping"})


def emit_content_block_start(index: int, content_block: Dict[str, Any]) -> str:
    return format_sse(
        "content_block_start",
        {
            "type": "content_block_start",
            "index": index,
            "content_block": content_block,
        },
    )


def emit_content_block_stop(index: int) -> str:
    return format_sse(
        "content_block_stop",
        {"type": "content_block_stop", "index": index},
    )


def emit_text_delta(index: int, text: str) -> str:
    return format_sse(
        "content_block_delta",
        {
            "type": "content_block_delta",
            "index": index,
            "delta": {"type": "text_delta", "text": text},
        },
    )


def emit_input_json_delta(index: int, partial_json: str) -> str:
    return format_sse(
        "content_block_delta",
        {
            "type": "content_block_delta",
            "index": index,
            "delta": {
                "type": "input_json_delta",
                "partial_json": partial_json,
            },
        },
    )


def emit_message_delta(stop_reason: str, output_tokens: int) -> str:
    return format_sse(
        "message_delta",
        {
            "type": "message_delta",
            "delta": {"stop_reason": stop_reason, "stop_sequence": None},
            "usage": {"output_tokens": output_tokens},
        },
    )


def emit_message_stop() -> str:
    return format_sse("message_stop", {"type": "message_stop"})


def default_stream_error_payload(exc: BaseException) -> Dict[str, Any]:
    message = str(exc) or "An unexpected error occurred"
    return build_anthropic_error(500, "api_error", message)


def emit_error(payload: Dict[str, Any]) -> str:
    return format_sse("error", payload)
