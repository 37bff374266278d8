"""Map OpenAI Chat Completions responses to Anthropic Messages responses."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import structlog

from chat_gateway.mapping.stop_reason import map_finish_reason

logger = structlog.get_logger(__name__)


def parse_tool_arguments(arguments: Any, tool_name: Optional[str] = None) -> Dict[str, Any]:
    """Parse serialized tool arguments; never raises on malformed input."""
    if isinstance(arguments, dict):
        return arguments
    if arguments is None:
        return {}
    if not isinstance(arguments, str):
        return {"value": arguments}
    try:
        parsed = json.loads(arguments)
    except (TypeError, json.JSONDecodeError) as exc:
        logger.warning(
            "tool_arguments_parse_failed",
            tool_name=tool_name,
            error=str(exc),
        )
        return {"error_parsing_arguments": arguments}
    if isinstance(parsed, dict):
        return parsed
    return {"value": parsed}


def _first_choice(response: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    choices = response.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    choice = choices[0]
    return choice if isinstance(choice, dict) else None


def _tool_call_to_block(call: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    if call.get("type", "function") != "function":
        return None
    function = call.get("function")
    if not isinstance(function, dict):
        return None
    name = function.get("name")
    return {
        "type": "tool_use",
        "id": call.get("id"),
        "name": name,
        "input": parse_tool_arguments(function.get("arguments"), tool_name=name),
    }


def normalize_openai_usage(usage: Optional[Dict[str, Any]]) -> Dict[str, int]:
    """Normalize backend usage (``prompt_tokens`` or ``input_tokens`` naming) into Anthropic usage."""
    if not isinstance(usage, dict):
        usage = {}
    input_tokens = usage.get("prompt_tokens", usage.get("input_tokens"))
    if not isinstance(input_tokens, int):
        input_tokens = 0
    output_tokens = usage.get("completion_tokens", usage.get("output_tokens"))
    if not isinstance(output_tokens, int):
        output_tokens = 0
    details = usage.get("prompt_tokens_details") or usage.get("input_tokens_details")
    cached_tokens = 0
    if isinstance(details, dict):
        cached_value = details.get("cached_tokens")
        if isinstance(cached_value, int):
            cached_tokens = cached_value
    return {
        "cache_creation_input_tokens": 0,
        "cache_read_input_tokens": cached_tokens,
        "input_tokens": max(input_tokens - cached_tokens, 0),
        "output_tokens": output_tokens,
    }


def map_openai_response_to_anthropic(
    response: Dict[str, Any],
    original_model: str,
    request_id: str,
) -> Dict[str, Any]:
    """Convert a completed Chat Completions response into an Anthropic message.

    Usage is zero-filled here; the caller owns real usage accounting.
    """

    content_blocks: List[Dict[str, Any]] = []
    stop_reason = map_finish_reason(None)

    choice = _first_choice(response)
    if choice is not None:
        message = choice.get("message")
        if not isinstance(message, dict):
            message = {}
        finish_reason = choice.get("finish_reason")
        stop_reason = map_finish_reason(finish_reason)

        text = message.get("content")
        if isinstance(text, str) and text:
            content_blocks.append({"type": "text", "text": text})

        tool_calls = message.get("tool_calls")
        if isinstance(tool_calls, list) and tool_calls:
            for call in tool_calls:
                if not isinstance(call, dict):
                    continue
                block = _tool_call_to_block(call)
                if block is not None:
                    content_blocks.append(block)
            if finish_reason == "tool_calls":
                stop_reason = "tool_use"

    if not content_blocks:
        content_blocks.append({"type": "text", "text": ""})

    backend_id = response.get("id")
    if isinstance(backend_id, str) and backend_id:
        message_id = f"msg_{backend_id}"
    else:
        message_id = f"msg_{request_id}_completed"

    return {
        "id": message_id,
        "type": "message",
        "role": "assistant",
        "model": original_model,
        "content": content_blocks,
        "stop_reason": stop_reason,
        "stop_sequence": None,
        "usage": {"input_tokens": 0, "output_tokens": 0},
    }
