"""Redaction and summary helpers for Anthropic and Chat Completions request shapes."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from chat_gateway.observability.redaction_shared import (
    LOG_ARRAY_LIMIT,
    normalize_payload,
    redact_text,
    redact_value,
    redaction_mode,
    truncate_list,
)
from chat_gateway.schema.anthropic import MessagesRequest


def _elide_image_data(data: Any) -> Any:
    if not isinstance(data, str):
        return data
    return f"<{len(data)} base64 chars>"


def _redact_image_block(block: Dict[str, Any]) -> Dict[str, Any]:
    updated = dict(block)
    source = block.get("source")
    if isinstance(source, dict) and "data" in source:
        updated_source = dict(source)
        updated_source["data"] = _elide_image_data(source.get("data"))
        updated["source"] = updated_source
    return updated


def _redact_content_blocks(
    blocks: Iterable[Any], mode: Optional[str], limit: int
) -> Tuple[List[Any], bool]:
    block_list, truncated = truncate_list(list(blocks), limit)
    redacted: List[Any] = []
    for block in block_list:
        if not isinstance(block, dict):
            redacted.append(block)
            continue
        block_type = block.get("type")
        updated = dict(block)
        if block_type == "text":
            updated["text"] = redact_text(block.get("text", ""), mode)
        elif block_type == "image":
            updated = _redact_image_block(block)
        elif block_type == "tool_result":
            content = block.get("content")
            if isinstance(content, list):
                redacted_content, content_truncated = _redact_content_blocks(
                    content, mode, limit
                )
                updated["content"] = redacted_content
                truncated = truncated or content_truncated
            else:
                updated["content"] = redact_value(content, mode)
        elif block_type == "tool_use" and "input" in updated:
            updated["input"] = redact_value(updated.get("input"), mode)
        redacted.append(updated)
    return redacted, truncated


def summarize_messages_request(
    payload: Union[MessagesRequest, Dict[str, Any]],
) -> Dict[str, Any]:
    data = normalize_payload(payload)
    if not isinstance(data, dict):
        return {}

    messages = data.get("messages")
    tools = data.get("tools")
    summary: Dict[str, Any] = {
        "message_count": len(messages) if isinstance(messages, list) else 0,
        "tool_definition_count": len(tools) if isinstance(tools, list) else 0,
        "tool_use_count": 0,
        "tool_result_count": 0,
        "image_count": 0,
        "stream": bool(data.get("stream")),
    }
    tool_name_counts: Dict[str, int] = {}

    for message in messages if isinstance(messages, list) else []:
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, list):
            continue
        for block in content:
            if not isinstance(block, dict):
                continue
            block_type = block.get("type")
            if block_type == "tool_use":
                summary["tool_use_count"] += 1
                name = block.get("name")
                if isinstance(name, str) and name:
                    tool_name_counts[name] = tool_name_counts.get(name, 0) + 1
            elif block_type == "tool_result":
                summary["tool_result_count"] += 1
            elif block_type == "image":
                summary["image_count"] += 1

    summary["tool_name_counts"] = tool_name_counts
    return summary


def _redact_tool_definition(tool: Any, mode: Optional[str]) -> Any:
    if not isinstance(tool, dict):
        return tool
    updated = dict(tool)
    if "description" in updated:
        updated["description"] = redact_text(updated.get("description"), mode)
    for key in ("input_schema", "parameters"):
        if key in updated:
            updated[key] = redact_value(updated.get(key), mode)
    function = updated.get("function")
    if isinstance(function, dict):
        updated["function"] = _redact_tool_definition(function, mode)
    return updated


def redact_messages_request(
    payload: Union[MessagesRequest, Dict[str, Any]],
) -> Dict[str, Any]:
    """Redact an Anthropic Messages request for logging."""
    data = normalize_payload(payload)
    if not isinstance(data, dict):
        return {}

    mode = redaction_mode(None)
    redacted = dict(data)
    truncated = False

    system = data.get("system")
    if isinstance(system, list):
        redacted["system"], system_truncated = _redact_content_blocks(
            system, mode, LOG_ARRAY_LIMIT
        )
        truncated = truncated or system_truncated
    elif system is not None:
        redacted["system"] = redact_text(system, mode)

    messages = data.get("messages")
    if isinstance(messages, list):
        messages, messages_truncated = truncate_list(messages, LOG_ARRAY_LIMIT)
        truncated = truncated or messages_truncated
        updated_messages = []
        for message in messages:
            if not isinstance(message, dict):
                updated_messages.append(message)
                continue
            updated = dict(message)
            content = message.get("content")
            if isinstance(content, list):
                updated["content"], content_truncated = _redact_content_blocks(
                    content, mode, LOG_ARRAY_LIMIT
                )
                truncated = truncated or content_truncated
            elif content is not None:
                updated["content"] = redact_text(content, mode)
            updated_messages.append(updated)
        redacted["messages"] = updated_messages

    tools = data.get("tools")
    if isinstance(tools, list):
        tools, tools_truncated = truncate_list(tools, LOG_ARRAY_LIMIT)
        truncated = truncated or tools_truncated
        redacted["tools"] = [_redact_tool_definition(tool, mode) for tool in tools]

    if truncated:
        redacted["payload_truncated"] = True
    return redacted


def _redact_chat_content(content: Any, mode: Optional[str]) -> Any:
    if not isinstance(content, list):
        return redact_text(content, mode)
    parts: List[Any] = []
    for part in content:
        if not isinstance(part, dict):
            parts.append(part)
            continue
        updated = dict(part)
        if part.get("type") == "text":
            updated["text"] = redact_text(part.get("text", ""), mode)
        elif part.get("type") == "image_url":
            image_url = part.get("image_url")
            if isinstance(image_url, dict):
                updated["image_url"] = {
                    **image_url,
                    "url": _elide_image_data(image_url.get("url")),
                }
        parts.append(updated)
    return parts


def redact_chat_request(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Redact an outbound Chat Completions payload for logging."""
    data = normalize_payload(payload)
    if not isinstance(data, dict):
        return {}

    mode = redaction_mode(None)
    redacted = dict(data)
    truncated = False

    messages = data.get("messages")
    if isinstance(messages, list):
        messages, truncated = truncate_list(messages, LOG_ARRAY_LIMIT)
        updated_messages = []
        for message in messages:
            if not isinstance(message, dict):
                updated_messages.append(message)
                continue
            updated = dict(message)
            updated["content"] = _redact_chat_content(message.get("content"), mode)
            tool_calls = message.get("tool_calls")
            if isinstance(tool_calls, list):
                updated["tool_calls"] = [
                    {
                        **call,
                        "function": {
                            **call.get("function", {}),
                            "arguments": redact_text(
                                call.get("function", {}).get("arguments"), mode
                            ),
                        },
                    }
                    if isinstance(call, dict)
                    else call
                    for call in tool_calls
                ]
            updated_messages.append(updated)
        redacted["messages"] = updated_messages

    tools = data.get("tools")
    if isinstance(tools, list):
        tools, tools_truncated = truncate_list(tools, LOG_ARRAY_LIMIT)
        truncated = truncated or tools_truncated
        redacted["tools"] = [_redact_tool_definition(tool, mode) for tool in tools]

    if truncated:
        redacted["payload_truncated"] = True
    return redacted
