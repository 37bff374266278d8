"""OpenAI-aligned token counting utilities."""

from __future__ import annotations

import json
from typing import Any, Dict, Iterable, List, Optional

import tiktoken

from chat_gateway.schema.openai import ChatMessage

CHAT_FALLBACK_MODEL = "gpt-4o-mini-2024-07-18"
KNOWN_CHAT_MODELS = {
    "gpt-3.5-turbo-0125",
    "gpt-4-0613",
    "gpt-4o",
    "gpt-4o-2024-08-06",
    "gpt-4o-mini",
    "gpt-4o-mini-2024-07-18",
}
TOOL_OVERHEAD_TOKENS = 4


def get_encoding(model: str) -> tiktoken.Encoding:
    """Return the OpenAI encoding for a model with fallback."""

    try:
        return tiktoken.encoding_for_model(model)
    except KeyError:
        return tiktoken.get_encoding("o200k_base")


def _as_dict(value: Any) -> Dict[str, Any]:
    if hasattr(value, "model_dump"):
        return value.model_dump(exclude_none=True)
    if isinstance(value, dict):
        return value
    return {}


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if not isinstance(content, list):
        return ""
    texts: List[str] = []
    for part in content:
        part_data = _as_dict(part)
        if part_data.get("type") == "text" and part_data.get("text"):
            texts.append(str(part_data["text"]))
    return " ".join(texts)


def _tool_calls_text(tool_calls: Any) -> str:
    rendered: List[str] = []
    for call in tool_calls or []:
        function = _as_dict(_as_dict(call).get("function"))
        rendered.append(
            f"Function call: {function.get('name', '')}({function.get('arguments', '')})"
        )
    return " ".join(rendered)


def _normalize_chat_message(message: Any) -> Optional[Dict[str, str]]:
    """Flatten one chat turn to ``{role, content}``; tool turns count as assistant."""
    data = _as_dict(message)
    role = data.get("role")
    if role == "tool":
        role = "assistant"
    content = data.get("content")

    if content is None:
        if data.get("tool_calls"):
            return {"role": str(role), "content": _tool_calls_text(data["tool_calls"])}
        if data.get("role") == "tool" and data.get("name"):
            return {"role": "assistant", "content": f"Tool response from {data['name']}"}
        return None

    if isinstance(content, str):
        return {"role": str(role), "content": content}

    text = _content_text(content)
    if not text.strip():
        return None
    return {"role": str(role), "content": text}


def _normalize_messages(messages: Iterable[Any]) -> List[Dict[str, str]]:
    normalized = (_normalize_chat_message(message) for message in messages)
    return [message for message in normalized if message is not None]


def count_message_tokens(messages: List[Dict[str, str]], model: str) -> int:
    """Count tokens for OpenAI-style messages using cookbook constants."""

    if model not in KNOWN_CHAT_MODELS:
        return count_message_tokens(messages, CHAT_FALLBACK_MODEL)

    encoding = get_encoding(model)
    tokens_per_message = 3
    tokens_per_name = 1
    num_tokens = 0
    for message in messages:
        num_tokens += tokens_per_message
        for key, value in message.items():
            if value is None:
                continue
            num_tokens += len(encoding.encode(str(value)))
            if key == "name":
                num_tokens += tokens_per_name
    num_tokens += 3
    return num_tokens


def count_tool_tokens(tools: Optional[Iterable[Any]], model: str) -> int:
    """Count tokens for tool definitions using OpenAI cookbook approach."""

    if not tools:
        return 0
    encoding = get_encoding(model)
    total_tokens = 0
    for tool in tools:
        tool_payload = _as_dict(tool)
        function = _as_dict(tool_payload.get("function")) or tool_payload
        total_tokens += TOOL_OVERHEAD_TOKENS
        name = function.get("name") or ""
        description = function.get("description") or ""
        parameters = function.get("parameters") or {}
        if name:
            total_tokens += len(encoding.encode(name))
        if description:
            total_tokens += len(encoding.encode(description))
        parameters_json = json.dumps(
            parameters, separators=(",", ":"), ensure_ascii=False
        )
        total_tokens += len(encoding.encode(parameters_json))
    return total_tokens


def estimate_token_usage(
    messages: Iterable[ChatMessage], model: str = "gpt-4o"
) -> Dict[str, int]:
    """Split translated chat turns into input (non-assistant) and output (assistant) tokens."""

    normalized = _normalize_messages(messages)
    input_messages = [message for message in normalized if message["role"] != "assistant"]
    output_messages = [message for message in normalized if message["role"] == "assistant"]
    return {
        "input": count_message_tokens(input_messages, model) if input_messages else 0,
        "output": count_message_tokens(output_messages, model) if output_messages else 0,
    }


def count_openai_request_tokens(request: Any) -> int:
    """Count input tokens for a Chat Completions request (messages and tools)."""

    payload = _as_dict(request)
    model = payload.get("model")
    if not model:
        raise ValueError("model is required for token counting")
    messages = _normalize_messages(payload.get("messages", []))
    message_tokens = count_message_tokens(messages, model)
    tool_tokens = count_tool_tokens(payload.get("tools"), model)
    return int(message_tokens + tool_tokens)
