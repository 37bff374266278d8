"""Map Anthropic Messages requests to OpenAI Chat Completions requests."""

from __future__ import annotations

import json
from typing import Any, List, Optional, Union

import structlog
from pydantic import BaseModel

from chat_gateway.config import resolve_openai_model
from chat_gateway.model_catalog import get_max_output_tokens
from chat_gateway.schema.anthropic import (
    ImageBlock,
    Message,
    MessagesRequest,
    TextBlock,
    ToolChoiceAny,
    ToolChoiceAuto,
    ToolChoiceNone,
    ToolChoiceSpecific,
    ToolDefinition,
    ToolResultBlock,
    ToolUseBlock,
)
from chat_gateway.schema.openai import (
    ChatCompletionsRequest,
    ChatMessage,
    ContentPart,
    FunctionCall,
    FunctionDefinition,
    FunctionTool,
    ImageUrl,
    ImageUrlPart,
    TextPart,
    ToolCall,
    ToolChoice as OpenAIToolChoice,
    ToolChoiceFunction,
    ToolChoiceFunctionName,
)

logger = structlog.get_logger(__name__)


def _system_to_text(system: Optional[Union[str, List[TextBlock]]]) -> str:
    if system is None:
        return ""
    if isinstance(system, str):
        return system
    return "\n".join(block.text for block in system if isinstance(block, TextBlock))


def _unserializable_placeholder(item: Any) -> str:
    return f"<unserializable_item type='{type(item).__name__}'>"


def _tool_result_item_to_text(item: Any) -> str:
    if isinstance(item, TextBlock):
        return item.text
    if isinstance(item, dict) and item.get("type") == "text" and "text" in item:
        return str(item["text"])
    if isinstance(item, BaseModel):
        item = item.model_dump(exclude_none=True)
    try:
        return json.dumps(item, ensure_ascii=False)
    except (TypeError, ValueError):
        return _unserializable_placeholder(item)


def tool_result_to_text(block: ToolResultBlock) -> str:
    """Flatten tool result content into the string a ``tool`` turn carries."""
    content = block.content
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(_tool_result_item_to_text(item) for item in content)
    try:
        return json.dumps(content, ensure_ascii=False)
    except (TypeError, ValueError):
        return json.dumps(
            {
                "error": "Serialization failed",
                "original_type": type(content).__name__,
            }
        )


def _tool_use_to_arguments(block: ToolUseBlock) -> str:
    try:
        return json.dumps(block.input, ensure_ascii=False)
    except (TypeError, ValueError) as exc:
        logger.warning(
            "tool_input_serialization_failed",
            tool_name=block.name,
            tool_use_id=block.id,
            error=str(exc),
        )
        return "{}"


def _image_to_part(block: ImageBlock) -> Optional[ImageUrlPart]:
    source = block.source
    if source.type != "base64" or source.data is None:
        return None
    data_uri = f"data:{source.media_type};base64,{source.data}"
    return ImageUrlPart(image_url=ImageUrl(url=data_uri))


def _user_parts_to_message(parts: List[ContentPart]) -> Optional[ChatMessage]:
    if not parts:
        return None
    has_image = any(isinstance(part, ImageUrlPart) for part in parts)
    if has_image or len(parts) > 1:
        return ChatMessage(role="user", content=parts)
    only = parts[0]
    return ChatMessage(role="user", content=only.text if isinstance(only, TextPart) else "")


def _assistant_to_messages(texts: List[str], tool_calls: List[ToolCall]) -> List[ChatMessage]:
    assistant_text = "\n".join(text for text in texts if text)
    if assistant_text and tool_calls:
        return [
            ChatMessage(role="assistant", content=assistant_text),
            ChatMessage(role="assistant", content=None, tool_calls=tool_calls),
        ]
    if assistant_text:
        return [ChatMessage(role="assistant", content=assistant_text)]
    if tool_calls:
        return [ChatMessage(role="assistant", content=None, tool_calls=tool_calls)]
    return [ChatMessage(role="assistant", content="")]


def _message_to_chat_messages(message: Message) -> List[ChatMessage]:
    role = message.role
    if isinstance(message.content, str):
        return [ChatMessage(role=role, content=message.content)]
    if not message.content:
        return [ChatMessage(role=role, content="")]

    output: List[ChatMessage] = []
    user_parts: List[ContentPart] = []
    assistant_texts: List[str] = []
    tool_calls: List[ToolCall] = []

    for block in message.content:
        if isinstance(block, TextBlock):
            if role == "user":
                user_parts.append(TextPart(text=block.text))
            else:
                assistant_texts.append(block.text)
        elif isinstance(block, ImageBlock):
            part = _image_to_part(block) if role == "user" else None
            if part is not None:
                user_parts.append(part)
        elif isinstance(block, ToolUseBlock):
            if role == "assistant":
                tool_calls.append(
                    ToolCall(
                        id=block.id,
                        function=FunctionCall(
                            name=block.name,
                            arguments=_tool_use_to_arguments(block),
                        ),
                    )
                )
        elif isinstance(block, ToolResultBlock):
            if role == "user":
                output.append(
                    ChatMessage(
                        role="tool",
                        content=tool_result_to_text(block),
                        tool_call_id=block.tool_use_id,
                    )
                )
        else:
            raise ValueError(
                f"Unsupported content block type: {getattr(block, 'type', None)}"
            )

    if role == "user":
        user_message = _user_parts_to_message(user_parts)
        if user_message is not None:
            output.append(user_message)
    else:
        output.extend(_assistant_to_messages(assistant_texts, tool_calls))
    return output


def map_anthropic_messages_to_openai(
    messages: List[Message],
    system: Optional[Union[str, List[TextBlock]]] = None,
) -> List[ChatMessage]:
    """Convert Anthropic system + messages into an ordered Chat Completions list."""
    chat_messages: List[ChatMessage] = []
    system_text = _system_to_text(system)
    if system_text:
        chat_messages.append(ChatMessage(role="system", content=system_text))
    for message in messages:
        chat_messages.extend(_message_to_chat_messages(message))
    return chat_messages


def map_anthropic_tools_to_openai(
    tools: Optional[List[ToolDefinition]],
) -> Optional[List[FunctionTool]]:
    if not tools:
        return None
    return [
        FunctionTool(
            function=FunctionDefinition(
                name=tool.name,
                description=tool.description or "",
                parameters=tool.input_schema,
            )
        )
        for tool in tools
    ]


def _tool_choice_type(tool_choice: Any) -> Optional[str]:
    if isinstance(tool_choice, str):
        return tool_choice
    if isinstance(tool_choice, dict):
        value = tool_choice.get("type")
        return value if isinstance(value, str) else None
    return getattr(tool_choice, "type", None)


def _tool_choice_name(tool_choice: Any) -> Optional[str]:
    if isinstance(tool_choice, ToolChoiceSpecific):
        return tool_choice.name
    if isinstance(tool_choice, dict):
        value = tool_choice.get("name")
        return value if isinstance(value, str) and value else None
    return None


def map_anthropic_tool_choice_to_openai(tool_choice: Any) -> Optional[OpenAIToolChoice]:
    """Map tool_choice; ``any`` and unrecognized shapes fall back to ``auto``."""
    if tool_choice is None:
        return None
    if isinstance(tool_choice, (ToolChoiceAuto, ToolChoiceAny)):
        return "auto"
    if isinstance(tool_choice, ToolChoiceNone):
        return "none"

    choice_type = _tool_choice_type(tool_choice)
    if choice_type == "none":
        return "none"
    if choice_type == "tool":
        name = _tool_choice_name(tool_choice)
        if name:
            return ToolChoiceFunction(function=ToolChoiceFunctionName(name=name))
    if choice_type not in {"auto", "any", "tool"}:
        logger.warning("tool_choice_downgraded", tool_choice_type=choice_type)
    return "auto"


def resolve_max_tokens(request: MessagesRequest, model: str) -> Optional[int]:
    if request.max_tokens is not None:
        return request.max_tokens
    return get_max_output_tokens(model)


def map_anthropic_request_to_openai(request: MessagesRequest) -> ChatCompletionsRequest:
    """Convert an Anthropic Messages request into a Chat Completions request."""

    model = resolve_openai_model(request.model)
    tools = map_anthropic_tools_to_openai(request.tools)
    tool_choice = (
        map_anthropic_tool_choice_to_openai(request.tool_choice) if tools else None
    )

    return ChatCompletionsRequest(
        model=model,
        messages=map_anthropic_messages_to_openai(request.messages, request.system),
        temperature=request.temperature,
        top_p=request.top_p,
        max_tokens=resolve_max_tokens(request, model),
        stop=request.stop_sequences,
        tools=tools,
        tool_choice=tool_choice,
        stream=bool(request.stream),
    )
