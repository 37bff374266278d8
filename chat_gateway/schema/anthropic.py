"""Anthropic Messages API request schemas."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

import structlog
from pydantic import BaseModel, field_validator

logger = structlog.get_logger(__name__)


class TextBlock(BaseModel):
    """Anthropic text content block."""

    type: Literal["text"] = "text"
    text: str


class ImageSource(BaseModel):
    """Image payload; only ``base64`` sources have a Chat Completions form."""

    type: str
    media_type: Optional[str] = None
    data: Optional[str] = None
    url: Optional[str] = None


class ImageBlock(BaseModel):
    """Anthropic image content block."""

    type: Literal["image"] = "image"
    source: ImageSource


class ToolUseBlock(BaseModel):
    """Anthropic tool use content block."""

    type: Literal["tool_use"] = "tool_use"
    id: str
    name: str
    input: Dict[str, Any]


class ToolResultBlock(BaseModel):
    """Anthropic tool result content block."""

    type: Literal["tool_result"] = "tool_result"
    tool_use_id: str
    content: Union[str, List[Any], Dict[str, Any]] = ""
    is_error: Optional[bool] = None


ContentBlock = Union[TextBlock, ImageBlock, ToolUseBlock, ToolResultBlock]

KNOWN_BLOCK_TYPES = frozenset({"text", "image", "tool_use", "tool_result"})


def _drop_unknown_blocks(value: Any) -> Any:
    if not isinstance(value, list):
        return value
    kept: List[Any] = []
    for block in value:
        block_type = block.get("type") if isinstance(block, dict) else None
        if isinstance(block, dict) and block_type not in KNOWN_BLOCK_TYPES:
            logger.warning("content_block_dropped", block_type=block_type)
            continue
        kept.append(block)
    return kept


class Message(BaseModel):
    """Anthropic message entry."""

    role: Literal["user", "assistant"]
    content: Union[str, List[ContentBlock]]

    @field_validator("content", mode="before")
    @classmethod
    def _filter_blocks(cls, value: Any) -> Any:
        return _drop_unknown_blocks(value)


class ToolDefinition(BaseModel):
    """Anthropic tool definition."""

    name: str
    description: Optional[str] = None
    input_schema: Dict[str, Any]


class ToolChoiceAuto(BaseModel):
    type: Literal["auto"] = "auto"


class ToolChoiceAny(BaseModel):
    type: Literal["any"] = "any"


class ToolChoiceNone(BaseModel):
    type: Literal["none"] = "none"


class ToolChoiceSpecific(BaseModel):
    """Specific tool choice object."""

    type: Literal["tool"] = "tool"
    name: str


ToolChoice = Union[ToolChoiceAuto, ToolChoiceAny, ToolChoiceNone, ToolChoiceSpecific]


class MessagesRequest(BaseModel):
    """Anthropic /v1/messages request model."""

    model: str
    messages: List[Message]
    system: Optional[Union[str, List[TextBlock]]] = None
    tools: Optional[List[ToolDefinition]] = None
    # Unrecognized shapes are kept raw and downgraded to "auto" during mapping.
    tool_choice: Optional[Union[ToolChoice, Dict[str, Any], str]] = None
    max_tokens: Optional[int] = None
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    top_k: Optional[int] = None
    stop_sequences: Optional[List[str]] = None
    metadata: Optional[Dict[str, Any]] = None
    stream: Optional[bool] = None


class CountTokensRequest(BaseModel):
    """Anthropic /v1/messages/count_tokens request model."""

    model: str
    messages: List[Message]
    system: Optional[Union[str, List[TextBlock]]] = None
    tools: Optional[List[ToolDefinition]] = None


class CountTokensResponse(BaseModel):
    """Anthropic /v1/messages/count_tokens response model."""

    input_tokens: int
