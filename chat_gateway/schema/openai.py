"""OpenAI Chat Completions API request schemas."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class TextPart(BaseModel):
    """Chat Completions text content part."""

    type: Literal["text"] = "text"
    text: str


class ImageUrl(BaseModel):
    url: str


class ImageUrlPart(BaseModel):
    """Chat Completions image content part (data URI for inline images)."""

    type: Literal["image_url"] = "image_url"
    image_url: ImageUrl


ContentPart = Union[TextPart, ImageUrlPart]


class FunctionCall(BaseModel):
    name: str
    arguments: str


class ToolCall(BaseModel):
    """Assistant tool call record."""

    id: str
    type: Literal["function"] = "function"
    function: FunctionCall


class ChatMessage(BaseModel):
    """Chat Completions message; ``content`` is None only alongside tool calls."""

    role: Literal["system", "user", "assistant", "tool"]
    content: Optional[Union[str, List[ContentPart]]] = None
    tool_calls: Optional[List[ToolCall]] = None
    tool_call_id: Optional[str] = None
    name: Optional[str] = None


class FunctionDefinition(BaseModel):
    name: str
    description: str = ""
    parameters: Dict[str, Any] = Field(default_factory=dict)


class FunctionTool(BaseModel):
    """Chat Completions function tool definition."""

    type: Literal["function"] = "function"
    function: FunctionDefinition


class ToolChoiceFunctionName(BaseModel):
    name: str


class ToolChoiceFunction(BaseModel):
    """Tool choice forcing a named function."""

    type: Literal["function"] = "function"
    function: ToolChoiceFunctionName


ToolChoice = Union[Literal["auto", "none"], ToolChoiceFunction]


class ChatCompletionsRequest(BaseModel):
    """Chat Completions request model."""

    model: str
    messages: List[ChatMessage]
    temperature: Optional[float] = None
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None
    stop: Optional[List[str]] = None
    tools: Optional[List[FunctionTool]] = None
    tool_choice: Optional[ToolChoice] = None
    stream: Optional[bool] = None
