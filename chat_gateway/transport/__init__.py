"""Transport clients for the upstream Chat Completions backend."""

from chat_gateway.transport.openai_client import create_chat_completion, list_openai_models
from chat_gateway.transport.openai_stream import stream_chat_completion
from chat_gateway.transport.upstream_common import OpenAIUpstreamError

__all__ = [
    "OpenAIUpstreamError",
    "create_chat_completion",
    "list_openai_models",
    "stream_chat_completion",
]
