"""Mapping helpers between Anthropic Messages and OpenAI Chat Completions."""

from .openai_stream_to_anthropic import StreamTranscoder, translate_openai_chunks

__all__ = ["StreamTranscoder", "translate_openai_chunks"]
