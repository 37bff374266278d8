"""Translate OpenAI Chat Completions stream chunks into Anthropic SSE events."""

from __future__ import annotations

import uuid
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import structlog

from .openai_stream_helpers import (
    StreamBlockState,
    StreamState,
    build_message_start_payload,
    default_stream_error_payload,
    emit_content_block_start,
    emit_content_block_stop,
    emit_error,
    emit_input_json_delta,
    emit_message_delta,
    emit_message_stop,
    emit_ping,
    emit_text_delta,
    estimate_text_tokens,
    format_sse,
    parse_chunk,
    tool_arguments_are_valid_json,
)
from .stop_reason import map_finish_reason

logger = structlog.get_logger(__name__)

ErrorPayloadBuilder = Callable[[BaseException], Dict[str, Any]]


class StreamTranscoder:
    """Single-pass state machine from Chat Completions chunks to Anthropic frames.

    ``start()`` opens the message, ``feed()`` consumes one chunk, ``finish()``
    closes it normally and ``fail()`` closes it with an error event. Once
    ``finished`` is set every method returns no further frames.
    """

    def __init__(
        self,
        model: str,
        estimated_input_tokens: int,
        request_id: str,
        error_payload_builder: Optional[ErrorPayloadBuilder] = None,
    ) -> None:
        self.model = model
        self.estimated_input_tokens = estimated_input_tokens
        self.request_id = request_id
        self.message_id = f"msg_stream_{request_id}_{uuid.uuid4().hex[:8]}"
        self._error_payload_builder = error_payload_builder or default_stream_error_payload
        self.state = StreamState()
        self.started = False
        self.finished = False

    @property
    def finish_reason_received(self) -> bool:
        return self.state.finish_reason_received

    def start(self) -> List[str]:
        if self.started or self.finished:
            return []
        self.started = True
        return [
            format_sse(
                "message_start",
                build_message_start_payload(
                    self.message_id, self.model, self.estimated_input_tokens
                ),
            ),
            emit_ping(),
        ]

    def feed(self, chunk: Any) -> List[str]:
        if self.finished or self.state.finish_reason_received:
            return []
        parsed = parse_chunk(chunk)
        if parsed is None:
            return []
        choices = parsed.get("choices")
        if not isinstance(choices, list) or not choices:
            return []
        choice = choices[0]
        if not isinstance(choice, dict):
            return []

        events: List[str] = []
        delta = choice.get("delta")
        if isinstance(delta, dict):
            content = delta.get("content")
            if isinstance(content, str) and content:
                events.extend(self._on_text(content))
            tool_calls = delta.get("tool_calls")
            if isinstance(tool_calls, list):
                for position, tool_delta in enumerate(tool_calls):
                    if isinstance(tool_delta, dict):
                        events.extend(self._on_tool_delta(tool_delta, position))

        finish_reason = choice.get("finish_reason")
        if finish_reason:
            self.state.stop_reason = map_finish_reason(finish_reason)
            if finish_reason == "tool_calls":
                self.state.stop_reason = "tool_use"
            self.state.finish_reason_received = True
        return events

    def finish(self) -> List[str]:
        if self.finished:
            return []
        state = self.state
        events: List[str] = []
        if state.text_block_index is not None:
            state.blocks[state.text_block_index].stopped = True
            events.append(emit_content_block_stop(state.text_block_index))

        for index in state.started_tool_blocks:
            block = state.blocks[index]
            if block.arguments_buffer and not tool_arguments_are_valid_json(
                block.arguments_buffer
            ):
                logger.warning(
                    "tool_arguments_invalid_json",
                    tool_name=block.name,
                    tool_id=block.id,
                    request_id=self.request_id,
                )
            block.stopped = True
            events.append(emit_content_block_stop(index))

        for block in state.unstarted_tool_blocks():
            logger.warning(
                "tool_block_never_started",
                index=block.index,
                tool_name=block.name,
                buffered_chars=len(block.arguments_buffer),
                request_id=self.request_id,
            )

        events.append(emit_message_delta(state.stop_reason, state.output_tokens))
        events.append(emit_message_stop())
        self.finished = True
        return events

    def fail(self, exc: BaseException) -> List[str]:
        if self.finished:
            return []
        self.finished = True
        logger.warning(
            "stream_translation_failed",
            error=str(exc),
            error_class=type(exc).__name__,
            request_id=self.request_id,
        )
        return [emit_error(self._error_payload_builder(exc))]

    def _on_text(self, text: str) -> List[str]:
        state = self.state
        state.output_tokens += estimate_text_tokens(text)
        events: List[str] = []
        if state.text_block_index is None:
            block = state.open_text_block()
            events.append(
                emit_content_block_start(block.index, {"type": "text", "text": ""})
            )
        events.append(emit_text_delta(state.text_block_index, text))
        return events

    def _on_tool_delta(self, tool_delta: Dict[str, Any], position: int) -> List[str]:
        state = self.state
        source_index = tool_delta.get("index")
        if not isinstance(source_index, int):
            source_index = position

        call_id = tool_delta.get("id")
        if not isinstance(call_id, str) or not call_id:
            call_id = None
        block = state.bind_tool_block(source_index, call_id, self.request_id)
        if call_id and block.placeholder_id:
            block.id = call_id
            block.placeholder_id = False

        fragment = ""
        function = tool_delta.get("function")
        if isinstance(function, dict):
            name = function.get("name")
            if isinstance(name, str) and name:
                block.name = name
            arguments = function.get("arguments")
            if isinstance(arguments, str):
                fragment = arguments

        if fragment:
            block.arguments_buffer += fragment
            state.output_tokens += estimate_text_tokens(fragment)

        if block.started:
            return [emit_input_json_delta(block.index, fragment)] if fragment else []

        if fragment:
            block.pending_fragments.append(fragment)
        if not block.openable():
            return []
        return self._start_tool_block(block)

    def _start_tool_block(self, block: StreamBlockState) -> List[str]:
        block.started = True
        self.state.started_tool_blocks.append(block.index)
        events = [
            emit_content_block_start(
                block.index,
                {"type": "tool_use", "id": block.id, "name": block.name, "input": {}},
            )
        ]
        events.extend(
            emit_input_json_delta(block.index, fragment)
            for fragment in block.pending_fragments
        )
        block.pending_fragments.clear()
        return events


async def _close_upstream(chunks: Any) -> None:
    aclose = getattr(chunks, "aclose", None)
    if aclose is not None:
        await aclose()


async def translate_openai_chunks(
    chunks: AsyncIterator[Any],
    model: str,
    estimated_input_tokens: int,
    request_id: str,
    error_payload_builder: Optional[ErrorPayloadBuilder] = None,
) -> AsyncIterator[str]:
    """Yield Anthropic SSE frames for a Chat Completions chunk stream.

    Reading stops at the first chunk carrying a finish_reason. Any exception
    ends the stream with a single ``error`` frame.
    """
    transcoder = StreamTranscoder(
        model,
        estimated_input_tokens,
        request_id,
        error_payload_builder=error_payload_builder,
    )
    try:
        for frame in transcoder.start():
            yield frame
        async for chunk in chunks:
            for frame in transcoder.feed(chunk):
                yield frame
            if transcoder.finish_reason_received:
                break
        for frame in transcoder.finish():
            yield frame
    except Exception as exc:
        for frame in transcoder.fail(exc):
            yield frame
    finally:
        await _close_upstream(chunks)
