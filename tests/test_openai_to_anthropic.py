import pytest

from chat_gateway.mapping.openai_to_anthropic import (
    map_openai_response_to_anthropic,
    parse_tool_arguments,
)
from chat_gateway.mapping.stop_reason import STOP_REASON_MAP, map_finish_reason


def _response(message, finish_reason="stop", response_id="chatcmpl-1"):
    return {
        "id": response_id,
        "object": "chat.completion",
        "choices": [{"index": 0, "message": message, "finish_reason": finish_reason}],
    }


def test_plain_text_response() -> None:
    mapped = map_openai_response_to_anthropic(
        _response({"role": "assistant", "content": "hi"}),
        "claude-3-5-sonnet",
        "req1",
    )

    assert mapped["id"] == "msg_chatcmpl-1"
    assert mapped["type"] == "message"
    assert mapped["role"] == "assistant"
    assert mapped["model"] == "claude-3-5-sonnet"
    assert mapped["content"] == [{"type": "text", "text": "hi"}]
    assert mapped["stop_reason"] == "end_turn"
    assert mapped["stop_sequence"] is None
    assert mapped["usage"] == {"input_tokens": 0, "output_tokens": 0}


def test_text_and_tool_call_response() -> None:
    message = {
        "role": "assistant",
        "content": "Checking.",
        "tool_calls": [
            {
                "id": "call_1",
                "type": "function",
                "function": {"name": "weather", "arguments": '{"city": "Paris"}'},
            }
        ],
    }

    mapped = map_openai_response_to_anthropic(
        _response(message, finish_reason="tool_calls"), "claude", "req1"
    )

    assert mapped["content"] == [
        {"type": "text", "text": "Checking."},
        {
            "type": "tool_use",
            "id": "call_1",
            "name": "weather",
            "input": {"city": "Paris"},
        },
    ]
    assert mapped["stop_reason"] == "tool_use"


def test_bad_tool_arguments_are_preserved() -> None:
    message = {
        "role": "assistant",
        "content": None,
        "tool_calls": [
            {
                "id": "call_1",
                "type": "function",
                "function": {"name": "weather", "arguments": "{bad json"},
            }
        ],
    }

    mapped = map_openai_response_to_anthropic(
        _response(message, finish_reason="tool_calls"), "claude", "req1"
    )

    assert mapped["content"][0]["input"] == {"error_parsing_arguments": "{bad json"}


def test_empty_tool_arguments_are_preserved_as_parse_error() -> None:
    message = {
        "role": "assistant",
        "content": None,
        "tool_calls": [
            {
                "id": "call_1",
                "type": "function",
                "function": {"name": "ping", "arguments": ""},
            }
        ],
    }

    mapped = map_openai_response_to_anthropic(
        _response(message, finish_reason="tool_calls"), "claude", "req1"
    )

    assert mapped["content"][0]["input"] == {"error_parsing_arguments": ""}


def test_parse_tool_arguments_wraps_non_objects() -> None:
    assert parse_tool_arguments("[1, 2]") == {"value": [1, 2]}
    assert parse_tool_arguments("7") == {"value": 7}
    assert parse_tool_arguments(None) == {}
    assert parse_tool_arguments({"a": 1}) == {"a": 1}


def test_empty_response_gets_empty_text_block_and_fallback_id() -> None:
    mapped = map_openai_response_to_anthropic(
        {"choices": [{"message": {"role": "assistant", "content": ""}}]},
        "claude",
        "req42",
    )

    assert mapped["content"] == [{"type": "text", "text": ""}]
    assert mapped["id"] == "msg_req42_completed"
    assert mapped["stop_reason"] == "end_turn"


def test_missing_choices_is_tolerated() -> None:
    mapped = map_openai_response_to_anthropic({}, "claude", "req1")
    assert mapped["content"] == [{"type": "text", "text": ""}]


def test_only_first_choice_is_used() -> None:
    response = {
        "id": "x",
        "choices": [
            {"message": {"content": "first"}, "finish_reason": "length"},
            {"message": {"content": "second"}, "finish_reason": "stop"},
        ],
    }

    mapped = map_openai_response_to_anthropic(response, "claude", "req1")

    assert mapped["content"] == [{"type": "text", "text": "first"}]
    assert mapped["stop_reason"] == "max_tokens"


@pytest.mark.parametrize(
    "finish_reason, expected",
    [
        ("stop", "end_turn"),
        ("length", "max_tokens"),
        ("tool_calls", "tool_use"),
        ("function_call", "tool_use"),
        ("content_filter", "stop_sequence"),
        ("something_new", "end_turn"),
        (None, "end_turn"),
    ],
)
def test_finish_reason_table(finish_reason, expected) -> None:
    assert map_finish_reason(finish_reason) == expected
    assert map_finish_reason(finish_reason) == map_finish_reason(finish_reason)


def test_stop_reason_table_is_read_only() -> None:
    with pytest.raises(TypeError):
        STOP_REASON_MAP["stop"] = "max_tokens"  # type: ignore[index]
