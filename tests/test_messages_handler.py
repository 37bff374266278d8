import json
from typing import Any, AsyncIterator, Dict, List, Tuple

import httpx
from fastapi.testclient import TestClient

from chat_gateway import config
from chat_gateway.app import app
from chat_gateway.handlers import messages as messages_handler
from chat_gateway.handlers.messages_common import StreamStats, parse_sse_payload
from chat_gateway.transport import openai_client
from chat_gateway.transport.upstream_common import OpenAIUpstreamError

WEATHER_TOOL = {
    "name": "weather",
    "description": "Current weather",
    "input_schema": {"type": "object", "properties": {"city": {"type": "string"}}},
}


def _request(**overrides: Any) -> Dict[str, Any]:
    body: Dict[str, Any] = {
        "model": "claude-3-5-sonnet-20241022",
        "max_tokens": 256,
        "messages": [{"role": "user", "content": "hi"}],
    }
    body.update(overrides)
    return body


def _parse_sse(body: str) -> List[Tuple[str, Dict[str, Any]]]:
    parsed: List[Tuple[str, Dict[str, Any]]] = []
    for block in body.strip().split("\n\n"):
        event = ""
        data: Dict[str, Any] = {}
        for line in block.splitlines():
            if line.startswith("event:"):
                event = line.split(":", 1)[1].strip()
            elif line.startswith("data:"):
                data = json.loads(line.split(":", 1)[1].strip())
        if event:
            parsed.append((event, data))
    return parsed


def test_non_streaming_round_trip(monkeypatch) -> None:
    captured: Dict[str, Any] = {}

    async def _fake_create(payload: Dict[str, Any]) -> Dict[str, Any]:
        captured["payload"] = payload
        return {
            "id": "chatcmpl-7",
            "choices": [
                {
                    "index": 0,
                    "message": {"role": "assistant", "content": "hello there"},
                    "finish_reason": "stop",
                }
            ],
            "usage": {"prompt_tokens": 11, "completion_tokens": 3},
        }

    monkeypatch.setattr(messages_handler, "create_chat_completion", _fake_create)
    client = TestClient(app)

    response = client.post("/v1/messages", json=_request(system="Be nice."))

    assert response.status_code == 200
    body = response.json()
    assert body["id"] == "msg_chatcmpl-7"
    assert body["model"] == "claude-3-5-sonnet-20241022"
    assert body["content"] == [{"type": "text", "text": "hello there"}]
    assert body["stop_reason"] == "end_turn"
    assert body["usage"]["input_tokens"] == 11
    assert body["usage"]["output_tokens"] == 3

    payload = captured["payload"]
    assert payload["messages"][0] == {"role": "system", "content": "Be nice."}
    assert payload["max_tokens"] == 256
    assert payload["stream"] is False


def test_non_streaming_usage_falls_back_to_estimate(monkeypatch) -> None:
    async def _fake_create(payload: Dict[str, Any]) -> Dict[str, Any]:
        return {"choices": [{"message": {"content": "ok"}, "finish_reason": "stop"}]}

    monkeypatch.setattr(messages_handler, "create_chat_completion", _fake_create)
    client = TestClient(app)

    body = client.post("/v1/messages", json=_request()).json()

    assert body["usage"]["input_tokens"] > 0
    assert body["usage"]["output_tokens"] == 0
    assert body["id"].endswith("_completed")


def test_upstream_error_is_mapped(monkeypatch) -> None:
    async def _fake_create(payload: Dict[str, Any]) -> Dict[str, Any]:
        raise OpenAIUpstreamError(
            429, {"error": {"message": "slow down", "type": "rate_limit_error"}}
        )

    monkeypatch.setattr(messages_handler, "create_chat_completion", _fake_create)
    client = TestClient(app)

    response = client.post("/v1/messages", json=_request())

    assert response.status_code == 429
    error = response.json()["error"]
    assert error["type"] == "rate_limit_error"
    assert error["message"] == "slow down"


def test_tools_400_carries_hint(monkeypatch) -> None:
    async def _fake_create(payload: Dict[str, Any]) -> Dict[str, Any]:
        raise OpenAIUpstreamError(400, {"error": {"message": "tools not supported"}})

    monkeypatch.setattr(messages_handler, "create_chat_completion", _fake_create)
    client = TestClient(app)

    response = client.post("/v1/messages", json=_request(tools=[WEATHER_TOOL]))

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["type"] == "invalid_request_error"
    assert error["message"].startswith("tools not supported")
    assert "may not support tool calling" in error["message"]


def test_transport_failure_is_502(monkeypatch) -> None:
    async def _fake_create(payload: Dict[str, Any]) -> Dict[str, Any]:
        raise OpenAIUpstreamError(
            502, {"error": {"type": "api_error", "message": "connection refused"}}
        )

    monkeypatch.setattr(messages_handler, "create_chat_completion", _fake_create)
    client = TestClient(app)

    response = client.post("/v1/messages", json=_request())

    assert response.status_code == 502
    assert response.json()["error"]["type"] == "api_error"


def test_validation_error_is_anthropic_envelope() -> None:
    client = TestClient(app)

    response = client.post("/v1/messages", json={"model": "claude"})

    assert response.status_code == 400
    payload = response.json()
    assert payload["type"] == "error"
    assert payload["error"]["type"] == "invalid_request_error"


def test_invalid_model_map_is_400(monkeypatch) -> None:
    monkeypatch.setenv("MODEL_MAP_JSON", "{not json")
    client = TestClient(app)

    response = client.post("/v1/messages", json=_request())

    assert response.status_code == 400
    assert "MODEL_MAP_JSON" in response.json()["error"]["message"]


def test_streaming_round_trip(monkeypatch) -> None:
    captured: Dict[str, Any] = {}

    async def _fake_stream(payload: Dict[str, Any]) -> AsyncIterator[Dict[str, Any]]:
        captured["payload"] = payload
        chunks = [
            {"choices": [{"index": 0, "delta": {"content": "Hi"}, "finish_reason": None}]},
            {
                "choices": [
                    {
                        "index": 0,
                        "delta": {
                            "tool_calls": [
                                {
                                    "index": 0,
                                    "id": "call_1",
                                    "type": "function",
                                    "function": {
                                        "name": "weather",
                                        "arguments": '{"city":"Oslo"}',
                                    },
                                }
                            ]
                        },
                        "finish_reason": None,
                    }
                ]
            },
            {"choices": [{"index": 0, "delta": {}, "finish_reason": "tool_calls"}]},
        ]
        for chunk in chunks:
            yield {"event": "message", "data": chunk}
        yield {"event": "message", "data": "[DONE]"}

    monkeypatch.setattr(messages_handler, "stream_chat_completion", _fake_stream)
    client = TestClient(app)

    with client.stream(
        "POST", "/v1/messages", json=_request(stream=True, tools=[WEATHER_TOOL])
    ) as response:
        assert response.status_code == 200
        assert "text/event-stream" in response.headers.get("content-type", "")
        body = "".join(response.iter_text())

    parsed = _parse_sse(body)
    events = [event for event, _ in parsed]
    assert events[0] == "message_start"
    assert events[1] == "ping"
    assert events[-1] == "message_stop"
    assert parsed[0][1]["message"]["usage"]["input_tokens"] > 0
    tool_start = [
        data
        for event, data in parsed
        if event == "content_block_start" and data["content_block"]["type"] == "tool_use"
    ]
    assert tool_start[0]["index"] == 1
    assert tool_start[0]["content_block"]["id"] == "call_1"
    message_delta = next(data for event, data in parsed if event == "message_delta")
    assert message_delta["delta"]["stop_reason"] == "tool_use"
    assert captured["payload"]["stream"] is True
    assert captured["payload"]["tools"][0]["function"]["name"] == "weather"


def test_streaming_upstream_error_becomes_error_event(monkeypatch) -> None:
    async def _fake_stream(payload: Dict[str, Any]) -> AsyncIterator[Dict[str, Any]]:
        raise OpenAIUpstreamError(500, {"error": {"message": "boom"}})
        yield  # pragma: no cover

    monkeypatch.setattr(messages_handler, "stream_chat_completion", _fake_stream)
    client = TestClient(app)

    with client.stream("POST", "/v1/messages", json=_request(stream=True)) as response:
        body = "".join(response.iter_text())

    parsed = _parse_sse(body)
    assert [event for event, _ in parsed] == ["message_start", "ping", "error"]
    assert parsed[-1][1]["error"]["type"] == "api_error"
    assert parsed[-1][1]["error"]["message"] == "boom"


def test_count_tokens_endpoint() -> None:
    client = TestClient(app)

    small = client.post(
        "/v1/messages/count_tokens",
        json={"model": "claude-3-haiku", "messages": [{"role": "user", "content": "hi"}]},
    )
    with_tools = client.post(
        "/v1/messages/count_tokens",
        json={
            "model": "claude-3-haiku",
            "messages": [{"role": "user", "content": "hi"}],
            "tools": [WEATHER_TOOL],
        },
    )

    assert small.status_code == 200
    assert small.json()["input_tokens"] > 0
    assert with_tools.json()["input_tokens"] > small.json()["input_tokens"]


def test_parse_sse_payload_splits_frame() -> None:
    frame = 'event: message_delta\ndata: {"type": "message_delta", "url": "a:b"}\n\n'

    assert parse_sse_payload(frame) == (
        "message_delta",
        {"type": "message_delta", "url": "a:b"},
    )
    assert parse_sse_payload("event: ping\ndata: [1]\n\n") == ("ping", None)
    assert parse_sse_payload("event: ping\n\n") == ("ping", None)


def test_stream_stats_track_usage_and_errors() -> None:
    stats = StreamStats(estimated_input_tokens=9)
    stats.observe("event: message_start\ndata: {}\n\n")
    stats.observe(
        "event: message_delta\n"
        'data: {"delta": {"stop_reason": "tool_use"}, "usage": {"output_tokens": 3}}\n\n'
    )

    summary = stats.summary()
    assert summary["event_count"] == 2
    assert summary["stop_reason"] == "tool_use"
    assert summary["token_usage"] == {"input_tokens": 9, "output_tokens": 3}
    assert summary["time_to_first_event_ms"] is not None
    assert not stats.failed

    stats.observe(
        'event: error\ndata: {"error": {"type": "api_error", "message": "boom"}}\n\n'
    )
    assert stats.failed
    assert (stats.error_type, stats.error_message) == ("api_error", "boom")


def test_non_json_backend_body_is_502_envelope(monkeypatch) -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, text="<html>gateway</html>", headers={"content-type": "text/html"}
        )

    def _build() -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(_handler))

    monkeypatch.setattr(config, "OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(openai_client, "build_client", _build)
    client = TestClient(app)

    response = client.post("/v1/messages", json=_request())

    assert response.status_code == 502
    assert response.headers["content-type"].startswith("application/json")
    payload = response.json()
    assert payload["type"] == "error"
    assert payload["error"]["type"] == "api_error"
    assert "not valid JSON" in payload["error"]["message"]


def test_unexpected_backend_failure_is_500_envelope(monkeypatch) -> None:
    async def _fake_create(payload: Dict[str, Any]) -> Any:
        return ["not", "a", "completion"]

    monkeypatch.setattr(messages_handler, "create_chat_completion", _fake_create)
    client = TestClient(app)

    response = client.post("/v1/messages", json=_request())

    assert response.status_code == 500
    assert response.headers["content-type"].startswith("application/json")
    payload = response.json()
    assert payload["type"] == "error"
    assert payload["error"]["type"] == "api_error"
