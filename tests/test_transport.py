import asyncio
import json
from typing import Any, AsyncIterator, Dict, List

import httpx
import pytest

from chat_gateway import config
from chat_gateway.transport import openai_client, openai_stream
from chat_gateway.transport.openai_stream import iter_sse_records
from chat_gateway.transport.upstream_common import OpenAIUpstreamError


def _mock_client(handler) -> Any:
    def _build() -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _build


async def _lines(lines: List[str]) -> AsyncIterator[str]:
    for line in lines:
        yield line


def test_sse_records_group_lines() -> None:
    async def _collect() -> List[Dict[str, Any]]:
        return [
            record
            async for record in iter_sse_records(
                _lines(
                    [
                        ": keep-alive",
                        'data: {"choices": []}',
                        "",
                        "event: custom",
                        "data: [DONE]",
                        "",
                        "data: trailing",
                    ]
                )
            )
        ]

    records = asyncio.run(_collect())

    assert records == [
        {"event": "message", "data": {"choices": []}},
        {"event": "custom", "data": "[DONE]"},
        {"event": "message", "data": "trailing"},
    ]


def test_create_chat_completion_posts_with_bearer(monkeypatch) -> None:
    seen: Dict[str, Any] = {}

    def _handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "chatcmpl-1", "choices": []})

    monkeypatch.setattr(config, "OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(config, "OPENAI_BASE_URL", "http://backend.local/v1")
    monkeypatch.setattr(openai_client, "build_client", _mock_client(_handler))

    response = asyncio.run(
        openai_client.create_chat_completion({"model": "gpt-4o", "messages": []})
    )

    assert response["id"] == "chatcmpl-1"
    assert seen["url"] == "http://backend.local/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["stream"] is False


def test_create_chat_completion_raises_upstream_error(monkeypatch) -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, text="not json")

    monkeypatch.setattr(config, "OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(openai_client, "build_client", _mock_client(_handler))

    with pytest.raises(OpenAIUpstreamError) as exc:
        asyncio.run(openai_client.create_chat_completion({"model": "gpt-4o"}))

    assert exc.value.status_code == 400
    assert exc.value.error_payload == {"error": {"message": "not json"}}


def test_non_json_success_body_maps_to_502(monkeypatch) -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200, text="<html>gateway</html>", headers={"content-type": "text/html"}
        )

    monkeypatch.setattr(config, "OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(openai_client, "build_client", _mock_client(_handler))

    with pytest.raises(OpenAIUpstreamError) as exc:
        asyncio.run(openai_client.create_chat_completion({"model": "gpt-4o"}))

    assert exc.value.status_code == 502
    error = exc.value.error_payload["error"]
    assert error["type"] == "api_error"
    assert "text/html" in error["message"]


def test_transport_failure_maps_to_502(monkeypatch) -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    monkeypatch.setattr(config, "OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(openai_client, "build_client", _mock_client(_handler))

    with pytest.raises(OpenAIUpstreamError) as exc:
        asyncio.run(openai_client.list_openai_models())

    assert exc.value.status_code == 502
    assert exc.value.error_payload["error"]["type"] == "api_error"


def test_stream_chat_completion_yields_records(monkeypatch) -> None:
    body = (
        'data: {"choices": [{"delta": {"content": "Hi"}}]}\n\n'
        "data: [DONE]\n\n"
    )

    def _handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content)["stream"] is True
        return httpx.Response(
            200, text=body, headers={"content-type": "text/event-stream"}
        )

    monkeypatch.setattr(config, "OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(openai_stream, "build_client", _mock_client(_handler))

    async def _collect() -> List[Dict[str, Any]]:
        return [
            record
            async for record in openai_stream.stream_chat_completion({"model": "gpt-4o"})
        ]

    records = asyncio.run(_collect())

    assert records[0]["data"]["choices"][0]["delta"]["content"] == "Hi"
    assert records[1]["data"] == "[DONE]"


def test_stream_chat_completion_error_status(monkeypatch) -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": {"message": "bad key"}})

    monkeypatch.setattr(config, "OPENAI_API_KEY", "sk-test")
    monkeypatch.setattr(openai_stream, "build_client", _mock_client(_handler))

    async def _consume() -> None:
        async for _ in openai_stream.stream_chat_completion({"model": "gpt-4o"}):
            pass

    with pytest.raises(OpenAIUpstreamError) as exc:
        asyncio.run(_consume())

    assert exc.value.status_code == 401
