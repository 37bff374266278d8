"""Shared upstream request helpers for the Chat Completions transports."""

from __future__ import annotations

from typing import Any, Dict, NoReturn, Tuple

import httpx
from asgi_correlation_id import correlation_id

from chat_gateway import config


class OpenAIUpstreamError(Exception):
    """Raised when the upstream backend returns an error or cannot be reached."""

    def __init__(self, status_code: int, error_payload: Any) -> None:
        super().__init__(f"OpenAI upstream error ({status_code})")
        self.status_code = status_code
        self.error_payload = error_payload


def safe_json(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return {"error": {"message": response.text}}


def build_upstream_request(path: str) -> Tuple[str, Dict[str, str]]:
    """Return (url, headers) for a backend endpoint path such as ``/models``."""
    api_key = config.require_openai_api_key()
    headers: Dict[str, str] = {"Authorization": f"Bearer {api_key}"}

    upstream_correlation_id = correlation_id.get()
    if upstream_correlation_id:
        headers["X-Correlation-ID"] = upstream_correlation_id

    return f"{config.OPENAI_BASE_URL}{path}", headers


def build_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=config.UPSTREAM_TIMEOUT_SECONDS)


def raise_transport_error(exc: httpx.TransportError, url: str) -> NoReturn:
    raise OpenAIUpstreamError(
        502,
        {
            "error": {
                "type": "api_error",
                "message": f"Upstream request to {url} failed: {exc}",
            }
        },
    ) from exc


def decode_response_json(response: httpx.Response, url: str) -> Any:
    """Decode a successful backend body; a non-JSON body is a bad gateway."""
    try:
        return response.json()
    except ValueError as exc:
        content_type = response.headers.get("content-type", "unknown")
        raise OpenAIUpstreamError(
            502,
            {
                "error": {
                    "type": "api_error",
                    "message": (
                        f"Upstream response from {url} is not valid JSON "
                        f"(content-type: {content_type})"
                    ),
                }
            },
        ) from exc
