"""Per-request log context: request id, correlation id and start time."""

from __future__ import annotations

import time
import uuid

from asgi_correlation_id import correlation_id
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from structlog.contextvars import bound_contextvars


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """Stamp each request with a fresh request id and bind it for logging."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        state = request.state
        state.start_time = time.perf_counter()
        state.request_id = uuid.uuid4().hex
        state.correlation_id = correlation_id.get()

        context = {"request_id": state.request_id}
        if state.correlation_id:
            context["correlation_id"] = state.correlation_id
        with bound_contextvars(**context):
            return await call_next(request)
