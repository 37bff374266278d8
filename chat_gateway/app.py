"""FastAPI application wiring."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog
from asgi_correlation_id import CorrelationIdMiddleware
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from chat_gateway import config
from chat_gateway.errors.anthropic_error import build_anthropic_error
from chat_gateway.handlers.count_tokens import router as count_tokens_router
from chat_gateway.handlers.messages import router as messages_router
from chat_gateway.middleware.observability import ObservabilityMiddleware
from chat_gateway.model_catalog import refresh_model_catalog
from chat_gateway.observability.logging import configure_logging
from chat_gateway.transport.upstream_common import OpenAIUpstreamError

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    if config.MODEL_CATALOG_REFRESH:
        try:
            await refresh_model_catalog()
        except (ValueError, OpenAIUpstreamError) as exc:
            logger.warning("model_catalog_refresh_failed", error=str(exc))
    yield


app = FastAPI(lifespan=lifespan)
configure_logging()
# Last-added middleware runs first.
app.add_middleware(ObservabilityMiddleware)
app.add_middleware(CorrelationIdMiddleware, header_name="X-Correlation-ID")


@app.exception_handler(RequestValidationError)
async def handle_validation_error(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    error_payload = build_anthropic_error(
        400,
        "invalid_request_error",
        "Invalid request",
        openai_error={"errors": jsonable_encoder(exc.errors())},
    )
    return JSONResponse(status_code=400, content=error_payload)


app.include_router(messages_router)
app.include_router(count_tokens_router)
