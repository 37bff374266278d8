"""Structured logging configuration for observability."""

from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Iterable, TextIO

import structlog

from chat_gateway.config import (
    OBS_LOG_ALL,
    OBS_LOG_ENABLED,
    OBS_LOG_FILE,
    OBS_LOG_PRETTY,
    OBS_STREAM_LOG_ENABLED,
    OBS_STREAM_LOG_FILE,
)

STREAM_LOGGER_NAME = "streaming"


def logging_enabled() -> bool:
    return OBS_LOG_ENABLED


def streaming_logging_enabled() -> bool:
    return OBS_STREAM_LOG_ENABLED


def _build_renderer() -> structlog.processors.JSONRenderer:
    if OBS_LOG_PRETTY:
        return structlog.processors.JSONRenderer(indent=2, sort_keys=True)
    return structlog.processors.JSONRenderer()


def _build_formatter() -> structlog.stdlib.ProcessorFormatter:
    pre_chain = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
    ]
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            _build_renderer(),
        ],
        foreign_pre_chain=pre_chain,
    )


def _resolve_log_level() -> int:
    if OBS_LOG_ALL:
        return logging.DEBUG
    return logging.INFO


def _stream_handler(stream: TextIO, level: int) -> logging.Handler:
    handler = logging.StreamHandler(stream)
    handler.setLevel(level)
    handler.setFormatter(_build_formatter())
    return handler


def _file_handler(path: str, level: int) -> logging.Handler:
    file_path = Path(path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(file_path)
    handler.setLevel(level)
    handler.setFormatter(_build_formatter())
    return handler


def _install(
    target: logging.Logger, level: int, handlers: Iterable[logging.Handler]
) -> None:
    target.setLevel(level)
    target.handlers.clear()
    for handler in handlers:
        target.addHandler(handler)


def configure_logging() -> None:
    level = _resolve_log_level()
    root_logger = logging.getLogger()
    if logging_enabled():
        _install(
            root_logger,
            level,
            [
                _stream_handler(sys.stdout, logging.INFO),
                _stream_handler(sys.stderr, logging.ERROR),
                _file_handler(OBS_LOG_FILE, level),
            ],
        )
    else:
        # Translation warnings stay visible when request logging is off.
        _install(
            root_logger,
            logging.WARNING,
            [_stream_handler(sys.stderr, logging.WARNING)],
        )

    if streaming_logging_enabled():
        stream_logger = logging.getLogger(STREAM_LOGGER_NAME)
        _install(stream_logger, level, [_file_handler(OBS_STREAM_LOG_FILE, level)])
        stream_logger.propagate = False

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_stream_logger() -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(STREAM_LOGGER_NAME)
