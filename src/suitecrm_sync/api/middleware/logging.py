"""Structured logging setup and request logging middleware.

configure_structlog() wires structlog onto the stdlib logging tree so
library loggers and our own share one output. In debug mode an extra
file handler mirrors every record to Settings.DEBUG_LOG_FILE, the
diagnostic channel for CRM request/response traces.

LoggingMiddleware logs every request with method, path, status_code,
duration_ms and a request_id (also returned as X-Request-ID).
"""

from __future__ import annotations

import logging
import sys
import time
import uuid

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from src.suitecrm_sync.config import Environment, Settings, get_settings

logger = structlog.get_logger(__name__)

_DEBUG_HANDLER_NAME = "suitecrm_debug_file"


def configure_structlog(settings: Settings | None = None, debug_mode: bool = False) -> None:
    """Configure structlog processors based on environment.

    Args:
        settings: Settings to read environment/log level from.
        debug_mode: Lower the level to DEBUG and attach the debug log file.
    """
    settings = settings or get_settings()
    level = logging.DEBUG if debug_mode else getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    root = logging.getLogger()
    if not any(isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stdout for h in root.handlers):
        stream = logging.StreamHandler(sys.stdout)
        stream.setFormatter(logging.Formatter("%(message)s"))
        root.addHandler(stream)
    root.setLevel(level)

    existing = [h for h in root.handlers if h.get_name() == _DEBUG_HANDLER_NAME]
    if debug_mode and not existing:
        try:
            file_handler = logging.FileHandler(settings.DEBUG_LOG_FILE)
        except OSError:
            logger.warning("logging.debug_file_unavailable", path=settings.DEBUG_LOG_FILE)
        else:
            file_handler.set_name(_DEBUG_HANDLER_NAME)
            file_handler.setFormatter(logging.Formatter("%(message)s"))
            root.addHandler(file_handler)
    elif not debug_mode:
        for handler in existing:
            root.removeHandler(handler)
            handler.close()

    shared_processors: list = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if settings.ENVIRONMENT == Environment.production:
        shared_processors.append(structlog.processors.JSONRenderer())
    else:
        shared_processors.append(structlog.dev.ConsoleRenderer(colors=False))

    structlog.configure(
        processors=shared_processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class LoggingMiddleware(BaseHTTPMiddleware):
    """Middleware that logs every request with timing.

    Generates a unique X-Request-ID for each request and includes it in
    both the log entry and the response headers.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = str(uuid.uuid4())
        start_time = time.monotonic()

        try:
            response = await call_next(request)
        except Exception:
            logger.error(
                "request_error",
                method=request.method,
                path=request.url.path,
                status_code=500,
                duration_ms=round((time.monotonic() - start_time) * 1000, 2),
                request_id=request_id,
            )
            raise

        duration_ms = round((time.monotonic() - start_time) * 1000, 2)
        response.headers["X-Request-ID"] = request_id

        log_method = logger.info if response.status_code < 400 else logger.warning
        if response.status_code >= 500:
            log_method = logger.error

        log_method(
            "request_completed",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
            request_id=request_id,
        )

        return response
