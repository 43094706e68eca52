"""Structured logging setup and per-request access logging."""

import logging
import sys
import time
import uuid
from collections.abc import Callable
from typing import Any

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from healthnexus.config import settings

REQUEST_ID_HEADER = "X-Request-ID"

# Probes and scrapes are logged at debug so they do not drown real traffic
QUIET_PATHS = frozenset(
    {"/metrics", f"{settings.api_v1_prefix}/ping", f"{settings.api_v1_prefix}/health"}
)


def add_service_context(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Stamp every event with the service name and environment."""
    event_dict.setdefault("service", settings.app_name)
    event_dict.setdefault("environment", settings.environment)
    return event_dict


def configure_logging() -> None:
    """Route structlog and stdlib logging through one JSON or console renderer."""
    renderer: Any = (
        structlog.processors.JSONRenderer()
        if settings.log_format == "json"
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            add_service_context,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper()),
    )
    # The access log is written by LoggingMiddleware
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


class LoggingMiddleware(BaseHTTPMiddleware):
    """Log every request and tag it with a request id.

    The incoming ``X-Request-ID`` is reused when present so ids can be
    correlated across services; otherwise a new one is generated. The id is
    bound into the structlog context for the lifetime of the request and
    echoed on the response.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        logger = structlog.get_logger("healthnexus.access")
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        path = request.url.path

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=path,
        )
        log = logger.debug if path in QUIET_PATHS else logger.info

        started = time.perf_counter()
        log("request_started", client=request.client.host if request.client else None)

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error("request_failed", error=str(e), duration=time.perf_counter() - started)
            raise

        elapsed = time.perf_counter() - started
        log(
            "request_completed",
            status_code=response.status_code,
            cache=response.headers.get("X-Cache"),
            duration=elapsed,
        )

        response.headers["X-Process-Time"] = f"{elapsed:.6f}"
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
