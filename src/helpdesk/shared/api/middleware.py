"""
Shared API Middleware
======================

Request tracing and the JSON error contract of the HTTP API.

Every error body has the shape::

    {"detail": "...", "error_type": "ConflictException", "correlation_id": "..."}

with an ``errors`` object added for client errors that carry field details.
"""

import time
import uuid
from typing import Callable

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from helpdesk.core import ApplicationException
from helpdesk.shared.infrastructure.logging import correlation_id_var, get_logger

logger = get_logger(__name__)

CORRELATION_HEADER = "X-Correlation-ID"


def _correlation_id(request: Request) -> str:
    return getattr(request.state, "correlation_id", "unknown")


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """
    Tag the request with a correlation id, taken from the caller or generated.

    The id is echoed in the response header and attached to every log record
    emitted while the request is handled, including breach markings.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        request.state.correlation_id = correlation_id

        token = correlation_id_var.set(correlation_id)
        try:
            response = await call_next(request)
        finally:
            correlation_id_var.reset(token)

        response.headers[CORRELATION_HEADER] = correlation_id
        return response


class LoggingMiddleware(BaseHTTPMiddleware):
    """Request start/finish log lines with the asserted caller identity."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start = time.perf_counter()
        request_context = {
            "method": request.method,
            "path": request.url.path,
            "caller_id": request.headers.get("X-User-Id"),
            "caller_role": request.headers.get("X-User-Role"),
        }
        logger.info("Request started", extra=request_context)

        try:
            response = await call_next(request)
        except Exception as e:
            logger.error(
                "Request failed",
                extra={**request_context, "error": str(e), "response_time_ms": _elapsed_ms(start)}
            )
            raise

        logger.info(
            "Request completed",
            extra={
                **request_context,
                "status_code": response.status_code,
                "response_time_ms": _elapsed_ms(start),
            }
        )
        return response


async def application_exception_handler(request: Request, exc: ApplicationException) -> JSONResponse:
    """Map an ApplicationException to its HTTP status and the JSON error body."""
    correlation_id = _correlation_id(request)
    error_type = type(exc).__name__

    log = logger.error if exc.status_code >= 500 else logger.warning
    log(
        exc.message,
        extra={
            "path": request.url.path,
            "error_type": error_type,
            **{f"detail_{k}": v for k, v in exc.details.items()},
        }
    )

    content = {"detail": exc.message, "error_type": error_type, "correlation_id": correlation_id}
    if exc.details and exc.status_code < 500:
        content["errors"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort 500. The message is only exposed in development."""
    logger.exception(
        "Unhandled exception",
        extra={"path": request.url.path, "method": request.method, "error_type": type(exc).__name__}
    )

    settings = getattr(request.app.state, "settings", None)
    is_dev = getattr(settings, "environment", None) == "development"

    return JSONResponse(
        status_code=500,
        content={
            "detail": str(exc) if is_dev else "Internal server error",
            "error_type": "InternalServerError",
            "correlation_id": _correlation_id(request),
        }
    )
