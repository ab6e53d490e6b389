"""
Correlation IDs for request and sweep tracing.

A correlation ID follows one HTTP request or one sweep pass through the log
entries it produces, the error bodies it returns and the notification
messages it publishes.
"""

import uuid
from collections.abc import Callable
from contextvars import ContextVar

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from app.log.logging import logger

correlation_id_var: ContextVar[str | None] = ContextVar("correlation_id", default=None)

CORRELATION_ID_HEADER = "X-Correlation-ID"


def generate_correlation_id() -> str:
    """Generate a new correlation ID."""
    return str(uuid.uuid4())


def get_correlation_id() -> str | None:
    """Return the correlation ID bound to the current context, if any."""
    return correlation_id_var.get()


def set_correlation_id(correlation_id: str) -> None:
    """Bind a correlation ID to the current context."""
    correlation_id_var.set(correlation_id)


def add_correlation_to_message(message: dict) -> dict:
    """Stamp an outgoing queue message with the current correlation ID."""
    correlation_id = get_correlation_id()
    if correlation_id:
        message["correlation_id"] = correlation_id
    return message


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    Reuse the caller's X-Correlation-ID (or mint one), expose it on
    ``request.state`` and echo it back on the response.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        correlation_id = request.headers.get(CORRELATION_ID_HEADER) or generate_correlation_id()
        set_correlation_id(correlation_id)
        request.state.correlation_id = correlation_id

        with logger.contextualize(correlation_id=correlation_id):
            logger.debug(
                "Request started",
                method=request.method,
                path=request.url.path,
                event_type="request_start",
            )
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = correlation_id
            logger.debug(
                "Request completed",
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                event_type="request_complete",
            )
            return response
