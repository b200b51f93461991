"""Correlation ID middleware and log filter for request tracing."""

import logging
import uuid
from contextvars import ContextVar

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

CORRELATION_HEADER = "X-Correlation-ID"

# Empty outside a request (scheduler jobs, CLI scripts)
correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")


def get_correlation_id() -> str:
    return correlation_id_var.get()


def generate_correlation_id() -> str:
    """Short unique ID (first 16 chars of a uuid4)."""
    return str(uuid.uuid4())[:16]


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """
    Reuses the client's X-Correlation-ID or generates one, exposes it via
    get_correlation_id() for the duration of the request, and echoes it on
    the response.
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or generate_correlation_id()
        token = correlation_id_var.set(correlation_id)
        try:
            response = await call_next(request)
            response.headers[CORRELATION_HEADER] = correlation_id
            return response
        finally:
            correlation_id_var.reset(token)


class CorrelationIdFilter(logging.Filter):
    """Stamps `record.correlation_id` so formatters can include it ("-" outside requests)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or "-"
        return True
