"""
Per-request context: correlation id propagation into structlog.
"""

import uuid
from contextvars import ContextVar

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response
import structlog


CORRELATION_HEADER = "X-Correlation-ID"

correlation_id_ctx: ContextVar[str] = ContextVar("correlation_id", default="")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """
    Reuses the caller's X-Correlation-ID (or generates one), binds it with the
    request path and method into the structlog context, and echoes it back.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        correlation_id_ctx.set(correlation_id)

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            correlation_id=correlation_id,
            request_path=request.url.path,
            request_method=request.method,
        )

        response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response


def get_correlation_id() -> str:
    """Correlation id of the current request, or "" outside a request."""
    return correlation_id_ctx.get()


def bind_resource(resource_type: str, resource_id: str = None) -> None:
    """Attach the resource being worked on to every subsequent log line."""
    values = {"resource_type": resource_type}
    if resource_id is not None:
        values["resource_id"] = resource_id
    structlog.contextvars.bind_contextvars(**values)
