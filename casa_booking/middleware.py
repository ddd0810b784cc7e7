"""
FastAPI middleware for request tracing and correlation.

Every request gets a unique ID that is bound into the structlog context, so
all log lines emitted while handling it carry ``request_id``.
"""

from __future__ import annotations

import uuid
from typing import Awaitable, Callable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

REQUEST_ID_HEADER = "X-Request-ID"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add unique request IDs to each HTTP request.

    An incoming ``X-Request-ID`` header (set by the hosting platform's edge)
    is reused; otherwise a UUID is generated. The ID is:
    1. Stored in request.state.request_id for route handlers
    2. Bound to structlog contextvars for the lifetime of the request
    3. Echoed back as the X-Request-ID response header

    Example:
        >>> app.add_middleware(RequestIDMiddleware)
        >>> # Response headers will include:
        >>> # X-Request-ID: 550e8400-e29b-41d4-a716-446655440000
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id

        structlog.contextvars.bind_contextvars(request_id=request_id)
        try:
            response = await call_next(request)
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

        response.headers[REQUEST_ID_HEADER] = request_id
        return response
