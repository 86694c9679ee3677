"""
HTTP request logging middleware.

Logs every request with method, path, status code, duration and, for
payment calls, the idempotency key the client sent.
"""

import secrets
import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.stdlib.get_logger("http")


def new_request_id() -> str:
    return f"{int(time.time() * 1000):x}{secrets.token_hex(3)}"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Bind a request id for downstream logs and log the finished request."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("x-request-id") or new_request_id()
        idempotency_key = request.headers.get("idempotency-key")

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)
        if idempotency_key:
            structlog.contextvars.bind_contextvars(idempotency_key=idempotency_key)

        start = time.perf_counter()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["x-request-id"] = request_id
            return response
        finally:
            duration_ms = round((time.perf_counter() - start) * 1000, 1)

            log = logger.info if status_code < 400 else logger.warning
            if status_code >= 500:
                log = logger.error

            log(
                "http_request",
                method=request.method,
                path=request.url.path,
                status=status_code,
                duration_ms=duration_ms,
                client=request.client.host if request.client else None,
            )
