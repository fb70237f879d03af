"""Request ID + access log middleware.

Learn: Every request gets an ID, either taken from an incoming
X-Request-ID header (so a gateway's trace id carries through) or
freshly generated. It is bound into structlog's contextvars, so every
log line written while handling the request carries it, and echoed back
in the response header.

One "http.request" line is logged per request with method, path,
status and duration. Authorization headers and bodies are never logged.
"""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger()

_MAX_INCOMING_ID = 128


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Propagate a per-request ID and write the access log line."""

    async def dispatch(self, request: Request, call_next) -> Response:
        incoming = request.headers.get("X-Request-ID", "")
        request_id = incoming if 0 < len(incoming) <= _MAX_INCOMING_ID else uuid.uuid4().hex

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        started = time.perf_counter()
        response: Response = await call_next(request)
        logger.info(
            "http.request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        response.headers["X-Request-ID"] = request_id
        return response
