"""Security headers middleware.

Learn: This service only ever answers with JSON, so the headers can be
strict:
- X-Content-Type-Options: nosniff, no MIME-type guessing
- X-Frame-Options / frame-ancestors: never framed
- Content-Security-Policy: default-src 'none', nothing may load
- Referrer-Policy: no referrer leaves the origin
- Cache-Control: no-store on everything that carries identity data
- Strict-Transport-Security: only when the request came in over HTTPS
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

_CACHEABLE_PATHS = ("/health",)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Add security headers to all responses."""

    async def dispatch(self, request: Request, call_next) -> Response:
        response: Response = await call_next(request)
        headers = response.headers
        headers["X-Content-Type-Options"] = "nosniff"
        headers["X-Frame-Options"] = "DENY"
        headers["Content-Security-Policy"] = "default-src 'none'; frame-ancestors 'none'"
        headers["Referrer-Policy"] = "no-referrer"
        if request.url.path not in _CACHEABLE_PATHS:
            headers.setdefault("Cache-Control", "no-store")
        if request.url.scheme == "https":
            headers["Strict-Transport-Security"] = "max-age=31536000; includeSubDomains"
        return response
