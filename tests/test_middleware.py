"""Tests for middleware — security headers, request IDs, rate limiting.

Learn: No Redis runs during tests, so the app's own rate limiter steps
aside. The limiter itself is tested on a bare Starlette app with an
in-test counter store standing in for Redis.
"""

import pytest
from httpx import ASGITransport, AsyncClient
from starlette.applications import Starlette
from starlette.responses import PlainTextResponse
from starlette.routing import Route

from keyward.middleware.rate_limit import RateLimitMiddleware


# ═══════════════════════════════════════════════════════════
# Security headers
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_security_headers(client):
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.headers["X-Content-Type-Options"] == "nosniff"
    assert r.headers["X-Frame-Options"] == "DENY"
    assert r.headers["Content-Security-Policy"] == "default-src 'none'; frame-ancestors 'none'"
    assert r.headers["Referrer-Policy"] == "no-referrer"


@pytest.mark.asyncio
async def test_no_store_on_identity_responses(client):
    r = await client.get("/profile")
    assert r.headers["Cache-Control"] == "no-store"

    r = await client.get("/health")
    assert "Cache-Control" not in r.headers


@pytest.mark.asyncio
async def test_no_hsts_on_http(client):
    r = await client.get("/health")
    assert "Strict-Transport-Security" not in r.headers


# ═══════════════════════════════════════════════════════════
# Request IDs
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_request_id_generated(client):
    r1 = await client.get("/health")
    r2 = await client.get("/health")
    assert r1.headers["X-Request-ID"] != r2.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_request_id_propagated(client):
    r = await client.get("/health", headers={"X-Request-ID": "trace-12345"})
    assert r.headers["X-Request-ID"] == "trace-12345"


@pytest.mark.asyncio
async def test_oversized_request_id_replaced(client):
    r = await client.get("/health", headers={"X-Request-ID": "x" * 500})
    assert r.headers["X-Request-ID"] != "x" * 500


# ═══════════════════════════════════════════════════════════
# Validation errors
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_validation_errors_are_400(client):
    r = await client.post("/register", json={"email": 42})
    assert r.status_code == 400
    assert r.json() == {"detail": "Invalid request"}


# ═══════════════════════════════════════════════════════════
# Rate limiting
# ═══════════════════════════════════════════════════════════


class CounterStore:
    def __init__(self):
        self.counts: dict[str, int] = {}
        self.expiries: dict[str, int] = {}

    async def incr(self, key):
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key]

    async def expire(self, key, seconds):
        self.expiries[key] = seconds


def _limited_app(store, **kwargs):
    async def ok(request):
        return PlainTextResponse("ok")

    app = Starlette(routes=[
        Route("/token", ok, methods=["POST"]),
        Route("/profile", ok),
    ])
    app.add_middleware(
        RateLimitMiddleware, redis_getter=lambda: store, clock=lambda: 600.0, **kwargs
    )
    return app


@pytest.mark.asyncio
async def test_rate_limit_auth_bucket():
    store = CounterStore()
    app = _limited_app(store, default_rpm=100, auth_rpm=2)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        assert (await c.post("/token")).status_code == 200
        r = await c.post("/token")
        assert r.status_code == 200
        assert r.headers["X-RateLimit-Remaining"] == "0"

        r = await c.post("/token")
        assert r.status_code == 429
        assert r.headers["Retry-After"] == "60"

        # Other paths use their own, larger bucket
        assert (await c.get("/profile")).status_code == 200

    assert set(store.expiries.values()) == {120}


@pytest.mark.asyncio
async def test_rate_limit_skipped_without_redis():
    app = _limited_app(None, auth_rpm=0)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        r = await c.post("/token")
    assert r.status_code == 200
    assert "X-RateLimit-Limit" not in r.headers
