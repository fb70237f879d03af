"""Rate limiting middleware — Redis fixed-window counters.

Learn: One counter per client IP, per bucket, per minute, stored in
Redis as "keyward:rl:{ip}:{bucket}:{minute}". Credential-accepting
endpoints (/token, /register) share the stricter "auth" bucket so
password guessing is throttled harder than ordinary API traffic.

No Redis connection, no limiting: the middleware steps aside when the
pool was never initialized (e.g. memory-only deployments and tests).
"""

import time
from typing import Callable, Optional

import redis.asyncio as aioredis
import redis.exceptions
import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from keyward.db.redis import get_redis

logger = structlog.get_logger()

AUTH_PATHS = ("/token", "/register")


def _pool_or_none() -> Optional[aioredis.Redis]:
    try:
        return get_redis()
    except RuntimeError:
        return None


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Per-IP requests-per-minute limit, backed by Redis."""

    def __init__(
        self,
        app,
        default_rpm: int = 100,
        auth_rpm: int = 10,
        redis_getter: Callable[[], Optional[aioredis.Redis]] = _pool_or_none,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(app)
        self.default_rpm = default_rpm
        self.auth_rpm = auth_rpm
        self.redis_getter = redis_getter
        self.clock = clock

    async def dispatch(self, request: Request, call_next) -> Response:
        redis_client = self.redis_getter()
        if redis_client is None:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        is_auth = request.url.path in AUTH_PATHS
        rpm = self.auth_rpm if is_auth else self.default_rpm
        bucket = "auth" if is_auth else "api"
        key = f"keyward:rl:{client_ip}:{bucket}:{int(self.clock() // 60)}"

        try:
            count = await redis_client.incr(key)
            if count == 1:
                await redis_client.expire(key, 120)
        except (redis.exceptions.RedisError, OSError) as e:
            # Fail open; the limiter must not take the service down with it
            logger.warning("rate_limit.redis_error", error=str(e))
            return await call_next(request)

        if count > rpm:
            logger.info("rate_limit.exceeded", client_ip=client_ip, bucket=bucket)
            return JSONResponse(
                status_code=429,
                content={"detail": "Rate limit exceeded. Try again later."},
                headers={"Retry-After": "60"},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(rpm)
        response.headers["X-RateLimit-Remaining"] = str(max(0, rpm - count))
        return response
