"""Redis connection pool — rate limiting and the shared token store.

Learn: Redis is optional. With KEYWARD_TOKEN_STORE=memory the app runs
without it and the rate limiter simply steps aside. With
KEYWARD_TOKEN_STORE=redis, token records live here so every app
instance sees the same tokens (and revocations).
"""

from typing import Optional

import redis.asyncio as aioredis

from keyward.config import settings

# Global Redis connection pool (initialized in lifespan)
_redis: Optional[aioredis.Redis] = None


def create_redis(url: Optional[str] = None) -> aioredis.Redis:
    """Build a client without connecting (connection happens on first use)."""
    return aioredis.from_url(
        url or settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )


async def init_redis(url: Optional[str] = None) -> aioredis.Redis:
    """Initialize the Redis connection pool."""
    global _redis
    client = create_redis(url)
    # Verify connection
    await client.ping()
    _redis = client
    return _redis


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis
    if _redis:
        await _redis.aclose()
        _redis = None


def get_redis() -> aioredis.Redis:
    """Get the Redis connection (must be initialized first)."""
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis
