"""Health check endpoint.

Learn: Verifies the server is running and its dependencies are
reachable. Redis is only reported when something actually uses it
(the redis token store, or a rate limiter connected at startup).
"""

import redis.exceptions
from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from keyward import __version__
from keyward.db import redis as redis_pool
from keyward.db.engine import get_db

router = APIRouter()


@router.get("/health")
async def health_check(request: Request, db: AsyncSession = Depends(get_db)):
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except SQLAlchemyError as e:
        checks["database"] = f"error: {type(e).__name__}"

    client = getattr(request.app.state, "redis", None)
    if client is None:
        try:
            client = redis_pool.get_redis()
        except RuntimeError:
            client = None
    if client is not None:
        try:
            await client.ping()
            checks["redis"] = "ok"
        except (redis.exceptions.RedisError, OSError) as e:
            checks["redis"] = f"error: {type(e).__name__}"

    status = "healthy" if all(
        v == "ok" for k, v in checks.items() if k != "version"
    ) else "degraded"

    return {"status": status, **checks}
