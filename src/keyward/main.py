"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. The stateful collaborators (token service, ceremony sessions,
WebAuthn engine) are built here and hung on app.state, so every app
instance owns its own, and tests get a clean set per app.
Lifespan manages startup/shutdown (Redis, the session sweeper, the
database pool).
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import Optional

import redis.exceptions
import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from keyward import __version__
from keyward.api import api_router
from keyward.auth.tokens import MemoryTokenStore, RedisTokenStore, TokenService
from keyward.config import Settings, settings as default_settings
from keyward.db.engine import create_db_engine, create_session_factory, engine as db_engine
from keyward.db.redis import close_redis, create_redis, init_redis
from keyward.webauthn.ceremony import CeremonyEngine
from keyward.webauthn.sessions import SessionBinder, SessionSweeper

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs
    at shutdown.
    """
    settings: Settings = app.state.settings
    logger.info(
        "keyward.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
        token_store=settings.token_store,
    )

    # Redis backs the rate limiter; optional unless it also holds tokens
    try:
        await init_redis(settings.redis_url)
        logger.info("keyward.redis_connected", url=settings.redis_url)
    except (redis.exceptions.RedisError, OSError) as e:
        if settings.token_store == "redis":
            raise
        logger.warning("keyward.redis_unavailable", error=str(e))

    sweeper = SessionSweeper(
        app.state.session_binder,
        interval=settings.ceremony_sweep_seconds,
        tokens=app.state.token_service,
    )
    sweep_task = asyncio.create_task(sweeper.run_loop())

    yield

    logger.info("keyward.shutdown")

    sweeper.stop()
    sweep_task.cancel()
    try:
        await sweep_task
    except asyncio.CancelledError:
        pass

    await close_redis()
    token_redis = getattr(app.state, "redis", None)
    if token_redis is not None:
        await token_redis.aclose()

    await app.state.db_engine.dispose()


def build_token_service(settings: Settings, app: Optional[FastAPI] = None) -> TokenService:
    if settings.token_store == "redis":
        client = create_redis(settings.redis_url)
        if app is not None:
            app.state.redis = client
        store = RedisTokenStore(client)
    else:
        store = MemoryTokenStore()
    return TokenService(
        store=store,
        clients=settings.oauth_clients,
        secret=settings.jwt_secret,
        algorithm=settings.jwt_algorithm,
        ttl=timedelta(minutes=settings.access_token_expire_minutes),
    )


async def _invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.info("http.invalid_request", path=request.url.path, errors=len(exc.errors()))
    return JSONResponse(status_code=400, content={"detail": "Invalid request"})


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build and return the FastAPI application."""
    settings = settings or default_settings
    app = FastAPI(
        title="Keyward",
        description="Accounts, OAuth2 password-grant tokens, and WebAuthn passkey registration",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.db_engine = db_engine if settings is default_settings else create_db_engine(settings)
    app.state.session_factory = create_session_factory(app.state.db_engine)
    app.state.redis = None
    app.state.token_service = build_token_service(settings, app)
    app.state.session_binder = SessionBinder(ttl=timedelta(seconds=settings.ceremony_ttl_seconds))
    app.state.ceremony_engine = CeremonyEngine(
        app.state.session_binder,
        rp_id=settings.webauthn_rp_id,
        rp_name=settings.webauthn_rp_name,
        origins=settings.webauthn_origins,
    )

    # Malformed bodies are a client error like any other: 400, not 422
    app.add_exception_handler(RequestValidationError, _invalid_request)

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: CORS → RateLimit → Security → RequestId → handler

    from keyward.middleware.rate_limit import RateLimitMiddleware
    from keyward.middleware.request_id import RequestIdMiddleware
    from keyward.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        default_rpm=settings.rate_limit_rpm,
        auth_rpm=settings.rate_limit_auth_rpm,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-WebAuthn-Session", "X-Request-ID"],
    )

    app.include_router(api_router)
    return app


# Default app instance (used by uvicorn: keyward.main:app)
app = create_app()
