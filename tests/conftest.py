"""Test fixtures — a throwaway SQLite database and a fresh app per test.

Learn: Testing pattern for async SQLAlchemy + FastAPI without a server:

1. Each test gets its own SQLite file (aiosqlite driver) with the schema
   created from the ORM models, so tests never see each other's rows.
2. Each test builds its own app via create_app(), so the in-memory token
   store and ceremony sessions start empty too.
3. get_db is overridden to hand out sessions bound to the test database.
4. httpx's ASGITransport drives the app in-process; no network, no
   lifespan (so no Redis, no background sweeper).

bcrypt runs at cost 4 here: hashing at production cost would make the
suite crawl without testing anything extra.
"""

import os

os.environ.setdefault("KEYWARD_BCRYPT_ROUNDS", "4")
os.environ.setdefault("KEYWARD_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("KEYWARD_JWT_SECRET", "test-secret-0123456789abcdef0123456789abcdef")

import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from keyward.db.engine import get_db  # noqa: E402
from keyward.db.models import Base  # noqa: E402
from keyward.main import create_app  # noqa: E402

CLIENT_ID = "keyward-client"
CLIENT_SECRET = "keyward-secret"
PASSWORD = "correct horse battery"


@pytest_asyncio.fixture()
async def db_engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'keyward.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture()
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    """A session for calling services directly."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture()
async def app(session_factory):
    app = create_app()

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    yield app
    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture()
async def register(client):
    """register(email, password=PASSWORD, name="") → account JSON."""

    async def _register(email: str, password: str = PASSWORD, name: str = "") -> dict:
        r = await client.post(
            "/register", json={"email": email, "password": password, "name": name}
        )
        assert r.status_code == 201, r.text
        return r.json()

    return _register


@pytest_asyncio.fixture()
async def login(client):
    """login(email, password=PASSWORD) → {"Authorization": "Bearer ..."}."""

    async def _login(email: str, password: str = PASSWORD) -> dict:
        r = await client.post(
            "/token",
            data={
                "grant_type": "password",
                "username": email,
                "password": password,
                "client_id": CLIENT_ID,
                "client_secret": CLIENT_SECRET,
            },
        )
        assert r.status_code == 200, r.text
        return {"Authorization": f"Bearer {r.json()['access_token']}"}

    return _login


@pytest_asyncio.fixture()
async def grant(session_factory):
    """grant(account_id, role) — role grant straight through the service."""
    import uuid

    from keyward.services.account_service import AccountService

    async def _grant(account_id: str, role: str) -> None:
        async with session_factory() as session:
            await AccountService(session).grant_role(uuid.UUID(account_id), role)

    return _grant
