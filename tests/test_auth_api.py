"""Auth API tests — register, token (password grant), revoke, profile.

Learn: Tests cover:
1. Registration + duplicate / empty-field / malformed-body rejection
2. POST /token in OAuth2 wire format (form body, Basic or form client auth)
3. Every OAuth2 error code the endpoint can return
4. Bearer-token access to /profile, revocation, expiry
"""

import base64
from datetime import timedelta

import pytest

from conftest import CLIENT_ID, CLIENT_SECRET, PASSWORD


def _form(username, password, **extra):
    return {
        "grant_type": "password",
        "username": username,
        "password": password,
        "client_id": CLIENT_ID,
        "client_secret": CLIENT_SECRET,
        **extra,
    }


# ═══════════════════════════════════════════════════════════
# Registration
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_register(client):
    r = await client.post(
        "/register",
        json={"email": "alice@example.com", "password": "pw-alice", "name": "Alice"},
    )
    assert r.status_code == 201
    account = r.json()
    assert account["email"] == "alice@example.com"
    assert account["name"] == "Alice"
    assert "id" in account
    assert "password" not in account and "password_hash" not in account


@pytest.mark.asyncio
async def test_register_duplicate(client, register):
    await register("dup@example.com")

    r = await client.post("/register", json={"email": "dup@example.com", "password": "other"})
    assert r.status_code == 409
    assert r.json()["detail"] == "User already exists"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "body",
    [
        {"email": "", "password": "pw"},
        {"email": "x@example.com", "password": ""},
        {"email": "x@example.com"},
        {"password": "pw"},
    ],
)
async def test_register_missing_fields(client, body):
    r = await client.post("/register", json=body)
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_register_malformed_json(client):
    r = await client.post(
        "/register", content=b"{not json", headers={"Content-Type": "application/json"}
    )
    assert r.status_code == 400


# ═══════════════════════════════════════════════════════════
# Token
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_token(client, register):
    await register("bob@example.com")

    r = await client.post("/token", data=_form("bob@example.com", PASSWORD))
    assert r.status_code == 200
    body = r.json()
    assert body["token_type"] == "Bearer"
    assert body["expires_in"] == 7200
    assert body["access_token"]
    assert r.headers["Cache-Control"] == "no-store"


@pytest.mark.asyncio
async def test_token_with_basic_client_auth(client, register):
    await register("basic@example.com")
    basic = base64.b64encode(f"{CLIENT_ID}:{CLIENT_SECRET}".encode()).decode()

    r = await client.post(
        "/token",
        data={"grant_type": "password", "username": "basic@example.com", "password": PASSWORD},
        headers={"Authorization": f"Basic {basic}"},
    )
    assert r.status_code == 200


@pytest.mark.asyncio
async def test_token_wrong_password(client, register):
    await register("carol@example.com")

    r = await client.post("/token", data=_form("carol@example.com", "wrong"))
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_grant"


@pytest.mark.asyncio
async def test_token_unknown_user(client):
    r = await client.post("/token", data=_form("nobody@example.com", PASSWORD))
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_grant"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "client_id, client_secret",
    [(CLIENT_ID, "wrong"), ("unknown-client", CLIENT_SECRET), ("", "")],
)
async def test_token_invalid_client(client, register, client_id, client_secret):
    await register("dan@example.com")

    r = await client.post(
        "/token",
        data=_form("dan@example.com", PASSWORD, client_id=client_id, client_secret=client_secret),
    )
    assert r.status_code == 401
    assert r.json()["error"] == "invalid_client"


@pytest.mark.asyncio
async def test_token_unsupported_grant(client):
    r = await client.post("/token", data=_form("x@example.com", "pw", grant_type="client_credentials"))
    assert r.status_code == 400
    assert r.json()["error"] == "unsupported_grant_type"


@pytest.mark.asyncio
async def test_token_missing_username(client):
    r = await client.post(
        "/token",
        data={"grant_type": "password", "client_id": CLIENT_ID, "client_secret": CLIENT_SECRET},
    )
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_request"


# ═══════════════════════════════════════════════════════════
# Profile
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_profile(client, register, login):
    account = await register("erin@example.com", name="Erin")
    headers = await login("erin@example.com")

    r = await client.get("/profile", headers=headers)
    assert r.status_code == 200
    assert r.json()["id"] == account["id"]
    assert r.json()["name"] == "Erin"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "authorization",
    [None, "", "Bearer", "Bearer ", "Basic abc", "Bearer not-a-token"],
)
async def test_profile_requires_valid_bearer(client, authorization):
    headers = {"Authorization": authorization} if authorization is not None else {}
    r = await client.get("/profile", headers=headers)
    assert r.status_code == 401
    assert r.headers["WWW-Authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_update_profile(client, register, login):
    await register("fay@example.com", name="Fay")
    headers = await login("fay@example.com")

    r = await client.put("/profile", json={"name": "Fay Updated"}, headers=headers)
    assert r.status_code == 200
    assert r.json()["name"] == "Fay Updated"

    r = await client.get("/profile", headers=headers)
    assert r.json()["name"] == "Fay Updated"


@pytest.mark.asyncio
async def test_update_profile_bad_body(client, register, login):
    await register("gil@example.com")
    headers = await login("gil@example.com")

    r = await client.put("/profile", json={"nickname": "x"}, headers=headers)
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_profile_of_deleted_account(client, register, login, grant):
    victim = await register("gone@example.com")
    victim_headers = await login("gone@example.com")
    admin = await register("root@example.com")
    await grant(admin["id"], "admin")
    admin_headers = await login("root@example.com")

    r = await client.delete(f"/users/{victim['id']}", headers=admin_headers)
    assert r.status_code == 200

    r = await client.get("/profile", headers=victim_headers)
    assert r.status_code == 404


# ═══════════════════════════════════════════════════════════
# Revocation / expiry
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_revoke(client, register, login):
    await register("hal@example.com")
    headers = await login("hal@example.com")
    token = headers["Authorization"].split(" ", 1)[1]

    r = await client.post(
        "/revoke",
        data={"token": token, "client_id": CLIENT_ID, "client_secret": CLIENT_SECRET},
    )
    assert r.status_code == 200

    r = await client.get("/profile", headers=headers)
    assert r.status_code == 401

    # Revoking again (or revoking garbage) is still 200
    r = await client.post(
        "/revoke",
        data={"token": "garbage", "client_id": CLIENT_ID, "client_secret": CLIENT_SECRET},
    )
    assert r.status_code == 200


@pytest.mark.asyncio
async def test_revoke_requires_client_auth(client):
    r = await client.post("/revoke", data={"token": "x", "client_id": CLIENT_ID})
    assert r.status_code == 401
    assert r.json()["error"] == "invalid_client"


@pytest.mark.asyncio
async def test_expired_token(app, client, register, login):
    await register("ivy@example.com")
    headers = await login("ivy@example.com")

    tokens = app.state.token_service
    real_clock = tokens.clock
    tokens.clock = lambda: real_clock() + timedelta(hours=3)

    r = await client.get("/profile", headers=headers)
    assert r.status_code == 401
    assert r.json()["detail"] == "Token has expired"
