"""Auth API — registration, token issuance, profile.

Learn: Routes for account authentication:
- POST /register → create a new account
- POST /token → OAuth2 resource-owner password grant → bearer token
- POST /revoke → revoke a bearer token (RFC 7009)
- GET /profile → current account
- PUT /profile → change display name

/token and /revoke speak OAuth2 wire format: form-encoded input, client
credentials in the form or via HTTP Basic, errors as
{"error": ..., "error_description": ...}.
"""

import base64
import binascii
from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Form, Header, HTTPException
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from keyward.auth.dependencies import (
    Principal,
    get_account_service,
    get_principal,
    get_token_service,
)
from keyward.auth.tokens import TokenService
from keyward.errors import AuthFailed, InvalidClient, KeywardError
from keyward.schemas.account import (
    AccountRead,
    ProfileUpdate,
    RegisterRequest,
    TokenResponse,
)
from keyward.services.account_service import AccountService

logger = structlog.get_logger()

router = APIRouter()

_NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def _oauth_error(status_code: int, error: str, description: str) -> JSONResponse:
    headers = dict(_NO_STORE)
    if status_code == 401:
        headers["WWW-Authenticate"] = 'Basic realm="keyward"'
    return JSONResponse(
        status_code=status_code,
        content={"error": error, "error_description": description},
        headers=headers,
    )


def _client_credentials(
    authorization: Optional[str],
    client_id: Optional[str],
    client_secret: Optional[str],
) -> tuple[str, str]:
    """Client credentials from HTTP Basic auth, falling back to form fields."""
    scheme, _, encoded = (authorization or "").partition(" ")
    if scheme.lower() == "basic" and encoded:
        try:
            decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            raise InvalidClient()
        basic_id, sep, basic_secret = decoded.partition(":")
        if not sep:
            raise InvalidClient()
        return basic_id, basic_secret
    return client_id or "", client_secret or ""


# ─── Register ────────────────────────────────────────────


@router.post("/register", response_model=AccountRead, status_code=201)
async def register(body: RegisterRequest, svc: AccountService = Depends(get_account_service)):
    """Create a new account."""
    try:
        account_id = await svc.create_account(body.email, body.password, body.name)
        return await svc.get_account(account_id)
    except KeywardError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


# ─── Token (password grant) ──────────────────────────────


@router.post("/token", response_model=TokenResponse)
async def token(
    grant_type: Optional[str] = Form(None),
    username: Optional[str] = Form(None),
    password: Optional[str] = Form(None),
    client_id: Optional[str] = Form(None),
    client_secret: Optional[str] = Form(None),
    authorization: Optional[str] = Header(None),
    svc: AccountService = Depends(get_account_service),
    tokens: TokenService = Depends(get_token_service),
):
    """Exchange username (email) + password for a bearer token."""
    try:
        cid, secret = _client_credentials(authorization, client_id, client_secret)
        tokens.verify_client(cid, secret)
    except InvalidClient:
        return _oauth_error(401, "invalid_client", "Client authentication failed")

    if grant_type != "password":
        return _oauth_error(400, "unsupported_grant_type", "Only the password grant is supported")
    if not username or not password:
        return _oauth_error(400, "invalid_request", "username and password are required")

    try:
        account_id = await svc.authenticate(username, password)
    except AuthFailed:
        logger.info("token.denied", client_id=cid)
        return _oauth_error(400, "invalid_grant", "Invalid username or password")

    issued = await tokens.issue_token(account_id, cid)
    return JSONResponse(
        content=TokenResponse(
            access_token=issued.token,
            token_type="Bearer",
            expires_in=issued.expires_in,
        ).model_dump(),
        headers=_NO_STORE,
    )


@router.post("/revoke")
async def revoke(
    token: Optional[str] = Form(None),
    client_id: Optional[str] = Form(None),
    client_secret: Optional[str] = Form(None),
    authorization: Optional[str] = Header(None),
    tokens: TokenService = Depends(get_token_service),
):
    """Revoke an access token. Unknown tokens are not an error (RFC 7009)."""
    try:
        cid, secret = _client_credentials(authorization, client_id, client_secret)
        tokens.verify_client(cid, secret)
    except InvalidClient:
        return _oauth_error(401, "invalid_client", "Client authentication failed")

    if not token:
        return _oauth_error(400, "invalid_request", "token is required")

    await tokens.revoke_token(token)
    return {}


# ─── Profile ─────────────────────────────────────────────


@router.get("/profile", response_model=AccountRead)
async def get_profile(
    principal: Principal = Depends(get_principal),
    svc: AccountService = Depends(get_account_service),
):
    """Get the current account."""
    try:
        return await svc.get_account(principal.account_id)
    except KeywardError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.put("/profile", response_model=AccountRead)
async def update_profile(
    body: ProfileUpdate,
    principal: Principal = Depends(get_principal),
    svc: AccountService = Depends(get_account_service),
):
    """Update the current account's display name."""
    try:
        return await svc.update_name(principal.account_id, body.name)
    except KeywardError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    except SQLAlchemyError:
        logger.exception("profile.update_failed", account_id=str(principal.account_id))
        raise HTTPException(status_code=500, detail="Database error")
