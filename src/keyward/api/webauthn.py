"""WebAuthn API — passkey registration and management.

Learn: Registration is two calls:
- POST /webauthn/register/begin → creation options for
  navigator.credentials.create(), plus a session reference in the
  X-WebAuthn-Session header (and an HttpOnly cookie, for browsers)
- POST /webauthn/register/finish → the authenticator's attestation
  response as JSON body, session reference echoed back

The reference is just a random key into server-side state; nothing the
client returns is trusted beyond picking which session to resolve.
"""

import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, Cookie, Depends, Header, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from keyward.auth.dependencies import Principal, get_account_service, get_principal
from keyward.db.engine import get_db
from keyward.errors import KeywardError
from keyward.schemas.webauthn import CredentialRead
from keyward.services.account_service import AccountService
from keyward.services.credential_service import CredentialService
from keyward.webauthn.ceremony import CeremonyEngine

logger = structlog.get_logger()

router = APIRouter(prefix="/webauthn")

SESSION_HEADER = "X-WebAuthn-Session"
SESSION_COOKIE = "webauthn_session"


def get_ceremony_engine(request: Request) -> CeremonyEngine:
    return request.app.state.ceremony_engine


# ─── Registration ────────────────────────────────────────


@router.post("/register/begin")
async def register_begin(
    principal: Principal = Depends(get_principal),
    accounts: AccountService = Depends(get_account_service),
    db: AsyncSession = Depends(get_db),
    engine: CeremonyEngine = Depends(get_ceremony_engine),
):
    """Start passkey registration for the calling account."""
    try:
        account = await accounts.get_account(principal.account_id)
    except KeywardError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)

    existing = await CredentialService(db).load_credentials(account.id)
    options, reference = engine.begin_registration(account.id, account, existing)

    response = JSONResponse(content=options, headers={SESSION_HEADER: reference})
    response.set_cookie(
        SESSION_COOKIE,
        reference,
        max_age=int(engine.binder.ttl.total_seconds()),
        httponly=True,
        samesite="strict",
        path="/webauthn",
    )
    return response


@router.post("/register/finish", response_model=CredentialRead)
async def register_finish(
    request: Request,
    name: str = Query(default="", max_length=100),
    session_header: Optional[str] = Header(None, alias=SESSION_HEADER),
    session_cookie: Optional[str] = Cookie(None, alias=SESSION_COOKIE),
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
    engine: CeremonyEngine = Depends(get_ceremony_engine),
):
    """Verify the attestation response and store the new passkey."""
    reference = session_header or session_cookie or ""
    try:
        credential = await engine.finish_registration(
            reference,
            principal.account_id,
            await request.body(),
            CredentialService(db),
            name=name,
        )
    except KeywardError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    except SQLAlchemyError:
        logger.exception("webauthn.store_failed", account_id=str(principal.account_id))
        raise HTTPException(status_code=500, detail="Database error")

    response = JSONResponse(
        content=CredentialRead.model_validate(credential).model_dump(mode="json")
    )
    response.delete_cookie(SESSION_COOKIE, path="/webauthn")
    return response


# ─── Stored passkeys ─────────────────────────────────────


@router.get("/credentials", response_model=list[CredentialRead])
async def list_credentials(
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    return await CredentialService(db).load_credentials(principal.account_id)


@router.delete("/credentials/{credential_id}")
async def delete_credential(
    credential_id: str,
    principal: Principal = Depends(get_principal),
    db: AsyncSession = Depends(get_db),
):
    try:
        await CredentialService(db).delete_credential(
            principal.account_id, uuid.UUID(credential_id)
        )
    except ValueError:
        raise HTTPException(status_code=404, detail="Credential not found")
    except KeywardError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    return {"deleted": True}
