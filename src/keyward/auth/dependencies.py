"""FastAPI auth dependencies.

Learn: These are used as Depends() in route handlers to extract and
validate the caller's identity from the request.

- get_principal: "Authorization: Bearer <token>" → validated Principal
  (also stored on request.state.principal for middleware/logging)
- require_admin: get_principal + the account must hold the admin role

Long-lived collaborators (token service, ceremony engine) are built once
per app in create_app() and read from app.state, so tests can spin up
isolated app instances.
"""

import dataclasses
import uuid
from dataclasses import dataclass
from typing import Optional

import structlog
from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from keyward.auth.rbac import ADMIN_ROLE
from keyward.auth.tokens import TokenService
from keyward.db.engine import get_db
from keyward.errors import AuthError, AuthorizationError, MissingToken
from keyward.services.account_service import AccountService

logger = structlog.get_logger()

_BEARER_CHALLENGE = {"WWW-Authenticate": "Bearer"}


@dataclass(frozen=True)
class Principal:
    """The authenticated caller of one request."""

    account_id: uuid.UUID
    client_id: str
    roles: tuple[str, ...] = ()

    def has_role(self, role: str) -> bool:
        return role in self.roles


def is_admin(principal: Principal) -> bool:
    return principal.has_role(ADMIN_ROLE)


def get_token_service(request: Request) -> TokenService:
    return request.app.state.token_service


def get_account_service(request: Request, db: AsyncSession = Depends(get_db)) -> AccountService:
    return AccountService(db, request.app.state.settings)


def _bearer_token(authorization: Optional[str]) -> str:
    scheme, _, token = (authorization or "").partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token or " " in token:
        raise MissingToken()
    return token


async def get_principal(
    request: Request,
    authorization: Optional[str] = Header(None),
    tokens: TokenService = Depends(get_token_service),
) -> Principal:
    """Resolve the bearer token to a Principal (401 on any failure)."""
    try:
        token = _bearer_token(authorization)
        record = await tokens.validate_token(token)
    except AuthError as e:
        raise HTTPException(
            status_code=e.status_code,
            detail=e.detail,
            headers=_BEARER_CHALLENGE,
        )

    principal = Principal(account_id=uuid.UUID(record.subject), client_id=record.client_id)
    request.state.principal = principal
    return principal


async def require_admin(
    request: Request,
    principal: Principal = Depends(get_principal),
    accounts: AccountService = Depends(get_account_service),
) -> Principal:
    """Gate for admin-only routes (403 unless the account holds 'admin')."""
    roles = await accounts.roles_for(principal.account_id)
    principal = dataclasses.replace(principal, roles=tuple(roles))
    request.state.principal = principal

    if not is_admin(principal):
        logger.info("authz.denied", account_id=str(principal.account_id), path=request.url.path)
        raise HTTPException(
            status_code=AuthorizationError.status_code,
            detail=AuthorizationError.message,
        )
    return principal
