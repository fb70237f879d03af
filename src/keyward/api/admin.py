"""Admin API — account management, role and permission listings.

Learn: Every route here sits behind require_admin, applied once at the
router level in api/__init__.py. Non-admin principals get 403 before
any handler runs.
"""

import uuid

import structlog
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import SQLAlchemyError

from keyward.auth.dependencies import get_account_service
from keyward.auth.rbac import DEFAULT_ROLES, PERMISSIONS
from keyward.errors import KeywardError, NotFoundError
from keyward.schemas.account import AccountRead
from keyward.services.account_service import AccountService

logger = structlog.get_logger()

router = APIRouter()


def _parse_id(account_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(account_id)
    except ValueError:
        raise HTTPException(status_code=404, detail=NotFoundError("User not found").detail)


# ─── Users ───────────────────────────────────────────────


@router.get("/users", response_model=list[AccountRead])
async def list_users(svc: AccountService = Depends(get_account_service)):
    try:
        return await svc.list_accounts()
    except SQLAlchemyError:
        logger.exception("admin.list_users_failed")
        raise HTTPException(status_code=500, detail="Database error")


@router.get("/users/{account_id}", response_model=AccountRead)
async def get_user(account_id: str, svc: AccountService = Depends(get_account_service)):
    try:
        return await svc.get_account(_parse_id(account_id))
    except KeywardError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)


@router.delete("/users/{account_id}")
async def delete_user(account_id: str, svc: AccountService = Depends(get_account_service)):
    """Delete an account and everything it owns (credentials, role grants)."""
    try:
        await svc.delete_account(_parse_id(account_id))
    except KeywardError as e:
        raise HTTPException(status_code=e.status_code, detail=e.detail)
    except SQLAlchemyError:
        logger.exception("admin.delete_user_failed", account_id=account_id)
        raise HTTPException(status_code=500, detail="Database error")
    return {"deleted": True}


# ─── Roles / permissions ─────────────────────────────────


@router.get("/roles", response_model=list[str])
async def list_roles():
    return list(DEFAULT_ROLES)


@router.get("/permissions", response_model=list[str])
async def list_permissions():
    return list(PERMISSIONS)
