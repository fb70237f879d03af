"""Account service — the user directory.

Learn: Owns account records and password hashes. Routes and the CLI both
go through this class, so validation, hashing and role grants live in
one place.

bcrypt is deliberately slow, so hashing runs in a worker thread
(asyncio.to_thread) and never stalls other requests on the event loop.
"""

import asyncio
import uuid
from typing import Optional

import structlog
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from keyward.auth.password import (
    dummy_hash,
    hash_password,
    needs_rehash,
    verify_password,
)
from keyward.auth.rbac import ADMIN_ROLE, DEFAULT_ROLES
from keyward.config import Settings, settings as default_settings
from keyward.db.models import Account, AccountRole, Credential, Role
from keyward.errors import AuthFailed, ConflictError, NotFoundError, ValidationError

logger = structlog.get_logger()


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class AccountService:
    """Business logic for accounts and role grants."""

    def __init__(
        self,
        db: AsyncSession,
        settings: Optional[Settings] = None,
        bcrypt_rounds: Optional[int] = None,
    ):
        self.db = db
        self.settings = settings or default_settings
        self.rounds = bcrypt_rounds or self.settings.bcrypt_rounds

    # ─── Registration / authentication ──────────────────

    async def create_account(self, email: str, password: str, name: str = "") -> uuid.UUID:
        """Create an account and return its id.

        Raises ValidationError on empty email/password, ConflictError if
        the email is already registered.
        """
        email = normalize_email(email)
        if not email or not password:
            raise ValidationError("Email and password required")

        password_hash = await asyncio.to_thread(hash_password, password, self.rounds)
        account = Account(email=email, password_hash=password_hash, name=(name or "").strip())
        self.db.add(account)
        try:
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError("User already exists")

        if email in {normalize_email(e) for e in self.settings.admin_emails}:
            await self._grant(account.id, ADMIN_ROLE)

        await self.db.commit()
        logger.info("account.created", account_id=str(account.id))
        return account.id

    async def authenticate(self, email: str, password: str) -> uuid.UUID:
        """Return the account id for valid credentials, else raise AuthFailed.

        Learn: An unknown email still pays for one bcrypt comparison
        (against a dummy hash) and raises the exact same error, so callers
        can't tell "no such account" from "wrong password".
        """
        account = await self.get_account_by_email(email)

        if account is None:
            await asyncio.to_thread(verify_password, password or "", dummy_hash(self.rounds))
            raise AuthFailed()

        ok = await asyncio.to_thread(verify_password, password or "", account.password_hash)
        if not ok:
            raise AuthFailed()

        if needs_rehash(account.password_hash, self.rounds):
            account.password_hash = await asyncio.to_thread(
                hash_password, password, self.rounds
            )
            await self.db.commit()
            logger.info("account.password_rehashed", account_id=str(account.id))

        return account.id

    # ─── Lookup / profile ───────────────────────────────

    async def get_account(self, account_id: uuid.UUID) -> Account:
        account = await self.db.get(Account, account_id)
        if account is None:
            raise NotFoundError("User not found")
        return account

    async def get_account_by_email(self, email: str) -> Account | None:
        result = await self.db.execute(
            select(Account).where(Account.email == normalize_email(email))
        )
        return result.scalars().first()

    async def list_accounts(self) -> list[Account]:
        result = await self.db.execute(
            select(Account).order_by(Account.created_at, Account.email)
        )
        return list(result.scalars().all())

    async def update_name(self, account_id: uuid.UUID, name: str) -> Account:
        account = await self.get_account(account_id)
        account.name = name.strip()
        await self.db.commit()
        return account

    async def set_password(self, account_id: uuid.UUID, password: str) -> None:
        if not password:
            raise ValidationError("Password required")
        account = await self.get_account(account_id)
        account.password_hash = await asyncio.to_thread(hash_password, password, self.rounds)
        await self.db.commit()

    async def delete_account(self, account_id: uuid.UUID) -> None:
        """Delete an account together with its credentials and role grants."""
        account = await self.get_account(account_id)
        await self.db.execute(delete(Credential).where(Credential.account_id == account_id))
        await self.db.execute(delete(AccountRole).where(AccountRole.account_id == account_id))
        await self.db.delete(account)
        await self.db.commit()
        logger.info("account.deleted", account_id=str(account_id))

    # ─── Roles ──────────────────────────────────────────

    async def roles_for(self, account_id: uuid.UUID) -> list[str]:
        result = await self.db.execute(
            select(AccountRole.role)
            .where(AccountRole.account_id == account_id)
            .order_by(AccountRole.role)
        )
        return list(result.scalars().all())

    async def grant_role(self, account_id: uuid.UUID, role: str) -> None:
        await self.get_account(account_id)
        await self._grant(account_id, role)
        await self.db.commit()
        logger.info("account.role_granted", account_id=str(account_id), role=role)

    async def revoke_role(self, account_id: uuid.UUID, role: str) -> None:
        await self.db.execute(
            delete(AccountRole).where(
                AccountRole.account_id == account_id, AccountRole.role == role
            )
        )
        await self.db.commit()
        logger.info("account.role_revoked", account_id=str(account_id), role=role)

    async def _grant(self, account_id: uuid.UUID, role: str) -> None:
        """Add a role grant without committing. Idempotent."""
        if await self.db.get(Role, role) is None:
            if role not in DEFAULT_ROLES:
                raise NotFoundError(f"Unknown role: {role}")
            self.db.add(Role(name=role, description=DEFAULT_ROLES[role]))
            await self.db.flush()

        existing = await self.db.execute(
            select(AccountRole).where(
                AccountRole.account_id == account_id, AccountRole.role == role
            )
        )
        if existing.scalars().first() is None:
            self.db.add(AccountRole(account_id=account_id, role=role))
            await self.db.flush()
