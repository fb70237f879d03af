"""Credential service — persistence for WebAuthn public-key credentials.

Learn: Two write paths, both a single SQL statement so concurrent
requests can't lose each other's updates:

1. store_credential → INSERT ... ON CONFLICT (account_id, credential_id)
   DO UPDATE. Registering the same authenticator twice leaves one row.
2. record_authentication → UPDATE with CASE expressions that only move
   sign_count forward and raise clone_warning on a regression.
"""

import uuid
from dataclasses import dataclass, field

import structlog
from sqlalchemy import and_, case, delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from keyward.db.models import Attachment, Credential, utcnow
from keyward.errors import InternalError, NotFoundError

logger = structlog.get_logger()

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


@dataclass
class CredentialRecord:
    """A verified credential, ready to be persisted."""

    credential_id: bytes
    public_key: bytes
    attestation_type: str = "none"
    transports: list[str] = field(default_factory=list)
    sign_count: int = 0
    aaguid: bytes = bytes(16)
    attachment: Attachment = Attachment.UNSPECIFIED
    clone_warning: bool = False
    name: str = ""


class CredentialService:
    """Loads and upserts an account's WebAuthn credentials."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def load_credentials(self, account_id: uuid.UUID) -> list[Credential]:
        result = await self.db.execute(
            select(Credential)
            .where(Credential.account_id == account_id)
            .order_by(Credential.created_at)
        )
        return list(result.scalars().all())

    async def get_credential(self, account_id: uuid.UUID, credential_id: bytes) -> Credential | None:
        result = await self.db.execute(
            select(Credential)
            .where(
                Credential.account_id == account_id,
                Credential.credential_id == credential_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def store_credential(self, account_id: uuid.UUID, record: CredentialRecord) -> Credential:
        """Insert or overwrite the credential keyed by (account_id, credential_id).

        On conflict the public key, sign count, transports, attachment and
        clone warning are replaced (last write wins).
        """
        insert = _UPSERT_DIALECTS.get(self.db.get_bind().dialect.name)
        if insert is None:
            raise InternalError("Credential upsert not supported on this database")

        stmt = insert(Credential).values(
            account_id=account_id,
            credential_id=record.credential_id,
            public_key=record.public_key,
            attestation_type=record.attestation_type,
            transports=list(record.transports),
            sign_count=record.sign_count,
            aaguid=record.aaguid,
            attachment=Attachment(record.attachment).value,
            clone_warning=record.clone_warning,
            name=record.name,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["account_id", "credential_id"],
            set_={
                "public_key": stmt.excluded.public_key,
                "sign_count": stmt.excluded.sign_count,
                "transports": stmt.excluded.transports,
                "attachment": stmt.excluded.attachment,
                "clone_warning": stmt.excluded.clone_warning,
            },
        )
        await self.db.execute(stmt)
        await self.db.commit()

        stored = await self.get_credential(account_id, record.credential_id)
        logger.info(
            "credential.stored",
            account_id=str(account_id),
            credential=stored.id.hex if stored else None,
        )
        return stored

    async def record_authentication(
        self, account_id: uuid.UUID, credential_id: bytes, sign_count: int
    ) -> Credential:
        """Apply the counter reported by an authentication ceremony.

        A larger counter is stored. A counter that is not larger than the
        stored one (unless the authenticator doesn't count at all, i.e.
        both are zero) keeps the old value and sets clone_warning.
        """
        regressed = and_(
            Credential.sign_count >= sign_count,
            Credential.sign_count > 0,
        )
        result = await self.db.execute(
            update(Credential)
            .where(
                Credential.account_id == account_id,
                Credential.credential_id == credential_id,
            )
            .values(
                clone_warning=case((regressed, True), else_=Credential.clone_warning),
                sign_count=case(
                    (Credential.sign_count < sign_count, sign_count),
                    else_=Credential.sign_count,
                ),
                last_used_at=utcnow(),
            )
        )
        if result.rowcount == 0:
            await self.db.rollback()
            raise NotFoundError("Credential not found")
        await self.db.commit()

        credential = await self.get_credential(account_id, credential_id)
        if credential.clone_warning:
            logger.warning(
                "credential.clone_warning",
                account_id=str(account_id),
                credential=credential.id.hex,
                reported=sign_count,
                stored=credential.sign_count,
            )
        return credential

    async def delete_credential(self, account_id: uuid.UUID, credential_uuid: uuid.UUID) -> None:
        result = await self.db.execute(
            delete(Credential).where(
                Credential.id == credential_uuid,
                Credential.account_id == account_id,
            )
        )
        if result.rowcount == 0:
            await self.db.rollback()
            raise NotFoundError("Credential not found")
        await self.db.commit()
        logger.info("credential.deleted", account_id=str(account_id), credential=credential_uuid.hex)
