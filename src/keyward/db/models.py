"""SQLAlchemy ORM models — single source of truth for the database schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Each class = one table. Alembic migrations mirror these definitions.

Key concepts:
- UUID primary keys via the portable `Uuid` type (native on PostgreSQL,
  CHAR(32) on SQLite for local runs and tests)
- Python-side defaults alongside server_default so freshly inserted rows
  are usable without a refresh round trip
- (account_id, credential_id) is the natural key of a WebAuthn credential
"""

import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    LargeBinary,
    String,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


class Attachment(str, enum.Enum):
    """Authenticator attachment reported by the client."""

    PLATFORM = "platform"
    CROSS_PLATFORM = "cross-platform"
    UNSPECIFIED = "unspecified"

    @classmethod
    def parse(cls, value: Optional[str]) -> "Attachment":
        if isinstance(value, str):
            normalized = value.strip().lower()
            for member in cls:
                if member.value == normalized:
                    return member
        return cls.UNSPECIFIED


# ══════════════════════════════════════════════════════════════
# Accounts and roles
# ══════════════════════════════════════════════════════════════


class Account(Base):
    """A registered account.

    Learn: Account also satisfies the ceremony engine's identity-claims
    protocol (webauthn_id / webauthn_name / ...), so the engine never has
    to know how accounts are stored.
    """

    __tablename__ = "accounts"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )

    # ─── WebAuthn identity claims ───────────────────────

    def webauthn_id(self) -> bytes:
        return self.id.bytes

    def webauthn_name(self) -> str:
        return self.email

    def webauthn_display_name(self) -> str:
        return self.name or self.email

    def webauthn_icon(self) -> str:
        return ""


class Role(Base):
    """A named role. Seeded with 'admin' and 'user'."""

    __tablename__ = "roles"

    name: Mapped[str] = mapped_column(String(50), primary_key=True)
    description: Mapped[str] = mapped_column(String(255), nullable=False, default="")


class AccountRole(Base):
    """Role grant — links accounts to roles."""

    __tablename__ = "account_roles"
    __table_args__ = (
        UniqueConstraint("account_id", "role", name="uq_account_roles"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    role: Mapped[str] = mapped_column(
        String(50), ForeignKey("roles.name"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )


# ══════════════════════════════════════════════════════════════
# WebAuthn credentials
# ══════════════════════════════════════════════════════════════


class Credential(Base):
    """A WebAuthn public-key credential owned by one account.

    Learn: sign_count only ever moves forward. When an authenticator
    reports a counter that is not larger than the stored one, the row
    keeps its counter and clone_warning is raised instead.
    """

    __tablename__ = "credentials"
    __table_args__ = (
        UniqueConstraint(
            "account_id", "credential_id", name="uq_credentials_account_credential"
        ),
        Index("idx_credentials_account", "account_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=new_uuid
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="CASCADE"), nullable=False
    )
    credential_id: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    public_key: Mapped[bytes] = mapped_column(LargeBinary, nullable=False)
    attestation_type: Mapped[str] = mapped_column(
        String(50), nullable=False, default="none"
    )
    transports: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    sign_count: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    aaguid: Mapped[bytes] = mapped_column(
        LargeBinary, nullable=False, default=bytes(16)
    )
    attachment: Mapped[str] = mapped_column(
        String(20), nullable=False, default=Attachment.UNSPECIFIED.value
    )
    clone_warning: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    last_used_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
