"""Pydantic schemas for stored passkeys."""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_serializer


class CredentialRead(BaseModel):
    """A stored passkey as shown to its owner (no key material)."""

    id: uuid.UUID
    name: str
    attestation_type: str
    transports: list[str] = Field(default_factory=list)
    sign_count: int
    aaguid: bytes
    attachment: str
    clone_warning: bool
    created_at: datetime
    last_used_at: Optional[datetime] = None

    model_config = {"from_attributes": True}

    @field_serializer("aaguid")
    def _aaguid_hex(self, value: bytes) -> str:
        return value.hex()
