"""Pydantic schemas for accounts, tokens and profiles.

Learn: Pydantic v2 models validate request/response data. Separate
"Create"/"Update" schemas (input) from "Read" schemas (output). The
password hash never appears in any Read schema.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class RegisterRequest(BaseModel):
    # Emptiness is checked by AccountService so it maps to 400, not 422.
    email: str = Field(..., max_length=255)
    password: str = Field(..., max_length=1024)
    name: str = Field(default="", max_length=255)


class AccountRead(BaseModel):
    id: uuid.UUID
    email: str
    name: str
    created_at: datetime

    model_config = {"from_attributes": True}


class ProfileUpdate(BaseModel):
    name: str = Field(..., max_length=255)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "Bearer"
    expires_in: int
