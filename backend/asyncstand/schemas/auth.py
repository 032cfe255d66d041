# backend/asyncstand/schemas/auth.py
from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator


def _normalize_full_name(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    v = " ".join(value.strip().split())
    return v or None


class MagicCodeRequest(BaseModel):
    email: EmailStr


class MagicCodeVerify(BaseModel):
    email: EmailStr
    code: str = Field(min_length=4, max_length=64)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class ProfileUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    full_name: Optional[str] = Field(default=None, max_length=200)

    @field_validator("full_name")
    @classmethod
    def validate_full_name(cls, v: Optional[str]) -> Optional[str]:
        return _normalize_full_name(v)


class MeResponse(BaseModel):
    id: str
    email: EmailStr
    is_active: bool
    is_super_admin: bool = False
    full_name: Optional[str] = None
