from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class OrganizationCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)


class OrganizationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    created_at: datetime


class MyOrganizationOut(OrganizationOut):
    role: str
    status: str


class OrgMemberOut(BaseModel):
    id: uuid.UUID
    org_id: uuid.UUID
    user_id: uuid.UUID
    email: str
    full_name: Optional[str] = None
    role: str
    status: str
    permissions: List[str] = []
    created_at: datetime


class OrgMemberUpdate(BaseModel):
    # send one or both
    role: Optional[str] = None
    suspend: Optional[bool] = None


class InvitationCreate(BaseModel):
    email: EmailStr
    role: Optional[str] = "member"


class InvitationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    org_id: uuid.UUID
    email: str
    role: str
    expires_at: datetime
    accepted_at: Optional[datetime] = None
    created_at: datetime


class InvitationCreated(InvitationOut):
    # returned once so the caller can deliver the link
    token: str


class InvitationAccept(BaseModel):
    token: str = Field(min_length=10, max_length=128)
