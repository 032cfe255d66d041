from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class IntegrationConnect(BaseModel):
    external_team_id: str = Field(min_length=1, max_length=64)
    bot_token: str = Field(min_length=1, max_length=255)
    bot_user_id: Optional[str] = None
    workspace_name: Optional[str] = None
    scopes: List[str] = []


class IntegrationOut(BaseModel):
    """Never exposes the bot token."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    org_id: uuid.UUID
    platform: str
    external_team_id: str
    workspace_name: Optional[str] = None
    bot_user_id: Optional[str] = None
    token_status: str
    scopes: List[str] = []
    created_at: datetime


class TeamCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    integration_id: uuid.UUID
    channel_id: str = Field(min_length=1, max_length=64)
    timezone: str = "UTC"


class TeamUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    channel_id: Optional[str] = Field(default=None, min_length=1, max_length=64)
    timezone: Optional[str] = None


class TeamOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    org_id: uuid.UUID
    integration_id: uuid.UUID
    channel_id: str
    name: str
    timezone: str
    created_at: datetime


class TeamMemberCreate(BaseModel):
    platform_user_id: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=200)
    user_id: Optional[uuid.UUID] = None


class TeamMemberOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    team_id: uuid.UUID
    platform_user_id: str
    user_id: Optional[uuid.UUID] = None
    name: str
    active: bool


class TeamDetailsOut(TeamOut):
    members: List[TeamMemberOut] = []
    active_config_count: int = 0
