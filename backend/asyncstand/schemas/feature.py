from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class FeatureCreate(BaseModel):
    key: str = Field(min_length=1, max_length=100, pattern=r"^[a-z0-9_.\-]+$")
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    is_enabled: bool = False
    environments: List[str] = []
    rollout_type: str = "boolean"
    rollout_value: Optional[Any] = None
    category: Optional[str] = None
    is_plan_based: bool = False
    requires_admin: bool = False


class FeatureUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    is_enabled: Optional[bool] = None
    environments: Optional[List[str]] = None
    rollout_type: Optional[str] = None
    rollout_value: Optional[Any] = None
    category: Optional[str] = None
    is_plan_based: Optional[bool] = None
    requires_admin: Optional[bool] = None


class FeatureOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    key: str
    name: str
    description: Optional[str] = None
    is_enabled: bool
    environments: List[str] = []
    rollout_type: str
    rollout_value: Optional[Any] = None
    category: Optional[str] = None
    is_plan_based: bool
    requires_admin: bool


class FeatureCheckOut(BaseModel):
    feature: str
    enabled: bool
    source: str
    value: Optional[Any] = None
    reason: Optional[str] = None


class OverrideSet(BaseModel):
    enabled: bool
    value: Optional[Any] = None
    reason: Optional[str] = None
    expires_at: Optional[datetime] = None


class OverrideOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    org_id: Any
    feature_key: str
    enabled: bool
    value: Optional[Any] = None
    reason: Optional[str] = None
    expires_at: Optional[datetime] = None
