from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class PlanOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    key: str
    name: str
    price_cents: int
    interval: str
    member_limit: Optional[int] = None
    team_limit: Optional[int] = None
    standup_config_limit: Optional[int] = None
    standup_limit: Optional[int] = None
    storage_limit: Optional[int] = None
    integration_limit: Optional[int] = None


class SubscriptionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    status: str
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    stripe_subscription_id: Optional[str] = None


class UsageLimitOut(BaseModel):
    used: int
    limit: Optional[int] = None
    available: Optional[int] = None
    percentage: int
    near_limit: bool
    over_limit: bool


class UsageOut(BaseModel):
    period_start: datetime
    period_end: datetime
    members: UsageLimitOut
    teams: UsageLimitOut
    standup_configs: UsageLimitOut
    standups: UsageLimitOut


class BillingSummaryOut(BaseModel):
    plan: Optional[PlanOut] = None
    plan_key: str
    subscription: Optional[SubscriptionOut] = None
    usage: UsageOut
    warnings: List[Dict[str, Any]] = []


class CheckoutRequest(BaseModel):
    plan_key: str
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class CheckoutOut(BaseModel):
    checkout_url: str
    session_id: str


class QuotaOut(BaseModel):
    current: int
    limit: int
    exceeded: bool
