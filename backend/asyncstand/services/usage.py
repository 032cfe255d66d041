from __future__ import annotations

import calendar
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from fastapi import status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from asyncstand.core.errors import PLAN_LIMIT_EXCEEDED, api_error, not_found
from asyncstand.core.plan_limits import (
    FREE_PLAN_KEY,
    FREE_PLAN_LIMITS,
    PlanLimits,
    build_usage_limit,
    is_unlimited,
    limits_from_plan,
    subscription_is_usable,
)
from asyncstand.core.timeutil import as_utc, utcnow
from asyncstand.crud.billing import get_free_plan, get_subscription_and_plan
from asyncstand.crud.org_member import count_active_members
from asyncstand.models.billing import Plan
from asyncstand.models.integration import TOKEN_STATUS_OK, Integration
from asyncstand.models.organization import Organization
from asyncstand.models.standup_config import StandupConfig
from asyncstand.models.standup_instance import StandupInstance
from asyncstand.models.team import Team

logger = structlog.get_logger(__name__)

ACTION_CREATE_TEAM = "create_team"
ACTION_INVITE_MEMBER = "invite_member"
ACTION_CREATE_STANDUP_CONFIG = "create_standup_config"
ACTION_CREATE_STANDUP = "create_standup"

# action -> (usage resource, human label)
_ACTION_RESOURCES = {
    ACTION_CREATE_TEAM: ("teams", "team"),
    ACTION_INVITE_MEMBER: ("members", "member"),
    ACTION_CREATE_STANDUP_CONFIG: ("standup_configs", "standup configuration"),
    ACTION_CREATE_STANDUP: ("standups", "standup"),
}

QUOTA_TYPES = {"members", "teams", "standups", "storage", "integrations"}


# -----------------------------
# Billing period
# -----------------------------
def _clamped(year: int, month: int, day: int) -> datetime:
    last = calendar.monthrange(year, month)[1]
    return datetime(year, month, min(day, last), tzinfo=timezone.utc)


def monthly_period(anchor: datetime, now: datetime) -> tuple[datetime, datetime]:
    """Monthly period containing `now`, renewing on the anchor's day of month."""
    day = as_utc(anchor).day
    start = _clamped(now.year, now.month, day)
    if start > now:
        year, month = (now.year, now.month - 1) if now.month > 1 else (now.year - 1, 12)
        start = _clamped(year, month, day)
    year, month = (start.year, start.month + 1) if start.month < 12 else (start.year + 1, 1)
    return start, _clamped(year, month, day)


async def get_billing_period(db: AsyncSession, org: Organization) -> tuple[datetime, datetime]:
    subscription, _plan = await get_subscription_and_plan(db, org.id)
    if subscription is not None and subscription.current_period_start and subscription.current_period_end:
        return as_utc(subscription.current_period_start), as_utc(subscription.current_period_end)
    return monthly_period(org.created_at, utcnow())


# -----------------------------
# Limits + usage
# -----------------------------
async def get_effective_plan(db: AsyncSession, org_id: uuid.UUID) -> Optional[Plan]:
    """
    Plan used for enforcement: the subscription's plan while the subscription
    is usable, otherwise the free plan row (None when not seeded).
    """
    subscription, plan = await get_subscription_and_plan(db, org_id)
    if subscription_is_usable(subscription) and plan is not None:
        return plan
    return await get_free_plan(db)


async def get_plan_limits(db: AsyncSession, org_id: uuid.UUID) -> PlanLimits:
    plan = await get_effective_plan(db, org_id)
    return limits_from_plan(plan) if plan is not None else FREE_PLAN_LIMITS


async def _count_teams(db: AsyncSession, org_id: uuid.UUID) -> int:
    res = await db.execute(select(func.count(Team.id)).where(Team.org_id == org_id))
    return int(res.scalar() or 0)


async def _count_standup_configs(db: AsyncSession, org_id: uuid.UUID) -> int:
    stmt = (
        select(func.count(StandupConfig.id))
        .join(Team, Team.id == StandupConfig.team_id)
        .where(Team.org_id == org_id, StandupConfig.is_active.is_(True))
    )
    return int((await db.execute(stmt)).scalar() or 0)


async def _count_standups_between(db: AsyncSession, org_id: uuid.UUID, start: datetime, end: datetime) -> int:
    stmt = (
        select(func.count(StandupInstance.id))
        .join(Team, Team.id == StandupInstance.team_id)
        .where(
            Team.org_id == org_id,
            StandupInstance.created_at >= start,
            StandupInstance.created_at < end,
        )
    )
    return int((await db.execute(stmt)).scalar() or 0)


async def _count_integrations(db: AsyncSession, org_id: uuid.UUID) -> int:
    stmt = select(func.count(Integration.id)).where(
        Integration.org_id == org_id, Integration.token_status == TOKEN_STATUS_OK
    )
    return int((await db.execute(stmt)).scalar() or 0)


async def get_current_usage(db: AsyncSession, org_id: uuid.UUID) -> dict[str, Any]:
    org = await db.get(Organization, org_id)
    if org is None:
        raise not_found("Organization")

    period_start, period_end = await get_billing_period(db, org)
    limits = await get_plan_limits(db, org_id)
    plan = await get_effective_plan(db, org_id)

    return {
        "plan": plan.key if plan is not None else FREE_PLAN_KEY,
        "period_start": period_start,
        "period_end": period_end,
        "members": build_usage_limit(await count_active_members(db, org_id), limits.members),
        "teams": build_usage_limit(await _count_teams(db, org_id), limits.teams),
        "standup_configs": build_usage_limit(await _count_standup_configs(db, org_id), limits.standup_configs),
        "standups": build_usage_limit(
            await _count_standups_between(db, org_id, period_start, period_end), limits.standups
        ),
    }


async def can_perform_action(db: AsyncSession, org_id: uuid.UUID, action: str) -> dict[str, Any]:
    if action not in _ACTION_RESOURCES:
        return {"allowed": True, "reason": None}

    resource, label = _ACTION_RESOURCES[action]
    usage = await get_current_usage(db, org_id)
    current = usage[resource]

    if is_unlimited(current.limit) or current.used < current.limit:
        return {"allowed": True, "reason": None}

    if resource == "standups":
        reason = f"You have reached your plan's limit of {current.limit} standups this billing period."
    else:
        reason = f"You have reached your plan's limit of {current.limit} {label}s."
    return {"allowed": False, "reason": reason}


async def enforce_plan_limit(db: AsyncSession, org_id: uuid.UUID, action: str) -> None:
    result = await can_perform_action(db, org_id, action)
    if result["allowed"]:
        return
    logger.info("plan_limit_blocked", org_id=str(org_id), action=action)
    raise api_error(
        status.HTTP_403_FORBIDDEN,
        PLAN_LIMIT_EXCEEDED,
        result["reason"] + " Upgrade your plan to continue.",
        upgradeRequired=True,
        actionType=action,
    )


async def get_usage_warnings(db: AsyncSession, org_id: uuid.UUID) -> list[dict[str, Any]]:
    usage = await get_current_usage(db, org_id)
    warnings = []
    for resource in ("members", "teams", "standup_configs", "standups"):
        current = usage[resource]
        if current.over_limit:
            warnings.append(
                {
                    "resource": resource,
                    "level": "over_limit",
                    "percentage": current.percentage,
                    "message": f"You have reached your {resource.replace('_', ' ')} limit ({current.used}/{current.limit}).",
                }
            )
        elif current.near_limit:
            warnings.append(
                {
                    "resource": resource,
                    "level": "near_limit",
                    "percentage": current.percentage,
                    "message": f"You are at {current.percentage}% of your {resource.replace('_', ' ')} limit.",
                }
            )
    return warnings


async def needs_upgrade(db: AsyncSession, org_id: uuid.UUID) -> bool:
    usage = await get_current_usage(db, org_id)
    return any(usage[r].over_limit for r in ("members", "teams", "standup_configs", "standups"))


# -----------------------------
# Raw quota check (feature flag service surface)
# -----------------------------
async def check_quota(db: AsyncSession, org_id: uuid.UUID, quota_type: str) -> dict[str, Any]:
    """
    {current, limit, exceeded} for one quota. An org without any subscription
    reports (0, 0, exceeded). A limit of -1 is unlimited.
    """
    if quota_type not in QUOTA_TYPES:
        raise ValueError(f"Unknown quota type: {quota_type!r}")

    subscription, plan = await get_subscription_and_plan(db, org_id)
    if subscription is None or plan is None:
        return {"current": 0, "limit": 0, "exceeded": True}

    if quota_type == "members":
        current, limit = await count_active_members(db, org_id), plan.member_limit
    elif quota_type == "teams":
        current, limit = await _count_teams(db, org_id), plan.team_limit
    elif quota_type == "standups":
        org = await db.get(Organization, org_id)
        start, end = await get_billing_period(db, org)
        current, limit = await _count_standups_between(db, org_id, start, end), plan.standup_limit
    elif quota_type == "integrations":
        current, limit = await _count_integrations(db, org_id), plan.integration_limit
    else:
        # storage is not metered yet
        current, limit = 0, plan.storage_limit

    if is_unlimited(limit):
        return {"current": current, "limit": -1, "exceeded": False}
    return {"current": current, "limit": limit, "exceeded": current >= limit}
