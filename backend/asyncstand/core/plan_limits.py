# ============================
# FILE: asyncstand/core/plan_limits.py
# Canonical plan limits + usage math
# ============================
from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Optional

from asyncstand.core.timeutil import as_utc, utcnow

UNLIMITED = -1
NEAR_LIMIT_PERCENT = 80

FREE_PLAN_KEY = "free"

ACTIVE_SUBSCRIPTION_STATUSES = {"active", "trialing"}


@dataclass(frozen=True)
class PlanLimits:
    members: Optional[int]
    teams: Optional[int]
    standup_configs: Optional[int]
    standups: Optional[int]


# Applied when an org has no (usable) subscription.
FREE_PLAN_LIMITS = PlanLimits(members=5, teams=2, standup_configs=5, standups=50)


def normalize_plan_key(value: str | None) -> str:
    return (value or "").strip().lower()


def is_unlimited(limit: Optional[int]) -> bool:
    return limit is None or limit == UNLIMITED


def limits_from_plan(plan) -> PlanLimits:
    """
    Read limits off a Plan row. Falls back to the free plan when no plan is given.
    """
    if plan is None:
        return FREE_PLAN_LIMITS
    return PlanLimits(
        members=plan.member_limit,
        teams=plan.team_limit,
        standup_configs=plan.standup_config_limit,
        standups=plan.standup_limit,
    )


def subscription_is_usable(subscription) -> bool:
    """
    Resolve whether a subscription grants its plan for enforcement.

    active wins; trialing counts while the current period has not ended;
    past_due/canceled/unpaid fall back to the free plan.
    """
    if subscription is None:
        return False

    status = (getattr(subscription, "status", None) or "").lower()
    if status == "active":
        return True

    if status == "trialing":
        period_end: Optional[datetime] = as_utc(getattr(subscription, "current_period_end", None))
        return period_end is None or period_end > utcnow()

    return False


@dataclass(frozen=True)
class UsageLimit:
    used: int
    limit: Optional[int]
    available: Optional[int]
    percentage: int
    near_limit: bool
    over_limit: bool

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def build_usage_limit(used: int, limit: Optional[int]) -> UsageLimit:
    """
    limit None or -1 means unlimited: nothing is available-capped and the
    resource is never near or over its limit.
    """
    used = max(int(used or 0), 0)
    if is_unlimited(limit):
        return UsageLimit(
            used=used,
            limit=None,
            available=None,
            percentage=0,
            near_limit=False,
            over_limit=False,
        )

    limit = int(limit)
    percentage = min(round((used / limit) * 100), 100) if limit > 0 else 100
    return UsageLimit(
        used=used,
        limit=limit,
        available=max(limit - used, 0),
        percentage=percentage,
        near_limit=percentage >= NEAR_LIMIT_PERCENT,
        over_limit=used >= limit and limit > 0,
    )
