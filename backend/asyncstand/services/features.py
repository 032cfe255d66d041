from __future__ import annotations

import uuid
from typing import Any, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from asyncstand.core.config import settings
from asyncstand.core.errors import conflict, not_found, validation_error
from asyncstand.core.timeutil import as_utc, utcnow
from asyncstand.models.feature import (
    ROLLOUT_ORG_LIST,
    ROLLOUT_PERCENTAGE,
    ROLLOUT_TYPES,
    ROLLOUT_USER_LIST,
    Feature,
    FeatureOverride,
    PlanFeature,
)
from asyncstand.services.usage import get_effective_plan

logger = structlog.get_logger(__name__)

SOURCE_GLOBAL = "global"
SOURCE_OVERRIDE = "override"
SOURCE_PLAN = "plan"
SOURCE_ENVIRONMENT = "environment"
SOURCE_ROLLOUT = "rollout"


def rollout_hash(value: str) -> int:
    """
    32-bit string hash (h = h*31 + c, wrapped to a signed int), absolute value.
    Stable across processes, unlike hash().
    """
    h = 0
    for ch in value:
        h = ((h << 5) - h + ord(ch)) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


def in_percentage_rollout(org_id: str, percentage: Any) -> bool:
    pct = int(percentage or 0)
    return rollout_hash(str(org_id)) % 100 < pct


def _result(enabled: bool, source: str, *, value: Any = None, reason: Optional[str] = None) -> dict[str, Any]:
    out: dict[str, Any] = {"enabled": enabled, "source": source}
    if value is not None:
        out["value"] = value
    if reason is not None:
        out["reason"] = reason
    return out


async def _active_override(db: AsyncSession, org_id: uuid.UUID, key: str) -> Optional[FeatureOverride]:
    override = (
        await db.execute(
            select(FeatureOverride).where(FeatureOverride.org_id == org_id, FeatureOverride.feature_key == key)
        )
    ).scalar_one_or_none()
    if override is None:
        return None
    expires_at = as_utc(override.expires_at)
    if expires_at is not None and expires_at <= utcnow():
        return None
    return override


def _check_rollout(feature: Feature, org_id: uuid.UUID, user_id: Optional[uuid.UUID]) -> Optional[dict[str, Any]]:
    rollout_value = feature.rollout_value
    if feature.rollout_type == ROLLOUT_PERCENTAGE:
        enabled = in_percentage_rollout(str(org_id), rollout_value)
        return _result(enabled, SOURCE_ROLLOUT, reason=None if enabled else "Not in rollout percentage")

    if feature.rollout_type == ROLLOUT_ORG_LIST:
        allowed = {str(v) for v in (rollout_value or [])}
        enabled = str(org_id) in allowed
        return _result(enabled, SOURCE_ROLLOUT, reason=None if enabled else "Organization not in rollout list")

    if feature.rollout_type == ROLLOUT_USER_LIST:
        allowed = {str(v) for v in (rollout_value or [])}
        enabled = user_id is not None and str(user_id) in allowed
        return _result(enabled, SOURCE_ROLLOUT, reason=None if enabled else "User not in rollout list")

    return None


async def is_feature_enabled(
    db: AsyncSession,
    feature_key: str,
    org_id: uuid.UUID,
    user_id: Optional[uuid.UUID] = None,
) -> dict[str, Any]:
    """
    Resolve a flag for an org (and optionally a user).

    Precedence: org override, plan entry (plan-based features), global kill
    switch, environment list, rollout rule; otherwise enabled.
    """
    try:
        feature = await db.get(Feature, feature_key)
        if feature is None:
            return _result(False, SOURCE_GLOBAL, reason="Feature not found")

        override = await _active_override(db, org_id, feature_key)
        if override is not None:
            return _result(override.enabled, SOURCE_OVERRIDE, value=override.value, reason=override.reason)

        if feature.is_plan_based:
            plan = await get_effective_plan(db, org_id)
            plan_feature = None
            if plan is not None:
                plan_feature = (
                    await db.execute(
                        select(PlanFeature).where(
                            PlanFeature.plan_id == plan.id, PlanFeature.feature_key == feature_key
                        )
                    )
                ).scalar_one_or_none()
            if plan_feature is None:
                return _result(False, SOURCE_PLAN, reason="Not included in plan")
            return _result(plan_feature.enabled, SOURCE_PLAN, value=plan_feature.value)

        if not feature.is_enabled:
            return _result(False, SOURCE_GLOBAL, reason="Feature globally disabled")

        environments = [e.lower() for e in (feature.environments or [])]
        if environments and settings.environment_name not in environments:
            return _result(False, SOURCE_ENVIRONMENT, reason=f"Not enabled in {settings.environment_name}")

        rollout = _check_rollout(feature, org_id, user_id)
        if rollout is not None:
            return rollout

        return _result(True, SOURCE_GLOBAL)
    except (SQLAlchemyError, TypeError, ValueError) as e:
        logger.error("feature_check_failed", feature=feature_key, org_id=str(org_id), error=str(e))
        return _result(False, SOURCE_GLOBAL, reason="Error checking feature")


async def get_enabled_features(
    db: AsyncSession, org_id: uuid.UUID, user_id: Optional[uuid.UUID] = None
) -> list[str]:
    keys = (await db.execute(select(Feature.key).order_by(Feature.key))).scalars().all()
    enabled = []
    for key in keys:
        if (await is_feature_enabled(db, key, org_id, user_id))["enabled"]:
            enabled.append(key)
    return enabled


# -----------------------------
# Admin
# -----------------------------
def _validate_rollout(rollout_type: str, rollout_value: Any) -> None:
    if rollout_type not in ROLLOUT_TYPES:
        raise validation_error(f"Invalid rollout_type. Allowed: {', '.join(sorted(ROLLOUT_TYPES))}")
    if rollout_type == ROLLOUT_PERCENTAGE:
        if not isinstance(rollout_value, int) or isinstance(rollout_value, bool) or not 0 <= rollout_value <= 100:
            raise validation_error("Percentage rollout requires an integer rollout_value between 0 and 100")
    if rollout_type in {ROLLOUT_ORG_LIST, ROLLOUT_USER_LIST} and not isinstance(rollout_value, list):
        raise validation_error("List rollout requires a list rollout_value")


async def list_features(db: AsyncSession, category: Optional[str] = None) -> list[Feature]:
    stmt = select(Feature).order_by(Feature.category, Feature.key)
    if category:
        stmt = stmt.where(Feature.category == category)
    return list((await db.execute(stmt)).scalars().all())


async def create_feature(db: AsyncSession, data: dict[str, Any]) -> Feature:
    if await db.get(Feature, data["key"]) is not None:
        raise conflict(f"Feature '{data['key']}' already exists")
    _validate_rollout(data.get("rollout_type", "boolean"), data.get("rollout_value"))

    feature = Feature(**data)
    db.add(feature)
    await db.commit()
    logger.info("feature_created", feature=feature.key)
    return feature


async def update_feature(db: AsyncSession, key: str, data: dict[str, Any]) -> Feature:
    feature = await db.get(Feature, key)
    if feature is None:
        raise not_found("Feature")

    for field, value in data.items():
        setattr(feature, field, value)
    _validate_rollout(feature.rollout_type, feature.rollout_value)

    await db.commit()
    logger.info("feature_updated", feature=key, fields=sorted(data))
    return feature


async def set_override(
    db: AsyncSession,
    org_id: uuid.UUID,
    key: str,
    *,
    enabled: bool,
    value: Any = None,
    reason: Optional[str] = None,
    expires_at=None,
) -> FeatureOverride:
    if await db.get(Feature, key) is None:
        raise not_found("Feature")

    override = (
        await db.execute(
            select(FeatureOverride).where(FeatureOverride.org_id == org_id, FeatureOverride.feature_key == key)
        )
    ).scalar_one_or_none()
    if override is None:
        override = FeatureOverride(org_id=org_id, feature_key=key)
        db.add(override)

    override.enabled = enabled
    override.value = value
    override.reason = reason
    override.expires_at = expires_at
    await db.commit()
    return override


async def remove_override(db: AsyncSession, org_id: uuid.UUID, key: str) -> None:
    override = (
        await db.execute(
            select(FeatureOverride).where(FeatureOverride.org_id == org_id, FeatureOverride.feature_key == key)
        )
    ).scalar_one_or_none()
    if override is None:
        raise not_found("Feature override")
    await db.delete(override)
    await db.commit()
