from __future__ import annotations

import uuid
from datetime import date, datetime, timedelta
from typing import Any, Optional

import structlog
from fastapi import status
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from asyncstand.core.errors import INVALID_STATE_TRANSITION, api_error, not_found
from asyncstand.core.standup_rules import next_standup_date, should_run_on
from asyncstand.core.timeutil import js_weekday, utcnow
from asyncstand.models.standup_config import StandupConfig
from asyncstand.models.standup_instance import (
    ACTIVE_STATES,
    STATE_COLLECTING,
    STATE_PENDING,
    STATE_POSTED,
    Answer,
    ParticipationSnapshot,
    StandupInstance,
)
from asyncstand.models.team import Team
from asyncstand.services.standup_configs import get_participating_members
from asyncstand.services.usage import ACTION_CREATE_STANDUP, can_perform_action

logger = structlog.get_logger(__name__)

ALLOWED_TRANSITIONS = {
    STATE_PENDING: {STATE_COLLECTING},
    STATE_COLLECTING: {STATE_POSTED},
    STATE_POSTED: set(),
}


def build_config_snapshot(config: StandupConfig, members) -> dict[str, Any]:
    return {
        "questions": list(config.questions),
        "responseTimeoutHours": config.response_timeout_hours,
        "reminderMinutesBefore": config.reminder_minutes_before,
        "timezone": config.timezone,
        "timeLocal": config.time_local,
        "deliveryType": config.delivery_type,
        "targetChannelId": config.target_channel_id,
        "participatingMembers": [
            {"id": str(m.id), "name": m.name, "platformUserId": m.platform_user_id} for m in members
        ],
    }


def snapshot_member_ids(instance: StandupInstance) -> set[str]:
    return {m["id"] for m in (instance.config_snapshot or {}).get("participatingMembers", [])}


async def find_instance_for_date(
    db: AsyncSession, config: StandupConfig, target_date: date
) -> Optional[StandupInstance]:
    return (
        await db.execute(
            select(StandupInstance).where(
                StandupInstance.team_id == config.team_id,
                StandupInstance.config_id == config.id,
                StandupInstance.target_date == target_date,
            )
        )
    ).scalar_one_or_none()


async def create_standup_instance(
    db: AsyncSession,
    config: StandupConfig,
    target_date: date,
    *,
    state: str = STATE_PENDING,
) -> tuple[StandupInstance, bool]:
    """
    Idempotent per (team, config, date): returns (instance, created). The
    instance is flushed, not committed.
    """
    existing = await find_instance_for_date(db, config, target_date)
    if existing is not None:
        return existing, False

    members = await get_participating_members(db, config)
    instance = StandupInstance(
        team_id=config.team_id,
        config_id=config.id,
        config_snapshot=build_config_snapshot(config, members),
        target_date=target_date,
        state=state,
    )
    db.add(instance)
    await db.flush()
    logger.info(
        "standup_instance_created",
        instance_id=str(instance.id),
        team_id=str(config.team_id),
        target_date=target_date.isoformat(),
        members=len(members),
    )
    return instance, True


async def get_instance(db: AsyncSession, org_id: uuid.UUID, instance_id: uuid.UUID) -> StandupInstance:
    row = (
        await db.execute(
            select(StandupInstance)
            .join(Team, Team.id == StandupInstance.team_id)
            .where(StandupInstance.id == instance_id, Team.org_id == org_id)
        )
    ).scalar_one_or_none()
    if row is None:
        raise not_found("Standup instance")
    return row


async def update_instance_state(db: AsyncSession, instance: StandupInstance, new_state: str) -> StandupInstance:
    if new_state not in ALLOWED_TRANSITIONS.get(instance.state, set()):
        raise api_error(
            status.HTTP_400_BAD_REQUEST,
            INVALID_STATE_TRANSITION,
            f"Cannot transition standup from {instance.state} to {new_state}",
            current_state=instance.state,
            requested_state=new_state,
        )
    instance.state = new_state
    await db.commit()
    logger.info("standup_instance_state_changed", instance_id=str(instance.id), state=new_state)
    return instance


async def get_active_instances(
    db: AsyncSession, org_id: uuid.UUID, team_id: Optional[uuid.UUID] = None
) -> list[StandupInstance]:
    stmt = (
        select(StandupInstance)
        .join(Team, Team.id == StandupInstance.team_id)
        .where(Team.org_id == org_id, StandupInstance.state.in_(ACTIVE_STATES))
        .order_by(StandupInstance.target_date.desc(), StandupInstance.created_at.desc())
    )
    if team_id is not None:
        stmt = stmt.where(StandupInstance.team_id == team_id)
    return list((await db.execute(stmt)).scalars().all())


async def list_instances(
    db: AsyncSession,
    org_id: uuid.UUID,
    *,
    team_id: Optional[uuid.UUID] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    limit: int = 50,
) -> list[StandupInstance]:
    stmt = (
        select(StandupInstance)
        .join(Team, Team.id == StandupInstance.team_id)
        .where(Team.org_id == org_id)
        .order_by(StandupInstance.target_date.desc())
        .limit(min(limit, 200))
    )
    if team_id is not None:
        stmt = stmt.where(StandupInstance.team_id == team_id)
    if start is not None:
        stmt = stmt.where(StandupInstance.target_date >= start)
    if end is not None:
        stmt = stmt.where(StandupInstance.target_date <= end)
    return list((await db.execute(stmt)).scalars().all())


def should_create_standup_today(config: StandupConfig, at: Optional[datetime] = None) -> bool:
    return config.is_active and should_run_on(config.weekdays, config.timezone, at)


def calculate_next_standup_date(config: StandupConfig, after: Optional[datetime] = None) -> Optional[date]:
    return next_standup_date(config.weekdays, config.time_local, config.timezone, after)


async def create_instances_for_date(
    db: AsyncSession, target_date: date, *, org_id: Optional[uuid.UUID] = None
) -> dict[str, list[str]]:
    """
    Create instances for every active config scheduled on `target_date`
    (weekday of the date itself, already local). Configs that already have an
    instance, or whose org is out of standups for the period, land in `skipped`.
    """
    stmt = (
        select(StandupConfig, Team.org_id)
        .join(Team, Team.id == StandupConfig.team_id)
        .where(StandupConfig.is_active.is_(True))
    )
    if org_id is not None:
        stmt = stmt.where(Team.org_id == org_id)

    weekday = js_weekday(datetime.combine(target_date, datetime.min.time()))
    created: list[str] = []
    skipped: list[str] = []
    for config, config_org_id in (await db.execute(stmt)).all():
        if weekday not in set(config.weekdays):
            continue
        existing = await find_instance_for_date(db, config, target_date)
        if existing is None:
            allowed = await can_perform_action(db, config_org_id, ACTION_CREATE_STANDUP)
            if not allowed["allowed"]:
                logger.info("standup_skipped_plan_limit", config_id=str(config.id), reason=allowed["reason"])
                skipped.append(str(config.id))
                continue
        instance, was_created = await create_standup_instance(db, config, target_date)
        if was_created:
            created.append(str(instance.id))
        else:
            skipped.append(str(config.id))

    await db.commit()
    return {"created": created, "skipped": skipped}


async def archive_old_instances(db: AsyncSession, days: int, *, org_id: Optional[uuid.UUID] = None) -> int:
    """Delete posted instances (and their answers) created more than `days` ago."""
    cutoff = utcnow() - timedelta(days=days)
    stmt = select(StandupInstance.id).where(
        StandupInstance.state == STATE_POSTED,
        StandupInstance.created_at < cutoff,
    )
    if org_id is not None:
        stmt = stmt.join(Team, Team.id == StandupInstance.team_id).where(Team.org_id == org_id)
    ids = (await db.execute(stmt)).scalars().all()
    if not ids:
        return 0

    await db.execute(delete(Answer).where(Answer.standup_instance_id.in_(ids)))
    await db.execute(delete(ParticipationSnapshot).where(ParticipationSnapshot.standup_instance_id.in_(ids)))
    await db.execute(delete(StandupInstance).where(StandupInstance.id.in_(ids)))
    await db.commit()
    logger.info("standup_instances_archived", count=len(ids), cutoff=cutoff.isoformat())
    return len(ids)

