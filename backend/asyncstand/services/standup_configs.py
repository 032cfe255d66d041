from __future__ import annotations

import uuid
from typing import Any, Iterable, Optional

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from asyncstand.core.errors import conflict, not_found, validation_error
from asyncstand.core.standup_rules import (
    DEFAULT_RESPONSE_TIMEOUT_HOURS,
    normalize_questions,
    schedules_conflict,
    validate_questions,
    validate_time_local,
    validate_timezone,
    validate_weekdays,
)
from asyncstand.models.standup_config import (
    DELIVERY_CHANNEL,
    DELIVERY_DIRECT_MESSAGE,
    StandupConfig,
    StandupConfigMember,
)
from asyncstand.models.team import Team, TeamMember
from asyncstand.models.user import User
from asyncstand.services import audit
from asyncstand.services.teams import get_team
from asyncstand.services.usage import ACTION_CREATE_STANDUP_CONFIG, enforce_plan_limit

logger = structlog.get_logger(__name__)

DELIVERY_TYPES = {DELIVERY_CHANNEL, DELIVERY_DIRECT_MESSAGE}


def _validate_fields(data: dict[str, Any]) -> None:
    errors: list[str] = []
    if "questions" in data:
        errors += validate_questions(data["questions"])
    if "weekdays" in data:
        errors += validate_weekdays(data["weekdays"])
    if "time_local" in data:
        errors += validate_time_local(data["time_local"])
    if "timezone" in data:
        errors += validate_timezone(data["timezone"])
    if "delivery_type" in data and data["delivery_type"] not in DELIVERY_TYPES:
        errors.append(f"delivery_type must be one of: {', '.join(sorted(DELIVERY_TYPES))}")
    if data.get("response_timeout_hours") is not None and not 1 <= int(data["response_timeout_hours"]) <= 24:
        errors.append("response_timeout_hours must be between 1 and 24")
    if data.get("reminder_minutes_before") is not None and not 0 <= int(data["reminder_minutes_before"]) <= 120:
        errors.append("reminder_minutes_before must be between 0 and 120")
    if errors:
        raise validation_error("Invalid standup configuration", errors=errors)


async def _ensure_unique_name(
    db: AsyncSession, team_id: uuid.UUID, name: str, exclude_id: Optional[uuid.UUID] = None
) -> None:
    stmt = select(StandupConfig.id).where(StandupConfig.team_id == team_id, StandupConfig.name == name)
    if exclude_id is not None:
        stmt = stmt.where(StandupConfig.id != exclude_id)
    if (await db.execute(stmt)).first() is not None:
        raise conflict(f"A standup named '{name}' already exists for this team")


async def _ensure_no_time_conflict(
    db: AsyncSession,
    team_id: uuid.UUID,
    weekdays: list[int],
    time_local: str,
    timezone: str,
    exclude_id: Optional[uuid.UUID] = None,
) -> None:
    stmt = select(StandupConfig).where(StandupConfig.team_id == team_id, StandupConfig.is_active.is_(True))
    if exclude_id is not None:
        stmt = stmt.where(StandupConfig.id != exclude_id)
    for other in (await db.execute(stmt)).scalars().all():
        if schedules_conflict(weekdays, time_local, timezone, other.weekdays, other.time_local, other.timezone):
            raise conflict(
                f"Schedule conflicts with standup '{other.name}'",
                conflicting_config_id=str(other.id),
            )


async def _validate_member_ids(db: AsyncSession, team_id: uuid.UUID, member_ids: Iterable[uuid.UUID]) -> list[uuid.UUID]:
    member_ids = list(dict.fromkeys(member_ids))
    if not member_ids:
        return []
    found = set(
        (
            await db.execute(
                select(TeamMember.id).where(TeamMember.team_id == team_id, TeamMember.id.in_(member_ids))
            )
        ).scalars().all()
    )
    missing = [str(m) for m in member_ids if m not in found]
    if missing:
        raise validation_error("Some members do not belong to this team", member_ids=missing)
    return member_ids


async def get_config(db: AsyncSession, org_id: uuid.UUID, config_id: uuid.UUID) -> StandupConfig:
    row = (
        await db.execute(
            select(StandupConfig)
            .join(Team, Team.id == StandupConfig.team_id)
            .where(StandupConfig.id == config_id, Team.org_id == org_id)
        )
    ).scalar_one_or_none()
    if row is None:
        raise not_found("Standup configuration")
    return row


async def list_configs(db: AsyncSession, org_id: uuid.UUID, team_id: uuid.UUID) -> list[StandupConfig]:
    team = await get_team(db, org_id, team_id)
    stmt = select(StandupConfig).where(StandupConfig.team_id == team.id).order_by(StandupConfig.created_at.asc())
    return list((await db.execute(stmt)).scalars().all())


async def create_config(
    db: AsyncSession,
    *,
    org_id: uuid.UUID,
    team_id: uuid.UUID,
    actor: User,
    data: dict[str, Any],
    member_ids: Optional[list[uuid.UUID]] = None,
) -> StandupConfig:
    team = await get_team(db, org_id, team_id)

    data = dict(data)
    data.setdefault("timezone", team.timezone)
    data.setdefault("delivery_type", DELIVERY_DIRECT_MESSAGE)
    _validate_fields(data)
    data["questions"] = normalize_questions(data["questions"])
    data["name"] = data["name"].strip()

    await _ensure_unique_name(db, team.id, data["name"])
    await _ensure_no_time_conflict(db, team.id, data["weekdays"], data["time_local"], data["timezone"])

    if member_ids is None:
        member_ids = [m.id for m in (await db.execute(
            select(TeamMember).where(TeamMember.team_id == team.id, TeamMember.active.is_(True))
        )).scalars().all()]
    else:
        member_ids = await _validate_member_ids(db, team.id, member_ids)

    await enforce_plan_limit(db, org_id, ACTION_CREATE_STANDUP_CONFIG)

    config = StandupConfig(
        team_id=team.id,
        name=data["name"],
        questions=data["questions"],
        weekdays=sorted(data["weekdays"]),
        time_local=data["time_local"],
        timezone=data["timezone"],
        reminder_minutes_before=data.get("reminder_minutes_before") or 10,
        response_timeout_hours=data.get("response_timeout_hours") or DEFAULT_RESPONSE_TIMEOUT_HOURS,
        delivery_type=data["delivery_type"],
        target_channel_id=data.get("target_channel_id"),
        is_active=True,
        created_by_id=actor.id,
    )
    db.add(config)
    await db.flush()

    for member_id in member_ids:
        db.add(StandupConfigMember(config_id=config.id, team_member_id=member_id, include=True))

    await audit.log_audit(
        db,
        org_id=org_id,
        actor_user_id=actor.id,
        action="standup.config.created",
        category=audit.CATEGORY_STANDUP,
        resource_type="standup_config",
        resource_id=config.id,
        request_data={"name": config.name, "weekdays": config.weekdays, "time_local": config.time_local},
        tags=["standup", "config"],
    )
    await db.commit()
    logger.info("standup_config_created", config_id=str(config.id), team_id=str(team.id))
    return config


async def update_config(
    db: AsyncSession,
    *,
    org_id: uuid.UUID,
    config_id: uuid.UUID,
    actor: User,
    data: dict[str, Any],
) -> StandupConfig:
    config = await get_config(db, org_id, config_id)
    data = {k: v for k, v in data.items() if v is not None}
    _validate_fields(data)

    if "questions" in data:
        data["questions"] = normalize_questions(data["questions"])
    if "name" in data:
        data["name"] = data["name"].strip()
        await _ensure_unique_name(db, config.team_id, data["name"], exclude_id=config.id)

    merged_weekdays = sorted(data.get("weekdays", config.weekdays))
    merged_time = data.get("time_local", config.time_local)
    merged_tz = data.get("timezone", config.timezone)
    if data.get("is_active", config.is_active):
        await _ensure_no_time_conflict(
            db, config.team_id, merged_weekdays, merged_time, merged_tz, exclude_id=config.id
        )
    if data.get("is_active") and not config.is_active:
        await enforce_plan_limit(db, org_id, ACTION_CREATE_STANDUP_CONFIG)
    if "weekdays" in data:
        data["weekdays"] = merged_weekdays

    for field, value in data.items():
        setattr(config, field, value)

    await audit.log_audit(
        db,
        org_id=org_id,
        actor_user_id=actor.id,
        action="standup.config.updated",
        category=audit.CATEGORY_STANDUP,
        resource_type="standup_config",
        resource_id=config.id,
        request_data=data,
        tags=["standup", "config"],
    )
    await db.commit()
    return config


async def delete_config(db: AsyncSession, *, org_id: uuid.UUID, config_id: uuid.UUID, actor: User) -> None:
    config = await get_config(db, org_id, config_id)
    await db.execute(delete(StandupConfigMember).where(StandupConfigMember.config_id == config.id))
    await db.delete(config)
    await audit.log_audit(
        db,
        org_id=org_id,
        actor_user_id=actor.id,
        action="standup.config.deleted",
        category=audit.CATEGORY_STANDUP,
        severity=audit.SEVERITY_MEDIUM,
        resource_type="standup_config",
        resource_id=config.id,
        request_data={"name": config.name},
        tags=["standup", "config"],
    )
    await db.commit()


async def update_member_participation(
    db: AsyncSession,
    *,
    org_id: uuid.UUID,
    config_id: uuid.UUID,
    actor: User,
    updates: list[dict[str, Any]],
) -> list[StandupConfigMember]:
    """updates: [{"team_member_id": UUID, "include": bool}]"""
    config = await get_config(db, org_id, config_id)
    await _validate_member_ids(db, config.team_id, [u["team_member_id"] for u in updates])

    existing = {
        row.team_member_id: row
        for row in (
            await db.execute(select(StandupConfigMember).where(StandupConfigMember.config_id == config.id))
        ).scalars().all()
    }
    for update in updates:
        row = existing.get(update["team_member_id"])
        if row is None:
            row = StandupConfigMember(config_id=config.id, team_member_id=update["team_member_id"])
            db.add(row)
            existing[update["team_member_id"]] = row
        row.include = bool(update["include"])

    await audit.log_audit(
        db,
        org_id=org_id,
        actor_user_id=actor.id,
        action="standup.config.participation_updated",
        category=audit.CATEGORY_STANDUP,
        resource_type="standup_config",
        resource_id=config.id,
        request_data={"updates": updates},
        tags=["standup", "config"],
    )
    await db.commit()
    return list(existing.values())


async def get_participating_members(db: AsyncSession, config: StandupConfig) -> list[TeamMember]:
    """Active team members explicitly included in the config."""
    stmt = (
        select(TeamMember)
        .join(StandupConfigMember, StandupConfigMember.team_member_id == TeamMember.id)
        .where(
            StandupConfigMember.config_id == config.id,
            StandupConfigMember.include.is_(True),
            TeamMember.active.is_(True),
        )
        .order_by(TeamMember.name.asc())
    )
    return list((await db.execute(stmt)).scalars().all())
