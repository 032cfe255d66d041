from __future__ import annotations

import uuid
from typing import Any, Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from asyncstand.core.errors import conflict, not_found, validation_error
from asyncstand.core.timeutil import is_valid_timezone
from asyncstand.models.integration import (
    PLATFORM_SLACK,
    TOKEN_STATUS_OK,
    TOKEN_STATUS_REVOKED,
    Integration,
)
from asyncstand.models.standup_config import StandupConfig
from asyncstand.models.team import Team, TeamMember
from asyncstand.models.user import User
from asyncstand.services import audit
from asyncstand.services.usage import ACTION_CREATE_TEAM, enforce_plan_limit

logger = structlog.get_logger(__name__)


# -----------------------------
# Integrations
# -----------------------------
async def connect_slack_integration(
    db: AsyncSession,
    *,
    org_id: uuid.UUID,
    actor: User,
    external_team_id: str,
    bot_token: str,
    bot_user_id: Optional[str] = None,
    workspace_name: Optional[str] = None,
    scopes: Optional[list[str]] = None,
) -> Integration:
    """Record (or refresh) an installed Slack workspace for the org."""
    integration = (
        await db.execute(
            select(Integration).where(
                Integration.platform == PLATFORM_SLACK,
                Integration.external_team_id == external_team_id,
            )
        )
    ).scalar_one_or_none()

    if integration is not None and integration.org_id != org_id:
        raise conflict("This Slack workspace is already connected to another organization")

    if integration is None:
        integration = Integration(org_id=org_id, platform=PLATFORM_SLACK, external_team_id=external_team_id)
        db.add(integration)

    integration.bot_token = bot_token
    integration.bot_user_id = bot_user_id
    integration.workspace_name = workspace_name
    integration.scopes = scopes or []
    integration.token_status = TOKEN_STATUS_OK
    integration.installed_by_id = actor.id
    await db.flush()

    await audit.log_audit(
        db,
        org_id=org_id,
        actor_user_id=actor.id,
        action="integration.connected",
        category=audit.CATEGORY_INTEGRATION,
        resource_type="integration",
        resource_id=integration.id,
        request_data={"external_team_id": external_team_id, "bot_token": bot_token},
    )
    await db.commit()
    return integration


async def list_integrations(db: AsyncSession, org_id: uuid.UUID) -> list[Integration]:
    stmt = select(Integration).where(Integration.org_id == org_id).order_by(Integration.created_at.asc())
    return list((await db.execute(stmt)).scalars().all())


async def disconnect_integration(
    db: AsyncSession, *, org_id: uuid.UUID, integration_id: uuid.UUID, actor: User
) -> Integration:
    integration = await db.get(Integration, integration_id)
    if integration is None or integration.org_id != org_id:
        raise not_found("Integration")

    integration.token_status = TOKEN_STATUS_REVOKED
    await audit.log_audit(
        db,
        org_id=org_id,
        actor_user_id=actor.id,
        action="integration.disconnected",
        category=audit.CATEGORY_INTEGRATION,
        severity=audit.SEVERITY_MEDIUM,
        resource_type="integration",
        resource_id=integration.id,
    )
    await db.commit()
    return integration


async def get_integration_by_workspace(db: AsyncSession, external_team_id: str) -> Optional[Integration]:
    return (
        await db.execute(
            select(Integration).where(
                Integration.platform == PLATFORM_SLACK,
                Integration.external_team_id == external_team_id,
                Integration.token_status == TOKEN_STATUS_OK,
            )
        )
    ).scalar_one_or_none()


# -----------------------------
# Teams
# -----------------------------
async def get_team(db: AsyncSession, org_id: uuid.UUID, team_id: uuid.UUID) -> Team:
    team = await db.get(Team, team_id)
    if team is None or team.org_id != org_id:
        raise not_found("Team")
    return team


async def _ensure_unique_team_name(
    db: AsyncSession, org_id: uuid.UUID, name: str, exclude_id: Optional[uuid.UUID] = None
) -> None:
    stmt = select(Team.id).where(Team.org_id == org_id, func.lower(Team.name) == name.lower())
    if exclude_id is not None:
        stmt = stmt.where(Team.id != exclude_id)
    if (await db.execute(stmt)).first() is not None:
        raise conflict(f"A team named '{name}' already exists")


async def create_team(
    db: AsyncSession,
    *,
    org_id: uuid.UUID,
    actor: User,
    name: str,
    integration_id: uuid.UUID,
    channel_id: str,
    timezone: str = "UTC",
) -> Team:
    name = name.strip()
    if not is_valid_timezone(timezone):
        raise validation_error(f"Invalid timezone: {timezone}")

    integration = await db.get(Integration, integration_id)
    if integration is None or integration.org_id != org_id:
        raise not_found("Integration")
    if integration.token_status != TOKEN_STATUS_OK:
        raise validation_error("Integration is not connected")

    await _ensure_unique_team_name(db, org_id, name)
    await enforce_plan_limit(db, org_id, ACTION_CREATE_TEAM)

    team = Team(
        org_id=org_id,
        integration_id=integration.id,
        channel_id=channel_id,
        name=name,
        timezone=timezone,
        created_by_id=actor.id,
    )
    db.add(team)
    await db.flush()

    await audit.log_audit(
        db,
        org_id=org_id,
        actor_user_id=actor.id,
        action="team.created",
        category=audit.CATEGORY_DATA_MODIFICATION,
        resource_type="team",
        resource_id=team.id,
        request_data={"name": name, "channel_id": channel_id, "timezone": timezone},
    )
    await db.commit()
    return team


async def list_teams(db: AsyncSession, org_id: uuid.UUID) -> list[Team]:
    stmt = select(Team).where(Team.org_id == org_id).order_by(Team.name.asc())
    return list((await db.execute(stmt)).scalars().all())


async def list_team_members(db: AsyncSession, team_id: uuid.UUID, *, active_only: bool = False) -> list[TeamMember]:
    stmt = select(TeamMember).where(TeamMember.team_id == team_id)
    if active_only:
        stmt = stmt.where(TeamMember.active.is_(True))
    return list((await db.execute(stmt.order_by(TeamMember.name.asc()))).scalars().all())


async def get_team_details(db: AsyncSession, org_id: uuid.UUID, team_id: uuid.UUID) -> dict[str, Any]:
    team = await get_team(db, org_id, team_id)
    members = await list_team_members(db, team.id)
    config_count = (
        await db.execute(
            select(func.count(StandupConfig.id)).where(
                StandupConfig.team_id == team.id, StandupConfig.is_active.is_(True)
            )
        )
    ).scalar() or 0
    return {"team": team, "members": members, "active_config_count": int(config_count)}


async def update_team(
    db: AsyncSession, *, org_id: uuid.UUID, team_id: uuid.UUID, actor: User, data: dict[str, Any]
) -> Team:
    team = await get_team(db, org_id, team_id)

    if "name" in data and data["name"] is not None:
        data["name"] = data["name"].strip()
        await _ensure_unique_team_name(db, org_id, data["name"], exclude_id=team.id)
    if "timezone" in data and data["timezone"] is not None and not is_valid_timezone(data["timezone"]):
        raise validation_error(f"Invalid timezone: {data['timezone']}")

    for field in ("name", "channel_id", "timezone"):
        if data.get(field) is not None:
            setattr(team, field, data[field])

    await audit.log_audit(
        db,
        org_id=org_id,
        actor_user_id=actor.id,
        action="team.updated",
        category=audit.CATEGORY_DATA_MODIFICATION,
        resource_type="team",
        resource_id=team.id,
        request_data=data,
    )
    await db.commit()
    return team


async def delete_team(db: AsyncSession, *, org_id: uuid.UUID, team_id: uuid.UUID, actor: User) -> None:
    team = await get_team(db, org_id, team_id)
    await db.delete(team)
    await audit.log_audit(
        db,
        org_id=org_id,
        actor_user_id=actor.id,
        action="team.deleted",
        category=audit.CATEGORY_DATA_MODIFICATION,
        severity=audit.SEVERITY_HIGH,
        resource_type="team",
        resource_id=team.id,
        request_data={"name": team.name},
    )
    await db.commit()


async def add_team_member(
    db: AsyncSession,
    *,
    org_id: uuid.UUID,
    team_id: uuid.UUID,
    actor: User,
    platform_user_id: str,
    name: str,
    user_id: Optional[uuid.UUID] = None,
) -> TeamMember:
    team = await get_team(db, org_id, team_id)

    member = (
        await db.execute(
            select(TeamMember).where(TeamMember.team_id == team.id, TeamMember.platform_user_id == platform_user_id)
        )
    ).scalar_one_or_none()
    if member is not None and member.active:
        raise conflict("This Slack user is already a member of the team")

    if member is None:
        member = TeamMember(team_id=team.id, platform_user_id=platform_user_id)
        db.add(member)
    member.name = name.strip()
    member.user_id = user_id
    member.active = True
    await db.flush()

    await audit.log_audit(
        db,
        org_id=org_id,
        actor_user_id=actor.id,
        action="team.member_added",
        category=audit.CATEGORY_DATA_MODIFICATION,
        resource_type="team_member",
        resource_id=member.id,
        request_data={"team_id": team.id, "platform_user_id": platform_user_id},
    )
    await db.commit()
    return member


async def deactivate_team_member(
    db: AsyncSession, *, org_id: uuid.UUID, team_id: uuid.UUID, member_id: uuid.UUID, actor: User
) -> TeamMember:
    team = await get_team(db, org_id, team_id)
    member = await db.get(TeamMember, member_id)
    if member is None or member.team_id != team.id:
        raise not_found("Team member")

    member.active = False
    await audit.log_audit(
        db,
        org_id=org_id,
        actor_user_id=actor.id,
        action="team.member_removed",
        category=audit.CATEGORY_DATA_MODIFICATION,
        resource_type="team_member",
        resource_id=member.id,
    )
    await db.commit()
    return member
