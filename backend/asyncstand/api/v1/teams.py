from __future__ import annotations

import uuid
from typing import List

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from asyncstand.api.deps.org import get_current_org
from asyncstand.api.deps.permissions import require_permissions
from asyncstand.api.v1.auth import get_current_user
from asyncstand.core.permissions import PERM
from asyncstand.db.session import get_db
from asyncstand.models.org_member import OrgMember
from asyncstand.models.organization import Organization
from asyncstand.models.user import User
from asyncstand.schemas.team import (
    IntegrationConnect,
    IntegrationOut,
    TeamCreate,
    TeamDetailsOut,
    TeamMemberCreate,
    TeamMemberOut,
    TeamOut,
    TeamUpdate,
)
from asyncstand.services import teams as team_service

integrations_router = APIRouter(prefix="/integrations", tags=["integrations"])
router = APIRouter(prefix="/teams", tags=["teams"])


# ---------------------------------------------------------
# Integrations
# ---------------------------------------------------------
@integrations_router.post("/slack", response_model=IntegrationOut, status_code=status.HTTP_201_CREATED)
async def connect_slack(
    payload: IntegrationConnect,
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.INTEGRATIONS_WRITE)),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await team_service.connect_slack_integration(
        db,
        org_id=org.id,
        actor=user,
        external_team_id=payload.external_team_id,
        bot_token=payload.bot_token,
        bot_user_id=payload.bot_user_id,
        workspace_name=payload.workspace_name,
        scopes=payload.scopes,
    )


@integrations_router.get("", response_model=List[IntegrationOut])
async def list_integrations(
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.INTEGRATIONS_READ)),
    db: AsyncSession = Depends(get_db),
):
    return await team_service.list_integrations(db, org.id)


@integrations_router.delete("/{integration_id}", response_model=IntegrationOut)
async def disconnect_integration(
    integration_id: uuid.UUID,
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.INTEGRATIONS_WRITE)),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await team_service.disconnect_integration(db, org_id=org.id, integration_id=integration_id, actor=user)


# ---------------------------------------------------------
# Teams
# ---------------------------------------------------------
@router.post("", response_model=TeamOut, status_code=status.HTTP_201_CREATED)
async def create_team(
    payload: TeamCreate,
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.TEAMS_WRITE)),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await team_service.create_team(
        db,
        org_id=org.id,
        actor=user,
        name=payload.name,
        integration_id=payload.integration_id,
        channel_id=payload.channel_id,
        timezone=payload.timezone,
    )


@router.get("", response_model=List[TeamOut])
async def list_teams(
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.TEAMS_READ)),
    db: AsyncSession = Depends(get_db),
):
    return await team_service.list_teams(db, org.id)


@router.get("/{team_id}", response_model=TeamDetailsOut)
async def get_team(
    team_id: uuid.UUID,
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.TEAMS_READ)),
    db: AsyncSession = Depends(get_db),
):
    details = await team_service.get_team_details(db, org.id, team_id)
    team = details["team"]
    return TeamDetailsOut(
        **TeamOut.model_validate(team).model_dump(),
        members=[TeamMemberOut.model_validate(m) for m in details["members"]],
        active_config_count=details["active_config_count"],
    )


@router.patch("/{team_id}", response_model=TeamOut)
async def update_team(
    team_id: uuid.UUID,
    payload: TeamUpdate,
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.TEAMS_WRITE)),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await team_service.update_team(
        db, org_id=org.id, team_id=team_id, actor=user, data=payload.model_dump(exclude_unset=True)
    )


@router.delete("/{team_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_team(
    team_id: uuid.UUID,
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.TEAMS_WRITE)),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    await team_service.delete_team(db, org_id=org.id, team_id=team_id, actor=user)


# ---------------------------------------------------------
# Team members
# ---------------------------------------------------------
@router.get("/{team_id}/members", response_model=List[TeamMemberOut])
async def list_team_members(
    team_id: uuid.UUID,
    active_only: bool = Query(default=False),
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.TEAMS_READ)),
    db: AsyncSession = Depends(get_db),
):
    team = await team_service.get_team(db, org.id, team_id)
    return await team_service.list_team_members(db, team.id, active_only=active_only)


@router.post("/{team_id}/members", response_model=TeamMemberOut, status_code=status.HTTP_201_CREATED)
async def add_team_member(
    team_id: uuid.UUID,
    payload: TeamMemberCreate,
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.TEAMS_WRITE)),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await team_service.add_team_member(
        db,
        org_id=org.id,
        team_id=team_id,
        actor=user,
        platform_user_id=payload.platform_user_id,
        name=payload.name,
        user_id=payload.user_id,
    )


@router.delete("/{team_id}/members/{member_id}", response_model=TeamMemberOut)
async def deactivate_team_member(
    team_id: uuid.UUID,
    member_id: uuid.UUID,
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.TEAMS_WRITE)),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await team_service.deactivate_team_member(
        db, org_id=org.id, team_id=team_id, member_id=member_id, actor=user
    )
