from __future__ import annotations

import uuid
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from asyncstand.api.deps.org import get_current_org
from asyncstand.api.deps.permissions import require_permissions
from asyncstand.api.v1.auth import get_current_user
from asyncstand.core.permissions import PERM
from asyncstand.db.session import get_db
from asyncstand.models.org_member import OrgMember
from asyncstand.models.organization import Organization
from asyncstand.models.user import User
from asyncstand.schemas.standup import (
    ParticipationOut,
    ParticipationUpdate,
    StandupConfigCreate,
    StandupConfigOut,
    StandupConfigUpdate,
)
from asyncstand.schemas.team import TeamMemberOut
from asyncstand.services import standup_configs as config_service
from asyncstand.services.standup_instances import calculate_next_standup_date

router = APIRouter(tags=["standup-configs"])


@router.post(
    "/teams/{team_id}/standup-configs",
    response_model=StandupConfigOut,
    status_code=status.HTTP_201_CREATED,
)
async def create_standup_config(
    team_id: uuid.UUID,
    payload: StandupConfigCreate,
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.STANDUPS_WRITE)),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    data = payload.model_dump(exclude={"member_ids"}, exclude_none=True)
    return await config_service.create_config(
        db, org_id=org.id, team_id=team_id, actor=user, data=data, member_ids=payload.member_ids
    )


@router.get("/teams/{team_id}/standup-configs", response_model=List[StandupConfigOut])
async def list_standup_configs(
    team_id: uuid.UUID,
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.STANDUPS_READ)),
    db: AsyncSession = Depends(get_db),
):
    return await config_service.list_configs(db, org.id, team_id)


@router.get("/standup-configs/{config_id}", response_model=StandupConfigOut)
async def get_standup_config(
    config_id: uuid.UUID,
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.STANDUPS_READ)),
    db: AsyncSession = Depends(get_db),
):
    return await config_service.get_config(db, org.id, config_id)


@router.patch("/standup-configs/{config_id}", response_model=StandupConfigOut)
async def update_standup_config(
    config_id: uuid.UUID,
    payload: StandupConfigUpdate,
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.STANDUPS_WRITE)),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await config_service.update_config(
        db, org_id=org.id, config_id=config_id, actor=user, data=payload.model_dump(exclude_unset=True)
    )


@router.delete("/standup-configs/{config_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_standup_config(
    config_id: uuid.UUID,
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.STANDUPS_WRITE)),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    await config_service.delete_config(db, org_id=org.id, config_id=config_id, actor=user)


@router.put("/standup-configs/{config_id}/participation", response_model=List[ParticipationOut])
async def update_participation(
    config_id: uuid.UUID,
    payload: ParticipationUpdate,
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.STANDUPS_WRITE)),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await config_service.update_member_participation(
        db,
        org_id=org.id,
        config_id=config_id,
        actor=user,
        updates=[m.model_dump() for m in payload.members],
    )


@router.get("/standup-configs/{config_id}/participants", response_model=List[TeamMemberOut])
async def list_participants(
    config_id: uuid.UUID,
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.STANDUPS_READ)),
    db: AsyncSession = Depends(get_db),
):
    config = await config_service.get_config(db, org.id, config_id)
    return await config_service.get_participating_members(db, config)


@router.get("/standup-configs/{config_id}/next")
async def next_standup(
    config_id: uuid.UUID,
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.STANDUPS_READ)),
    db: AsyncSession = Depends(get_db),
):
    config = await config_service.get_config(db, org.id, config_id)
    next_date = calculate_next_standup_date(config) if config.is_active else None
    return {"config_id": config.id, "next_date": next_date}
