# asyncstand/api/v1/standups.py
from __future__ import annotations

import uuid
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from asyncstand.api.deps.org import get_current_org, require_org_roles
from asyncstand.api.deps.permissions import require_permissions
from asyncstand.api.v1.auth import get_current_user
from asyncstand.core.config import settings
from asyncstand.core.errors import forbidden, not_found
from asyncstand.core.permissions import PERM, ROLE_ADMIN, ROLE_OWNER, normalize_role
from asyncstand.db.session import get_db
from asyncstand.models.org_member import OrgMember
from asyncstand.models.organization import Organization
from asyncstand.models.standup_instance import StandupInstance
from asyncstand.models.team import TeamMember
from asyncstand.models.user import User
from asyncstand.schemas.standup import (
    AnswerOut,
    AnswerSubmit,
    CompletionStats,
    CreateForDate,
    FullResponseSubmit,
    HistoryItem,
    InstanceDetailsOut,
    MagicTokenOut,
    MemberAnswersOut,
    StandupInstanceCreate,
    StandupInstanceOut,
    StateUpdate,
)
from asyncstand.services import answers as answer_service
from asyncstand.services import standup_instances as instance_service
from asyncstand.services.magic_tokens import generate_tokens_for_instance
from asyncstand.services.standup_configs import get_config
from asyncstand.services.teams import get_team
from asyncstand.services.usage import ACTION_CREATE_STANDUP, enforce_plan_limit

router = APIRouter(prefix="/standups", tags=["standups"])


async def _ensure_may_answer_for(
    db: AsyncSession, member: OrgMember, user: User, instance: StandupInstance, team_member_id: uuid.UUID
) -> None:
    """Admins answer for anyone on the team; others only for their own linked team member."""
    team_member = await db.get(TeamMember, team_member_id)
    if team_member is None or team_member.team_id != instance.team_id:
        raise not_found("Team member")
    if normalize_role(member.role) in {ROLE_OWNER, ROLE_ADMIN}:
        return
    if team_member.user_id != user.id:
        raise forbidden("You can only submit your own standup responses")


# ---------------------------------------------------------
# Instances
# ---------------------------------------------------------
@router.get("", response_model=List[StandupInstanceOut])
async def list_standups(
    team_id: Optional[uuid.UUID] = Query(default=None),
    start: Optional[date] = Query(default=None),
    end: Optional[date] = Query(default=None),
    limit: int = Query(default=50, ge=1, le=200),
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.STANDUPS_READ)),
    db: AsyncSession = Depends(get_db),
):
    return await instance_service.list_instances(db, org.id, team_id=team_id, start=start, end=end, limit=limit)


@router.get("/active", response_model=List[StandupInstanceOut])
async def list_active_standups(
    team_id: Optional[uuid.UUID] = Query(default=None),
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.STANDUPS_READ)),
    db: AsyncSession = Depends(get_db),
):
    return await instance_service.get_active_instances(db, org.id, team_id)


@router.post("", response_model=StandupInstanceOut, status_code=status.HTTP_201_CREATED)
async def create_standup(
    payload: StandupInstanceCreate,
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.STANDUPS_WRITE)),
    db: AsyncSession = Depends(get_db),
):
    """Manual creation; returns the existing instance when one exists for the date."""
    config = await get_config(db, org.id, payload.config_id)
    if await instance_service.find_instance_for_date(db, config, payload.target_date) is None:
        await enforce_plan_limit(db, org.id, ACTION_CREATE_STANDUP)
    instance, _created = await instance_service.create_standup_instance(db, config, payload.target_date)
    await db.commit()
    return instance


@router.post("/create-for-date")
async def create_standups_for_date(
    payload: CreateForDate,
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.STANDUPS_WRITE)),
    db: AsyncSession = Depends(get_db),
):
    return await instance_service.create_instances_for_date(db, payload.target_date, org_id=org.id)


@router.post("/archive")
async def archive_standups(
    days: int = Query(default=settings.INSTANCE_RETENTION_DAYS, ge=1),
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_org_roles("owner")),
    db: AsyncSession = Depends(get_db),
):
    return {"archived": await instance_service.archive_old_instances(db, days, org_id=org.id)}


@router.get("/{instance_id}", response_model=InstanceDetailsOut)
async def get_standup(
    instance_id: uuid.UUID,
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.STANDUPS_READ)),
    db: AsyncSession = Depends(get_db),
):
    instance = await instance_service.get_instance(db, org.id, instance_id)
    details = await answer_service.get_instance_details(db, instance)
    return InstanceDetailsOut(
        **StandupInstanceOut.model_validate(details["instance"]).model_dump(),
        can_submit=details["can_submit"],
        stats=CompletionStats(**details["stats"]),
        missing=details["missing"],
    )


@router.patch("/{instance_id}/state", response_model=StandupInstanceOut)
async def update_standup_state(
    instance_id: uuid.UUID,
    payload: StateUpdate,
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.STANDUPS_WRITE)),
    db: AsyncSession = Depends(get_db),
):
    instance = await instance_service.get_instance(db, org.id, instance_id)
    return await instance_service.update_instance_state(db, instance, payload.state)


# ---------------------------------------------------------
# Answers
# ---------------------------------------------------------
@router.get("/{instance_id}/answers", response_model=List[MemberAnswersOut])
async def list_answers(
    instance_id: uuid.UUID,
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.STANDUPS_READ)),
    db: AsyncSession = Depends(get_db),
):
    instance = await instance_service.get_instance(db, org.id, instance_id)
    return await answer_service.get_answers(db, instance)


@router.post("/{instance_id}/answers", response_model=AnswerOut)
async def submit_answer(
    instance_id: uuid.UUID,
    payload: AnswerSubmit,
    org: Organization = Depends(get_current_org),
    member: OrgMember = Depends(require_permissions(PERM.STANDUPS_RESPOND)),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    instance = await instance_service.get_instance(db, org.id, instance_id)
    await _ensure_may_answer_for(db, member, user, instance, payload.team_member_id)
    return await answer_service.submit_answer(
        db,
        instance_id=instance.id,
        team_member_id=payload.team_member_id,
        question_index=payload.question_index,
        text=payload.text,
    )


@router.post("/{instance_id}/responses", response_model=List[AnswerOut])
async def submit_full_response(
    instance_id: uuid.UUID,
    payload: FullResponseSubmit,
    org: Organization = Depends(get_current_org),
    member: OrgMember = Depends(require_permissions(PERM.STANDUPS_RESPOND)),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    instance = await instance_service.get_instance(db, org.id, instance_id)
    await _ensure_may_answer_for(db, member, user, instance, payload.team_member_id)
    return await answer_service.submit_full_response(
        db,
        instance_id=instance.id,
        team_member_id=payload.team_member_id,
        answers=[a.model_dump() for a in payload.answers],
    )


@router.delete("/{instance_id}/responses/{team_member_id}")
async def delete_member_responses(
    instance_id: uuid.UUID,
    team_member_id: uuid.UUID,
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.STANDUPS_WRITE)),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    instance = await instance_service.get_instance(db, org.id, instance_id)
    deleted = await answer_service.delete_member_responses(
        db, org_id=org.id, instance=instance, team_member_id=team_member_id, actor_user_id=user.id
    )
    return {"deleted": deleted}


@router.get("/{instance_id}/missing")
async def list_missing_answers(
    instance_id: uuid.UUID,
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.STANDUPS_READ)),
    db: AsyncSession = Depends(get_db),
):
    instance = await instance_service.get_instance(db, org.id, instance_id)
    return await answer_service.get_missing_answers(db, instance)


@router.get("/{instance_id}/members/{team_member_id}/complete")
async def response_complete(
    instance_id: uuid.UUID,
    team_member_id: uuid.UUID,
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.STANDUPS_READ)),
    db: AsyncSession = Depends(get_db),
):
    instance = await instance_service.get_instance(db, org.id, instance_id)
    return {"complete": await answer_service.is_response_complete(db, instance, team_member_id)}


@router.get("/{instance_id}/stats", response_model=CompletionStats)
async def completion_stats(
    instance_id: uuid.UUID,
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.STANDUPS_READ)),
    db: AsyncSession = Depends(get_db),
):
    instance = await instance_service.get_instance(db, org.id, instance_id)
    return await answer_service.calculate_completion_stats(db, instance)


@router.post("/{instance_id}/participation-snapshot")
async def capture_participation(
    instance_id: uuid.UUID,
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.STANDUPS_WRITE)),
    db: AsyncSession = Depends(get_db),
):
    instance = await instance_service.get_instance(db, org.id, instance_id)
    snapshot = await answer_service.generate_participation_snapshot(db, instance, note="manual")
    await db.commit()
    return {
        "answers_count": snapshot.answers_count,
        "members_missing": snapshot.members_missing,
        "captured_at": snapshot.captured_at,
    }


@router.get("/{instance_id}/magic-tokens", response_model=List[MagicTokenOut])
async def magic_tokens(
    instance_id: uuid.UUID,
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.STANDUPS_WRITE)),
    db: AsyncSession = Depends(get_db),
):
    instance = await instance_service.get_instance(db, org.id, instance_id)
    return await generate_tokens_for_instance(db, instance, org.id)


@router.get("/teams/{team_id}/history", response_model=List[HistoryItem])
async def response_history(
    team_id: uuid.UUID,
    start: Optional[date] = Query(default=None),
    end: Optional[date] = Query(default=None),
    limit: int = Query(default=30, ge=1, le=200),
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.STANDUPS_READ)),
    db: AsyncSession = Depends(get_db),
):
    team = await get_team(db, org.id, team_id)
    return await answer_service.get_response_history(
        db, org_id=org.id, team_id=team.id, start=start, end=end, limit=limit
    )
