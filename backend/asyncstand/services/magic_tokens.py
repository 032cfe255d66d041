from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog
from fastapi import status
from sqlalchemy.ext.asyncio import AsyncSession

from asyncstand.core.config import settings
from asyncstand.core.errors import INVALID_TOKEN, STANDUP_CLOSED, api_error
from asyncstand.core.security import create_magic_token, decode_magic_token
from asyncstand.core.standup_rules import can_still_submit
from asyncstand.models.standup_instance import StandupInstance
from asyncstand.models.team import Team, TeamMember
from asyncstand.services.answers import submit_full_response
from asyncstand.services.standup_instances import snapshot_member_ids

logger = structlog.get_logger(__name__)


def submission_url(token: str) -> str:
    return f"{settings.APP_URL.rstrip('/')}/standup/respond/{token}"


def generate_magic_token(instance: StandupInstance, member: TeamMember, org_id: uuid.UUID) -> dict[str, Any]:
    token = create_magic_token(
        {
            "standupInstanceId": str(instance.id),
            "teamMemberId": str(member.id),
            "platformUserId": member.platform_user_id,
            "orgId": str(org_id),
        }
    )
    return {
        "team_member_id": member.id,
        "member_name": member.name,
        "token": token,
        "url": submission_url(token),
        "expires_at": datetime.now(timezone.utc) + timedelta(hours=settings.MAGIC_LINK_EXPIRY_HOURS),
    }


async def generate_tokens_for_instance(
    db: AsyncSession, instance: StandupInstance, org_id: uuid.UUID
) -> list[dict[str, Any]]:
    """One magic link per participating, still active, team member."""
    tokens = []
    for member_id in sorted(snapshot_member_ids(instance)):
        member = await db.get(TeamMember, uuid.UUID(member_id))
        if member is None or not member.active:
            continue
        tokens.append(generate_magic_token(instance, member, org_id))
    return tokens


def _invalid(message: str = "Invalid or expired link"):
    return api_error(status.HTTP_401_UNAUTHORIZED, INVALID_TOKEN, message)


async def validate_magic_token(db: AsyncSession, token: str) -> dict[str, Any]:
    """
    Resolve a magic token to its instance and member, checking that the
    standup is still collecting and the member may answer.
    """
    claims = decode_magic_token(token)
    if claims is None:
        raise _invalid()

    try:
        instance_id = uuid.UUID(str(claims.get("standupInstanceId")))
        member_id = uuid.UUID(str(claims.get("teamMemberId")))
    except ValueError:
        raise _invalid()

    instance = await db.get(StandupInstance, instance_id)
    if instance is None:
        raise _invalid("Standup no longer exists")

    team = await db.get(Team, instance.team_id)
    if team is None or str(team.org_id) != str(claims.get("orgId")):
        raise _invalid()

    member = await db.get(TeamMember, member_id)
    if member is None or not member.active or member.team_id != instance.team_id:
        raise _invalid("Team member is no longer active")
    if str(member.id) not in snapshot_member_ids(instance):
        raise _invalid("Team member is not participating in this standup")

    if not can_still_submit(instance):
        raise api_error(status.HTTP_400_BAD_REQUEST, STANDUP_CLOSED, "This standup is no longer accepting responses")

    return {"instance": instance, "member": member, "team": team, "claims": claims}


async def submit_with_magic_token(db: AsyncSession, token: str, answers: list[dict[str, Any]]):
    resolved = await validate_magic_token(db, token)
    return await submit_full_response(
        db,
        instance_id=resolved["instance"].id,
        team_member_id=resolved["member"].id,
        answers=answers,
        source="magic_link",
    )
