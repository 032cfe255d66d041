from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any, Iterable, Optional

import structlog
from fastapi import status
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from asyncstand.core.errors import (
    NOT_PARTICIPATING,
    STANDUP_CLOSED,
    api_error,
    not_found,
    validation_error,
)
from asyncstand.core.standup_rules import can_still_submit
from asyncstand.core.timeutil import as_utc, utcnow
from asyncstand.models.standup_instance import Answer, ParticipationSnapshot, StandupInstance
from asyncstand.models.team import Team, TeamMember
from asyncstand.services import audit
from asyncstand.services.standup_instances import snapshot_member_ids

logger = structlog.get_logger(__name__)


def _questions(instance: StandupInstance) -> list[str]:
    return list((instance.config_snapshot or {}).get("questions", []))


def _snapshot_members(instance: StandupInstance) -> list[dict[str, Any]]:
    return list((instance.config_snapshot or {}).get("participatingMembers", []))


async def load_instance(db: AsyncSession, instance_id: uuid.UUID) -> StandupInstance:
    instance = await db.get(StandupInstance, instance_id)
    if instance is None:
        raise not_found("Standup instance")
    return instance


def ensure_can_submit(
    instance: StandupInstance,
    team_member_id: uuid.UUID,
    question_indices: Iterable[int],
    *,
    allow_non_participating: bool = False,
    allow_late_submission: bool = False,
    now: Optional[datetime] = None,
) -> None:
    if not allow_late_submission and not can_still_submit(instance, now):
        raise api_error(
            status.HTTP_400_BAD_REQUEST,
            STANDUP_CLOSED,
            "This standup is no longer accepting responses",
        )

    if not allow_non_participating and str(team_member_id) not in snapshot_member_ids(instance):
        raise api_error(
            status.HTTP_403_FORBIDDEN,
            NOT_PARTICIPATING,
            "Team member is not participating in this standup",
        )

    total = len(_questions(instance))
    bad = [i for i in question_indices if not 0 <= i < total]
    if bad:
        raise validation_error(f"Question index must be between 0 and {total - 1}", question_indices=bad)


async def _upsert_answer(
    db: AsyncSession,
    instance_id: uuid.UUID,
    team_member_id: uuid.UUID,
    question_index: int,
    text: str,
    now: datetime,
) -> Answer:
    answer = await db.get(Answer, (instance_id, team_member_id, question_index))
    if answer is None:
        answer = Answer(
            standup_instance_id=instance_id,
            team_member_id=team_member_id,
            question_index=question_index,
        )
        db.add(answer)
    answer.text = text
    answer.submitted_at = now
    return answer


async def submit_answer(
    db: AsyncSession,
    *,
    instance_id: uuid.UUID,
    team_member_id: uuid.UUID,
    question_index: int,
    text: str,
    now: Optional[datetime] = None,
) -> Answer:
    """Upsert one answer keyed on (instance, member, question index)."""
    now = now or utcnow()
    instance = await load_instance(db, instance_id)
    ensure_can_submit(instance, team_member_id, [question_index], now=now)

    answer = await _upsert_answer(db, instance.id, team_member_id, question_index, text.strip(), now)
    await db.commit()
    return answer


async def submit_full_response(
    db: AsyncSession,
    *,
    instance_id: uuid.UUID,
    team_member_id: uuid.UUID,
    answers: list[dict[str, Any]],
    allow_non_participating: bool = False,
    allow_late_submission: bool = False,
    source: str = "web",
    now: Optional[datetime] = None,
) -> list[Answer]:
    """
    Store every non-blank answer of one member in a single transaction.
    answers: [{"question_index": int, "text": str}]
    """
    now = now or utcnow()
    instance = await load_instance(db, instance_id)

    # last answer wins for a repeated index
    by_index = {
        int(a["question_index"]): str(a.get("text") or "").strip()
        for a in answers
        if str(a.get("text") or "").strip()
    }
    cleaned = sorted(by_index.items())
    if not cleaned:
        raise validation_error("At least one answer is required")

    ensure_can_submit(
        instance,
        team_member_id,
        [i for i, _ in cleaned],
        allow_non_participating=allow_non_participating,
        allow_late_submission=allow_late_submission,
        now=now,
    )

    stored = [await _upsert_answer(db, instance.id, team_member_id, i, t, now) for i, t in cleaned]

    team = await db.get(Team, instance.team_id)
    await audit.log_audit(
        db,
        org_id=team.org_id if team else None,
        actor_type=audit.ACTOR_USER if source == "web" else audit.ACTOR_SERVICE,
        action="standup.response.submitted",
        category=audit.CATEGORY_STANDUP,
        resource_type="standup_instance",
        resource_id=instance.id,
        request_data={"team_member_id": team_member_id, "answers": len(stored), "source": source},
        tags=["standup", "response", source],
    )
    await db.commit()
    logger.info(
        "standup_response_submitted",
        instance_id=str(instance.id),
        team_member_id=str(team_member_id),
        answers=len(stored),
        source=source,
    )
    return stored


async def _answers_with_names(db: AsyncSession, instance_id: uuid.UUID) -> list[tuple[Answer, TeamMember]]:
    stmt = (
        select(Answer, TeamMember)
        .join(TeamMember, TeamMember.id == Answer.team_member_id)
        .where(Answer.standup_instance_id == instance_id)
        .order_by(Answer.question_index.asc())
    )
    return [(a, m) for a, m in (await db.execute(stmt)).all()]


async def get_answers(db: AsyncSession, instance: StandupInstance) -> list[dict[str, Any]]:
    """Answers grouped per member, members sorted by name."""
    total = len(_questions(instance))
    grouped: dict[uuid.UUID, dict[str, Any]] = {}
    for answer, member in await _answers_with_names(db, instance.id):
        entry = grouped.setdefault(
            member.id,
            {"team_member_id": member.id, "member_name": member.name, "answers": []},
        )
        entry["answers"].append(
            {"question_index": answer.question_index, "text": answer.text, "submitted_at": answer.submitted_at}
        )

    result = []
    for entry in grouped.values():
        entry["answers"].sort(key=lambda a: a["question_index"])
        entry["is_complete"] = len(entry["answers"]) >= total
        result.append(entry)
    return sorted(result, key=lambda e: e["member_name"].lower())


async def answered_indices(db: AsyncSession, instance_id: uuid.UUID) -> dict[str, set[int]]:
    rows = (
        await db.execute(
            select(Answer.team_member_id, Answer.question_index).where(Answer.standup_instance_id == instance_id)
        )
    ).all()
    answered: dict[str, set[int]] = {}
    for member_id, index in rows:
        answered.setdefault(str(member_id), set()).add(index)
    return answered


async def get_missing_answers(db: AsyncSession, instance: StandupInstance) -> list[dict[str, Any]]:
    total = len(_questions(instance))
    answered = await answered_indices(db, instance.id)
    missing = []
    for member in _snapshot_members(instance):
        gaps = [i for i in range(total) if i not in answered.get(member["id"], set())]
        if gaps:
            missing.append(
                {
                    "team_member_id": member["id"],
                    "member_name": member["name"],
                    "platform_user_id": member.get("platformUserId"),
                    "missing_questions": gaps,
                }
            )
    return missing


async def has_answers(db: AsyncSession, instance_id: uuid.UUID, team_member_id: uuid.UUID) -> bool:
    count = (
        await db.execute(
            select(func.count()).select_from(Answer).where(
                Answer.standup_instance_id == instance_id, Answer.team_member_id == team_member_id
            )
        )
    ).scalar() or 0
    return count > 0


async def is_response_complete(db: AsyncSession, instance: StandupInstance, team_member_id: uuid.UUID) -> bool:
    answered = await answered_indices(db, instance.id)
    return len(answered.get(str(team_member_id), set())) >= len(_questions(instance))


async def delete_member_responses(
    db: AsyncSession,
    *,
    org_id: uuid.UUID,
    instance: StandupInstance,
    team_member_id: uuid.UUID,
    actor_user_id: Optional[uuid.UUID] = None,
) -> int:
    result = await db.execute(
        delete(Answer).where(Answer.standup_instance_id == instance.id, Answer.team_member_id == team_member_id)
    )
    deleted = result.rowcount or 0
    await audit.log_audit(
        db,
        org_id=org_id,
        actor_user_id=actor_user_id,
        action="standup.response.deleted",
        category=audit.CATEGORY_STANDUP,
        severity=audit.SEVERITY_MEDIUM,
        resource_type="standup_instance",
        resource_id=instance.id,
        request_data={"team_member_id": team_member_id, "deleted": deleted},
        tags=["standup", "response"],
    )
    await db.commit()
    return deleted


async def generate_participation_snapshot(
    db: AsyncSession, instance: StandupInstance, note: Optional[str] = None
) -> ParticipationSnapshot:
    answered = await answered_indices(db, instance.id)
    members = _snapshot_members(instance)
    snapshot = ParticipationSnapshot(
        standup_instance_id=instance.id,
        answers_count=sum(len(v) for v in answered.values()),
        members_missing=sum(1 for m in members if m["id"] not in answered),
        note=note,
    )
    db.add(snapshot)
    await db.flush()
    return snapshot


async def calculate_completion_stats(db: AsyncSession, instance: StandupInstance) -> dict[str, Any]:
    total_questions = len(_questions(instance))
    members = _snapshot_members(instance)
    total_members = len(members)

    first_answer_at: dict[str, datetime] = {}
    answered: dict[str, set[int]] = {}
    rows = (
        await db.execute(
            select(Answer.team_member_id, Answer.question_index, Answer.submitted_at).where(
                Answer.standup_instance_id == instance.id
            )
        )
    ).all()
    for member_id, index, submitted_at in rows:
        key = str(member_id)
        answered.setdefault(key, set()).add(index)
        submitted_at = as_utc(submitted_at)
        if key not in first_answer_at or submitted_at < first_answer_at[key]:
            first_answer_at[key] = submitted_at

    member_ids = {m["id"] for m in members}
    responded = [k for k in answered if k in member_ids]
    complete = [k for k in responded if len(answered[k]) >= total_questions]

    created_at = as_utc(instance.created_at)
    response_minutes = [
        (first_answer_at[k] - created_at).total_seconds() / 60 for k in responded
    ]
    average = round(sum(response_minutes) / len(response_minutes), 1) if response_minutes else None

    return {
        "total_members": total_members,
        "responded_members": len(responded),
        "complete_members": len(complete),
        "average_response_time_minutes": average,
        "response_rate": round(len(responded) / total_members * 100) if total_members else 0,
        "completion_rate": round(len(complete) / total_members * 100) if total_members else 0,
    }


async def get_instance_details(db: AsyncSession, instance: StandupInstance) -> dict[str, Any]:
    """Instance plus its submission window, completion stats and missing answers."""
    return {
        "instance": instance,
        "can_submit": can_still_submit(instance),
        "stats": await calculate_completion_stats(db, instance),
        "missing": await get_missing_answers(db, instance),
    }


async def get_response_history(
    db: AsyncSession,
    *,
    org_id: uuid.UUID,
    team_id: uuid.UUID,
    start: Optional[date] = None,
    end: Optional[date] = None,
    limit: int = 30,
) -> list[dict[str, Any]]:
    stmt = (
        select(StandupInstance)
        .join(Team, Team.id == StandupInstance.team_id)
        .where(Team.org_id == org_id, StandupInstance.team_id == team_id)
        .order_by(StandupInstance.target_date.desc())
        .limit(min(limit, 200))
    )
    if start is not None:
        stmt = stmt.where(StandupInstance.target_date >= start)
    if end is not None:
        stmt = stmt.where(StandupInstance.target_date <= end)

    history = []
    for instance in (await db.execute(stmt)).scalars().all():
        history.append(
            {
                "instance_id": instance.id,
                "target_date": instance.target_date,
                "state": instance.state,
                "stats": await calculate_completion_stats(db, instance),
            }
        )
    return history
