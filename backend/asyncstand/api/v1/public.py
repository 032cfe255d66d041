"""
Magic-link endpoints used by the response page. No bearer auth: the token
itself carries the instance, team member and org.
"""
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from asyncstand.core.standup_rules import response_deadline
from asyncstand.db.session import get_db
from asyncstand.models.standup_instance import Answer
from asyncstand.schemas.standup import AnswerOut, MagicSubmit, MagicTokenInfo
from asyncstand.services.magic_tokens import submit_with_magic_token, validate_magic_token

router = APIRouter(prefix="/public/standups", tags=["public"])


@router.get("/{token}", response_model=MagicTokenInfo)
async def get_magic_link(token: str, db: AsyncSession = Depends(get_db)):
    resolved = await validate_magic_token(db, token)
    instance, member, team = resolved["instance"], resolved["member"], resolved["team"]

    existing = (
        await db.execute(
            select(Answer)
            .where(Answer.standup_instance_id == instance.id, Answer.team_member_id == member.id)
            .order_by(Answer.question_index.asc())
        )
    ).scalars().all()

    return MagicTokenInfo(
        instance_id=instance.id,
        team_name=team.name,
        member_name=member.name,
        target_date=instance.target_date,
        questions=(instance.config_snapshot or {}).get("questions", []),
        deadline=response_deadline(instance.created_at, instance.config_snapshot or {}),
        answers=[AnswerOut.model_validate(a) for a in existing],
    )


@router.post("/{token}", response_model=List[AnswerOut])
async def submit_magic_link(token: str, payload: MagicSubmit, db: AsyncSession = Depends(get_db)):
    return await submit_with_magic_token(db, token, [a.model_dump() for a in payload.answers])
