# asyncstand/crud/org_member.py
from __future__ import annotations

import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from asyncstand.models.org_member import MEMBER_STATUS_ACTIVE, OrgMember


async def count_active_members(db: AsyncSession, org_id: uuid.UUID) -> int:
    """
    Counts ACTIVE memberships (any role) for an org. This is the number the
    plan member limit is enforced against.
    """
    stmt = (
        select(func.count(OrgMember.id))
        .where(OrgMember.org_id == org_id)
        .where(OrgMember.status == MEMBER_STATUS_ACTIVE)
    )
    res = await db.execute(stmt)
    return int(res.scalar() or 0)


async def count_active_members_excluding_user(
    db: AsyncSession,
    org_id: uuid.UUID,
    exclude_user_id: uuid.UUID,
) -> int:
    """
    Same as count_active_members but excludes a specific user_id.
    Prevents blocking re-accept of an already-counted active user.
    """
    stmt = (
        select(func.count(OrgMember.id))
        .where(OrgMember.org_id == org_id)
        .where(OrgMember.status == MEMBER_STATUS_ACTIVE)
        .where(OrgMember.user_id != exclude_user_id)
    )
    res = await db.execute(stmt)
    return int(res.scalar() or 0)


async def count_active_admins(db: AsyncSession, org_id: uuid.UUID) -> int:
    """Active owner + admin memberships."""
    stmt = (
        select(func.count(OrgMember.id))
        .where(OrgMember.org_id == org_id)
        .where(OrgMember.status == MEMBER_STATUS_ACTIVE)
        .where(OrgMember.role.in_(["owner", "admin"]))
    )
    res = await db.execute(stmt)
    return int(res.scalar() or 0)


async def get_member(db: AsyncSession, org_id: uuid.UUID, user_id: uuid.UUID) -> OrgMember | None:
    stmt = select(OrgMember).where(OrgMember.org_id == org_id, OrgMember.user_id == user_id)
    return (await db.execute(stmt)).scalar_one_or_none()
