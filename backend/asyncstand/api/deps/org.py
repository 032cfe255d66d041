import uuid
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from asyncstand.api.v1.auth import get_current_user
from asyncstand.core.permissions import ORG_ROLES, normalize_role
from asyncstand.db.session import get_db
from asyncstand.models.org_member import MEMBER_STATUS_ACTIVE, OrgMember
from asyncstand.models.organization import Organization
from asyncstand.models.user import User


async def _active_member(db: AsyncSession, org_id: uuid.UUID, user_id: uuid.UUID) -> Optional[OrgMember]:
    stmt = select(OrgMember).where(
        OrgMember.org_id == org_id,
        OrgMember.user_id == user_id,
        OrgMember.status == MEMBER_STATUS_ACTIVE,
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def get_current_org(
    x_org_id: Optional[str] = Header(default=None, alias="X-Org-Id"),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
) -> Organization:
    """
    Resolve the organization from the X-Org-Id header and ensure the current
    user is an active member of it.
    """
    if not x_org_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Org-Id header is required",
        )

    try:
        org_uuid = uuid.UUID(x_org_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="X-Org-Id must be a valid UUID",
        )

    org = await db.get(Organization, org_uuid)
    if not org or not org.is_active:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Organization not found",
        )

    if await _active_member(db, org.id, user.id) is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You are not a member of this organization",
        )

    return org


async def get_current_org_member(
    org: Organization = Depends(get_current_org),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
) -> OrgMember:
    """Active membership for (user, org). Safe after get_current_org."""
    return await _active_member(db, org.id, user.id)


def require_org_roles(*allowed_roles: str):
    """
    Enforce member.role is in allowed_roles (owner/admin/member).
    """
    allowed = {normalize_role(r) for r in allowed_roles}
    unknown = allowed - ORG_ROLES
    if unknown:
        raise ValueError(f"Unknown org role(s): {sorted(unknown)}. Allowed: {sorted(ORG_ROLES)}")

    async def _checker(member: OrgMember = Depends(get_current_org_member)) -> OrgMember:
        role = normalize_role(member.role)
        if role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Insufficient role: {role}. Allowed: {', '.join(sorted(allowed))}",
            )
        return member

    return _checker


async def require_super_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_super_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Super admin access required")
    return user
