from __future__ import annotations

import secrets
import uuid
from datetime import timedelta
from typing import Any, Optional

import structlog
from fastapi import HTTPException, status
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from asyncstand.core.errors import PLAN_LIMIT_EXCEEDED, api_error, conflict, forbidden, not_found
from asyncstand.core.permissions import ROLE_ADMIN, ROLE_MEMBER, ROLE_OWNER, normalize_role
from asyncstand.core.plan_limits import is_unlimited
from asyncstand.core.timeutil import as_utc, utcnow
from asyncstand.crud.billing import get_free_plan
from asyncstand.crud.org_member import count_active_admins, count_active_members_excluding_user, get_member
from asyncstand.models.billing import BillingAccount, Subscription
from asyncstand.models.org_invitation import OrgInvitation
from asyncstand.models.org_member import (
    MEMBER_STATUS_ACTIVE,
    MEMBER_STATUS_SUSPENDED,
    OrgMember,
)
from asyncstand.models.organization import Organization
from asyncstand.models.user import User
from asyncstand.services import audit
from asyncstand.services.usage import ACTION_INVITE_MEMBER, enforce_plan_limit, get_plan_limits

logger = structlog.get_logger(__name__)

INVITE_EXPIRY_DAYS = 7
ALLOWED_INVITE_ROLES = {ROLE_ADMIN, ROLE_MEMBER}


def _generate_token() -> str:
    return secrets.token_urlsafe(48)


# =========================================================
# Organizations
# =========================================================
async def create_organization(db: AsyncSession, *, owner: User, name: str) -> Organization:
    """Org + OWNER membership + billing account on the free plan, in one transaction."""
    org = Organization(name=name.strip(), is_active=True)
    db.add(org)
    await db.flush()

    db.add(OrgMember(org_id=org.id, user_id=owner.id, role=ROLE_OWNER, status=MEMBER_STATUS_ACTIVE, permissions=[]))

    account = BillingAccount(org_id=org.id, email=owner.email)
    db.add(account)
    await db.flush()

    free_plan = await get_free_plan(db)
    if free_plan is not None:
        db.add(Subscription(billing_account_id=account.id, plan_id=free_plan.id, status="active"))
    else:
        logger.warning("free_plan_missing", org_id=str(org.id))

    await audit.log_audit(
        db,
        org_id=org.id,
        actor_user_id=owner.id,
        action="organization.created",
        category=audit.CATEGORY_DATA_MODIFICATION,
        resource_type="organization",
        resource_id=org.id,
        request_data={"name": org.name},
    )
    await db.commit()
    logger.info("organization_created", org_id=str(org.id), owner_id=str(owner.id))
    return org


async def list_user_organizations(db: AsyncSession, user: User) -> list[tuple[Organization, OrgMember]]:
    stmt = (
        select(Organization, OrgMember)
        .join(OrgMember, OrgMember.org_id == Organization.id)
        .where(OrgMember.user_id == user.id, OrgMember.status == MEMBER_STATUS_ACTIVE)
        .order_by(Organization.created_at.desc())
    )
    return [(org, member) for org, member in (await db.execute(stmt)).all()]


async def list_members(db: AsyncSession, org_id: uuid.UUID) -> list[tuple[OrgMember, User]]:
    stmt = (
        select(OrgMember, User)
        .join(User, User.id == OrgMember.user_id)
        .where(OrgMember.org_id == org_id)
        .order_by(OrgMember.created_at.asc())
    )
    return [(m, u) for m, u in (await db.execute(stmt)).all()]


# =========================================================
# Invitations
# =========================================================
async def invite_member(
    db: AsyncSession,
    *,
    org_id: uuid.UUID,
    inviter: User,
    email: str,
    role: Optional[str] = None,
) -> OrgInvitation:
    email = User.normalize_email(email)
    role = normalize_role(role) or ROLE_MEMBER

    if role not in ALLOWED_INVITE_ROLES:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid role. Allowed: {', '.join(sorted(ALLOWED_INVITE_ROLES))}",
        )

    existing_user = (await db.execute(select(User).where(User.email == email))).scalar_one_or_none()
    if existing_user is not None:
        existing = await get_member(db, org_id, existing_user.id)
        if existing is not None and existing.status == MEMBER_STATUS_ACTIVE:
            raise conflict("User is already a member of this organization")

    # Pending = not accepted and not expired
    open_invites = (
        await db.execute(
            select(OrgInvitation).where(
                OrgInvitation.org_id == org_id,
                OrgInvitation.email == email,
                OrgInvitation.accepted_at.is_(None),
            )
        )
    ).scalars().all()
    if any(as_utc(inv.expires_at) > utcnow() for inv in open_invites):
        raise conflict("A pending invitation already exists for this email")
    if open_invites:
        # expired leftovers would collide with the unique pending index
        await db.execute(delete(OrgInvitation).where(OrgInvitation.id.in_([inv.id for inv in open_invites])))

    await enforce_plan_limit(db, org_id, ACTION_INVITE_MEMBER)

    invitation = OrgInvitation(
        org_id=org_id,
        email=email,
        role=role,
        token=_generate_token(),
        expires_at=utcnow() + timedelta(days=INVITE_EXPIRY_DAYS),
        invited_by_id=inviter.id,
    )
    db.add(invitation)
    await audit.log_audit(
        db,
        org_id=org_id,
        actor_user_id=inviter.id,
        action="member.invited",
        category=audit.CATEGORY_USER_MANAGEMENT,
        resource_type="invitation",
        request_data={"email": email, "role": role},
    )
    await db.commit()
    return invitation


async def list_invitations(db: AsyncSession, org_id: uuid.UUID) -> list[OrgInvitation]:
    stmt = (
        select(OrgInvitation)
        .where(OrgInvitation.org_id == org_id)
        .order_by(OrgInvitation.created_at.desc())
    )
    return list((await db.execute(stmt)).scalars().all())


async def revoke_invitation(db: AsyncSession, *, org_id: uuid.UUID, invitation_id: uuid.UUID, actor: User) -> None:
    inv = await db.get(OrgInvitation, invitation_id)
    if inv is None or inv.org_id != org_id:
        raise not_found("Invitation")
    if inv.accepted_at is not None:
        raise conflict("Invitation already accepted")

    await db.execute(delete(OrgInvitation).where(OrgInvitation.id == inv.id))
    await audit.log_audit(
        db,
        org_id=org_id,
        actor_user_id=actor.id,
        action="member.invitation_revoked",
        category=audit.CATEGORY_USER_MANAGEMENT,
        resource_type="invitation",
        resource_id=inv.id,
    )
    await db.commit()


async def accept_invitation(db: AsyncSession, *, token: str, user: User) -> OrgMember:
    """
    Accept an invitation for the authenticated user.

    The member quota is authoritative here (accept-time), so invitations that
    are never accepted do not consume seats.
    """
    token = (token or "").strip()
    if not token:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="token is required")

    # Lock invitation row to prevent concurrent accepts
    inv = (
        await db.execute(select(OrgInvitation).where(OrgInvitation.token == token).with_for_update())
    ).scalar_one_or_none()

    if inv is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invalid invitation token")
    if inv.accepted_at is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Invitation already accepted")
    if as_utc(inv.expires_at) < utcnow():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invitation expired")
    if User.normalize_email(inv.email) != User.normalize_email(user.email):
        raise forbidden("This invitation was sent to a different email address")

    # Lock org row while enforcing capacity
    org = (
        await db.execute(select(Organization).where(Organization.id == inv.org_id).with_for_update())
    ).scalar_one_or_none()
    if org is None:
        raise not_found("Organization")

    limits = await get_plan_limits(db, org.id)
    if not is_unlimited(limits.members):
        active = await count_active_members_excluding_user(db, org.id, user.id)
        if active >= limits.members:
            raise api_error(
                status.HTTP_403_FORBIDDEN,
                PLAN_LIMIT_EXCEEDED,
                "Member limit reached for this organization's plan. Upgrade your plan to add more members.",
                upgradeRequired=True,
                actionType=ACTION_INVITE_MEMBER,
                limit=limits.members,
                active_members=active,
            )

    member = (
        await db.execute(
            select(OrgMember)
            .where(OrgMember.org_id == inv.org_id, OrgMember.user_id == user.id)
            .with_for_update()
        )
    ).scalar_one_or_none()

    if member is None:
        member = OrgMember(
            org_id=inv.org_id,
            user_id=user.id,
            role=inv.role,
            status=MEMBER_STATUS_ACTIVE,
            permissions=[],
            invited_by_id=inv.invited_by_id,
        )
        db.add(member)
    else:
        member.status = MEMBER_STATUS_ACTIVE
        member.role = inv.role

    inv.accepted_at = utcnow()
    inv.accepted_by_user_id = user.id

    await audit.log_audit(
        db,
        org_id=inv.org_id,
        actor_user_id=user.id,
        action="member.joined",
        category=audit.CATEGORY_USER_MANAGEMENT,
        resource_type="org_member",
        request_data={"role": inv.role},
    )
    await db.commit()
    return member


# =========================================================
# Member management
# =========================================================
async def _load_member(db: AsyncSession, org_id: uuid.UUID, member_id: uuid.UUID) -> OrgMember:
    member = await db.get(OrgMember, member_id)
    if member is None or member.org_id != org_id:
        raise not_found("Member")
    return member


async def update_member(
    db: AsyncSession,
    *,
    org_id: uuid.UUID,
    member_id: uuid.UUID,
    actor: OrgMember,
    role: Optional[str] = None,
    suspend: Optional[bool] = None,
) -> OrgMember:
    target = await _load_member(db, org_id, member_id)

    if target.role == ROLE_OWNER:
        raise forbidden("Cannot modify the organization owner")
    if target.role == ROLE_ADMIN and actor.role != ROLE_OWNER:
        raise forbidden("Only the owner can modify admins")

    changes: dict[str, Any] = {}
    if role is not None:
        role = normalize_role(role)
        if role == ROLE_OWNER:
            raise forbidden("Ownership cannot be granted through a role change")
        if role not in ALLOWED_INVITE_ROLES:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Invalid role")
        if role == ROLE_ADMIN and actor.role != ROLE_OWNER:
            raise forbidden("Only the owner can promote members to admin")
        changes["role"] = {"from": target.role, "to": role}
        target.role = role

    if suspend is not None:
        new_status = MEMBER_STATUS_SUSPENDED if suspend else MEMBER_STATUS_ACTIVE
        changes["status"] = {"from": target.status, "to": new_status}
        target.status = new_status

    await audit.log_audit(
        db,
        org_id=org_id,
        actor_user_id=actor.user_id,
        action="member.updated",
        category=audit.CATEGORY_USER_MANAGEMENT,
        severity=audit.SEVERITY_MEDIUM,
        resource_type="org_member",
        resource_id=target.id,
        request_data=changes,
    )
    await db.commit()
    return target


async def delete_member(db: AsyncSession, *, org_id: uuid.UUID, member_id: uuid.UUID, actor: OrgMember) -> None:
    target = await _load_member(db, org_id, member_id)

    if target.role in (ROLE_OWNER, ROLE_ADMIN) and await count_active_admins(db, org_id) <= 1:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot delete the last admin or owner",
        )
    if target.role == ROLE_OWNER:
        raise forbidden("Cannot delete the organization owner")
    if target.role == ROLE_ADMIN and actor.role != ROLE_OWNER:
        raise forbidden("Only the owner can delete admins")

    await db.delete(target)
    await audit.log_audit(
        db,
        org_id=org_id,
        actor_user_id=actor.user_id,
        action="member.deleted",
        category=audit.CATEGORY_USER_MANAGEMENT,
        severity=audit.SEVERITY_HIGH,
        resource_type="org_member",
        resource_id=target.id,
    )
    await db.commit()
