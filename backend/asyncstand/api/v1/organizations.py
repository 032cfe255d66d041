# asyncstand/api/v1/organizations.py
from __future__ import annotations

import uuid
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from asyncstand.api.deps.org import get_current_org, get_current_org_member, require_org_roles
from asyncstand.api.deps.permissions import require_permissions
from asyncstand.api.v1.auth import get_current_user
from asyncstand.core.permissions import PERM
from asyncstand.db.session import get_db
from asyncstand.models.org_member import OrgMember
from asyncstand.models.organization import Organization
from asyncstand.models.user import User
from asyncstand.schemas.organization import (
    InvitationAccept,
    InvitationCreate,
    InvitationCreated,
    InvitationOut,
    MyOrganizationOut,
    OrganizationCreate,
    OrganizationOut,
    OrgMemberOut,
    OrgMemberUpdate,
)
from asyncstand.services import organizations as org_service

router = APIRouter(prefix="/orgs", tags=["organizations"])


def _member_out(member: OrgMember, user: User) -> OrgMemberOut:
    return OrgMemberOut(
        id=member.id,
        org_id=member.org_id,
        user_id=member.user_id,
        email=user.email,
        full_name=user.full_name,
        role=member.role,
        status=member.status,
        permissions=list(member.permissions or []),
        created_at=member.created_at,
    )


# ---------------------------------------------------------
# Organizations
# ---------------------------------------------------------
@router.post("", response_model=OrganizationOut, status_code=status.HTTP_201_CREATED)
async def create_organization(
    payload: OrganizationCreate,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await org_service.create_organization(db, owner=user, name=payload.name)


@router.get("", response_model=List[MyOrganizationOut])
async def list_my_organizations(
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    rows = await org_service.list_user_organizations(db, user)
    return [
        MyOrganizationOut(id=org.id, name=org.name, created_at=org.created_at, role=m.role, status=m.status)
        for org, m in rows
    ]


@router.get("/current", response_model=MyOrganizationOut)
async def get_current_organization(
    org: Organization = Depends(get_current_org),
    member: OrgMember = Depends(get_current_org_member),
):
    return MyOrganizationOut(
        id=org.id, name=org.name, created_at=org.created_at, role=member.role, status=member.status
    )


# ---------------------------------------------------------
# Members
# ---------------------------------------------------------
@router.get("/members", response_model=List[OrgMemberOut])
async def list_members(
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.ORG_MEMBERS_READ)),
    db: AsyncSession = Depends(get_db),
):
    return [_member_out(m, u) for m, u in await org_service.list_members(db, org.id)]


@router.patch("/members/{member_id}", response_model=OrgMemberOut)
async def update_member(
    member_id: uuid.UUID,
    payload: OrgMemberUpdate,
    org: Organization = Depends(get_current_org),
    actor: OrgMember = Depends(require_org_roles("owner", "admin")),
    db: AsyncSession = Depends(get_db),
):
    member = await org_service.update_member(
        db, org_id=org.id, member_id=member_id, actor=actor, role=payload.role, suspend=payload.suspend
    )
    user = await db.get(User, member.user_id)
    return _member_out(member, user)


@router.delete("/members/{member_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_member(
    member_id: uuid.UUID,
    org: Organization = Depends(get_current_org),
    actor: OrgMember = Depends(require_org_roles("owner", "admin")),
    db: AsyncSession = Depends(get_db),
):
    await org_service.delete_member(db, org_id=org.id, member_id=member_id, actor=actor)


# ---------------------------------------------------------
# Invitations
# ---------------------------------------------------------
@router.post("/invitations", response_model=InvitationCreated, status_code=status.HTTP_201_CREATED)
async def invite_member(
    payload: InvitationCreate,
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.ORG_INVITES_MANAGE)),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await org_service.invite_member(db, org_id=org.id, inviter=user, email=payload.email, role=payload.role)


@router.get("/invitations", response_model=List[InvitationOut])
async def list_invitations(
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.ORG_INVITES_MANAGE)),
    db: AsyncSession = Depends(get_db),
):
    return await org_service.list_invitations(db, org.id)


@router.delete("/invitations/{invitation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_invitation(
    invitation_id: uuid.UUID,
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.ORG_INVITES_MANAGE)),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    await org_service.revoke_invitation(db, org_id=org.id, invitation_id=invitation_id, actor=user)


@router.post("/invitations/accept", response_model=OrgMemberOut)
async def accept_invitation(
    payload: InvitationAccept,
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    """No X-Org-Id: the invitation token identifies the organization."""
    member = await org_service.accept_invitation(db, token=payload.token, user=user)
    return _member_out(member, user)
