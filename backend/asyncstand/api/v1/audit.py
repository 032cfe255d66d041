from __future__ import annotations

import uuid
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from asyncstand.api.deps.org import get_current_org
from asyncstand.api.deps.permissions import require_permissions
from asyncstand.core.permissions import PERM
from asyncstand.db.session import get_db
from asyncstand.models.org_member import OrgMember
from asyncstand.models.organization import Organization
from asyncstand.schemas.audit import ActivitySummaryOut, AuditLogOut, AuditLogPage
from asyncstand.services import audit as audit_service

router = APIRouter(prefix="/audit-logs", tags=["audit"])


def _filters(
    actor_user_id: Optional[uuid.UUID] = Query(default=None),
    action: Optional[str] = Query(default=None),
    category: Optional[str] = Query(default=None),
    severity: Optional[str] = Query(default=None),
    resource_type: Optional[str] = Query(default=None),
    resource_id: Optional[str] = Query(default=None),
    start: Optional[datetime] = Query(default=None),
    end: Optional[datetime] = Query(default=None),
) -> dict:
    return {
        "actor_user_id": actor_user_id,
        "action": action,
        "category": category,
        "severity": severity,
        "resource_type": resource_type,
        "resource_id": resource_id,
        "start": start,
        "end": end,
    }


@router.get("", response_model=AuditLogPage)
async def list_audit_logs(
    filters: dict = Depends(_filters),
    limit: int = Query(default=50, ge=1, le=audit_service.MAX_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.AUDIT_READ)),
    db: AsyncSession = Depends(get_db),
):
    return await audit_service.find_logs(db, org.id, filters, limit=limit, offset=offset)


@router.get("/summary", response_model=ActivitySummaryOut)
async def activity_summary(
    days: int = Query(default=7, ge=1, le=365),
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.AUDIT_READ)),
    db: AsyncSession = Depends(get_db),
):
    return await audit_service.get_activity_summary(db, org.id, days)


@router.get("/security", response_model=List[AuditLogOut])
async def security_events(
    limit: int = Query(default=100, ge=1, le=audit_service.MAX_PAGE_SIZE),
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.AUDIT_READ)),
    db: AsyncSession = Depends(get_db),
):
    return await audit_service.get_security_events(db, org.id, limit)


@router.get("/export")
async def export_audit_logs(
    fmt: str = Query(default="csv", alias="format", pattern="^(csv|json)$"),
    filters: dict = Depends(_filters),
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.AUDIT_EXPORT)),
    db: AsyncSession = Depends(get_db),
):
    body = await audit_service.export_logs(db, org.id, filters, fmt=fmt)
    media_type = "application/json" if fmt == "json" else "text/csv"
    return Response(
        content=body,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="audit-logs.{fmt}"'},
    )
