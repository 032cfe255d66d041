from __future__ import annotations

import csv
import io
import json
import uuid
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from asyncstand.core.timeutil import utcnow
from asyncstand.models.audit_log import AuditLog
from asyncstand.models.org_member import MEMBER_STATUS_ACTIVE, OrgMember

logger = structlog.get_logger(__name__)

# -----------------------------
# Vocabulary
# -----------------------------
ACTOR_USER = "user"
ACTOR_SYSTEM = "system"
ACTOR_API_KEY = "api_key"
ACTOR_SERVICE = "service"
ACTOR_TYPES = {ACTOR_USER, ACTOR_SYSTEM, ACTOR_API_KEY, ACTOR_SERVICE}

CATEGORY_AUTH = "auth"
CATEGORY_USER_MANAGEMENT = "user_management"
CATEGORY_DATA_MODIFICATION = "data_modification"
CATEGORY_SYSTEM = "system"
CATEGORY_INTEGRATION = "integration"
CATEGORY_BILLING = "billing"
CATEGORY_STANDUP = "standup"
CATEGORIES = {
    CATEGORY_AUTH,
    CATEGORY_USER_MANAGEMENT,
    CATEGORY_DATA_MODIFICATION,
    CATEGORY_SYSTEM,
    CATEGORY_INTEGRATION,
    CATEGORY_BILLING,
    CATEGORY_STANDUP,
}

SEVERITY_INFO = "info"
SEVERITY_LOW = "low"
SEVERITY_MEDIUM = "medium"
SEVERITY_HIGH = "high"
SEVERITY_CRITICAL = "critical"
SEVERITIES = {SEVERITY_INFO, SEVERITY_LOW, SEVERITY_MEDIUM, SEVERITY_HIGH, SEVERITY_CRITICAL}

MAX_PAGE_SIZE = 500
REDACTED = "[REDACTED]"
SENSITIVE_KEY_PARTS = ("password", "token", "secret", "api_key", "apikey", "private_key", "authorization")


def _is_sensitive(key: str) -> bool:
    k = key.lower()
    return any(part in k for part in SENSITIVE_KEY_PARTS)


def sanitize(data: Any) -> Any:
    """Recursively mask sensitive values in dicts/lists before persisting them."""
    if isinstance(data, dict):
        return {
            k: (REDACTED if isinstance(k, str) and _is_sensitive(k) else sanitize(v))
            for k, v in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [sanitize(v) for v in data]
    if isinstance(data, (uuid.UUID, datetime)):
        return str(data)
    return data


async def _resolve_org_id(db: AsyncSession, actor_user_id: uuid.UUID) -> Optional[uuid.UUID]:
    stmt = (
        select(OrgMember.org_id)
        .where(OrgMember.user_id == actor_user_id, OrgMember.status == MEMBER_STATUS_ACTIVE)
        .order_by(OrgMember.created_at.asc())
        .limit(1)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def log_audit(
    db: AsyncSession,
    *,
    action: str,
    category: str,
    org_id: Optional[uuid.UUID] = None,
    actor_user_id: Optional[uuid.UUID] = None,
    actor_type: str = ACTOR_USER,
    severity: str = SEVERITY_INFO,
    resource_type: Optional[str] = None,
    resource_id: Optional[Any] = None,
    request_data: Optional[dict[str, Any]] = None,
    tags: Optional[Iterable[str]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> Optional[AuditLog]:
    """
    Stage an audit entry on the caller's session; it commits with the caller's
    transaction. Audit failures never propagate to the caller.
    """
    try:
        if org_id is None and actor_user_id is not None:
            org_id = await _resolve_org_id(db, actor_user_id)
        if org_id is None:
            logger.warning("audit_log_skipped_no_org", action=action, actor_user_id=str(actor_user_id))
            return None

        entry = AuditLog(
            org_id=org_id,
            actor_user_id=actor_user_id,
            actor_type=actor_type if actor_type in ACTOR_TYPES else ACTOR_USER,
            action=action,
            category=category if category in CATEGORIES else CATEGORY_SYSTEM,
            severity=severity if severity in SEVERITIES else SEVERITY_INFO,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
            request_data=sanitize(request_data) if request_data else None,
            tags=list(tags or []),
            ip_address=ip_address,
            user_agent=(user_agent or "")[:400] or None,
        )
        db.add(entry)
        return entry
    except SQLAlchemyError as e:
        logger.error("audit_log_failed", action=action, error=str(e))
        return None


# -----------------------------
# Queries
# -----------------------------
def _apply_filters(stmt, org_id: uuid.UUID, filters: dict[str, Any]):
    stmt = stmt.where(AuditLog.org_id == org_id)
    if filters.get("actor_user_id"):
        stmt = stmt.where(AuditLog.actor_user_id == filters["actor_user_id"])
    if filters.get("action"):
        stmt = stmt.where(AuditLog.action == filters["action"])
    if filters.get("category"):
        stmt = stmt.where(AuditLog.category == filters["category"])
    if filters.get("severity"):
        stmt = stmt.where(AuditLog.severity == filters["severity"])
    if filters.get("resource_type"):
        stmt = stmt.where(AuditLog.resource_type == filters["resource_type"])
    if filters.get("resource_id"):
        stmt = stmt.where(AuditLog.resource_id == str(filters["resource_id"]))
    if filters.get("start"):
        stmt = stmt.where(AuditLog.created_at >= filters["start"])
    if filters.get("end"):
        stmt = stmt.where(AuditLog.created_at <= filters["end"])
    return stmt


async def find_logs(
    db: AsyncSession,
    org_id: uuid.UUID,
    filters: Optional[dict[str, Any]] = None,
    *,
    limit: int = 50,
    offset: int = 0,
) -> dict[str, Any]:
    filters = filters or {}
    limit = max(1, min(int(limit), MAX_PAGE_SIZE))
    offset = max(0, int(offset))

    total = (
        await db.execute(_apply_filters(select(func.count(AuditLog.id)), org_id, filters))
    ).scalar() or 0

    stmt = (
        _apply_filters(select(AuditLog), org_id, filters)
        .order_by(AuditLog.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    logs = list((await db.execute(stmt)).scalars().all())
    return {"logs": logs, "total": int(total), "has_more": offset + len(logs) < total}


async def get_activity_summary(db: AsyncSession, org_id: uuid.UUID, days: int = 7) -> dict[str, Any]:
    since = utcnow() - timedelta(days=days)
    base = [AuditLog.org_id == org_id, AuditLog.created_at >= since]

    by_category = (
        await db.execute(select(AuditLog.category, func.count(AuditLog.id)).where(*base).group_by(AuditLog.category))
    ).all()
    by_severity = (
        await db.execute(select(AuditLog.severity, func.count(AuditLog.id)).where(*base).group_by(AuditLog.severity))
    ).all()
    top_actions = (
        await db.execute(
            select(AuditLog.action, func.count(AuditLog.id).label("n"))
            .where(*base)
            .group_by(AuditLog.action)
            .order_by(func.count(AuditLog.id).desc())
            .limit(10)
        )
    ).all()

    return {
        "days": days,
        "total": sum(n for _, n in by_category),
        "by_category": {c: n for c, n in by_category},
        "by_severity": {s: n for s, n in by_severity},
        "top_actions": [{"action": a, "count": n} for a, n in top_actions],
    }


async def get_security_events(db: AsyncSession, org_id: uuid.UUID, limit: int = 100) -> list[AuditLog]:
    stmt = (
        select(AuditLog)
        .where(
            AuditLog.org_id == org_id,
            or_(
                AuditLog.severity.in_([SEVERITY_HIGH, SEVERITY_CRITICAL]),
                AuditLog.category == CATEGORY_AUTH,
            ),
        )
        .order_by(AuditLog.created_at.desc())
        .limit(min(limit, MAX_PAGE_SIZE))
    )
    return list((await db.execute(stmt)).scalars().all())


EXPORT_FIELDS = (
    "id",
    "created_at",
    "actor_type",
    "actor_user_id",
    "action",
    "category",
    "severity",
    "resource_type",
    "resource_id",
    "ip_address",
)


def _export_row(log: AuditLog) -> dict[str, Any]:
    row = {}
    for field in EXPORT_FIELDS:
        value = getattr(log, field)
        row[field] = value.isoformat() if isinstance(value, datetime) else (str(value) if value is not None else "")
    return row


async def export_logs(
    db: AsyncSession,
    org_id: uuid.UUID,
    filters: Optional[dict[str, Any]] = None,
    *,
    fmt: str = "csv",
) -> str:
    stmt = (
        _apply_filters(select(AuditLog), org_id, filters or {})
        .order_by(AuditLog.created_at.desc())
        .limit(10_000)
    )
    logs = (await db.execute(stmt)).scalars().all()
    rows = [_export_row(log) for log in logs]

    if fmt == "json":
        return json.dumps(rows)

    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=list(EXPORT_FIELDS))
    writer.writeheader()
    writer.writerows(rows)
    return buf.getvalue()
