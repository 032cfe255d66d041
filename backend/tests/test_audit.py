# tests/test_audit.py
from __future__ import annotations

import csv
import io
import uuid
from datetime import datetime, timezone

import pytest

from asyncstand.models.org_member import OrgMember
from asyncstand.services import audit
from conftest import auth_headers, create_user


def test_sanitize_masks_nested_secrets():
    member_id = uuid.UUID("00000000-0000-0000-0000-000000000001")
    data = {
        "email": "a@example.com",
        "password": "hunter2",
        "nested": {"bot_token": "xoxb-1", "items": [{"Authorization": "Bearer x", "ok": 1}]},
        "member": member_id,
        "at": datetime(2026, 10, 19, tzinfo=timezone.utc),
    }

    assert audit.sanitize(data) == {
        "email": "a@example.com",
        "password": "[REDACTED]",
        "nested": {"bot_token": "[REDACTED]", "items": [{"Authorization": "[REDACTED]", "ok": 1}]},
        "member": "00000000-0000-0000-0000-000000000001",
        "at": "2026-10-19 00:00:00+00:00",
    }


@pytest.mark.asyncio
async def test_log_audit_resolves_org_from_actor(db, owner, org):
    entry = await audit.log_audit(db, actor_user_id=owner.id, action="user.login", category=audit.CATEGORY_AUTH)
    assert entry.org_id == org.id

    stray = await create_user(db, "stray@example.com")
    assert await audit.log_audit(db, actor_user_id=stray.id, action="user.login", category="auth") is None


@pytest.mark.asyncio
async def test_unknown_category_and_severity_fall_back(db, org):
    entry = await audit.log_audit(db, org_id=org.id, action="x.y", category="weird", severity="apocalyptic")
    assert entry.category == audit.CATEGORY_SYSTEM
    assert entry.severity == audit.SEVERITY_INFO


async def seed_logs(db, org):
    for i in range(3):
        await audit.log_audit(
            db,
            org_id=org.id,
            action="billing.checkout.started",
            category=audit.CATEGORY_BILLING,
            resource_type="plan",
            resource_id=f"plan-{i}",
        )
    await audit.log_audit(
        db,
        org_id=org.id,
        action="member.deleted",
        category=audit.CATEGORY_USER_MANAGEMENT,
        severity=audit.SEVERITY_HIGH,
        resource_type="org_member",
    )
    await db.commit()


@pytest.mark.asyncio
async def test_list_filters_and_pagination(client, db, owner, org):
    await seed_logs(db, org)
    headers = auth_headers(owner, org)

    # organization.created is logged when the org is made
    r = await client.get("/api/v1/audit-logs", headers=headers)
    assert r.status_code == 200
    assert r.json()["total"] == 5

    r = await client.get("/api/v1/audit-logs", params={"category": "billing", "limit": 2}, headers=headers)
    body = r.json()
    assert body["total"] == 3
    assert len(body["logs"]) == 2
    assert body["has_more"] is True

    r = await client.get(
        "/api/v1/audit-logs", params={"category": "billing", "limit": 2, "offset": 2}, headers=headers
    )
    assert r.json()["has_more"] is False

    r = await client.get("/api/v1/audit-logs", params={"resource_id": "plan-1"}, headers=headers)
    assert [log["resource_id"] for log in r.json()["logs"]] == ["plan-1"]


@pytest.mark.asyncio
async def test_summary_and_security_events(client, db, owner, org):
    await seed_logs(db, org)
    headers = auth_headers(owner, org)

    r = await client.get("/api/v1/audit-logs/summary", params={"days": 1}, headers=headers)
    summary = r.json()
    assert summary["total"] == 5
    assert summary["by_category"]["billing"] == 3
    assert summary["top_actions"][0] == {"action": "billing.checkout.started", "count": 3}

    r = await client.get("/api/v1/audit-logs/security", headers=headers)
    assert [log["action"] for log in r.json()] == ["member.deleted"]


@pytest.mark.asyncio
async def test_export_csv_and_json(client, db, owner, org):
    await seed_logs(db, org)
    headers = auth_headers(owner, org)

    r = await client.get("/api/v1/audit-logs/export", params={"category": "billing"}, headers=headers)
    assert r.status_code == 200
    assert r.headers["content-type"].startswith("text/csv")
    assert "attachment" in r.headers["content-disposition"]
    rows = list(csv.DictReader(io.StringIO(r.text)))
    assert len(rows) == 3
    assert {row["action"] for row in rows} == {"billing.checkout.started"}

    r = await client.get("/api/v1/audit-logs/export", params={"format": "json"}, headers=headers)
    assert r.headers["content-type"].startswith("application/json")
    assert len(r.json()) == 5

    r = await client.get("/api/v1/audit-logs/export", params={"format": "xml"}, headers=headers)
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_members_cannot_read_audit_logs(client, db, org):
    user = await create_user(db, "member@example.com")
    db.add(OrgMember(org_id=org.id, user_id=user.id, role="member", status="active", permissions=[]))
    await db.commit()

    r = await client.get("/api/v1/audit-logs", headers=auth_headers(user, org))
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_extra_permission_grants_audit_access(client, db, org):
    user = await create_user(db, "auditor@example.com")
    db.add(
        OrgMember(org_id=org.id, user_id=user.id, role="member", status="active", permissions=["audit.read"])
    )
    await db.commit()

    r = await client.get("/api/v1/audit-logs", headers=auth_headers(user, org))
    assert r.status_code == 200
