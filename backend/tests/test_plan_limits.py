# tests/test_plan_limits.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from asyncstand.core.plan_limits import build_usage_limit, subscription_is_usable
from asyncstand.models.billing import BillingAccount, Subscription
from asyncstand.models.organization import Organization
from asyncstand.services.usage import check_quota, get_current_usage, monthly_period
from conftest import auth_headers


class _Sub:
    def __init__(self, status, current_period_end=None):
        self.status = status
        self.current_period_end = current_period_end


def test_build_usage_limit_counts_and_flags():
    usage = build_usage_limit(4, 5)
    assert usage.available == 1
    assert usage.percentage == 80
    assert usage.near_limit is True
    assert usage.over_limit is False

    full = build_usage_limit(7, 5)
    assert full.available == 0
    assert full.percentage == 100
    assert full.over_limit is True


@pytest.mark.parametrize("limit", [None, -1])
def test_build_usage_limit_unlimited(limit):
    usage = build_usage_limit(1000, limit)
    assert usage.limit is None
    assert usage.available is None
    assert usage.near_limit is False
    assert usage.over_limit is False


def test_subscription_usability():
    future = datetime.now(timezone.utc) + timedelta(days=3)
    past = datetime.now(timezone.utc) - timedelta(days=3)

    assert subscription_is_usable(None) is False
    assert subscription_is_usable(_Sub("active")) is True
    assert subscription_is_usable(_Sub("trialing", future)) is True
    assert subscription_is_usable(_Sub("trialing", past)) is False
    assert subscription_is_usable(_Sub("past_due")) is False
    assert subscription_is_usable(_Sub("canceled")) is False


def test_monthly_period_renews_on_anchor_day():
    anchor = datetime(2026, 1, 31, 12, 0, tzinfo=timezone.utc)

    start, end = monthly_period(anchor, datetime(2026, 3, 5, tzinfo=timezone.utc))
    assert start == datetime(2026, 2, 28, tzinfo=timezone.utc)
    assert end == datetime(2026, 3, 31, tzinfo=timezone.utc)

    start, end = monthly_period(anchor, datetime(2026, 12, 31, 8, tzinfo=timezone.utc))
    assert start == datetime(2026, 12, 31, tzinfo=timezone.utc)
    assert end == datetime(2027, 1, 31, tzinfo=timezone.utc)


async def org_subscription(db, org) -> Subscription:
    stmt = (
        select(Subscription)
        .join(BillingAccount, BillingAccount.id == Subscription.billing_account_id)
        .where(BillingAccount.org_id == org.id)
    )
    return (await db.execute(stmt)).scalar_one()


@pytest.mark.asyncio
async def test_new_org_starts_on_free_plan(db, org, slack_team):
    subscription = await org_subscription(db, org)
    assert subscription.status == "active"

    usage = await get_current_usage(db, org.id)
    assert usage["plan"] == "free"
    assert usage["members"].used == 1
    assert usage["members"].limit == 5
    assert usage["teams"].used == 1
    assert usage["teams"].limit == 2


@pytest.mark.asyncio
async def test_active_paid_subscription_lifts_limits(db, org, plans):
    subscription = await org_subscription(db, org)
    subscription.plan_id = plans["pro"].id
    await db.commit()

    usage = await get_current_usage(db, org.id)
    assert usage["plan"] == "pro"
    assert usage["teams"].limit == 20


@pytest.mark.asyncio
async def test_past_due_subscription_falls_back_to_free(db, org, plans):
    subscription = await org_subscription(db, org)
    subscription.plan_id = plans["pro"].id
    subscription.status = "past_due"
    await db.commit()

    usage = await get_current_usage(db, org.id)
    assert usage["plan"] == "free"
    assert usage["teams"].limit == 2


@pytest.mark.asyncio
async def test_check_quota(db, org, slack_team):
    assert await check_quota(db, org.id, "teams") == {"current": 1, "limit": 2, "exceeded": False}
    assert await check_quota(db, org.id, "integrations") == {"current": 1, "limit": 1, "exceeded": True}

    with pytest.raises(ValueError):
        await check_quota(db, org.id, "widgets")


@pytest.mark.asyncio
async def test_quota_without_subscription_is_exceeded(db):
    bare = Organization(name="No billing", is_active=True)
    db.add(bare)
    await db.commit()

    assert await check_quota(db, bare.id, "teams") == {"current": 0, "limit": 0, "exceeded": True}


@pytest.mark.asyncio
async def test_team_creation_blocked_at_plan_limit(client, db, owner, org, slack_team):
    integration, _team, _members = slack_team
    headers = auth_headers(owner, org)

    # free plan allows two teams; one exists
    r = await client.post(
        "/api/v1/teams",
        json={"name": "Design", "integration_id": str(integration.id), "channel_id": "C0002"},
        headers=headers,
    )
    assert r.status_code == 201, r.text

    r = await client.post(
        "/api/v1/teams",
        json={"name": "Growth", "integration_id": str(integration.id), "channel_id": "C0003"},
        headers=headers,
    )
    assert r.status_code == 403
    detail = r.json()["detail"]
    assert detail["error"] == "PLAN_LIMIT_EXCEEDED"
    assert detail["upgradeRequired"] is True
    assert detail["actionType"] == "create_team"


@pytest.mark.asyncio
async def test_usage_warnings_endpoint(client, db, owner, org, slack_team):
    integration, _team, _members = slack_team
    headers = auth_headers(owner, org)
    await client.post(
        "/api/v1/teams",
        json={"name": "Design", "integration_id": str(integration.id), "channel_id": "C0002"},
        headers=headers,
    )

    r = await client.get("/api/v1/billing/warnings", headers=headers)

    assert r.status_code == 200
    body = r.json()
    assert body["needs_upgrade"] is True
    assert [w["resource"] for w in body["warnings"]] == ["teams"]
    assert body["warnings"][0]["level"] == "over_limit"
