# tests/test_billing.py
from __future__ import annotations

import json

import pytest
import pytest_asyncio
import stripe
from sqlalchemy import select

from asyncstand.core.config import settings
from asyncstand.models.audit_log import AuditLog
from asyncstand.models.billing import BillingAccount, Subscription
from conftest import auth_headers

WEBHOOK_URL = "/api/v1/billing/webhooks/stripe"


@pytest.fixture()
def stripe_verified(monkeypatch):
    """Accept every webhook signature; the route parses the body itself."""
    monkeypatch.setattr(settings, "STRIPE_WEBHOOK_SECRET", "whsec_test")
    monkeypatch.setattr(stripe.Webhook, "construct_event", lambda payload, sig, secret: json.loads(payload))


@pytest_asyncio.fixture()
async def billing_account(db, org):
    """The account every org gets on creation, linked to a Stripe customer."""
    account = (await db.execute(select(BillingAccount).where(BillingAccount.org_id == org.id))).scalar_one()
    account.stripe_customer_id = "cus_acme"
    await db.commit()
    return account


def subscription_event(event_type, *, status="active", price="price_pro_monthly", sub_id="sub_123"):
    return {
        "id": "evt_1",
        "type": event_type,
        "data": {
            "object": {
                "id": sub_id,
                "customer": "cus_acme",
                "status": status,
                "cancel_at_period_end": False,
                "items": {
                    "data": [
                        {
                            "price": {"id": price},
                            "current_period_start": 1792368000,
                            "current_period_end": 1795046400,
                        }
                    ]
                },
            }
        },
    }


async def post_event(client, event):
    return await client.post(WEBHOOK_URL, content=json.dumps(event), headers={"Stripe-Signature": "t=1,v1=abc"})


# ---------------------------------------------------------
# Webhooks
# ---------------------------------------------------------
@pytest.mark.asyncio
async def test_webhook_requires_signature(client):
    r = await client.post(WEBHOOK_URL, content=json.dumps(subscription_event("customer.subscription.created")))
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_webhook_rejects_bad_signature(client, monkeypatch):
    def _reject(payload, sig, secret):
        raise stripe.SignatureVerificationError("No signatures found", sig)

    monkeypatch.setattr(stripe.Webhook, "construct_event", _reject)

    r = await post_event(client, subscription_event("customer.subscription.created"))
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_subscription_created_upgrades_org(client, db, owner, org, billing_account, stripe_verified):
    r = await post_event(client, subscription_event("customer.subscription.created"))
    assert r.status_code == 200
    assert r.json() == {"received": True, "handled": True}

    r = await client.get("/api/v1/billing/summary", headers=auth_headers(owner, org))
    assert r.status_code == 200
    body = r.json()
    assert body["plan_key"] == "pro"
    assert body["subscription"]["stripe_subscription_id"] == "sub_123"
    assert body["usage"]["teams"]["limit"] == 20


@pytest.mark.asyncio
async def test_subscription_status_changes_and_deletion(client, db, owner, org, billing_account, stripe_verified):
    await post_event(client, subscription_event("customer.subscription.created"))

    await post_event(client, subscription_event("customer.subscription.updated", status="past_due"))
    sub = (
        await db.execute(select(Subscription).where(Subscription.stripe_subscription_id == "sub_123"))
    ).scalar_one()
    assert sub.status == "past_due"

    r = await client.get("/api/v1/billing/summary", headers=auth_headers(owner, org))
    assert r.json()["plan_key"] == "free"

    await post_event(client, subscription_event("customer.subscription.deleted"))
    await db.refresh(sub)
    assert sub.status == "canceled"


@pytest.mark.asyncio
async def test_unknown_customer_and_event_are_acknowledged(client, db, stripe_verified):
    r = await post_event(client, subscription_event("customer.subscription.created"))
    assert r.json() == {"received": True, "handled": False}

    r = await post_event(client, {"id": "evt_2", "type": "charge.refunded", "data": {"object": {}}})
    assert r.json() == {"received": True, "handled": False}


@pytest.mark.asyncio
async def test_failed_invoice_payment_is_audited(client, db, org, billing_account, stripe_verified):
    event = {
        "id": "evt_3",
        "type": "invoice.payment_failed",
        "data": {"object": {"id": "in_001", "customer": "cus_acme", "amount_due": 1200, "amount_paid": 0}},
    }

    r = await post_event(client, event)

    assert r.json() == {"received": True, "handled": True}
    log = (
        await db.execute(select(AuditLog).where(AuditLog.action == "billing.invoice.payment_failed"))
    ).scalar_one()
    assert log.org_id == org.id
    assert log.severity == "high"
    assert log.category == "billing"
    assert (log.resource_type, log.resource_id) == ("invoice", "in_001")
    assert log.request_data["amount_due"] == 1200


# ---------------------------------------------------------
# Plans / checkout
# ---------------------------------------------------------
@pytest.mark.asyncio
async def test_list_plans_sorted_by_price(client, owner):
    r = await client.get("/api/v1/billing/plans", headers=auth_headers(owner))
    assert r.status_code == 200
    assert [p["key"] for p in r.json()] == ["free", "pro"]


@pytest.mark.asyncio
async def test_checkout_needs_stripe_configuration(client, owner, org, monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", None)

    r = await client.post("/api/v1/billing/checkout", json={"plan_key": "pro"}, headers=auth_headers(owner, org))
    assert r.status_code == 503


@pytest.mark.asyncio
async def test_checkout_creates_customer_and_session(client, db, owner, org, monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", "sk_test_123")
    calls = {}

    def fake_customer_create(**kwargs):
        calls["customer"] = kwargs
        return {"id": "cus_new"}

    def fake_session_create(**kwargs):
        calls["session"] = kwargs
        return {"id": "cs_test_1", "url": "https://checkout.stripe.test/cs_test_1"}

    monkeypatch.setattr(stripe.Customer, "create", fake_customer_create)
    monkeypatch.setattr(stripe.checkout.Session, "create", fake_session_create)

    r = await client.post("/api/v1/billing/checkout", json={"plan_key": "Pro"}, headers=auth_headers(owner, org))

    assert r.status_code == 200, r.text
    assert r.json() == {"checkout_url": "https://checkout.stripe.test/cs_test_1", "session_id": "cs_test_1"}
    assert calls["session"]["customer"] == "cus_new"
    assert calls["session"]["line_items"] == [{"price": "price_pro_monthly", "quantity": 1}]

    account = (await db.execute(select(BillingAccount).where(BillingAccount.org_id == org.id))).scalar_one()
    assert account.stripe_customer_id == "cus_new"


@pytest.mark.asyncio
async def test_free_plan_cannot_be_purchased(client, owner, org, monkeypatch):
    monkeypatch.setattr(settings, "STRIPE_SECRET_KEY", "sk_test_123")

    r = await client.post("/api/v1/billing/checkout", json={"plan_key": "free"}, headers=auth_headers(owner, org))
    assert r.status_code == 400
    assert r.json()["detail"]["error"] == "VALIDATION_ERROR"
