"""
Stripe billing: plans, checkout, cancellation and webhook sync.

The Stripe SDK is synchronous; calls go through the threadpool so they do not
block the event loop. Webhooks are the source of truth for subscription state.
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import stripe
import structlog
from fastapi import HTTPException, status
from fastapi.concurrency import run_in_threadpool
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from asyncstand.core.config import settings
from asyncstand.core.errors import not_found, validation_error
from asyncstand.core.plan_limits import FREE_PLAN_KEY, normalize_plan_key
from asyncstand.crud.billing import (
    get_billing_account,
    get_billing_account_by_customer,
    get_latest_subscription,
    get_plan_by_key,
    get_plan_by_price,
    get_subscription_by_stripe_id,
)
from asyncstand.models.billing import BillingAccount, Plan, Subscription
from asyncstand.models.user import User
from asyncstand.services import audit
from asyncstand.services.usage import get_current_usage, get_effective_plan, get_usage_warnings

logger = structlog.get_logger(__name__)

SUBSCRIPTION_STATUS_MAP = {
    "active": "active",
    "trialing": "trialing",
    "past_due": "past_due",
    "canceled": "canceled",
    "incomplete": "incomplete",
    "incomplete_expired": "canceled",
    "unpaid": "unpaid",
    "paused": "past_due",
}


def map_subscription_status(value: Optional[str]) -> str:
    return SUBSCRIPTION_STATUS_MAP.get((value or "").lower(), "incomplete")


def _require_stripe() -> None:
    if not settings.STRIPE_SECRET_KEY:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Billing is not configured")
    stripe.api_key = settings.STRIPE_SECRET_KEY


def _stripe_failed(action: str, e: Exception) -> HTTPException:
    logger.error("stripe_call_failed", action=action, error=str(e))
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Payment provider error")


def _from_timestamp(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


# =========================================================
# Plans & summary
# =========================================================
async def list_plans(db: AsyncSession) -> list[Plan]:
    stmt = select(Plan).where(Plan.is_active.is_(True)).order_by(Plan.price_cents.asc(), Plan.key.asc())
    return list((await db.execute(stmt)).scalars().all())


def _subscription_dict(subscription: Optional[Subscription]) -> Optional[dict[str, Any]]:
    if subscription is None:
        return None
    return {
        "id": subscription.id,
        "status": subscription.status,
        "current_period_start": subscription.current_period_start,
        "current_period_end": subscription.current_period_end,
        "cancel_at_period_end": subscription.cancel_at_period_end,
        "stripe_subscription_id": subscription.stripe_subscription_id,
    }


async def get_billing_summary(db: AsyncSession, org_id: uuid.UUID) -> dict[str, Any]:
    usage = await get_current_usage(db, org_id)
    plan = await get_effective_plan(db, org_id)
    subscription = await get_latest_subscription(db, org_id)
    return {
        "plan": plan,
        "plan_key": plan.key if plan is not None else FREE_PLAN_KEY,
        "subscription": _subscription_dict(subscription),
        "usage": {
            "period_start": usage["period_start"],
            "period_end": usage["period_end"],
            **{k: usage[k].to_dict() for k in ("members", "teams", "standup_configs", "standups")},
        },
        "warnings": await get_usage_warnings(db, org_id),
    }


# =========================================================
# Checkout / cancel
# =========================================================
async def _ensure_customer(db: AsyncSession, org_id: uuid.UUID, actor: User) -> BillingAccount:
    account = await get_billing_account(db, org_id)
    if account is None:
        account = BillingAccount(org_id=org_id, email=actor.email)
        db.add(account)
        await db.flush()

    if not account.stripe_customer_id:
        try:
            customer = await run_in_threadpool(
                stripe.Customer.create,
                email=account.email or actor.email,
                metadata={"org_id": str(org_id)},
            )
        except stripe.StripeError as e:
            await db.rollback()
            raise _stripe_failed("customer.create", e)
        account.stripe_customer_id = customer["id"]
        await db.flush()
    return account


async def create_checkout_session(
    db: AsyncSession,
    *,
    org_id: uuid.UUID,
    plan_key: str,
    actor: User,
    success_url: Optional[str] = None,
    cancel_url: Optional[str] = None,
) -> dict[str, str]:
    _require_stripe()

    plan = await get_plan_by_key(db, normalize_plan_key(plan_key))
    if plan is None or not plan.is_active:
        raise not_found("Plan")
    if not plan.stripe_price_id:
        raise validation_error("This plan cannot be purchased", plan=plan.key)

    account = await _ensure_customer(db, org_id, actor)
    base = settings.APP_URL.rstrip("/")
    try:
        session = await run_in_threadpool(
            stripe.checkout.Session.create,
            mode="subscription",
            customer=account.stripe_customer_id,
            line_items=[{"price": plan.stripe_price_id, "quantity": 1}],
            success_url=success_url or f"{base}/billing?checkout=success",
            cancel_url=cancel_url or f"{base}/billing?checkout=cancelled",
            client_reference_id=str(org_id),
            subscription_data={"metadata": {"org_id": str(org_id), "plan": plan.key}},
        )
    except stripe.StripeError as e:
        await db.rollback()
        raise _stripe_failed("checkout.session.create", e)

    await audit.log_audit(
        db,
        org_id=org_id,
        actor_user_id=actor.id,
        action="billing.checkout.started",
        category=audit.CATEGORY_BILLING,
        resource_type="plan",
        resource_id=plan.key,
        tags=["billing", "checkout"],
    )
    await db.commit()
    return {"checkout_url": session["url"], "session_id": session["id"]}


async def cancel_subscription(db: AsyncSession, *, org_id: uuid.UUID, actor: User) -> Subscription:
    """Cancels at period end; the webhook later flips the status to canceled."""
    subscription = await get_latest_subscription(db, org_id)
    if subscription is None or not subscription.stripe_subscription_id:
        raise validation_error("No paid subscription to cancel")
    if subscription.status == "canceled":
        raise validation_error("Subscription is already canceled")

    _require_stripe()
    try:
        await run_in_threadpool(
            stripe.Subscription.modify,
            subscription.stripe_subscription_id,
            cancel_at_period_end=True,
        )
    except stripe.StripeError as e:
        raise _stripe_failed("subscription.modify", e)

    subscription.cancel_at_period_end = True
    await audit.log_audit(
        db,
        org_id=org_id,
        actor_user_id=actor.id,
        action="billing.subscription.cancel_requested",
        category=audit.CATEGORY_BILLING,
        severity=audit.SEVERITY_MEDIUM,
        resource_type="subscription",
        resource_id=subscription.id,
        tags=["billing", "subscription"],
    )
    await db.commit()
    return subscription


# =========================================================
# Webhooks
# =========================================================
def construct_event(payload: bytes, signature: Optional[str]) -> Any:
    """Verify a webhook body; raises 400 on a missing or bad signature."""
    if not signature:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing Stripe-Signature header")
    try:
        return stripe.Webhook.construct_event(payload, signature, settings.STRIPE_WEBHOOK_SECRET or "")
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning("stripe_webhook_invalid", error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid Stripe webhook")


def _first_item(data: dict[str, Any]) -> dict[str, Any]:
    items = (data.get("items") or {}).get("data") or []
    return items[0] if items else {}


async def _sync_subscription(db: AsyncSession, data: dict[str, Any]) -> Optional[Subscription]:
    stripe_id = data.get("id")
    item = _first_item(data)
    price_id = (item.get("price") or {}).get("id")
    plan = await get_plan_by_price(db, price_id) if price_id else None

    subscription = await get_subscription_by_stripe_id(db, stripe_id) if stripe_id else None
    if subscription is None:
        account = await get_billing_account_by_customer(db, data.get("customer") or "")
        if account is None:
            logger.warning("stripe_subscription_unknown_customer", subscription=stripe_id, customer=data.get("customer"))
            return None
        if plan is None:
            logger.warning("stripe_subscription_unknown_price", subscription=stripe_id, price=price_id)
            return None
        subscription = Subscription(
            billing_account_id=account.id,
            stripe_subscription_id=stripe_id,
            plan_id=plan.id,
        )
        db.add(subscription)
    elif plan is not None:
        subscription.plan_id = plan.id

    subscription.status = map_subscription_status(data.get("status"))
    subscription.current_period_start = _from_timestamp(
        item.get("current_period_start") or data.get("current_period_start")
    )
    subscription.current_period_end = _from_timestamp(item.get("current_period_end") or data.get("current_period_end"))
    subscription.cancel_at_period_end = bool(data.get("cancel_at_period_end"))
    await db.flush()
    return subscription


async def _org_for_subscription(db: AsyncSession, subscription: Subscription) -> Optional[uuid.UUID]:
    account = await db.get(BillingAccount, subscription.billing_account_id)
    return account.org_id if account is not None else None


async def handle_stripe_event(db: AsyncSession, event: dict[str, Any]) -> dict[str, Any]:
    event_type = event.get("type") or ""
    data = (event.get("data") or {}).get("object") or {}
    logger.info("stripe_webhook_received", type=event_type, event_id=event.get("id"))

    if event_type in ("customer.subscription.created", "customer.subscription.updated"):
        subscription = await _sync_subscription(db, data)
        if subscription is None:
            return {"received": True, "handled": False}
        await audit.log_audit(
            db,
            org_id=await _org_for_subscription(db, subscription),
            actor_type=audit.ACTOR_SERVICE,
            action=f"billing.{event_type.split('.', 1)[1]}",
            category=audit.CATEGORY_BILLING,
            resource_type="subscription",
            resource_id=subscription.id,
            request_data={"status": subscription.status, "stripe_subscription_id": subscription.stripe_subscription_id},
            tags=["billing", "stripe"],
        )
        await db.commit()
        return {"received": True, "handled": True}

    if event_type == "customer.subscription.deleted":
        subscription = await get_subscription_by_stripe_id(db, data.get("id") or "")
        if subscription is None:
            logger.warning("stripe_subscription_unknown", subscription=data.get("id"))
            return {"received": True, "handled": False}
        subscription.status = "canceled"
        subscription.cancel_at_period_end = False
        await audit.log_audit(
            db,
            org_id=await _org_for_subscription(db, subscription),
            actor_type=audit.ACTOR_SERVICE,
            action="billing.subscription.deleted",
            category=audit.CATEGORY_BILLING,
            severity=audit.SEVERITY_MEDIUM,
            resource_type="subscription",
            resource_id=subscription.id,
            tags=["billing", "stripe"],
        )
        await db.commit()
        return {"received": True, "handled": True}

    if event_type in ("invoice.payment_succeeded", "invoice.payment_failed"):
        account = await get_billing_account_by_customer(db, data.get("customer") or "")
        if account is None:
            logger.warning("stripe_invoice_unknown_customer", customer=data.get("customer"))
            return {"received": True, "handled": False}
        failed = event_type.endswith("failed")
        log = logger.warning if failed else logger.info
        log("stripe_invoice_payment", org_id=str(account.org_id), invoice=data.get("id"), failed=failed)
        await audit.log_audit(
            db,
            org_id=account.org_id,
            actor_type=audit.ACTOR_SERVICE,
            action=f"billing.{event_type}",
            category=audit.CATEGORY_BILLING,
            severity=audit.SEVERITY_HIGH if failed else audit.SEVERITY_INFO,
            resource_type="invoice",
            resource_id=data.get("id"),
            request_data={"amount_due": data.get("amount_due"), "amount_paid": data.get("amount_paid")},
            tags=["billing", "stripe", "invoice"],
        )
        await db.commit()
        return {"received": True, "handled": True}

    return {"received": True, "handled": False}
