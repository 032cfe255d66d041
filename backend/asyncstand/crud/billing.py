# asyncstand/crud/billing.py
from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from asyncstand.core.plan_limits import FREE_PLAN_KEY
from asyncstand.models.billing import BillingAccount, Plan, Subscription


async def get_plan_by_key(db: AsyncSession, key: str) -> Optional[Plan]:
    return (await db.execute(select(Plan).where(Plan.key == key))).scalar_one_or_none()


async def get_plan_by_price(db: AsyncSession, stripe_price_id: str) -> Optional[Plan]:
    return (
        await db.execute(select(Plan).where(Plan.stripe_price_id == stripe_price_id))
    ).scalar_one_or_none()


async def get_free_plan(db: AsyncSession) -> Optional[Plan]:
    return await get_plan_by_key(db, FREE_PLAN_KEY)


async def get_billing_account(db: AsyncSession, org_id: uuid.UUID) -> Optional[BillingAccount]:
    return (
        await db.execute(select(BillingAccount).where(BillingAccount.org_id == org_id))
    ).scalar_one_or_none()


async def get_latest_subscription(db: AsyncSession, org_id: uuid.UUID) -> Optional[Subscription]:
    """Most recent subscription of the org's billing account, whatever its status."""
    stmt = (
        select(Subscription)
        .join(BillingAccount, BillingAccount.id == Subscription.billing_account_id)
        .where(BillingAccount.org_id == org_id)
        .order_by(Subscription.created_at.desc())
        .limit(1)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def get_subscription_and_plan(
    db: AsyncSession, org_id: uuid.UUID
) -> tuple[Optional[Subscription], Optional[Plan]]:
    subscription = await get_latest_subscription(db, org_id)
    if subscription is None:
        return None, None
    plan = await db.get(Plan, subscription.plan_id)
    return subscription, plan


async def get_subscription_by_stripe_id(db: AsyncSession, stripe_subscription_id: str) -> Optional[Subscription]:
    return (
        await db.execute(
            select(Subscription).where(Subscription.stripe_subscription_id == stripe_subscription_id)
        )
    ).scalar_one_or_none()


async def get_billing_account_by_customer(db: AsyncSession, customer_id: str) -> Optional[BillingAccount]:
    return (
        await db.execute(select(BillingAccount).where(BillingAccount.stripe_customer_id == customer_id))
    ).scalar_one_or_none()
