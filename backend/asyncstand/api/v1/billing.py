from __future__ import annotations

import json
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from asyncstand.api.deps.org import get_current_org
from asyncstand.api.deps.permissions import require_permissions
from asyncstand.api.v1.auth import get_current_user
from asyncstand.core.permissions import PERM
from asyncstand.db.session import get_db
from asyncstand.models.org_member import OrgMember
from asyncstand.models.organization import Organization
from asyncstand.models.user import User
from asyncstand.schemas.billing import BillingSummaryOut, CheckoutOut, CheckoutRequest, PlanOut, SubscriptionOut
from asyncstand.services import billing as billing_service
from asyncstand.services.usage import get_usage_warnings, needs_upgrade

router = APIRouter(prefix="/billing", tags=["billing"])


@router.get("/plans", response_model=List[PlanOut])
async def list_plans(
    db: AsyncSession = Depends(get_db),
    _: User = Depends(get_current_user),
):
    return await billing_service.list_plans(db)


@router.get("/summary", response_model=BillingSummaryOut)
async def billing_summary(
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.BILLING_READ)),
    db: AsyncSession = Depends(get_db),
):
    return await billing_service.get_billing_summary(db, org.id)


@router.get("/warnings")
async def usage_warnings(
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.BILLING_READ)),
    db: AsyncSession = Depends(get_db),
):
    return {
        "warnings": await get_usage_warnings(db, org.id),
        "needs_upgrade": await needs_upgrade(db, org.id),
    }


@router.post("/checkout", response_model=CheckoutOut)
async def create_checkout(
    payload: CheckoutRequest,
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.BILLING_WRITE)),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await billing_service.create_checkout_session(
        db,
        org_id=org.id,
        plan_key=payload.plan_key,
        actor=user,
        success_url=payload.success_url,
        cancel_url=payload.cancel_url,
    )


@router.post("/cancel", response_model=SubscriptionOut)
async def cancel_subscription(
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.BILLING_WRITE)),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await billing_service.cancel_subscription(db, org_id=org.id, actor=user)


@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="Stripe-Signature"),
    db: AsyncSession = Depends(get_db),
):
    payload = await request.body()
    billing_service.construct_event(payload, stripe_signature)
    return await billing_service.handle_stripe_event(db, json.loads(payload))
