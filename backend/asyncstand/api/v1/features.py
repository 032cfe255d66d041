from __future__ import annotations

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from asyncstand.api.deps.org import get_current_org, require_super_admin
from asyncstand.api.deps.permissions import require_permissions
from asyncstand.api.v1.auth import get_current_user
from asyncstand.core.errors import validation_error
from asyncstand.core.permissions import PERM
from asyncstand.db.session import get_db
from asyncstand.models.org_member import OrgMember
from asyncstand.models.organization import Organization
from asyncstand.models.user import User
from asyncstand.schemas.billing import QuotaOut
from asyncstand.schemas.feature import (
    FeatureCheckOut,
    FeatureCreate,
    FeatureOut,
    FeatureUpdate,
    OverrideOut,
    OverrideSet,
)
from asyncstand.services import features as feature_service
from asyncstand.services.usage import QUOTA_TYPES, check_quota

router = APIRouter(prefix="/features", tags=["features"])
admin_router = APIRouter(prefix="/admin/features", tags=["features-admin"])


# ---------------------------------------------------------
# Org-scoped checks
# ---------------------------------------------------------
@router.get("/enabled", response_model=List[str])
async def enabled_features(
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.FEATURES_READ)),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    return await feature_service.get_enabled_features(db, org.id, user.id)


@router.get("/quota/{quota_type}", response_model=QuotaOut)
async def quota(
    quota_type: str,
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.FEATURES_READ)),
    db: AsyncSession = Depends(get_db),
):
    if quota_type not in QUOTA_TYPES:
        raise validation_error(f"Unknown quota type. Allowed: {', '.join(sorted(QUOTA_TYPES))}")
    return await check_quota(db, org.id, quota_type)


@router.get("/{feature_key}", response_model=FeatureCheckOut)
async def check_feature(
    feature_key: str,
    org: Organization = Depends(get_current_org),
    _: OrgMember = Depends(require_permissions(PERM.FEATURES_READ)),
    db: AsyncSession = Depends(get_db),
    user: User = Depends(get_current_user),
):
    result = await feature_service.is_feature_enabled(db, feature_key, org.id, user.id)
    return FeatureCheckOut(feature=feature_key, **result)


# ---------------------------------------------------------
# Platform admin
# ---------------------------------------------------------
@admin_router.get("", response_model=List[FeatureOut])
async def list_features(
    category: Optional[str] = Query(default=None),
    _: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    return await feature_service.list_features(db, category)


@admin_router.post("", response_model=FeatureOut, status_code=status.HTTP_201_CREATED)
async def create_feature(
    payload: FeatureCreate,
    _: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    return await feature_service.create_feature(db, payload.model_dump())


@admin_router.patch("/{feature_key}", response_model=FeatureOut)
async def update_feature(
    feature_key: str,
    payload: FeatureUpdate,
    _: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    return await feature_service.update_feature(db, feature_key, payload.model_dump(exclude_unset=True))


@admin_router.put("/{feature_key}/overrides/{org_id}", response_model=OverrideOut)
async def set_override(
    feature_key: str,
    org_id: uuid.UUID,
    payload: OverrideSet,
    _: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    return await feature_service.set_override(
        db,
        org_id,
        feature_key,
        enabled=payload.enabled,
        value=payload.value,
        reason=payload.reason,
        expires_at=payload.expires_at,
    )


@admin_router.delete("/{feature_key}/overrides/{org_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_override(
    feature_key: str,
    org_id: uuid.UUID,
    _: User = Depends(require_super_admin),
    db: AsyncSession = Depends(get_db),
):
    await feature_service.remove_override(db, org_id, feature_key)
