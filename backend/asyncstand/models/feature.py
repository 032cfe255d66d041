# backend/asyncstand/models/feature.py
import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from asyncstand.core.timeutil import utcnow
from asyncstand.db.base import Base

ROLLOUT_BOOLEAN = "boolean"
ROLLOUT_PERCENTAGE = "percentage"
ROLLOUT_ORG_LIST = "org_list"
ROLLOUT_USER_LIST = "user_list"

ROLLOUT_TYPES = {ROLLOUT_BOOLEAN, ROLLOUT_PERCENTAGE, ROLLOUT_ORG_LIST, ROLLOUT_USER_LIST}


class Feature(Base):
    __tablename__ = "features"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Global kill switch
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Empty list = every environment
    environments: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    rollout_type: Mapped[str] = mapped_column(String(20), nullable=False, default=ROLLOUT_BOOLEAN)
    # percentage: int, org_list / user_list: list[str]
    rollout_value: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)

    category: Mapped[Optional[str]] = mapped_column(String(60), nullable=True)
    is_plan_based: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    requires_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )


class FeatureOverride(Base):
    __tablename__ = "feature_overrides"
    __table_args__ = (
        UniqueConstraint("org_id", "feature_key", name="uq_feature_overrides_org_feature"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    feature_key: Mapped[str] = mapped_column(
        String(100), ForeignKey("features.key", ondelete="CASCADE"), nullable=False
    )
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False)
    value: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )


class PlanFeature(Base):
    __tablename__ = "plan_features"
    __table_args__ = (
        UniqueConstraint("plan_id", "feature_key", name="uq_plan_features_plan_feature"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    plan_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("plans.id", ondelete="CASCADE"), nullable=False
    )
    feature_key: Mapped[str] = mapped_column(
        String(100), ForeignKey("features.key", ondelete="CASCADE"), nullable=False
    )
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    value: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
