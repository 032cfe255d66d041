# backend/asyncstand/models/integration.py
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from asyncstand.core.timeutil import utcnow
from asyncstand.db.base import Base

PLATFORM_SLACK = "slack"

TOKEN_STATUS_OK = "ok"
TOKEN_STATUS_REVOKED = "revoked"
TOKEN_STATUS_EXPIRED = "expired"


class Integration(Base):
    __tablename__ = "integrations"
    __table_args__ = (
        UniqueConstraint("platform", "external_team_id", name="uq_integrations_platform_external_team"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )

    platform: Mapped[str] = mapped_column(String(30), nullable=False, default=PLATFORM_SLACK)
    # Slack workspace id (T0123...)
    external_team_id: Mapped[str] = mapped_column(String(64), nullable=False)
    workspace_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    bot_token: Mapped[str] = mapped_column(String(255), nullable=False)
    bot_user_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    # ok | revoked | expired
    token_status: Mapped[str] = mapped_column(String(20), nullable=False, default=TOKEN_STATUS_OK)
    scopes: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    installed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )
