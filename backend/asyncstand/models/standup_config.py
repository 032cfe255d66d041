# backend/asyncstand/models/standup_config.py
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from asyncstand.core.timeutil import utcnow
from asyncstand.db.base import Base

DELIVERY_CHANNEL = "channel"
DELIVERY_DIRECT_MESSAGE = "direct_message"


class StandupConfig(Base):
    __tablename__ = "standup_configs"
    __table_args__ = (
        UniqueConstraint("team_id", "name", name="uq_standup_configs_team_name"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    team_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    questions: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    # 0=Sunday .. 6=Saturday
    weekdays: Mapped[list[int]] = mapped_column(JSON, nullable=False, default=list)
    # "HH:MM" in `timezone`
    time_local: Mapped[str] = mapped_column(String(5), nullable=False)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")

    reminder_minutes_before: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    response_timeout_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=2)

    # channel | direct_message
    delivery_type: Mapped[str] = mapped_column(String(30), nullable=False, default=DELIVERY_DIRECT_MESSAGE)
    target_channel_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )


class StandupConfigMember(Base):
    __tablename__ = "standup_config_members"
    __table_args__ = (
        UniqueConstraint("config_id", "team_member_id", name="uq_standup_config_members_config_member"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    config_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("standup_configs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    team_member_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("team_members.id", ondelete="CASCADE"), nullable=False
    )
    include: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
