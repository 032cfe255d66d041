# backend/asyncstand/models/standup_instance.py
import uuid
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import JSON, Date, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from asyncstand.core.timeutil import utcnow
from asyncstand.db.base import Base

STATE_PENDING = "pending"
STATE_COLLECTING = "collecting"
STATE_POSTED = "posted"

ACTIVE_STATES = (STATE_PENDING, STATE_COLLECTING)


class StandupInstance(Base):
    __tablename__ = "standup_instances"
    __table_args__ = (
        UniqueConstraint("team_id", "config_id", "target_date", name="uq_standup_instances_team_config_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    team_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("teams.id", ondelete="CASCADE"), nullable=False, index=True
    )
    config_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid, ForeignKey("standup_configs.id", ondelete="SET NULL"), nullable=True
    )

    # Frozen copy of the config at creation (questions, timeout, participants...)
    config_snapshot: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    # Local date in the config timezone
    target_date: Mapped[date] = mapped_column(Date, nullable=False)

    # pending | collecting | posted
    state: Mapped[str] = mapped_column(String(20), nullable=False, default=STATE_PENDING)

    # Slack ts of the channel prompt (thread replies are matched on it)
    reminder_message_ts: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    summary_message_ts: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    # follow-up stages already sent to members without answers
    reminders_sent: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )


class Answer(Base):
    __tablename__ = "answers"

    standup_instance_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("standup_instances.id", ondelete="CASCADE"), primary_key=True
    )
    team_member_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("team_members.id", ondelete="CASCADE"), primary_key=True
    )
    question_index: Mapped[int] = mapped_column(Integer, primary_key=True)

    text: Mapped[str] = mapped_column(Text, nullable=False, default="")
    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )


class ParticipationSnapshot(Base):
    __tablename__ = "participation_snapshots"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    standup_instance_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("standup_instances.id", ondelete="CASCADE"), nullable=False, index=True
    )
    answers_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    members_missing: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    captured_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False
    )
