# backend/asyncstand/schemas/standup.py
from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# -----------------------------
# Configs
# -----------------------------
class StandupConfigCreate(BaseModel):
    """Field rules (weekdays, HH:MM, zone, questions) are checked by the service."""

    name: str = Field(min_length=1, max_length=100)
    questions: List[str]
    weekdays: List[int]
    time_local: str
    timezone: Optional[str] = None
    reminder_minutes_before: Optional[int] = None
    response_timeout_hours: Optional[int] = None
    delivery_type: Optional[str] = None
    target_channel_id: Optional[str] = None
    member_ids: Optional[List[uuid.UUID]] = None


class StandupConfigUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    questions: Optional[List[str]] = None
    weekdays: Optional[List[int]] = None
    time_local: Optional[str] = None
    timezone: Optional[str] = None
    reminder_minutes_before: Optional[int] = None
    response_timeout_hours: Optional[int] = None
    delivery_type: Optional[str] = None
    target_channel_id: Optional[str] = None
    is_active: Optional[bool] = None


class StandupConfigOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    team_id: uuid.UUID
    name: str
    questions: List[str]
    weekdays: List[int]
    time_local: str
    timezone: str
    reminder_minutes_before: int
    response_timeout_hours: int
    delivery_type: str
    target_channel_id: Optional[str] = None
    is_active: bool
    created_at: datetime


class ParticipationUpdateItem(BaseModel):
    team_member_id: uuid.UUID
    include: bool


class ParticipationUpdate(BaseModel):
    members: List[ParticipationUpdateItem] = Field(min_length=1)


class ParticipationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    team_member_id: uuid.UUID
    include: bool


# -----------------------------
# Instances
# -----------------------------
class StandupInstanceCreate(BaseModel):
    config_id: uuid.UUID
    target_date: date


class StandupInstanceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    team_id: uuid.UUID
    config_id: Optional[uuid.UUID] = None
    target_date: date
    state: str
    config_snapshot: Dict[str, Any]
    reminder_message_ts: Optional[str] = None
    summary_message_ts: Optional[str] = None
    created_at: datetime


class StateUpdate(BaseModel):
    state: str


class CompletionStats(BaseModel):
    total_members: int
    responded_members: int
    complete_members: int
    average_response_time_minutes: Optional[float] = None
    response_rate: int
    completion_rate: int


class InstanceDetailsOut(StandupInstanceOut):
    can_submit: bool
    stats: CompletionStats
    missing: List[Dict[str, Any]] = []


class CreateForDate(BaseModel):
    target_date: date


# -----------------------------
# Answers
# -----------------------------
class AnswerIn(BaseModel):
    question_index: int = Field(ge=0)
    text: str = Field(max_length=4000)


class AnswerSubmit(AnswerIn):
    team_member_id: uuid.UUID


class FullResponseSubmit(BaseModel):
    team_member_id: uuid.UUID
    answers: List[AnswerIn] = Field(min_length=1)


class AnswerOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    question_index: int
    text: str
    submitted_at: datetime


class MemberAnswersOut(BaseModel):
    team_member_id: uuid.UUID
    member_name: str
    answers: List[AnswerOut]
    is_complete: bool


class MagicTokenOut(BaseModel):
    team_member_id: uuid.UUID
    member_name: str
    token: str
    url: str
    expires_at: datetime


class MagicTokenInfo(BaseModel):
    instance_id: uuid.UUID
    team_name: str
    member_name: str
    target_date: date
    questions: List[str]
    deadline: datetime
    answers: List[AnswerOut] = []


class MagicSubmit(BaseModel):
    answers: List[AnswerIn] = Field(min_length=1)


class HistoryItem(BaseModel):
    instance_id: uuid.UUID
    target_date: date
    state: str
    stats: CompletionStats
