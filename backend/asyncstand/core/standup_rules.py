"""
Standup scheduling and validation rules that do not touch the database.

Weekdays are numbered 0=Sunday .. 6=Saturday everywhere (config storage,
snapshots, API payloads).
"""
from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta
from typing import Any, Iterable, Optional
from zoneinfo import ZoneInfo

from asyncstand.core.timeutil import as_utc, is_valid_timezone, js_weekday, utcnow

TIME_LOCAL_RE = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")

MIN_QUESTIONS = 1
MAX_QUESTIONS = 10
MIN_QUESTION_LENGTH = 10
MAX_QUESTION_LENGTH = 200

DEFAULT_RESPONSE_TIMEOUT_HOURS = 2
SCHEDULE_TOLERANCE_SECONDS = 60


# -----------------------------
# Validation (returns error messages; callers decide how to raise)
# -----------------------------
def validate_weekdays(weekdays: Any) -> list[str]:
    if not isinstance(weekdays, list) or not weekdays:
        return ["At least one weekday must be selected"]
    errors = []
    if len(weekdays) > 7:
        errors.append("Cannot select more than 7 weekdays")
    if any(not isinstance(d, int) or isinstance(d, bool) or not 0 <= d <= 6 for d in weekdays):
        errors.append("Weekdays must be integers between 0 (Sunday) and 6 (Saturday)")
    elif len(set(weekdays)) != len(weekdays):
        errors.append("Duplicate weekdays are not allowed")
    return errors


def validate_time_local(value: Any) -> list[str]:
    if not isinstance(value, str) or not TIME_LOCAL_RE.match(value):
        return ["Time must be in HH:MM format (00:00-23:59)"]
    return []


def validate_timezone(value: Any) -> list[str]:
    if not is_valid_timezone(value):
        return [f"Invalid timezone: {value}"]
    return []


def normalize_questions(questions: Iterable[str]) -> list[str]:
    return [q.strip() for q in questions if isinstance(q, str)]


def validate_questions(questions: Any) -> list[str]:
    if not isinstance(questions, list):
        return ["Questions must be a list"]
    if len(questions) < MIN_QUESTIONS:
        return [f"At least {MIN_QUESTIONS} question is required"]
    if len(questions) > MAX_QUESTIONS:
        return [f"At most {MAX_QUESTIONS} questions are allowed"]

    errors = []
    seen: set[str] = set()
    for index, raw in enumerate(questions):
        if not isinstance(raw, str):
            errors.append(f"Question {index + 1} must be text")
            continue
        q = raw.strip()
        if len(q) < MIN_QUESTION_LENGTH:
            errors.append(f"Question {index + 1} must be at least {MIN_QUESTION_LENGTH} characters")
        elif len(q) > MAX_QUESTION_LENGTH:
            errors.append(f"Question {index + 1} must be at most {MAX_QUESTION_LENGTH} characters")
        key = q.lower()
        if key in seen:
            errors.append(f"Question {index + 1} is a duplicate")
        seen.add(key)
    return errors


def schedules_conflict(
    weekdays_a: Iterable[int],
    time_a: str,
    tz_a: str,
    weekdays_b: Iterable[int],
    time_b: str,
    tz_b: str,
) -> bool:
    """Same wall-clock slot in the same timezone on at least one shared weekday."""
    return time_a == time_b and tz_a == tz_b and bool(set(weekdays_a) & set(weekdays_b))


# -----------------------------
# Scheduling
# -----------------------------
def parse_time_local(value: str) -> time:
    hours, minutes = value.split(":")
    return time(int(hours), int(minutes))


def local_date(tz_name: str, at: Optional[datetime] = None) -> date:
    return as_utc(at or utcnow()).astimezone(ZoneInfo(tz_name)).date()


def should_run_on(weekdays: Iterable[int], tz_name: str, at: Optional[datetime] = None) -> bool:
    local = as_utc(at or utcnow()).astimezone(ZoneInfo(tz_name))
    return js_weekday(local) in set(weekdays)


def is_time_for_standup(
    weekdays: Iterable[int],
    time_local: str,
    tz_name: str,
    at: Optional[datetime] = None,
    tolerance_seconds: int = SCHEDULE_TOLERANCE_SECONDS,
) -> bool:
    """
    True when `at`, seen in `tz_name`, falls on a configured weekday and within
    `tolerance_seconds` of the configured local time.
    """
    tz = ZoneInfo(tz_name)
    local = as_utc(at or utcnow()).astimezone(tz)
    if js_weekday(local) not in set(weekdays):
        return False
    target = datetime.combine(local.date(), parse_time_local(time_local), tzinfo=tz)
    return abs((local - target).total_seconds()) <= tolerance_seconds


def next_standup_date(
    weekdays: Iterable[int],
    time_local: str,
    tz_name: str,
    after: Optional[datetime] = None,
) -> Optional[date]:
    """First local date (today included) whose configured slot is still ahead of `after`."""
    days = set(weekdays)
    if not days:
        return None
    tz = ZoneInfo(tz_name)
    local_now = as_utc(after or utcnow()).astimezone(tz)
    slot = parse_time_local(time_local)
    for offset in range(8):
        candidate = local_now.date() + timedelta(days=offset)
        if js_weekday(datetime.combine(candidate, slot)) not in days:
            continue
        if datetime.combine(candidate, slot, tzinfo=tz) > local_now:
            return candidate
    return None


# -----------------------------
# Submission window
# -----------------------------
def response_deadline(created_at: datetime, snapshot: dict[str, Any]) -> datetime:
    hours = snapshot.get("responseTimeoutHours") or DEFAULT_RESPONSE_TIMEOUT_HOURS
    return as_utc(created_at) + timedelta(hours=float(hours))


def can_still_submit(instance, now: Optional[datetime] = None) -> bool:
    """state == collecting and now < created_at + responseTimeoutHours."""
    if instance.state != "collecting":
        return False
    now = as_utc(now or utcnow())
    return now < response_deadline(instance.created_at, instance.config_snapshot or {})


# -----------------------------
# Follow-up reminders
# -----------------------------
REMINDER_HALFWAY = "halfway"
REMINDER_LATE = "late"
REMINDER_FINAL = "final"


def reminder_schedule(created_at: datetime, snapshot: dict[str, Any]) -> list[tuple[str, datetime]]:
    """
    Follow-up stages inside the collection window, in time order: half of the
    window, 80% of it, and `reminderMinutesBefore` ahead of the deadline.
    """
    start = as_utc(created_at)
    deadline = response_deadline(created_at, snapshot)
    window = deadline - start
    stages = [
        (REMINDER_HALFWAY, start + window * 0.5),
        (REMINDER_LATE, start + window * 0.8),
    ]
    minutes_before = int(snapshot.get("reminderMinutesBefore") or 0)
    if minutes_before > 0:
        final_at = deadline - timedelta(minutes=minutes_before)
        if final_at > start:
            stages.append((REMINDER_FINAL, final_at))
    return sorted(stages, key=lambda s: s[1])


def due_reminder_stages(instance, now: Optional[datetime] = None) -> list[str]:
    """Stages whose time has come while the window is still open."""
    if not can_still_submit(instance, now):
        return []
    now = as_utc(now or utcnow())
    return [name for name, at in reminder_schedule(instance.created_at, instance.config_snapshot or {}) if at <= now]
