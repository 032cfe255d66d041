# tests/test_standup_rules.py
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace

from asyncstand.core.standup_rules import (
    can_still_submit,
    due_reminder_stages,
    is_time_for_standup,
    local_date,
    next_standup_date,
    reminder_schedule,
    response_deadline,
    schedules_conflict,
    validate_questions,
    validate_time_local,
    validate_timezone,
    validate_weekdays,
)
from asyncstand.core.timeutil import js_weekday
from asyncstand.services.standup_instances import should_create_standup_today

# 2026-10-19 is a Monday
MONDAY_0900_UTC = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


def test_weekday_numbering_starts_on_sunday():
    assert js_weekday(datetime(2026, 10, 18)) == 0
    assert js_weekday(datetime(2026, 10, 19)) == 1
    assert js_weekday(datetime(2026, 10, 24)) == 6


def test_standup_time_matches_within_one_minute():
    assert is_time_for_standup([1], "09:00", "UTC", MONDAY_0900_UTC + timedelta(seconds=30))
    assert is_time_for_standup([1], "09:00", "UTC", MONDAY_0900_UTC - timedelta(seconds=45))
    assert not is_time_for_standup([1], "09:00", "UTC", MONDAY_0900_UTC + timedelta(minutes=2))


def test_standup_time_requires_configured_weekday():
    assert not is_time_for_standup([2, 3, 4], "09:00", "UTC", MONDAY_0900_UTC)


def test_standup_time_uses_config_timezone():
    # 09:00 in New York during daylight saving time is 13:00 UTC
    at = datetime(2026, 10, 19, 13, 0, tzinfo=timezone.utc)
    assert is_time_for_standup([1], "09:00", "America/New_York", at)
    assert not is_time_for_standup([1], "09:00", "America/New_York", MONDAY_0900_UTC)


def test_local_date_crosses_day_boundary():
    # Sunday 23:00 UTC is already Monday 08:00 in Tokyo
    at = datetime(2026, 10, 18, 23, 0, tzinfo=timezone.utc)
    assert local_date("Asia/Tokyo", at) == date(2026, 10, 19)
    assert is_time_for_standup([1], "08:00", "Asia/Tokyo", at)


def test_next_standup_date():
    assert next_standup_date([1, 3], "09:00", "UTC", MONDAY_0900_UTC - timedelta(hours=1)) == date(2026, 10, 19)
    assert next_standup_date([1, 3], "09:00", "UTC", MONDAY_0900_UTC + timedelta(hours=1)) == date(2026, 10, 21)
    assert next_standup_date([1], "09:00", "UTC", MONDAY_0900_UTC + timedelta(hours=1)) == date(2026, 10, 26)
    assert next_standup_date([], "09:00", "UTC", MONDAY_0900_UTC) is None


def test_response_deadline_and_submission_window():
    created = MONDAY_0900_UTC
    snapshot = {"responseTimeoutHours": 3}
    assert response_deadline(created, snapshot) == created + timedelta(hours=3)

    instance = SimpleNamespace(state="collecting", created_at=created, config_snapshot=snapshot)
    assert can_still_submit(instance, now=created + timedelta(hours=2, minutes=59))
    assert not can_still_submit(instance, now=created + timedelta(hours=3))

    instance.state = "posted"
    assert not can_still_submit(instance, now=created + timedelta(minutes=1))


def test_submission_window_accepts_naive_created_at():
    instance = SimpleNamespace(
        state="collecting",
        created_at=datetime(2026, 10, 19, 9, 0),
        config_snapshot={},
    )
    # default timeout is 2 hours
    assert can_still_submit(instance, now=MONDAY_0900_UTC + timedelta(hours=1))
    assert not can_still_submit(instance, now=MONDAY_0900_UTC + timedelta(hours=2, seconds=1))


def test_weekday_validation():
    assert validate_weekdays([1, 2, 3]) == []
    assert validate_weekdays([]) == ["At least one weekday must be selected"]
    assert validate_weekdays([0, 7])
    assert validate_weekdays([1, 1]) == ["Duplicate weekdays are not allowed"]


def test_time_and_timezone_validation():
    assert validate_time_local("09:30") == []
    assert validate_time_local("9:30") == []
    assert validate_time_local("24:00")
    assert validate_time_local("09:60")
    assert validate_timezone("Europe/Berlin") == []
    assert validate_timezone("Mars/Olympus") == ["Invalid timezone: Mars/Olympus"]
    # a zone directory, not a zone
    assert validate_timezone("America") == ["Invalid timezone: America"]
    assert validate_timezone("Europe") == ["Invalid timezone: Europe"]


def test_question_validation():
    assert validate_questions(["What did you do yesterday?"]) == []
    assert validate_questions([]) == ["At least 1 question is required"]
    assert validate_questions(["Too short"]) == ["Question 1 must be at least 10 characters"]
    errors = validate_questions(["What are you working on?", "what are you working on?  "])
    assert errors == ["Question 2 is a duplicate"]
    assert validate_questions(["Question number %d here" % i for i in range(11)]) == [
        "At most 10 questions are allowed"
    ]


def test_schedule_conflicts():
    assert schedules_conflict([1, 2], "09:00", "UTC", [2, 3], "09:00", "UTC")
    assert not schedules_conflict([1, 2], "09:00", "UTC", [3, 4], "09:00", "UTC")
    assert not schedules_conflict([1, 2], "09:00", "UTC", [1, 2], "09:30", "UTC")
    assert not schedules_conflict([1], "09:00", "UTC", [1], "09:00", "Europe/Paris")


def test_should_create_standup_today_checks_active_and_weekday():
    config = SimpleNamespace(is_active=True, weekdays=[1, 3, 5], timezone="UTC")
    assert should_create_standup_today(config, MONDAY_0900_UTC)
    assert not should_create_standup_today(config, MONDAY_0900_UTC + timedelta(days=1))

    config.is_active = False
    assert not should_create_standup_today(config, MONDAY_0900_UTC)


def test_reminder_schedule_inside_window():
    snapshot = {"responseTimeoutHours": 2, "reminderMinutesBefore": 10}
    assert reminder_schedule(MONDAY_0900_UTC, snapshot) == [
        ("halfway", MONDAY_0900_UTC + timedelta(minutes=60)),
        ("late", MONDAY_0900_UTC + timedelta(minutes=96)),
        ("final", MONDAY_0900_UTC + timedelta(minutes=110)),
    ]

    def stage_names(minutes_before):
        snapshot = {"responseTimeoutHours": 1, "reminderMinutesBefore": minutes_before}
        return [name for name, _ in reminder_schedule(MONDAY_0900_UTC, snapshot)]

    # a lead time longer than the window has no last call
    assert stage_names(90) == ["halfway", "late"]
    # 40 minutes before a 1h deadline comes ahead of the halfway mark
    assert stage_names(40) == ["final", "halfway", "late"]
    assert stage_names(0) == ["halfway", "late"]


def test_due_reminder_stages():
    snapshot = {"responseTimeoutHours": 2, "reminderMinutesBefore": 10}
    instance = SimpleNamespace(state="collecting", created_at=MONDAY_0900_UTC, config_snapshot=snapshot)

    assert due_reminder_stages(instance, MONDAY_0900_UTC + timedelta(minutes=30)) == []
    assert due_reminder_stages(instance, MONDAY_0900_UTC + timedelta(minutes=100)) == ["halfway", "late"]
    assert due_reminder_stages(instance, MONDAY_0900_UTC + timedelta(hours=2)) == []

    instance.state = "posted"
    assert due_reminder_stages(instance, MONDAY_0900_UTC + timedelta(minutes=100)) == []
