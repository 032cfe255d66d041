# tests/test_scheduler_jobs.py
from __future__ import annotations

import json
from datetime import date, datetime, timedelta, timezone

import pytest
from sqlalchemy import select, update

from asyncstand.core.timeutil import utcnow
from asyncstand.jobs.scheduler import StandupScheduler
from asyncstand.jobs.standup_jobs import (
    close_expired_instances,
    process_scheduled_standups,
    send_followup_reminders,
)
from asyncstand.models.audit_log import AuditLog
from asyncstand.models.billing import Plan
from asyncstand.models.integration import TOKEN_STATUS_REVOKED, Integration
from asyncstand.models.standup_instance import (
    STATE_COLLECTING,
    STATE_POSTED,
    Answer,
    ParticipationSnapshot,
    StandupInstance,
)
from conftest import create_config, create_instance

MONDAY_0900_UTC = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


async def instances_for(db, config):
    stmt = (
        select(StandupInstance)
        .where(StandupInstance.config_id == config.id)
        .execution_options(populate_existing=True)
    )
    return (await db.execute(stmt)).scalars().all()


# ---------------------------------------------------------
# Opening standups
# ---------------------------------------------------------
@pytest.mark.asyncio
async def test_due_config_opens_instance_and_sends_dms(db, slack_team, messenger):
    _integration, team, members = slack_team
    config = await create_config(db, team, members)
    await db.commit()

    summary = await process_scheduled_standups(db, MONDAY_0900_UTC)

    assert len(summary["created"]) == 1
    assert summary["failed"] == []
    [instance] = await instances_for(db, config)
    assert instance.target_date == date(2026, 10, 19)
    assert instance.state == STATE_COLLECTING
    assert [m["name"] for m in instance.config_snapshot["participatingMembers"]] == ["Alice", "Bob"]

    assert [d["user"] for d in messenger.direct] == ["U0001", "U0002"]
    assert "/standup/respond/" in json.dumps(messenger.direct[0]["blocks"])

    log = (
        await db.execute(select(AuditLog).where(AuditLog.action == "standup.instance.created"))
    ).scalar_one()
    assert log.actor_type == "system"
    assert log.request_data["messages_sent"] == 2


@pytest.mark.asyncio
async def test_second_run_for_same_date_is_skipped(db, slack_team, messenger):
    _integration, team, members = slack_team
    config = await create_config(db, team, members)
    await db.commit()

    await process_scheduled_standups(db, MONDAY_0900_UTC)
    summary = await process_scheduled_standups(db, MONDAY_0900_UTC + timedelta(seconds=30))

    assert summary["created"] == []
    assert summary["skipped"] == [str(config.id)]
    assert len(await instances_for(db, config)) == 1


@pytest.mark.asyncio
async def test_outside_window_and_off_days_do_nothing(db, slack_team, messenger):
    _integration, team, members = slack_team
    await create_config(db, team, members, weekdays=[2, 3])
    await db.commit()

    assert await process_scheduled_standups(db, MONDAY_0900_UTC) == {"created": [], "skipped": [], "failed": []}
    assert await process_scheduled_standups(db, MONDAY_0900_UTC + timedelta(days=1, minutes=5)) == {
        "created": [],
        "skipped": [],
        "failed": [],
    }
    assert messenger.direct == []


@pytest.mark.asyncio
async def test_local_timezone_decides_the_slot(db, slack_team, messenger):
    _integration, team, members = slack_team
    # 09:00 in New York is 13:00 UTC in October
    config = await create_config(db, team, members, timezone="America/New_York")
    await db.commit()

    assert (await process_scheduled_standups(db, MONDAY_0900_UTC))["created"] == []
    assert len((await process_scheduled_standups(db, MONDAY_0900_UTC + timedelta(hours=4)))["created"]) == 1
    [instance] = await instances_for(db, config)
    assert instance.target_date == date(2026, 10, 19)


@pytest.mark.asyncio
async def test_channel_delivery_stores_message_ts(db, slack_team, messenger):
    _integration, team, members = slack_team
    config = await create_config(db, team, members, delivery_type="channel")
    await db.commit()

    await process_scheduled_standups(db, MONDAY_0900_UTC)

    assert messenger.direct == []
    assert [p["channel"] for p in messenger.posted] == ["C0001"]
    [instance] = await instances_for(db, config)
    assert instance.reminder_message_ts == "1700000000.000001"


@pytest.mark.asyncio
async def test_revoked_integration_is_ignored(db, slack_team, messenger):
    integration, team, members = slack_team
    await create_config(db, team, members)
    await db.execute(update(Integration).where(Integration.id == integration.id).values(token_status=TOKEN_STATUS_REVOKED))
    await db.commit()

    summary = await process_scheduled_standups(db, MONDAY_0900_UTC)

    assert summary == {"created": [], "skipped": [], "failed": []}


@pytest.mark.asyncio
async def test_standup_quota_blocks_creation(db, slack_team, messenger):
    _integration, team, members = slack_team
    config = await create_config(db, team, members)
    await db.execute(update(Plan).where(Plan.key == "free").values(standup_limit=0))
    await db.commit()

    summary = await process_scheduled_standups(db, MONDAY_0900_UTC)

    assert summary["skipped"] == [str(config.id)]
    assert await instances_for(db, config) == []


# ---------------------------------------------------------
# Closing standups
# ---------------------------------------------------------
@pytest.mark.asyncio
async def test_expired_instance_is_closed_with_digest(db, slack_team, messenger):
    _integration, team, members = slack_team
    config = await create_config(db, team, members)
    instance = await create_instance(db, config, members)
    instance.reminder_message_ts = "1699999999.000001"
    db.add(Answer(standup_instance_id=instance.id, team_member_id=members[0].id, question_index=0, text="Done"))
    await db.commit()

    # still open
    assert await close_expired_instances(db) == []

    closed = await close_expired_instances(db, utcnow() + timedelta(hours=3))

    assert closed == [str(instance.id)]
    [refreshed] = await instances_for(db, config)
    assert refreshed.state == STATE_POSTED
    assert refreshed.summary_message_ts == "1700000000.000001"

    digest = messenger.posted[0]
    assert digest["channel"] == "C0001"
    assert "No response: Bob" in json.dumps(digest["blocks"])
    assert messenger.updated[0]["ts"] == "1699999999.000001"

    snapshot = (
        await db.execute(select(ParticipationSnapshot).where(ParticipationSnapshot.standup_instance_id == instance.id))
    ).scalar_one()
    assert snapshot.answers_count == 1
    assert snapshot.members_missing == 1


# ---------------------------------------------------------
# Follow-up reminders
# ---------------------------------------------------------
async def answer_all(db, instance, member):
    for index in range(len(instance.config_snapshot["questions"])):
        db.add(Answer(standup_instance_id=instance.id, team_member_id=member.id, question_index=index, text="ok"))
    await db.commit()


@pytest.mark.asyncio
async def test_reminder_goes_only_to_members_with_missing_answers(db, slack_team, messenger):
    _integration, team, members = slack_team
    config = await create_config(db, team, members)
    instance = await create_instance(db, config, members, age=timedelta(minutes=65))
    await answer_all(db, instance, members[0])

    reminded = await send_followup_reminders(db)

    assert reminded == {str(instance.id): "halfway"}
    assert [d["user"] for d in messenger.direct] == ["U0002"]
    assert "still waiting" in messenger.direct[0]["text"]
    assert "/standup/respond/" in json.dumps(messenger.direct[0]["blocks"])

    # same stage is not repeated
    assert await send_followup_reminders(db) == {}
    assert len(messenger.direct) == 1

    log = (
        await db.execute(select(AuditLog).where(AuditLog.action == "standup.reminder.halfway"))
    ).scalar_one()
    assert log.severity == "low"
    assert log.request_data["messages_sent"] == 1


@pytest.mark.asyncio
async def test_late_run_sends_only_the_last_call(db, slack_team, messenger):
    _integration, team, members = slack_team
    config = await create_config(db, team, members)
    config.reminder_minutes_before = 15
    instance = await create_instance(db, config, members, age=timedelta(minutes=106))
    await db.commit()

    reminded = await send_followup_reminders(db)

    assert reminded == {str(instance.id): "final"}
    assert [d["user"] for d in messenger.direct] == ["U0001", "U0002"]
    assert "Last call" in messenger.direct[0]["text"]
    [refreshed] = await instances_for(db, config)
    assert refreshed.reminders_sent == ["halfway", "late", "final"]


@pytest.mark.asyncio
async def test_no_reminders_before_halfway_or_after_close(db, slack_team, messenger):
    _integration, team, members = slack_team
    config = await create_config(db, team, members)
    await create_instance(db, config, members)
    await create_instance(db, config, members, age=timedelta(hours=3))
    await db.commit()

    assert await send_followup_reminders(db) == {}
    assert messenger.direct == []


@pytest.mark.asyncio
async def test_complete_standup_closes_early(db, slack_team, messenger):
    _integration, team, members = slack_team
    config = await create_config(db, team, members)
    instance = await create_instance(db, config, members)
    for member in members:
        await answer_all(db, instance, member)

    closed = await close_expired_instances(db)

    assert closed == [str(instance.id)]
    [refreshed] = await instances_for(db, config)
    assert refreshed.state == STATE_POSTED
    assert "No response" not in json.dumps(messenger.posted[0]["blocks"])
    snapshot = (
        await db.execute(select(ParticipationSnapshot).where(ParticipationSnapshot.standup_instance_id == instance.id))
    ).scalar_one()
    assert snapshot.note == "complete"
    assert snapshot.members_missing == 0


# ---------------------------------------------------------
# Scheduler wiring
# ---------------------------------------------------------
def test_scheduler_registers_jobs_without_starting():
    scheduler = StandupScheduler()
    scheduler.register_jobs()

    assert scheduler.running is False
    assert sorted(scheduler.job_ids()) == [
        "instance-archiver",
        "standup-closer",
        "standup-reminder",
        "standup-scheduler",
    ]
