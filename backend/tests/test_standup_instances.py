# tests/test_standup_instances.py
from __future__ import annotations

from datetime import date, timedelta

import pytest
import pytest_asyncio
from sqlalchemy import select, update

from asyncstand.core.timeutil import utcnow
from asyncstand.models.billing import Plan
from asyncstand.models.standup_instance import (
    STATE_COLLECTING,
    STATE_PENDING,
    STATE_POSTED,
    Answer,
    StandupInstance,
)
from asyncstand.services.standup_instances import (
    archive_old_instances,
    create_instances_for_date,
    create_standup_instance,
)
from conftest import auth_headers, create_config

MONDAY = date(2026, 10, 19)


@pytest_asyncio.fixture()
async def config(db, slack_team):
    _integration, team, members = slack_team
    config = await create_config(db, team, members)
    await db.commit()
    return config


async def new_instance(db, config, target_date, *, state=STATE_PENDING, age=None):
    instance, _created = await create_standup_instance(db, config, target_date, state=state)
    if age is not None:
        instance.created_at = utcnow() - age
    await db.commit()
    return instance


async def remaining_ids(db):
    return set((await db.execute(select(StandupInstance.id))).scalars().all())


# ---------------------------------------------------------
# State machine
# ---------------------------------------------------------
@pytest.mark.asyncio
async def test_state_moves_forward_only(client, db, owner, org, config):
    instance = await new_instance(db, config, MONDAY)
    url = f"/api/v1/standups/{instance.id}/state"
    headers = auth_headers(owner, org)

    r = await client.patch(url, json={"state": STATE_POSTED}, headers=headers)
    assert r.status_code == 400
    detail = r.json()["detail"]
    assert detail["error"] == "INVALID_STATE_TRANSITION"
    assert (detail["current_state"], detail["requested_state"]) == (STATE_PENDING, STATE_POSTED)

    for state in (STATE_COLLECTING, STATE_POSTED):
        r = await client.patch(url, json={"state": state}, headers=headers)
        assert r.status_code == 200
        assert r.json()["state"] == state

    r = await client.patch(url, json={"state": STATE_COLLECTING}, headers=headers)
    assert r.status_code == 400
    assert r.json()["detail"]["error"] == "INVALID_STATE_TRANSITION"


# ---------------------------------------------------------
# Creation
# ---------------------------------------------------------
@pytest.mark.asyncio
async def test_create_for_date_is_idempotent(client, db, owner, org, config):
    headers = auth_headers(owner, org)

    r = await client.post("/api/v1/standups/create-for-date", json={"target_date": "2026-10-19"}, headers=headers)
    assert r.status_code == 200
    body = r.json()
    assert body["skipped"] == []
    [instance_id] = body["created"]

    r = await client.post("/api/v1/standups/create-for-date", json={"target_date": "2026-10-19"}, headers=headers)
    assert r.json() == {"created": [], "skipped": [str(config.id)]}

    # Sunday is not a configured weekday
    assert await create_instances_for_date(db, date(2026, 10, 18)) == {"created": [], "skipped": []}
    assert {str(i) for i in await remaining_ids(db)} == {instance_id}


@pytest.mark.asyncio
async def test_create_for_date_skips_configs_over_standup_quota(db, config):
    await db.execute(update(Plan).where(Plan.key == "free").values(standup_limit=0))
    await db.commit()

    assert await create_instances_for_date(db, MONDAY) == {"created": [], "skipped": [str(config.id)]}
    assert await remaining_ids(db) == set()


@pytest.mark.asyncio
async def test_manual_creation_respects_standup_quota(client, db, owner, org, config):
    headers = auth_headers(owner, org)
    existing = await new_instance(db, config, MONDAY)
    await db.execute(update(Plan).where(Plan.key == "free").values(standup_limit=0))
    await db.commit()

    r = await client.post(
        "/api/v1/standups", json={"config_id": str(config.id), "target_date": "2026-10-20"}, headers=headers
    )
    assert r.status_code == 403
    assert r.json()["detail"]["error"] == "PLAN_LIMIT_EXCEEDED"
    assert r.json()["detail"]["actionType"] == "create_standup"

    # the existing instance for a date is still returned
    r = await client.post(
        "/api/v1/standups", json={"config_id": str(config.id), "target_date": "2026-10-19"}, headers=headers
    )
    assert r.status_code == 201
    assert r.json()["id"] == str(existing.id)


# ---------------------------------------------------------
# Archiving
# ---------------------------------------------------------
@pytest.mark.asyncio
async def test_archive_deletes_only_old_posted_instances(db, slack_team, config):
    _integration, _team, members = slack_team
    old_posted = await new_instance(db, config, date(2026, 6, 1), state=STATE_POSTED, age=timedelta(days=120))
    old_collecting = await new_instance(
        db, config, date(2026, 6, 2), state=STATE_COLLECTING, age=timedelta(days=120)
    )
    recent_posted = await new_instance(db, config, date(2026, 10, 1), state=STATE_POSTED, age=timedelta(days=10))
    db.add(Answer(standup_instance_id=old_posted.id, team_member_id=members[0].id, question_index=0, text="old"))
    await db.commit()

    assert await archive_old_instances(db, 90) == 1

    assert await remaining_ids(db) == {old_collecting.id, recent_posted.id}
    answers = (await db.execute(select(Answer).where(Answer.standup_instance_id == old_posted.id))).scalars().all()
    assert answers == []

    assert await archive_old_instances(db, 90) == 0


# ---------------------------------------------------------
# History
# ---------------------------------------------------------
@pytest.mark.asyncio
async def test_history_filters_by_date_range(client, db, owner, org, slack_team, config):
    _integration, team, _members = slack_team
    for day in (12, 13, 14, 15):
        await new_instance(db, config, date(2026, 10, day))

    r = await client.get(
        f"/api/v1/standups/teams/{team.id}/history",
        params={"start": "2026-10-13", "end": "2026-10-14"},
        headers=auth_headers(owner, org),
    )

    assert r.status_code == 200
    history = r.json()
    assert [h["target_date"] for h in history] == ["2026-10-14", "2026-10-13"]
    assert history[0]["stats"]["total_members"] == 2

    r = await client.get(
        f"/api/v1/standups/teams/{team.id}/history", params={"limit": 2}, headers=auth_headers(owner, org)
    )
    assert [h["target_date"] for h in r.json()] == ["2026-10-15", "2026-10-14"]
