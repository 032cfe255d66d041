# tests/test_slack_endpoints.py
from __future__ import annotations

import json

import pytest
import pytest_asyncio
from sqlalchemy import select

from asyncstand.core.config import settings
from asyncstand.models.audit_log import AuditLog
from asyncstand.models.standup_instance import Answer
from conftest import create_config, create_instance


@pytest.fixture(autouse=True)
def _no_signing_secret(monkeypatch):
    monkeypatch.setattr(settings, "SLACK_SIGNING_SECRET", None)


@pytest_asyncio.fixture()
async def open_standup(db, slack_team):
    integration, team, members = slack_team
    config = await create_config(db, team, members)
    instance = await create_instance(db, config, members)
    await db.commit()
    return instance, members


async def answers_for(db, instance_id, member_id):
    rows = (
        await db.execute(
            select(Answer)
            .where(Answer.standup_instance_id == instance_id, Answer.team_member_id == member_id)
            .order_by(Answer.question_index)
        )
    ).scalars().all()
    return [(a.question_index, a.text) for a in rows]


def message_event(text, *, user="U0001", channel="D0001", **extra):
    event = {"type": "message", "channel": channel, "user": user, "text": text, "ts": "1700000100.000100"}
    event.update(extra)
    return {"type": "event_callback", "team_id": "T0001", "event": event}


# ---------------------------------------------------------
# Events API
# ---------------------------------------------------------
@pytest.mark.asyncio
async def test_dm_reply_is_parsed_into_answers(client, db, open_standup, messenger):
    instance, members = open_standup

    r = await client.post(
        "/api/v1/slack/events",
        content=json.dumps(message_event("1. Fixed the build\n2. Release prep\n3. None")),
        headers={"Content-Type": "application/json"},
    )

    assert r.status_code == 200
    assert await answers_for(db, instance.id, members[0].id) == [
        (0, "Fixed the build"),
        (1, "Release prep"),
        (2, "None"),
    ]
    assert messenger.direct[-1]["user"] == "U0001"
    assert "Saved 3 of 3 answers" in messenger.direct[-1]["text"]


@pytest.mark.asyncio
async def test_bot_messages_and_subtypes_are_ignored(client, db, open_standup, messenger):
    instance, members = open_standup

    for event in (
        message_event("1. a\n2. b", bot_id="B0001"),
        message_event("1. a\n2. b", subtype="message_changed"),
    ):
        r = await client.post("/api/v1/slack/events", content=json.dumps(event))
        assert r.status_code == 200

    assert await answers_for(db, instance.id, members[0].id) == []
    assert messenger.direct == []


@pytest.mark.asyncio
async def test_thread_reply_to_channel_prompt(client, db, open_standup, messenger):
    instance, members = open_standup
    instance.reminder_message_ts = "1700000000.000001"
    await db.commit()

    event = message_event(
        "Reviewed PRs\nOn-call today",
        user="U0002",
        channel="C0001",
        thread_ts="1700000000.000001",
    )
    r = await client.post("/api/v1/slack/events", content=json.dumps(event))

    assert r.status_code == 200
    assert await answers_for(db, instance.id, members[1].id) == [(0, "Reviewed PRs"), (1, "On-call today")]


@pytest.mark.asyncio
async def test_dm_without_open_standup_gets_notice(client, db, slack_team, messenger):
    r = await client.post("/api/v1/slack/events", content=json.dumps(message_event("hello")))

    assert r.status_code == 200
    assert messenger.direct == [
        {"user": "U0001", "text": "You have no standups waiting for a response right now.", "blocks": None}
    ]


@pytest.mark.asyncio
async def test_threaded_dm_reply_falls_back_to_dm_answers(client, db, open_standup, messenger):
    instance, members = open_standup

    event = message_event("1. Wrote tests\n2. Ship it", thread_ts="1700000050.000050")
    r = await client.post("/api/v1/slack/events", content=json.dumps(event))

    assert r.status_code == 200
    assert await answers_for(db, instance.id, members[0].id) == [(0, "Wrote tests"), (1, "Ship it")]
    assert "Saved 2 of 3 answers" in messenger.direct[-1]["text"]


@pytest.mark.asyncio
async def test_redelivered_event_is_handled_once(client, db, open_standup, messenger):
    instance, members = open_standup
    payload = message_event("1. Fixed the build\n2. Release prep\n3. None")
    payload["event_id"] = "Ev0001"

    for _ in range(2):
        r = await client.post("/api/v1/slack/events", content=json.dumps(payload))
        assert r.status_code == 200

    assert len(messenger.direct) == 1
    assert len(await answers_for(db, instance.id, members[0].id)) == 3

    payload["event_id"] = "Ev0002"
    await client.post("/api/v1/slack/events", content=json.dumps(payload))
    assert len(messenger.direct) == 2


# ---------------------------------------------------------
# Slash command
# ---------------------------------------------------------
@pytest.mark.asyncio
async def test_slash_status_lists_open_standups(client, db, open_standup):
    r = await client.post(
        "/api/v1/slack/commands",
        data={"team_id": "T0001", "user_id": "U0001", "command": "/standup", "text": "status"},
    )

    assert r.status_code == 200
    body = r.json()
    assert body["response_type"] == "ephemeral"
    assert "Platform" in body["text"]
    assert "0/3 answered" in body["text"]


@pytest.mark.asyncio
async def test_slash_submit_returns_magic_link(client, db, open_standup):
    r = await client.post(
        "/api/v1/slack/commands",
        data={"team_id": "T0001", "user_id": "U0002", "text": "submit"},
    )

    assert r.status_code == 200
    assert "/standup/respond/" in r.json()["text"]


@pytest.mark.asyncio
async def test_slash_unknown_workspace_and_command(client, db, open_standup):
    r = await client.post("/api/v1/slack/commands", data={"team_id": "T9999", "user_id": "U0001", "text": "status"})
    assert "not connected" in r.json()["text"]

    r = await client.post("/api/v1/slack/commands", data={"team_id": "T0001", "user_id": "U0001", "text": "dance"})
    assert r.json()["text"].startswith("Unknown command `dance`")

    r = await client.post("/api/v1/slack/commands", data={"team_id": "T0001", "user_id": "U0001", "text": ""})
    assert r.json()["text"].startswith("*Standup commands*")


@pytest.mark.asyncio
async def test_slash_skip_records_audit_entry(client, db, open_standup):
    instance, _members = open_standup

    r = await client.post(
        "/api/v1/slack/commands",
        data={"team_id": "T0001", "user_id": "U0001", "text": "skip out sick"},
    )

    assert r.status_code == 200
    assert r.json()["text"] == "Skipped today's Platform standup."
    log = (
        await db.execute(select(AuditLog).where(AuditLog.action == "standup.response.skipped"))
    ).scalar_one()
    assert log.resource_id == str(instance.id)
    assert log.request_data["reason"] == "out sick"


# ---------------------------------------------------------
# Interactivity
# ---------------------------------------------------------
@pytest.mark.asyncio
async def test_submit_button_opens_modal(client, db, open_standup, messenger):
    instance, _members = open_standup
    payload = {
        "type": "block_actions",
        "team": {"id": "T0001"},
        "user": {"id": "U0001"},
        "trigger_id": "trigger-1",
        "actions": [{"action_id": "submit_standup_response", "value": str(instance.id)}],
    }

    r = await client.post("/api/v1/slack/interactive", data={"payload": json.dumps(payload)})

    assert r.status_code == 200
    assert len(messenger.modals) == 1
    view = messenger.modals[0]["view"]
    assert view["callback_id"] == f"standup_response_{instance.id}"
    assert [b["block_id"] for b in view["blocks"][1:]] == ["question_0", "question_1", "question_2"]


@pytest.mark.asyncio
async def test_skip_button_refused_after_answering(client, db, open_standup, messenger):
    instance, members = open_standup
    db.add(Answer(standup_instance_id=instance.id, team_member_id=members[0].id, question_index=0, text="done"))
    await db.commit()

    payload = {
        "type": "block_actions",
        "team": {"id": "T0001"},
        "user": {"id": "U0001"},
        "actions": [{"action_id": "skip_standup", "value": str(instance.id)}],
    }
    r = await client.post("/api/v1/slack/interactive", data={"payload": json.dumps(payload)})

    assert r.status_code == 200
    assert messenger.direct[-1]["text"] == "You have already responded to this standup."


@pytest.mark.asyncio
async def test_modal_submission_stores_answers(client, db, open_standup, messenger):
    instance, members = open_standup
    payload = {
        "type": "view_submission",
        "team": {"id": "T0001"},
        "user": {"id": "U0002"},
        "view": {
            "callback_id": f"standup_response_{instance.id}",
            "state": {
                "values": {
                    "question_0": {"answer": {"type": "plain_text_input", "value": "Migrated the DB"}},
                    "question_1": {"answer": {"type": "plain_text_input", "value": "  "}},
                    "question_2": {"answer": {"type": "plain_text_input", "value": "Waiting on review"}},
                }
            },
        },
    }

    r = await client.post("/api/v1/slack/interactive", data={"payload": json.dumps(payload)})

    assert r.status_code == 200
    assert await answers_for(db, instance.id, members[1].id) == [(0, "Migrated the DB"), (2, "Waiting on review")]
    assert "Thanks Bob!" in messenger.direct[-1]["text"]

    # a second submission is refused with a modal error
    r = await client.post("/api/v1/slack/interactive", data={"payload": json.dumps(payload)})
    assert r.json()["response_action"] == "errors"
