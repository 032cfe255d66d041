# tests/test_answer_collection.py
from __future__ import annotations

from datetime import timedelta

import pytest
import pytest_asyncio
from fastapi import HTTPException
from sqlalchemy import select

from asyncstand.models.org_member import OrgMember
from asyncstand.models.standup_instance import Answer
from asyncstand.models.team import TeamMember
from asyncstand.services import answers as answer_service
from conftest import auth_headers, create_config, create_instance, create_user


@pytest_asyncio.fixture()
async def standup(db, slack_team):
    _integration, team, members = slack_team
    config = await create_config(db, team, members)
    instance = await create_instance(db, config, members)
    await db.commit()
    return instance, members


def responses_url(instance) -> str:
    return f"/api/v1/standups/{instance.id}/responses"


# ---------------------------------------------------------
# Submission rules
# ---------------------------------------------------------
@pytest.mark.asyncio
async def test_owner_submits_full_response(client, db, owner, org, standup):
    instance, members = standup

    r = await client.post(
        responses_url(instance),
        json={
            "team_member_id": str(members[0].id),
            "answers": [
                {"question_index": 0, "text": " Shipped billing "},
                {"question_index": 1, "text": "Docs"},
                {"question_index": 2, "text": ""},
            ],
        },
        headers=auth_headers(owner, org),
    )

    assert r.status_code == 200, r.text
    assert [(a["question_index"], a["text"]) for a in r.json()] == [(0, "Shipped billing"), (1, "Docs")]


@pytest.mark.asyncio
async def test_resubmitting_overwrites_answer(db, standup):
    instance, members = standup

    await answer_service.submit_answer(
        db, instance_id=instance.id, team_member_id=members[0].id, question_index=1, text="first draft"
    )
    await answer_service.submit_answer(
        db, instance_id=instance.id, team_member_id=members[0].id, question_index=1, text="final"
    )

    rows = (
        await db.execute(select(Answer).where(Answer.standup_instance_id == instance.id))
    ).scalars().all()
    assert [(a.question_index, a.text) for a in rows] == [(1, "final")]


@pytest.mark.asyncio
async def test_closed_standup_rejects_answers(db, slack_team):
    _integration, team, members = slack_team
    config = await create_config(db, team, members)
    instance = await create_instance(db, config, members, age=timedelta(hours=3))
    await db.commit()

    with pytest.raises(HTTPException) as exc:
        await answer_service.submit_answer(
            db, instance_id=instance.id, team_member_id=members[0].id, question_index=0, text="late"
        )
    assert exc.value.status_code == 400
    assert exc.value.detail["error"] == "STANDUP_CLOSED"


@pytest.mark.asyncio
async def test_non_participant_and_bad_index_are_rejected(client, db, owner, org, standup):
    instance, members = standup
    newcomer = TeamMember(team_id=instance.team_id, platform_user_id="U0099", name="Zed", active=True)
    db.add(newcomer)
    await db.commit()
    headers = auth_headers(owner, org)

    r = await client.post(
        responses_url(instance),
        json={"team_member_id": str(newcomer.id), "answers": [{"question_index": 0, "text": "hi"}]},
        headers=headers,
    )
    assert r.status_code == 403
    assert r.json()["detail"]["error"] == "NOT_PARTICIPATING"

    r = await client.post(
        responses_url(instance),
        json={"team_member_id": str(members[0].id), "answers": [{"question_index": 3, "text": "hi"}]},
        headers=headers,
    )
    assert r.status_code == 400
    assert r.json()["detail"]["error"] == "VALIDATION_ERROR"

    r = await client.post(
        responses_url(instance),
        json={"team_member_id": str(members[0].id), "answers": [{"question_index": 0, "text": "   "}]},
        headers=headers,
    )
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_member_only_answers_for_linked_team_member(client, db, org, standup):
    instance, members = standup
    alice = await create_user(db, "alice@example.com")
    db.add(OrgMember(org_id=org.id, user_id=alice.id, role="member", status="active", permissions=[]))
    team_member = await db.get(TeamMember, members[0].id)
    team_member.user_id = alice.id
    await db.commit()
    headers = auth_headers(alice, org)

    r = await client.post(
        responses_url(instance),
        json={"team_member_id": str(members[1].id), "answers": [{"question_index": 0, "text": "for Bob"}]},
        headers=headers,
    )
    assert r.status_code == 403

    r = await client.post(
        responses_url(instance),
        json={"team_member_id": str(members[0].id), "answers": [{"question_index": 0, "text": "mine"}]},
        headers=headers,
    )
    assert r.status_code == 200


# ---------------------------------------------------------
# Reporting
# ---------------------------------------------------------
@pytest.mark.asyncio
async def test_completion_stats_and_missing(client, db, owner, org, standup):
    instance, members = standup
    alice, bob = members
    await answer_service.submit_full_response(
        db,
        instance_id=instance.id,
        team_member_id=alice.id,
        answers=[{"question_index": i, "text": f"a{i}"} for i in range(3)],
    )
    await answer_service.submit_answer(
        db, instance_id=instance.id, team_member_id=bob.id, question_index=0, text="b0"
    )

    headers = auth_headers(owner, org)
    r = await client.get(f"/api/v1/standups/{instance.id}/stats", headers=headers)
    assert r.status_code == 200
    stats = r.json()
    assert stats["total_members"] == 2
    assert stats["responded_members"] == 2
    assert stats["complete_members"] == 1
    assert stats["response_rate"] == 100
    assert stats["completion_rate"] == 50
    assert stats["average_response_time_minutes"] >= 5

    r = await client.get(f"/api/v1/standups/{instance.id}/missing", headers=headers)
    assert r.json() == [
        {
            "team_member_id": str(bob.id),
            "member_name": "Bob",
            "platform_user_id": "U0002",
            "missing_questions": [1, 2],
        }
    ]

    r = await client.get(f"/api/v1/standups/{instance.id}/answers", headers=headers)
    grouped = r.json()
    assert [(g["member_name"], g["is_complete"]) for g in grouped] == [("Alice", True), ("Bob", False)]

    r = await client.get(f"/api/v1/standups/{instance.id}", headers=headers)
    details = r.json()
    assert details["can_submit"] is True
    assert details["stats"]["complete_members"] == 1
    assert [m["member_name"] for m in details["missing"]] == ["Bob"]


@pytest.mark.asyncio
async def test_delete_member_responses(client, db, owner, org, standup):
    instance, members = standup
    await answer_service.submit_answer(
        db, instance_id=instance.id, team_member_id=members[1].id, question_index=0, text="oops"
    )

    r = await client.delete(
        f"/api/v1/standups/{instance.id}/responses/{members[1].id}", headers=auth_headers(owner, org)
    )

    assert r.status_code == 200
    assert r.json() == {"deleted": 1}


# ---------------------------------------------------------
# Magic links
# ---------------------------------------------------------
@pytest.mark.asyncio
async def test_magic_link_round_trip(client, db, owner, org, standup):
    instance, members = standup

    r = await client.get(f"/api/v1/standups/{instance.id}/magic-tokens", headers=auth_headers(owner, org))
    assert r.status_code == 200
    tokens = {t["member_name"]: t for t in r.json()}
    assert set(tokens) == {"Alice", "Bob"}
    assert tokens["Bob"]["url"].endswith(tokens["Bob"]["token"])

    token = tokens["Bob"]["token"]
    r = await client.get(f"/api/v1/public/standups/{token}")
    assert r.status_code == 200
    info = r.json()
    assert info["member_name"] == "Bob"
    assert info["team_name"] == "Platform"
    assert len(info["questions"]) == 3
    assert info["answers"] == []

    r = await client.post(
        f"/api/v1/public/standups/{token}",
        json={"answers": [{"question_index": 0, "text": "via link"}]},
    )
    assert r.status_code == 200
    assert r.json()[0]["text"] == "via link"

    r = await client.get(f"/api/v1/public/standups/{token}")
    assert [a["text"] for a in r.json()["answers"]] == ["via link"]


@pytest.mark.asyncio
async def test_magic_link_rejects_garbage_and_closed(client, db, owner, org, slack_team):
    r = await client.get("/api/v1/public/standups/not-a-token")
    assert r.status_code == 401
    assert r.json()["detail"]["error"] == "INVALID_TOKEN"

    _integration, team, members = slack_team
    config = await create_config(db, team, members)
    instance = await create_instance(db, config, members, age=timedelta(hours=3))
    await db.commit()

    r = await client.get(f"/api/v1/standups/{instance.id}/magic-tokens", headers=auth_headers(owner, org))
    token = r.json()[0]["token"]

    r = await client.get(f"/api/v1/public/standups/{token}")
    assert r.status_code == 400
    assert r.json()["detail"]["error"] == "STANDUP_CLOSED"
