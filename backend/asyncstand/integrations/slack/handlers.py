from __future__ import annotations

import uuid
from typing import Any, Optional

import structlog
from fastapi import HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from asyncstand.core.standup_rules import can_still_submit
from asyncstand.integrations.slack import blocks
from asyncstand.integrations.slack import client as slack_client
from asyncstand.integrations.slack.dedup import is_duplicate_event
from asyncstand.integrations.slack.parsing import parse_standup_response
from asyncstand.models.integration import Integration
from asyncstand.models.standup_instance import STATE_COLLECTING, StandupInstance
from asyncstand.models.team import Team, TeamMember
from asyncstand.services import audit
from asyncstand.services.answers import answered_indices, has_answers, submit_full_response
from asyncstand.services.magic_tokens import generate_magic_token
from asyncstand.services.teams import get_integration_by_workspace

logger = structlog.get_logger(__name__)

NOT_CONNECTED_TEXT = "This Slack workspace is not connected to AsyncStand. Ask an admin to install the app."
NO_ACTIVE_TEXT = "You have no standups waiting for a response right now."


def _ephemeral(text: str) -> dict[str, Any]:
    return {"response_type": "ephemeral", "text": text}


def _error_text(exc: HTTPException) -> str:
    detail = exc.detail
    if isinstance(detail, dict):
        return detail.get("message") or str(detail)
    return str(detail)


async def _open_instances_for_user(
    db: AsyncSession, integration: Integration, platform_user_id: str
) -> list[tuple[StandupInstance, TeamMember, Team]]:
    """Collecting instances (newest first) of teams in this workspace that the Slack user belongs to."""
    stmt = (
        select(StandupInstance, TeamMember, Team)
        .join(Team, Team.id == StandupInstance.team_id)
        .join(TeamMember, TeamMember.team_id == Team.id)
        .where(
            Team.integration_id == integration.id,
            TeamMember.platform_user_id == platform_user_id,
            TeamMember.active.is_(True),
            StandupInstance.state == STATE_COLLECTING,
        )
        .order_by(StandupInstance.created_at.desc())
    )
    rows = (await db.execute(stmt)).all()
    return [(i, m, t) for i, m, t in rows if can_still_submit(i)]


async def _member_for_instance(
    db: AsyncSession, instance: StandupInstance, platform_user_id: str
) -> Optional[TeamMember]:
    return (
        await db.execute(
            select(TeamMember).where(
                TeamMember.team_id == instance.team_id,
                TeamMember.platform_user_id == platform_user_id,
                TeamMember.active.is_(True),
            )
        )
    ).scalar_one_or_none()


async def _store_free_text(
    db: AsyncSession,
    messenger: slack_client.SlackMessenger,
    instance: StandupInstance,
    member: TeamMember,
    text: str,
    source: str,
) -> bool:
    questions = (instance.config_snapshot or {}).get("questions", [])
    parsed = parse_standup_response(text, len(questions))
    try:
        await submit_full_response(
            db,
            instance_id=instance.id,
            team_member_id=member.id,
            answers=[dict(a) for a in parsed],
            allow_non_participating=True,
            source=source,
        )
    except HTTPException as e:
        await messenger.send_direct_message(member.platform_user_id, f"Could not save your response: {_error_text(e)}")
        return False

    answered = sum(1 for a in parsed if a["text"])
    await messenger.send_direct_message(
        member.platform_user_id,
        f"Thanks {member.name}! Saved {answered} of {len(questions)} answers.",
    )
    return True


# =========================================================
# Events API
# =========================================================
async def handle_event_callback(db: AsyncSession, payload: dict[str, Any]) -> None:
    event = payload.get("event") or {}
    if event.get("type") != "message":
        return
    # ignore our own posts, edits, joins...
    if event.get("bot_id") or event.get("subtype"):
        return

    integration = await get_integration_by_workspace(db, payload.get("team_id") or "")
    if integration is None:
        logger.info("slack_event_unknown_workspace", team_id=payload.get("team_id"))
        return

    user_id = event.get("user")
    text = event.get("text") or ""
    if not user_id or not text.strip():
        return

    if await is_duplicate_event(db, payload.get("event_id"), payload.get("team_id") or ""):
        return

    handled = False
    thread_ts = event.get("thread_ts")
    if thread_ts and thread_ts != event.get("ts"):
        handled = await handle_thread_reply(db, integration, user_id, thread_ts, text)
    # a threaded reply inside the DM that is not on a channel prompt
    if not handled and (event.get("channel") or "").startswith("D"):
        await handle_dm_response(db, integration, user_id, text)


async def handle_dm_response(db: AsyncSession, integration: Integration, user_id: str, text: str) -> bool:
    messenger = slack_client.get_messenger(integration)
    open_instances = await _open_instances_for_user(db, integration, user_id)
    if not open_instances:
        await messenger.send_direct_message(user_id, NO_ACTIVE_TEXT)
        return False

    instance, member, _team = open_instances[0]
    return await _store_free_text(db, messenger, instance, member, text, source="slack_dm")


async def handle_thread_reply(
    db: AsyncSession, integration: Integration, user_id: str, thread_ts: str, text: str
) -> bool:
    instance = (
        await db.execute(
            select(StandupInstance)
            .join(Team, Team.id == StandupInstance.team_id)
            .where(Team.integration_id == integration.id, StandupInstance.reminder_message_ts == thread_ts)
        )
    ).scalar_one_or_none()
    if instance is None:
        return False

    member = await _member_for_instance(db, instance, user_id)
    if member is None:
        logger.info("slack_thread_reply_unknown_member", instance_id=str(instance.id), user=user_id)
        return False

    messenger = slack_client.get_messenger(integration)
    return await _store_free_text(db, messenger, instance, member, text, source="slack_thread")


# =========================================================
# Interactivity (buttons + modal)
# =========================================================
async def _record_skip(
    db: AsyncSession, team: Team, instance: StandupInstance, member: TeamMember, reason: Optional[str]
) -> None:
    await audit.log_audit(
        db,
        org_id=team.org_id,
        actor_type=audit.ACTOR_SERVICE,
        action="standup.response.skipped",
        category=audit.CATEGORY_STANDUP,
        resource_type="standup_instance",
        resource_id=instance.id,
        request_data={"team_member_id": member.id, "reason": reason},
        tags=["standup", "response", "slack"],
    )
    await db.commit()


def _parse_instance_id(value: Optional[str]) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


async def handle_interactive(db: AsyncSession, payload: dict[str, Any]) -> Optional[dict[str, Any]]:
    """Returns a body for Slack when one is needed (modal validation errors), else None."""
    integration = await get_integration_by_workspace(db, (payload.get("team") or {}).get("id") or "")
    if integration is None:
        logger.info("slack_interaction_unknown_workspace")
        return None

    kind = payload.get("type")
    if kind == "block_actions":
        await _handle_block_action(db, integration, payload)
        return None
    if kind == "view_submission":
        return await _handle_view_submission(db, integration, payload)
    return None


async def _handle_block_action(db: AsyncSession, integration: Integration, payload: dict[str, Any]) -> None:
    actions = payload.get("actions") or []
    if not actions:
        return
    action = actions[0]
    user_id = (payload.get("user") or {}).get("id")
    instance_id = _parse_instance_id(action.get("value"))
    if not user_id or instance_id is None:
        return

    messenger = slack_client.get_messenger(integration)
    instance = await db.get(StandupInstance, instance_id)
    team = await db.get(Team, instance.team_id) if instance is not None else None
    if instance is None or team is None or team.integration_id != integration.id:
        await messenger.send_direct_message(user_id, "That standup could not be found.")
        return

    if not can_still_submit(instance):
        await messenger.send_direct_message(user_id, "This standup is no longer accepting responses.")
        return

    member = await _member_for_instance(db, instance, user_id)
    if member is None:
        await messenger.send_direct_message(user_id, "You are not a member of this team.")
        return

    if action.get("action_id") == blocks.SUBMIT_ACTION_ID:
        view = blocks.response_modal(
            instance_id=str(instance.id),
            team_name=team.name,
            questions=(instance.config_snapshot or {}).get("questions", []),
        )
        await messenger.open_modal(payload.get("trigger_id") or "", view)

    elif action.get("action_id") == blocks.SKIP_ACTION_ID:
        if await has_answers(db, instance.id, member.id):
            await messenger.send_direct_message(user_id, "You have already responded to this standup.")
            return
        await _record_skip(db, team, instance, member, reason=None)
        await messenger.send_direct_message(user_id, "Got it, you're skipping today's standup.")


async def _handle_view_submission(
    db: AsyncSession, integration: Integration, payload: dict[str, Any]
) -> Optional[dict[str, Any]]:
    view = payload.get("view") or {}
    callback_id = view.get("callback_id") or ""
    if not callback_id.startswith(blocks.MODAL_CALLBACK_PREFIX):
        return None

    instance_id = _parse_instance_id(callback_id[len(blocks.MODAL_CALLBACK_PREFIX):])
    user_id = (payload.get("user") or {}).get("id")
    instance = await db.get(StandupInstance, instance_id) if instance_id else None
    if instance is None or not user_id:
        return None

    member = await _member_for_instance(db, instance, user_id)
    if member is None:
        return {"response_action": "errors", "errors": {"question_0": "You are not a member of this team."}}

    if await has_answers(db, instance.id, member.id):
        return {
            "response_action": "errors",
            "errors": {"question_0": "You have already submitted a response for this standup."},
        }

    questions = (instance.config_snapshot or {}).get("questions", [])
    answers = blocks.extract_modal_answers((view.get("state") or {}).get("values") or {}, len(questions))
    try:
        await submit_full_response(
            db,
            instance_id=instance.id,
            team_member_id=member.id,
            answers=answers,
            allow_non_participating=True,
            source="slack_modal",
        )
    except HTTPException as e:
        return {"response_action": "errors", "errors": {"question_0": _error_text(e)}}

    messenger = slack_client.get_messenger(integration)
    await messenger.send_direct_message(
        user_id, f"Thanks {member.name}! Your standup response was saved ({len(answers)}/{len(questions)})."
    )
    return None


# =========================================================
# Slash command: /standup
# =========================================================
async def handle_slash_command(db: AsyncSession, form: dict[str, Any]) -> dict[str, Any]:
    integration = await get_integration_by_workspace(db, form.get("team_id") or "")
    if integration is None:
        return _ephemeral(NOT_CONNECTED_TEXT)

    user_id = form.get("user_id") or ""
    parts = (form.get("text") or "").strip().split(maxsplit=1)
    subcommand = parts[0].lower() if parts else ""
    argument = parts[1].strip() if len(parts) > 1 else None

    if subcommand in {"", "help"}:
        return _ephemeral(blocks.HELP_TEXT)

    if subcommand == "status":
        open_instances = await _open_instances_for_user(db, integration, user_id)
        if not open_instances:
            return _ephemeral(NO_ACTIVE_TEXT)
        lines = ["*Your open standups*"]
        for instance, member, team in open_instances:
            total = len((instance.config_snapshot or {}).get("questions", []))
            done = len((await answered_indices(db, instance.id)).get(str(member.id), set()))
            lines.append(f"• {team.name} ({instance.target_date.isoformat()}): {done}/{total} answered")
        return _ephemeral("\n".join(lines))

    if subcommand == "submit":
        open_instances = await _open_instances_for_user(db, integration, user_id)
        if not open_instances:
            return _ephemeral(NO_ACTIVE_TEXT)
        instance, member, team = open_instances[0]
        link = generate_magic_token(instance, member, team.org_id)
        return _ephemeral(
            f"Answer the {team.name} standup here: {link['url']}\n"
            "Or reply to my direct message with a numbered list."
        )

    if subcommand == "skip":
        open_instances = await _open_instances_for_user(db, integration, user_id)
        if not open_instances:
            return _ephemeral(NO_ACTIVE_TEXT)
        instance, member, team = open_instances[0]
        if await has_answers(db, instance.id, member.id):
            return _ephemeral("You have already responded to this standup.")
        await _record_skip(db, team, instance, member, reason=argument)
        return _ephemeral(f"Skipped today's {team.name} standup.")

    return _ephemeral(f"Unknown command `{subcommand}`.\n\n{blocks.HELP_TEXT}")
