"""
Periodic standup work: open today's standups, nudge members who have not
answered, close finished ones and prune old ones.

Each function takes a session and an optional `now` so it can be driven by the
scheduler or called directly.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from asyncstand.core.config import settings
from asyncstand.core.standup_rules import (
    can_still_submit,
    due_reminder_stages,
    is_time_for_standup,
    local_date,
    response_deadline,
)
from asyncstand.core.timeutil import as_utc, utcnow
from asyncstand.integrations.slack import blocks
from asyncstand.integrations.slack import client as slack_client
from asyncstand.models.integration import TOKEN_STATUS_OK, Integration
from asyncstand.models.standup_config import DELIVERY_CHANNEL, StandupConfig
from asyncstand.models.standup_instance import STATE_COLLECTING, STATE_POSTED, StandupInstance
from asyncstand.models.team import Team, TeamMember
from asyncstand.services import audit
from asyncstand.services.answers import generate_participation_snapshot, get_answers, get_missing_answers
from asyncstand.services.magic_tokens import generate_magic_token
from asyncstand.services.standup_instances import (
    archive_old_instances,
    create_standup_instance,
    find_instance_for_date,
    should_create_standup_today,
    update_instance_state,
)
from asyncstand.services.usage import ACTION_CREATE_STANDUP, can_perform_action

logger = structlog.get_logger(__name__)


async def send_standup_prompts(
    db: AsyncSession, instance: StandupInstance, team: Team, integration: Integration
) -> int:
    """Deliver the prompt per the snapshot's delivery type; returns messages sent."""
    snapshot = instance.config_snapshot or {}
    questions = snapshot.get("questions", [])
    timeout_hours = snapshot.get("responseTimeoutHours", 2)
    target_date = instance.target_date.isoformat()
    messenger = slack_client.get_messenger(integration)
    fallback_text = f"Time for the {team.name} standup!\n{blocks.format_questions(questions)}"

    if snapshot.get("deliveryType") == DELIVERY_CHANNEL:
        channel = snapshot.get("targetChannelId") or team.channel_id
        ts = await messenger.post_message(
            channel,
            fallback_text,
            blocks=blocks.standup_prompt_blocks(
                instance_id=str(instance.id),
                team_name=team.name,
                target_date=target_date,
                questions=questions,
                timeout_hours=timeout_hours,
            ),
        )
        if ts:
            instance.reminder_message_ts = ts
            await db.commit()
            return 1
        return 0

    sent = 0
    for entry in snapshot.get("participatingMembers", []):
        member = await db.get(TeamMember, uuid.UUID(entry["id"]))
        if member is None or not member.active:
            continue
        link = generate_magic_token(instance, member, team.org_id)
        ts = await messenger.send_direct_message(
            member.platform_user_id,
            fallback_text,
            blocks=blocks.standup_prompt_blocks(
                instance_id=str(instance.id),
                team_name=team.name,
                target_date=target_date,
                questions=questions,
                timeout_hours=timeout_hours,
                magic_link=link["url"],
            ),
        )
        if ts:
            sent += 1
    return sent


async def process_scheduled_standups(db: AsyncSession, now: Optional[datetime] = None) -> dict[str, list[str]]:
    """
    Open the standups whose local weekday/time matches `now`. Already-created
    instances for the local date are skipped; one failing config does not stop
    the others.
    """
    now = now or utcnow()
    config_ids = (
        await db.execute(
            select(StandupConfig.id)
            .join(Team, Team.id == StandupConfig.team_id)
            .join(Integration, Integration.id == Team.integration_id)
            .where(StandupConfig.is_active.is_(True), Integration.token_status == TOKEN_STATUS_OK)
        )
    ).scalars().all()

    summary: dict[str, list[str]] = {"created": [], "skipped": [], "failed": []}
    for config_id in config_ids:
        try:
            config = await db.get(StandupConfig, config_id)
            if config is None or not should_create_standup_today(config, now):
                continue
            if not is_time_for_standup(config.weekdays, config.time_local, config.timezone, now):
                continue

            target = local_date(config.timezone, now)
            if await find_instance_for_date(db, config, target) is not None:
                summary["skipped"].append(str(config_id))
                continue

            team = await db.get(Team, config.team_id)
            integration = await db.get(Integration, team.integration_id)

            allowed = await can_perform_action(db, team.org_id, ACTION_CREATE_STANDUP)
            if not allowed["allowed"]:
                logger.info("standup_skipped_plan_limit", config_id=str(config_id), reason=allowed["reason"])
                summary["skipped"].append(str(config_id))
                continue

            instance, _created = await create_standup_instance(db, config, target, state=STATE_COLLECTING)
            await db.commit()

            sent = await send_standup_prompts(db, instance, team, integration)

            await audit.log_audit(
                db,
                org_id=team.org_id,
                actor_type=audit.ACTOR_SYSTEM,
                action="standup.instance.created",
                category=audit.CATEGORY_STANDUP,
                resource_type="standup_instance",
                resource_id=instance.id,
                request_data={
                    "config_id": config.id,
                    "target_date": target.isoformat(),
                    "members": len(instance.config_snapshot.get("participatingMembers", [])),
                    "messages_sent": sent,
                },
                tags=["standup", "scheduler", "automation"],
            )
            await db.commit()
            summary["created"].append(str(instance.id))
        except Exception:
            await db.rollback()
            logger.exception("standup_scheduling_failed", config_id=str(config_id))
            summary["failed"].append(str(config_id))

    if summary["created"] or summary["failed"]:
        logger.info(
            "standup_scheduler_run",
            created=len(summary["created"]),
            skipped=len(summary["skipped"]),
            failed=len(summary["failed"]),
        )
    return summary


async def post_digest(db: AsyncSession, instance: StandupInstance, team: Team, integration: Integration) -> Optional[str]:
    snapshot = instance.config_snapshot or {}
    questions = snapshot.get("questions", [])
    members = await get_answers(db, instance)
    answered_ids = {str(m["team_member_id"]) for m in members}
    missing_names = [
        m["name"] for m in snapshot.get("participatingMembers", []) if m["id"] not in answered_ids
    ]
    messenger = slack_client.get_messenger(integration)
    return await messenger.post_message(
        team.channel_id,
        f"{team.name} standup summary for {instance.target_date.isoformat()}",
        blocks=blocks.digest_blocks(
            team_name=team.name,
            target_date=instance.target_date.isoformat(),
            questions=questions,
            members=members,
            missing_names=missing_names,
        ),
    )


async def send_followup_reminders(db: AsyncSession, now: Optional[datetime] = None) -> dict[str, str]:
    """
    DM the members who still owe answers on open standups. Each run sends at
    most the newest due stage per instance; stages it passed over are recorded
    as sent so a late run does not replay them. Returns {instance_id: stage}.
    """
    now = now or utcnow()
    instance_ids = (
        await db.execute(select(StandupInstance.id).where(StandupInstance.state == STATE_COLLECTING))
    ).scalars().all()

    reminded: dict[str, str] = {}
    for instance_id in instance_ids:
        try:
            instance = await db.get(StandupInstance, instance_id)
            if instance is None:
                continue
            already_sent = list(instance.reminders_sent or [])
            due = [stage for stage in due_reminder_stages(instance, now) if stage not in already_sent]
            if not due:
                continue

            team = await db.get(Team, instance.team_id)
            integration = await db.get(Integration, team.integration_id)
            if integration is None or integration.token_status != TOKEN_STATUS_OK:
                continue

            stage = due[-1]
            snapshot = instance.config_snapshot or {}
            questions = snapshot.get("questions", [])
            deadline = response_deadline(instance.created_at, snapshot)
            minutes_left = max(0, int((deadline - as_utc(now)).total_seconds() // 60))
            messenger = slack_client.get_messenger(integration)

            sent = 0
            for entry in await get_missing_answers(db, instance):
                member = await db.get(TeamMember, uuid.UUID(entry["team_member_id"]))
                if member is None or not member.active:
                    continue
                link = generate_magic_token(instance, member, team.org_id)
                ts = await messenger.send_direct_message(
                    member.platform_user_id,
                    blocks.reminder_text(stage, team.name, minutes_left),
                    blocks=blocks.reminder_blocks(
                        instance_id=str(instance.id),
                        stage=stage,
                        team_name=team.name,
                        questions=questions,
                        missing_questions=entry["missing_questions"],
                        minutes_left=minutes_left,
                        magic_link=link["url"],
                    ),
                )
                if ts:
                    sent += 1

            # reassigned so the JSON column is flagged dirty
            instance.reminders_sent = already_sent + due
            await audit.log_audit(
                db,
                org_id=team.org_id,
                actor_type=audit.ACTOR_SYSTEM,
                action=f"standup.reminder.{stage}",
                category=audit.CATEGORY_SYSTEM,
                severity=audit.SEVERITY_LOW,
                resource_type="standup_instance",
                resource_id=instance.id,
                request_data={"stage": stage, "messages_sent": sent, "minutes_left": minutes_left},
                tags=["standup", "reminder", "automation"],
            )
            await db.commit()
            reminded[str(instance_id)] = stage
            logger.info("standup_reminder_sent", instance_id=str(instance_id), stage=stage, sent=sent)
        except Exception:
            await db.rollback()
            logger.exception("standup_reminder_failed", instance_id=str(instance_id))
    return reminded


async def _everyone_answered(db: AsyncSession, instance: StandupInstance) -> bool:
    if not (instance.config_snapshot or {}).get("participatingMembers"):
        return False
    return not await get_missing_answers(db, instance)


async def close_expired_instances(db: AsyncSession, now: Optional[datetime] = None) -> list[str]:
    """
    collecting -> posted once the response window has passed, or earlier when
    every participant has answered every question; posts the digest.
    """
    now = now or utcnow()
    instance_ids = (
        await db.execute(select(StandupInstance.id).where(StandupInstance.state == STATE_COLLECTING))
    ).scalars().all()

    closed: list[str] = []
    for instance_id in instance_ids:
        try:
            instance = await db.get(StandupInstance, instance_id)
            if instance is None:
                continue
            expired = not can_still_submit(instance, now)
            if not expired and not await _everyone_answered(db, instance):
                continue

            team = await db.get(Team, instance.team_id)
            integration = await db.get(Integration, team.integration_id)
            if integration is not None and integration.token_status == TOKEN_STATUS_OK:
                instance.summary_message_ts = await post_digest(db, instance, team, integration)
                if instance.reminder_message_ts:
                    snapshot = instance.config_snapshot or {}
                    await slack_client.get_messenger(integration).update_message(
                        snapshot.get("targetChannelId") or team.channel_id,
                        instance.reminder_message_ts,
                        f"The {team.name} standup for {instance.target_date.isoformat()} is closed.",
                    )

            await generate_participation_snapshot(db, instance, note="closed" if expired else "complete")
            await update_instance_state(db, instance, STATE_POSTED)
            closed.append(str(instance_id))
        except Exception:
            await db.rollback()
            logger.exception("standup_close_failed", instance_id=str(instance_id))
    return closed


async def prune_old_instances(db: AsyncSession) -> int:
    return await archive_old_instances(db, settings.INSTANCE_RETENTION_DAYS)
