"""
Events API retries

Slack redelivers an event when the first delivery is slow or fails, with the
same `event_id`. Receipts are kept for a day and pruned by the archiver job.
"""
from __future__ import annotations

from datetime import timedelta

import structlog
from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from asyncstand.core.timeutil import utcnow
from asyncstand.models.slack_event import SlackEventReceipt

logger = structlog.get_logger(__name__)

RECEIPT_RETENTION_HOURS = 24


async def is_duplicate_event(db: AsyncSession, event_id: str | None, team_id: str = "") -> bool:
    """Record `event_id` and report whether it had been seen before."""
    if not event_id:
        return False

    if await db.get(SlackEventReceipt, event_id) is not None:
        logger.info("slack_event_duplicate", event_id=event_id, team_id=team_id)
        return True

    db.add(SlackEventReceipt(event_id=event_id, team_id=team_id))
    try:
        await db.commit()
    except IntegrityError:
        # a concurrent delivery stored it first
        await db.rollback()
        logger.info("slack_event_duplicate", event_id=event_id, team_id=team_id)
        return True
    return False


async def prune_event_receipts(db: AsyncSession, hours: int = RECEIPT_RETENTION_HOURS) -> int:
    cutoff = utcnow() - timedelta(hours=hours)
    result = await db.execute(delete(SlackEventReceipt).where(SlackEventReceipt.received_at < cutoff))
    await db.commit()
    return result.rowcount or 0
