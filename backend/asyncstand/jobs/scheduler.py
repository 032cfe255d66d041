"""
Background scheduler

Runs the standup jobs on APScheduler inside the API process. Each run gets its
own database session.
"""
from __future__ import annotations

from typing import Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from asyncstand.core.config import settings
from asyncstand.db.session import AsyncSessionLocal
from asyncstand.integrations.slack.dedup import prune_event_receipts
from asyncstand.jobs.standup_jobs import (
    close_expired_instances,
    process_scheduled_standups,
    prune_old_instances,
    send_followup_reminders,
)

logger = structlog.get_logger(__name__)


async def run_standup_scheduler() -> None:
    async with AsyncSessionLocal() as db:
        await process_scheduled_standups(db)


async def run_standup_closer() -> None:
    async with AsyncSessionLocal() as db:
        closed = await close_expired_instances(db)
        if closed:
            logger.info("standup_instances_closed", count=len(closed))


async def run_standup_reminders() -> None:
    async with AsyncSessionLocal() as db:
        await send_followup_reminders(db)


async def run_instance_archiver() -> None:
    async with AsyncSessionLocal() as db:
        await prune_old_instances(db)
        await prune_event_receipts(db)


class StandupScheduler:
    def __init__(self) -> None:
        self._scheduler = AsyncIOScheduler()

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def job_ids(self) -> list[str]:
        return [job.id for job in self._scheduler.get_jobs()]

    def register_jobs(self) -> None:
        self._scheduler.add_job(
            run_standup_scheduler,
            trigger=IntervalTrigger(seconds=settings.SCHEDULER_INTERVAL_SECONDS),
            id="standup-scheduler",
            name="Open scheduled standups",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        self._scheduler.add_job(
            run_standup_closer,
            trigger=IntervalTrigger(minutes=5),
            id="standup-closer",
            name="Close expired standups",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        self._scheduler.add_job(
            run_standup_reminders,
            trigger=IntervalTrigger(minutes=5),
            id="standup-reminder",
            name="Remind members with missing answers",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        self._scheduler.add_job(
            run_instance_archiver,
            trigger=CronTrigger(hour=3, minute=0, timezone="UTC"),
            id="instance-archiver",
            name="Prune old standup instances",
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )

    def start(self) -> None:
        if self._scheduler.running:
            return
        self.register_jobs()
        self._scheduler.start()
        logger.info("scheduler_started", jobs=self.job_ids())

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=True)
            logger.info("scheduler_shutdown")


_scheduler: Optional[StandupScheduler] = None


def get_scheduler() -> StandupScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = StandupScheduler()
    return _scheduler


def start_scheduler() -> StandupScheduler:
    """Start the global scheduler; must be called with a running event loop."""
    scheduler = get_scheduler()
    scheduler.start()
    return scheduler


def shutdown_scheduler() -> None:
    global _scheduler
    if _scheduler is not None:
        _scheduler.shutdown()
        _scheduler = None
