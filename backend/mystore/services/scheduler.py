"""Background scheduler for recovery token housekeeping."""
from __future__ import annotations

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from mystore.core.config import get_settings
from mystore.core.errors import ServiceError
from mystore.db.session import get_session
from mystore.services.auth import purge_recovery_tokens

logger = logging.getLogger(__name__)

PURGE_JOB_ID = "purge-recovery-tokens"

_scheduler: AsyncIOScheduler | None = None


def get_scheduler() -> AsyncIOScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = AsyncIOScheduler()
    return _scheduler


def start_scheduler() -> None:
    scheduler = get_scheduler()
    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started")


def schedule_token_purge_job() -> None:
    settings = get_settings()
    scheduler = get_scheduler()
    trigger = IntervalTrigger(seconds=settings.token_purge_interval_seconds)
    scheduler.add_job(_purge_recovery_tokens, trigger=trigger, id=PURGE_JOB_ID, replace_existing=True)
    logger.info("Scheduled %s every %s seconds", PURGE_JOB_ID, trigger.interval.total_seconds())


async def _purge_recovery_tokens() -> None:
    async with get_session() as session:
        try:
            removed = await purge_recovery_tokens(session)
        except ServiceError as exc:
            logger.warning("Recovery token purge failed: %s", exc.message)
            return
    if removed:
        logger.info("Purged %d recovery token(s)", removed)
