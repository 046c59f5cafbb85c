"""
APScheduler-based periodic jobs.

The only job is the expired-ban sweep. It is re-registered on every start,
so an in-memory job store is enough.
"""

import logging

import sentry_sdk
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from .config import get_ban_sweep_interval_minutes
from .database import get_transaction
from .moderation import check_expired_bans

logger = logging.getLogger(__name__)


_scheduler: AsyncIOScheduler | None = None

BAN_SWEEP_JOB_ID = "check_expired_bans"


async def run_ban_sweep() -> int:
    """Clear expired bans. Errors are reported and swallowed so the job keeps running."""
    try:
        async with get_transaction() as conn:
            unbanned = await check_expired_bans(conn)
        return len(unbanned)
    except Exception as e:
        logger.error(f"Expired ban sweep failed: {e}")
        sentry_sdk.capture_exception(e)
        return 0


def init_scheduler() -> AsyncIOScheduler:
    """
    Initialize and start the scheduler.

    Call this during app startup (in FastAPI lifespan).
    """
    global _scheduler

    if _scheduler is not None:
        return _scheduler

    _scheduler = AsyncIOScheduler(
        job_defaults={
            "coalesce": True,  # Combine missed runs into one
            "max_instances": 1,
        },
    )
    _scheduler.add_job(
        run_ban_sweep,
        trigger="interval",
        minutes=get_ban_sweep_interval_minutes(),
        id=BAN_SWEEP_JOB_ID,
        replace_existing=True,
    )
    _scheduler.start()
    print("Moderation scheduler started")
    return _scheduler


def shutdown_scheduler() -> None:
    """
    Shutdown the scheduler gracefully.

    Call this during app shutdown.
    """
    global _scheduler
    if _scheduler:
        _scheduler.shutdown(wait=False)
        _scheduler = None
        print("Moderation scheduler stopped")
