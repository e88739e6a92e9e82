"""
APScheduler setup for running the reminder triggers in-process.

Production normally calls the cron endpoints from an external scheduler.
When ENABLE_SCHEDULER is set, the same enqueue and dispatch code runs on
cron/interval jobs inside the API process instead.
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from app.config.settings import Settings, get_settings
from app.domain.errors import ConfigurationError, ReminderPipelineError
from app.domain.reminder import SessionType

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None

ENQUEUE_JOB_ID = "enqueue_{session}"
DISPATCH_JOB_ID = "dispatch_reminders"


def get_scheduler(settings: Optional[Settings] = None) -> AsyncIOScheduler:
    """Get or create the scheduler instance."""
    global scheduler

    if scheduler is None:
        settings = settings or get_settings()
        scheduler = AsyncIOScheduler(timezone=settings.timezone)

    return scheduler


def register_jobs(sched: AsyncIOScheduler, settings: Settings) -> None:
    """Add the enqueue cron jobs and the dispatch interval job."""
    hours = {
        SessionType.MORNING: settings.morning_enqueue_hour,
        SessionType.EVENING: settings.evening_enqueue_hour,
    }
    for session_type, hour in hours.items():
        sched.add_job(
            run_enqueue_job,
            trigger=CronTrigger(hour=hour, minute=0, timezone=settings.timezone),
            id=ENQUEUE_JOB_ID.format(session=session_type.value),
            replace_existing=True,
            kwargs={"session_type": session_type},
        )
        logger.info(f"Scheduled {session_type.value} enqueue daily at {hour:02d}:00 {settings.timezone}")

    sched.add_job(
        run_dispatch_job,
        trigger=IntervalTrigger(minutes=settings.dispatch_interval_minutes),
        id=DISPATCH_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    logger.info(f"Scheduled dispatch every {settings.dispatch_interval_minutes} minute(s)")


async def start_scheduler() -> None:
    """Start the scheduler."""
    settings = get_settings()
    sched = get_scheduler(settings)
    if not sched.running:
        register_jobs(sched, settings)
        sched.start()
        logger.info("Scheduler started")


async def stop_scheduler() -> None:
    """Stop the scheduler gracefully."""
    global scheduler
    if scheduler and scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Scheduler stopped")
    scheduler = None


def describe_jobs() -> dict:
    """Running flag and next fire time of each registered job."""
    sched = get_scheduler()
    return {
        "running": sched.running,
        "jobs": [
            {
                "id": job.id,
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
            }
            for job in sched.get_jobs()
        ],
    }


async def run_enqueue_job(session_type: SessionType) -> None:
    """
    Enqueue today's reminders for a session.

    This function is called by the scheduler; failures are logged, not raised.
    """
    from app.infrastructure.database import async_session_factory
    from app.usecases.enqueue_service import ReminderEnqueuer

    logger.info(f"Running scheduled {session_type.value} enqueue")

    try:
        enqueuer = ReminderEnqueuer(async_session_factory, get_settings())
        outcome = await enqueuer.enqueue(session_type)
        logger.info(f"Scheduled enqueue result: {outcome.to_response()}")
    except ReminderPipelineError as e:
        logger.error(f"Scheduled {session_type.value} enqueue failed: {e}")
    except Exception as e:
        logger.exception(f"Error in scheduled enqueue: {e}")


async def run_dispatch_job() -> None:
    """
    Process one batch of due reminders.

    This function is called by the scheduler; failures are logged, not raised.
    """
    from app.infrastructure.database import async_session_factory
    from app.infrastructure.smtp_channel import build_delivery_channel
    from app.usecases.dispatch_worker import DispatchWorker

    settings = get_settings()

    try:
        channel = build_delivery_channel(settings)
    except ConfigurationError as e:
        logger.error(f"Scheduled dispatch skipped: {e}")
        return

    try:
        worker = DispatchWorker(async_session_factory, settings, channel=channel)
        summary = await worker.run()
        if summary.processed:
            logger.info(f"Scheduled dispatch result: {summary.to_response()}")
    except ReminderPipelineError as e:
        logger.error(f"Scheduled dispatch failed: {e}")
    except Exception as e:
        logger.exception(f"Error in scheduled dispatch: {e}")
