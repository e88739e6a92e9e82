"""
Daily Reading Reminders - Main Application Entry Point

Email reminders for the daily reading plan. An external cron (or the
optional in-process scheduler) calls the enqueue endpoint twice a day and
the worker endpoint every minute.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api.cron_routes import router as cron_router
from app.config.settings import get_settings
from app.infrastructure.database import dispose_engine, init_database
from app.infrastructure import scheduler as reminder_scheduler

settings = get_settings()

logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S"
)

logger = logging.getLogger(__name__)

APP_NAME = "Daily Reading Reminders"
APP_VERSION = "1.0.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables, optionally start the scheduler, and release the pool on exit."""
    logger.info(f"Starting {APP_NAME} (timezone {settings.timezone})")
    await init_database()

    if settings.enable_scheduler:
        await reminder_scheduler.start_scheduler()
    else:
        logger.info("In-process scheduler disabled, expecting external cron triggers")

    if not settings.cron_secret:
        logger.warning("CRON_SECRET is empty, cron endpoints will answer 500")

    yield

    await reminder_scheduler.stop_scheduler()
    await dispose_engine()
    logger.info("Shutdown complete")


app = FastAPI(
    title=APP_NAME,
    description="Queue-backed email reminders for the daily reading plan",
    version=APP_VERSION,
    lifespan=lifespan
)

app.include_router(cron_router, tags=["Cron"])


@app.get("/")
async def root():
    """Service info and trigger endpoints."""
    return {
        "name": APP_NAME,
        "version": APP_VERSION,
        "status": "running",
        "endpoints": {
            "enqueue": "/api/cron/enqueue-reading-reminders?session=morning|evening",
            "worker": "/api/cron/send-reading-reminders-worker",
            "health": "/health"
        }
    }


@app.get("/scheduler/status")
async def scheduler_status():
    """In-process scheduler state; disabled unless ENABLE_SCHEDULER is set."""
    if not settings.enable_scheduler:
        return {"enabled": False, "running": False, "jobs": []}
    return {"enabled": True, **reminder_scheduler.describe_jobs()}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("app.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
