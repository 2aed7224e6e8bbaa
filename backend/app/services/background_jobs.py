"""
services/background_jobs.py

Scheduled background jobs for VinDoc.

Jobs:
  1. run_scheduled_expiry_alerts
     - Evaluates every vehicle, emails new expiry/service/lifespan alerts.
     - Runs once a day at EXPIRY_ALERTS_HOUR_IST:EXPIRY_ALERTS_MINUTE_IST.

Only used when EXPIRY_ALERTS_SCHEDULER_ENABLED is set. Deployments that
trigger the run from the Lambda in backend/lambda/expiry_alerts/ leave it off.
"""

from __future__ import annotations

import logging
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from app.core.config import settings
from app.services.alerts.pipeline import run_expiry_alert_job

logger = logging.getLogger(__name__)

IST = ZoneInfo("Asia/Kolkata")

# ── Scheduler singleton ───────────────────────────────────────────────────────
_scheduler: AsyncIOScheduler | None = None


def start_scheduler() -> None:
    """
    Starts the APScheduler background job scheduler.
    Call this from FastAPI lifespan startup.
    """
    global _scheduler

    if not settings.EXPIRY_ALERTS_SCHEDULER_ENABLED:
        logger.info("Expiry alert scheduler disabled")
        return

    _scheduler = AsyncIOScheduler(timezone=IST)

    _scheduler.add_job(
        run_scheduled_expiry_alerts,
        trigger=CronTrigger(
            hour=settings.EXPIRY_ALERTS_HOUR_IST,
            minute=settings.EXPIRY_ALERTS_MINUTE_IST,
            timezone=IST,
        ),
        id="expiry_alerts",
        name="Daily expiry alerts",
        replace_existing=True,
        max_instances=1,          # never run two at once
        misfire_grace_time=3600,  # a late start still beats skipping a day
        coalesce=True,
    )

    _scheduler.start()
    logger.info(
        "Background scheduler started - expiry alerts daily at %02d:%02d IST",
        settings.EXPIRY_ALERTS_HOUR_IST, settings.EXPIRY_ALERTS_MINUTE_IST,
    )


def shutdown_scheduler() -> None:
    """Gracefully shuts down the scheduler. Call from FastAPI lifespan shutdown."""
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        logger.info("Background scheduler shut down")
    _scheduler = None


# ============================================================================
# Job 1: Daily expiry alerts
# ============================================================================

async def run_scheduled_expiry_alerts() -> None:
    """
    One full alert pass. Safe to re-run: the notification log suppresses
    anything already announced.
    """
    logger.info("Job: run_scheduled_expiry_alerts - starting")
    try:
        summary = await run_expiry_alert_job()
    except Exception:
        logger.exception("Job: run_scheduled_expiry_alerts - failed")
        return
    logger.info(
        "Job: run_scheduled_expiry_alerts - done (sent=%d logged=%d skipped=%d)",
        summary["emails_sent"], summary["notifications_logged"], len(summary["skipped"]),
    )
