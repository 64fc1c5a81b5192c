"""
Scheduled tasks for the marketplace service.
Runs the batch token refresh inside the FastAPI process.
"""

import logging
from datetime import datetime
from typing import Optional
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.events import EVENT_JOB_EXECUTED, EVENT_JOB_ERROR

from marketlink.core.config import Settings
from marketlink.services.marketplaces import ConnectionLifecycleManager

logger = logging.getLogger(__name__)

REFRESH_JOB_ID = "refresh_expiring_tokens"

# Global scheduler instance
scheduler: Optional[AsyncIOScheduler] = None


async def refresh_expiring_tokens_task(manager: ConnectionLifecycleManager):
    """Task to refresh access tokens that are about to expire"""
    try:
        logger.info("=== SCHEDULED TOKEN REFRESH STARTING ===")
        summary = await manager.refresh_expiring_tokens()
        logger.info(
            f"Scheduled token refresh finished: checked={summary.checked} "
            f"refreshed={summary.refreshed} failed={summary.failed} skipped={summary.skipped}"
        )
        return summary
    except Exception as e:
        logger.exception(f"Error in scheduled token refresh task: {str(e)}")
        return None


def job_listener(event):
    """Listen to job events for logging"""
    if event.exception:
        logger.error(f"Job {event.job_id} crashed: {event.exception}")
    else:
        logger.info(f"Job {event.job_id} executed successfully at {datetime.now()}")


def create_scheduler(settings: Settings, manager: ConnectionLifecycleManager) -> AsyncIOScheduler:
    """Create and configure the scheduler"""
    global scheduler

    if scheduler is not None:
        return scheduler

    scheduler = AsyncIOScheduler()
    scheduler.add_listener(job_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

    if settings.TOKEN_REFRESH_ENABLED:
        scheduler.add_job(
            refresh_expiring_tokens_task,
            CronTrigger.from_crontab(settings.TOKEN_REFRESH_SCHEDULE),
            args=[manager],
            id=REFRESH_JOB_ID,
            name="Refresh Expiring Marketplace Tokens",
            replace_existing=True,
            max_instances=1,  # never two batches at once
            coalesce=True,
            misfire_grace_time=600,
        )
        logger.info(f"Token refresh job added with schedule: {settings.TOKEN_REFRESH_SCHEDULE}")
    else:
        logger.info("Token refresh is disabled. Set TOKEN_REFRESH_ENABLED=true to enable")

    return scheduler


async def start_scheduler(settings: Settings, manager: ConnectionLifecycleManager):
    """Start the scheduler"""
    global scheduler

    if scheduler is None:
        scheduler = create_scheduler(settings, manager)

    if not scheduler.running:
        scheduler.start()
        logger.info("Scheduler started successfully")

        jobs = scheduler.get_jobs()
        if jobs:
            logger.info(f"Active scheduled jobs: {len(jobs)}")
            for job in jobs:
                logger.info(f"  - {job.name}: {job.trigger}")
        else:
            logger.info("No scheduled jobs configured")


async def stop_scheduler():
    """Stop the scheduler gracefully"""
    global scheduler

    if scheduler and scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped successfully")
    scheduler = None


async def get_scheduler_status():
    """Get current scheduler status and job information"""
    global scheduler

    if scheduler is None:
        return {"status": "not_initialized", "jobs": []}

    jobs_info = []
    for job in scheduler.get_jobs():
        jobs_info.append({
            "id": job.id,
            "name": job.name,
            "next_run": job.next_run_time.isoformat() if getattr(job, "next_run_time", None) else None,
            "trigger": str(job.trigger)
        })

    return {
        "status": "running" if scheduler.running else "stopped",
        "jobs": jobs_info
    }
