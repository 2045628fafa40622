"""
APScheduler Configuration

Background job scheduler running inside the API process.
"""

import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.executors.asyncio import AsyncIOExecutor

from kitchenflow.config import settings
from kitchenflow.services.change_feed import ChangeFeedBackend

logger = logging.getLogger(__name__)

# Job stores
jobstores = {
    'default': MemoryJobStore()
}

# Executors
executors = {
    'default': AsyncIOExecutor(),
}

# Job defaults
job_defaults = {
    'coalesce': True,  # Combine multiple pending executions into one
    'max_instances': 1,  # Only one instance of each job at a time
    'misfire_grace_time': 60,  # Allow 60 seconds grace time for misfires
}

# Create scheduler
scheduler = AsyncIOScheduler(
    jobstores=jobstores,
    executors=executors,
    job_defaults=job_defaults,
    timezone=settings.SCHEDULER_TIMEZONE
)


async def run_batch_expiry(change_feed: Optional[ChangeFeedBackend] = None):
    """Scheduler entry point; a failed run is logged and retried on the next tick."""
    from kitchenflow.jobs.batch_expiry import expire_batches

    try:
        await expire_batches(change_feed)
    except Exception as e:
        logger.error(f"Job 'expire_batches' failed: {e}")


def start_scheduler(change_feed: Optional[ChangeFeedBackend] = None):
    """Start the background job scheduler."""
    if not scheduler.running:
        # Deactivate expired batches
        scheduler.add_job(
            run_batch_expiry,
            'interval',
            minutes=settings.BATCH_EXPIRY_CHECK_MINUTES,
            args=[change_feed],
            id='expire_batches',
            name='Deactivate Expired Batches',
            replace_existing=True,
        )

        scheduler.start()
        logger.info("Background job scheduler started")

        # Log all scheduled jobs
        jobs = scheduler.get_jobs()
        for job in jobs:
            logger.info(f"Scheduled job: {job.name} - Next run: {job.next_run_time}")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully."""
    if scheduler.running:
        scheduler.shutdown(wait=True)
        logger.info("Background job scheduler stopped")


def get_job_status():
    """Get status of all scheduled jobs."""
    jobs = scheduler.get_jobs()
    return [
        {
            'id': job.id,
            'name': job.name,
            'next_run_time': str(job.next_run_time) if job.next_run_time else None,
            'trigger': str(job.trigger),
        }
        for job in jobs
    ]
