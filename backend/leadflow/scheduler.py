"""APScheduler configuration for the workflow processor and source polling."""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
import logging

logger = logging.getLogger(__name__)


def create_scheduler() -> AsyncIOScheduler:
    """
    One scheduler per process. Services add and remove their own interval
    jobs on it; nothing is scheduled here.
    """
    return AsyncIOScheduler(timezone="UTC")


def start_scheduler(scheduler: AsyncIOScheduler) -> None:
    """Start the scheduler and log the registered jobs."""
    if scheduler.running:
        logger.info("Scheduler already running")
        return

    scheduler.start()
    logger.info("✅ APScheduler started successfully!")

    for job in scheduler.get_jobs():
        logger.info(f"   • {job.name}: Next run at {job.next_run_time}")


def stop_scheduler(scheduler: AsyncIOScheduler) -> None:
    """Stop the scheduler without waiting for in-flight runs."""
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("Scheduler stopped")
