"""
Scheduled tasks
Locks batches whose collection window has closed and drains the submission queue
"""
import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

import config

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = AsyncIOScheduler()


async def lock_expired_batches():
    """Lock every open batch past its window"""
    from dependencies import get_services

    services = get_services()
    try:
        locked = await services.batches.lock_expired()
    except Exception as e:
        logger.error(f"Error locking expired batches: {e}")
        return []
    return [b.batch_id for b in locked]


async def process_sync_queue():
    """Forward queued submissions that are due"""
    from dependencies import get_services

    services = get_services()
    try:
        summary = await services.sync_queue.process_all()
    except Exception as e:
        logger.error(f"Error processing sync queue: {e}")
        return None
    if any(summary.values()):
        logger.info(f"Sync queue run: {summary}")
    return summary


def start_scheduler():
    """Start the APScheduler with the batch-lock and sync-queue jobs"""
    scheduler.add_job(
        lock_expired_batches,
        IntervalTrigger(minutes=config.BATCH_LOCK_INTERVAL_MINUTES),
        id="lock_expired_batches",
        name=f"Lock expired batches (every {config.BATCH_LOCK_INTERVAL_MINUTES} min)",
        replace_existing=True
    )
    scheduler.add_job(
        process_sync_queue,
        IntervalTrigger(seconds=config.SYNC_QUEUE_INTERVAL_SECONDS),
        id="process_sync_queue",
        name=f"Process sync queue (every {config.SYNC_QUEUE_INTERVAL_SECONDS}s)",
        replace_existing=True
    )

    scheduler.start()
    logger.info("Scheduler started - batch locking and sync queue jobs scheduled")


def stop_scheduler():
    """Stop the scheduler"""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler stopped")


def get_scheduler_status():
    """Get status of scheduled jobs"""
    jobs = []
    for job in scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
            "trigger": str(job.trigger)
        })
    return {
        "running": scheduler.running,
        "jobs": jobs
    }
