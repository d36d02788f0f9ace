"""
Scheduler for background maintenance jobs.

Runs the activation token sweep on a fixed interval.
"""
import logging
from datetime import datetime
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from coaching.config import get_settings
from coaching.database import SessionLocal
from coaching.services.tokens import sweep_expired_tokens

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = BackgroundScheduler()

# Store last sweep results
last_token_sweep = {
    "timestamp": None,
    "deleted": 0
}


def run_token_sweep(manual: bool = False):
    """Job function to delete expired activation tokens."""
    global last_token_sweep

    logger.info("Starting activation token sweep...")
    start_time = datetime.now()

    db = SessionLocal()
    try:
        deleted = sweep_expired_tokens(db)
        last_token_sweep = {
            "timestamp": start_time.isoformat(),
            "duration_seconds": (datetime.now() - start_time).total_seconds(),
            "deleted": deleted,
            "manual": manual
        }
        logger.info(f"Token sweep completed. Deleted {deleted} expired token(s)")
    except Exception as e:
        db.rollback()
        logger.error(f"Error in token sweep: {e}")
        last_token_sweep = {
            "timestamp": start_time.isoformat(),
            "duration_seconds": (datetime.now() - start_time).total_seconds(),
            "deleted": 0,
            "manual": manual,
            "error": str(e)
        }
    finally:
        db.close()

    return last_token_sweep


def start_scheduler():
    """Start the background scheduler."""
    if scheduler.running:
        logger.info("Scheduler already running")
        return

    settings = get_settings()
    scheduler.add_job(
        run_token_sweep,
        IntervalTrigger(minutes=settings.token_sweep_interval_minutes),
        id='activation_token_sweep',
        name='Activation Token Sweep',
        replace_existing=True
    )

    scheduler.start()
    logger.info("Scheduler started with jobs:")
    for job in scheduler.get_jobs():
        logger.info(f"  - {job.name}: {job.trigger}")


def stop_scheduler():
    """Stop the scheduler."""
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler stopped")


def get_scheduler_status():
    """Get current scheduler status."""
    jobs = []
    if scheduler.running:
        for job in scheduler.get_jobs():
            jobs.append({
                "id": job.id,
                "name": job.name,
                "trigger": str(job.trigger),
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None
            })

    return {
        "running": scheduler.running,
        "jobs": jobs,
        "last_token_sweep": last_token_sweep
    }


def trigger_token_sweep():
    """Run the token sweep now, outside the schedule."""
    logger.info("Manual token sweep triggered")
    return run_token_sweep(manual=True)
