# slotbook/scheduler.py
"""
Background scheduler for the booking engine sweeps.

Uses APScheduler to run periodic background jobs for:
- Expiring unpaid waitlist holds
- Promoting waitlists into unclaimed seats
- Relaying the notification outbox
- Refunding unseated payments after sessions end
"""

import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_MISSED

from slotbook.background_tasks.booking_tasks import (
    expire_pending_payments_task,
    process_available_spots_task,
    relay_notifications_task,
    process_refunds_task,
)
from slotbook.core.config import settings

logger = logging.getLogger(__name__)

# Global scheduler instance
scheduler = None


def _on_job_error(event):
    """Log scheduler job errors with full context."""
    job_id = event.job_id
    exc = event.exception
    tb = event.traceback
    logger.error(
        "Scheduled job FAILED: job_id=%s error=%s",
        job_id, exc,
        exc_info=(type(exc), exc, None) if exc else None,
    )
    if tb:
        logger.error("Traceback for job %s:\n%s", job_id, tb)


def _on_job_missed(event):
    """Log when a scheduled job misses its execution window."""
    logger.warning(
        "Scheduled job MISSED: job_id=%s scheduled_run_time=%s",
        event.job_id,
        event.scheduled_run_time,
    )


def register_jobs(target) -> None:
    """Add the booking sweeps to ``target`` (any APScheduler scheduler)."""
    jobs = [
        (expire_pending_payments_task, settings.EXPIRY_SWEEP_INTERVAL_MINUTES,
         'expire_pending_payments', 'Expire Unpaid Waitlist Holds'),
        (process_available_spots_task, settings.AVAILABLE_SPOTS_SWEEP_INTERVAL_MINUTES,
         'process_available_spots', 'Promote Waitlists Into Available Spots'),
        (relay_notifications_task, settings.OUTBOX_RELAY_INTERVAL_MINUTES,
         'relay_notifications', 'Relay Notification Outbox'),
        (process_refunds_task, settings.REFUND_SWEEP_INTERVAL_MINUTES,
         'process_refunds', 'Refund Unseated Payments For Completed Sessions'),
    ]
    for func, minutes, job_id, name in jobs:
        target.add_job(
            func=func,
            trigger=IntervalTrigger(minutes=minutes),
            id=job_id,
            name=name,
            replace_existing=True
        )
        logger.info(f"Scheduled job: {job_id} (every {minutes} minute(s))")


def init_scheduler():
    """
    Initialize the background scheduler with all periodic tasks.

    This is called once when the worker starts up.
    """
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler already initialized")
        return scheduler

    scheduler = BackgroundScheduler(
        timezone="UTC",
        job_defaults={
            'coalesce': True,  # Combine missed executions
            'max_instances': 1,  # Only one instance of each job at a time
            'misfire_grace_time': 60  # Allow 60 seconds grace period
        }
    )

    register_jobs(scheduler)

    # Listen for job errors and misfires so they don't fail silently
    scheduler.add_listener(_on_job_error, EVENT_JOB_ERROR)
    scheduler.add_listener(_on_job_missed, EVENT_JOB_MISSED)

    # Start the scheduler
    scheduler.start()
    logger.info("Background scheduler started successfully")

    return scheduler


def shutdown_scheduler():
    """
    Gracefully shutdown the scheduler.
    """
    global scheduler

    if scheduler is not None:
        scheduler.shutdown(wait=True)
        logger.info("Background scheduler shutdown complete")
        scheduler = None


def get_scheduler_status():
    """
    Get the current status of all scheduled jobs.

    Returns:
        Dict with scheduler state and job details (next run time, trigger)
    """
    if scheduler is None:
        return {"status": "not_initialized", "jobs": []}

    jobs = []
    for job in scheduler.get_jobs():
        jobs.append({
            "id": job.id,
            "name": job.name,
            "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
            "trigger": str(job.trigger)
        })

    return {
        "status": "running" if scheduler.running else "stopped",
        "jobs": jobs
    }
