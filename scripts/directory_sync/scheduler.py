"""APScheduler-based interval scheduling for the directory sync."""

from __future__ import annotations

import logging

from apscheduler.events import EVENT_JOB_ERROR
from apscheduler.schedulers.blocking import BlockingScheduler

from scripts.directory_sync.config import SyncConfig
from scripts.directory_sync.pipeline import SyncRunError, build_sync

logger = logging.getLogger("directory_sync.scheduler")

JOB_ID = "directory_sync"


def _run_sync(config: SyncConfig) -> None:
    """Run one sync. A failed run is left for the next trigger to repeat."""
    try:
        result = build_sync(config).run()
    except SyncRunError as exc:
        logger.error("Scheduled sync failed: %s", exc, extra={"stage": exc.stage})
        return
    logger.info("Scheduled sync finished: %s", result)


def _on_job_error(event) -> None:
    """Log job execution errors."""
    logger.error(
        "Job %s raised an exception: %s",
        event.job_id,
        event.exception,
    )


def create_scheduler(config: SyncConfig) -> BlockingScheduler:
    """Build a scheduler with a single non-overlapping interval job."""
    scheduler = BlockingScheduler()
    scheduler.add_listener(_on_job_error, EVENT_JOB_ERROR)
    sched = config.scheduler

    # Overlapping runs would race on the staging table.
    scheduler.add_job(
        _run_sync,
        "interval",
        minutes=sched.sync_interval_min,
        args=[config],
        id=JOB_ID,
        max_instances=1,
        coalesce=True,
        misfire_grace_time=sched.misfire_grace_time,
    )
    return scheduler


def start_scheduler(config: SyncConfig) -> None:
    """Start the blocking scheduler."""
    scheduler = create_scheduler(config)
    logger.info("Starting scheduler with jobs: %s",
                [j.id for j in scheduler.get_jobs()])
    scheduler.start()
