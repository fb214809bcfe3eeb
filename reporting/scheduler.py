"""Cron trigger of the daily sweep.

APScheduler only enqueues a job on the ``cron`` queue; the sweep itself runs
in a queue worker, so it gets retries and shows up in queue introspection.
"""

from datetime import datetime, timezone
from typing import Optional

import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from reporting.jobs.models import Job
from reporting.jobs.queue import QueueManager
from reporting.jobs.types import QueueName

logger = structlog.get_logger(__name__)

SWEEP_JOB_ID = "generate-reports"


def sweep_dedupe_key(at: datetime) -> str:
    """One live sweep per tick, whatever the number of scheduling processes."""
    return f"cron:{SWEEP_JOB_ID}:{at.strftime('%Y-%m-%dT%H:%M')}"


async def enqueue_sweep(queues: QueueManager, at: Optional[datetime] = None) -> Job:
    at = at or datetime.now(timezone.utc)
    job = await queues.enqueue(
        QueueName.CRON.value,
        {"name": SWEEP_JOB_ID, "timer": at.isoformat()},
        dedupe_key=sweep_dedupe_key(at),
    )
    logger.info("sweep_enqueued", job_id=str(job.id))
    return job


def create_scheduler(queues: QueueManager, crontab: str) -> AsyncIOScheduler:
    """Scheduler enqueueing the sweep on ``crontab`` (UTC).

    Raises:
        ValueError: If the crontab expression is not valid
    """
    scheduler = AsyncIOScheduler(
        timezone="UTC",
        job_defaults={
            "coalesce": True,  # Combine multiple pending executions into one
            "max_instances": 1,
            "misfire_grace_time": 60,
        },
    )
    scheduler.add_job(
        enqueue_sweep,
        CronTrigger.from_crontab(crontab, timezone="UTC"),
        args=[queues],
        id=SWEEP_JOB_ID,
        replace_existing=True,
    )
    logger.info("scheduler_configured", job=SWEEP_JOB_ID, crontab=crontab)
    return scheduler
