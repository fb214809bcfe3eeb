"""Daily sweep: enqueue the generation of every task due today.

Processor of the ``cron`` queue. Missed runs (next run before today) are
skipped with a warning, never caught up automatically: an operator has to
look at the task.
"""

from datetime import datetime, time, timezone
from typing import Any, Awaitable, Callable, Optional

import structlog

from reporting.jobs.models import GenerationData, Job
from reporting.metrics import SWEEP_TASKS_TOTAL
from reporting.models import Task
from reporting.recurrence import to_utc

logger = structlog.get_logger(__name__)

SWEEP_ORIGIN = "daily-cron-job"
# Origin of errors raised by the sweep itself
ERROR_ORIGIN = "index"

ProgressFn = Callable[[float], Awaitable[None]]


def end_of_day(value: datetime) -> datetime:
    value = to_utc(value)
    return datetime.combine(value.date(), time.max, tzinfo=timezone.utc)


def generation_dedupe_key(task: Task) -> str:
    """One live generation job per task and scheduled day."""
    return f"generation:{task.id}:{to_utc(task.next_run).date().isoformat()}"


async def run_sweep(
    services,
    progress: Optional[ProgressFn] = None,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Enqueue generation jobs for the tasks due today.

    Args:
        services: ReportingContext
        progress: Called with index/total after each task
        now: Time of the sweep

    Returns:
        Counters of enqueued and missed tasks, or the error once mailed
    """
    start = now or datetime.now(timezone.utc)
    log = logger.bind(sweep_at=start.isoformat())

    try:
        tasks = await services.tasks.list_enabled()
        # Only the day of the next run matters, not its hour
        cutoff = end_of_day(start)

        enqueued = missed = 0
        total = len(tasks)
        for index, task in enumerate(tasks):
            next_run = to_utc(task.next_run)
            if next_run.date() == cutoff.date():
                data = GenerationData(task=task.snapshot(), origin=SWEEP_ORIGIN)
                await services.queues.add_generation(data, dedupe_key=generation_dedupe_key(task))
                SWEEP_TASKS_TOTAL.labels(outcome="enqueued").inc()
                enqueued += 1
            elif next_run < cutoff:
                log.warning(
                    "task_run_missed",
                    task_id=str(task.id),
                    next_run=next_run.isoformat(),
                )
                SWEEP_TASKS_TOTAL.labels(outcome="missed").inc()
                missed += 1
            else:
                SWEEP_TASKS_TOTAL.labels(outcome="idle").inc()

            if progress is not None:
                await progress(index / total)

    except Exception as e:
        # Reported once, the job completes: a retry would mail the error again
        log.error("sweep_failed", error=str(e))
        await services.mail.send_error(e, ERROR_ORIGIN)
        return {"status": "error", "error": str(e)}

    duration_ms = int((datetime.now(timezone.utc) - start).total_seconds() * 1000)
    log.info(
        "sweep_completed",
        tasks=total,
        enqueued=enqueued,
        missed=missed,
        duration_ms=max(duration_ms, 0),
    )
    return {"tasks": total, "enqueued": enqueued, "missed": missed}


async def process_sweep(job: Job, ctx) -> dict[str, Any]:
    """Processor of the ``cron`` queue."""
    return await run_sweep(ctx.services, progress=ctx.progress)
