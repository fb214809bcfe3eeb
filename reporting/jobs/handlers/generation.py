"""Processor of the ``generation`` queue."""

import os
from contextlib import nullcontext
from typing import Any

import structlog

from reporting.errors import ArgumentError
from reporting.jobs.locks import task_lock
from reporting.jobs.models import GenerationData, Job
from reporting.metrics import REPORTS_GENERATED_TOTAL
from reporting.services.generation import ReportResult, generate_report
from reporting.services.observer import LoggingObserver, RecordingObserver

logger = structlog.get_logger(__name__)

LOCK_SCOPE = "generation"


def parse_generation_data(payload: dict[str, Any]) -> GenerationData:
    """Raises ArgumentError when the payload is malformed."""
    try:
        return GenerationData.from_payload(payload)
    except ArgumentError:
        raise
    except (KeyError, TypeError, ValueError) as e:
        raise ArgumentError(f"Generation data is not valid: {e}") from e


async def send_result_mail(services, data: GenerationData, result: ReportResult) -> None:
    """Hand the report (or the failure detail) to the mail queue.

    Failures of runs without history (test runs) are not mailed.
    """
    if not result.success and not data.write_history:
        return

    relative = result.detail.files.report if result.success else result.detail.files.detail
    path = os.path.join(services.settings.output_path, relative)
    with open(path, "rb") as f:
        content = f.read()

    await services.mail.send_report(
        data.task,
        success=result.success,
        content=content,
        url=f"/{relative}",
        date=result.detail.date,
    )


async def process_generation(job: Job, ctx) -> dict[str, Any]:
    """Generate a report, then feed the mail queue.

    Runs writing history hold an advisory lock on the task: a concurrent
    run of the same task returns ``already_running`` without generating.
    """
    services = ctx.services
    data = parse_generation_data(job.data)
    task_id = data.task.id

    observer = RecordingObserver() if data.debug else LoggingObserver(task_id=str(task_id))
    lock = (
        task_lock(services.pool, LOCK_SCOPE, task_id)
        if data.write_history
        else nullcontext(True)
    )

    async with lock as acquired:
        if not acquired:
            REPORTS_GENERATED_TOTAL.labels(status="already_running").inc()
            logger.info("generation_skipped_already_running", task_id=str(task_id), job_id=str(job.id))
            return {"status": "already_running"}

        await ctx.progress(0.1)
        result = await generate_report(services, data, observer=observer, meta={"job": str(job.id)})

    REPORTS_GENERATED_TOTAL.labels(status="success" if result.success else "error").inc()
    await ctx.progress(0.9)
    # The run is recorded at this point: a mail failure must not retry it
    try:
        await send_result_mail(services, data, result)
    except Exception as e:
        logger.error(
            "result_mail_failed",
            task_id=str(task_id),
            job_id=str(job.id),
            error=str(e),
        )

    output: dict[str, Any] = {
        "status": "success" if result.success else "error",
        "result": result.model_dump(mode="json"),
    }
    if isinstance(observer, RecordingObserver):
        output["events"] = observer.names
    return output
