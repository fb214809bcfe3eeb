"""Job worker - claims and executes jobs from a queue."""

import asyncio
import os
import socket
import traceback
from dataclasses import dataclass
from typing import Any, Optional

import structlog

from reporting import __version__
from reporting.errors import ArgumentError
from reporting.jobs.models import Job
from reporting.jobs.registry import QueueRegistry
from reporting.jobs.types import JobStatus
from reporting.metrics import JOBS_INFLIGHT, JOBS_PROCESSED_TOTAL
from reporting.repositories.jobs import JobRepository

logger = structlog.get_logger(__name__)


def generate_worker_id() -> str:
    """Generate a unique worker ID: hostname:pid."""
    return f"{socket.gethostname()}:{os.getpid()}"


@dataclass
class JobContext:
    """What a processor gets besides its job."""

    job: Job
    worker_id: str
    job_repo: JobRepository
    # ReportingContext of the process (repositories, collaborators, settings)
    services: Any = None

    async def progress(self, fraction: float) -> None:
        """Report the progress (0..1) of the job."""
        self.job.progress = fraction
        await self.job_repo.update_progress(self.job.id, fraction)


class WorkerRunner:
    """Runs the processor of one queue with bounded concurrency.

    ``concurrency`` claim loops run side by side, so at most that many jobs of
    the queue are active in this process. Pausing the queue only stops new
    claims.
    """

    def __init__(
        self,
        job_repo: JobRepository,
        registry: QueueRegistry,
        queue: str,
        concurrency: int = 5,
        worker_id: Optional[str] = None,
        poll_interval_s: float = 1.0,
        stale_timeout_minutes: int = 30,
        services: Any = None,
    ):
        self._job_repo = job_repo
        self._registry = registry
        self._queue = queue
        self._concurrency = max(1, concurrency)
        self._worker_id = worker_id or generate_worker_id()
        self._poll_interval_s = poll_interval_s
        self._stale_timeout_minutes = stale_timeout_minutes
        self._services = services
        self._running = False

    @property
    def worker_id(self) -> str:
        return self._worker_id

    @property
    def queue(self) -> str:
        return self._queue

    async def start(self):
        """Run the claim loops until stopped."""
        self._running = True
        logger.info(
            "worker_started",
            worker_id=self._worker_id,
            version=__version__,
            queue=self._queue,
            concurrency=self._concurrency,
        )

        loops = [self._slot_loop(slot) for slot in range(self._concurrency)]
        loops.append(self._reap_loop())
        await asyncio.gather(*loops)

        logger.info("worker_stopped", worker_id=self._worker_id, queue=self._queue)

    async def stop(self):
        """Stop the claim loops gracefully (running jobs finish first)."""
        self._running = False

    async def run_once(self) -> Optional[Job]:
        """Claim and execute a single job. Returns the claimed job, if any."""
        job = await self._job_repo.claim(self._queue, self._worker_id)
        if job:
            await self._execute_job(job)
        return job

    async def _slot_loop(self, slot: int):
        while self._running:
            try:
                job = await self.run_once()
                if job is None:
                    await asyncio.sleep(self._poll_interval_s)
            except asyncio.CancelledError:
                logger.info("worker_cancelled", worker_id=self._worker_id, slot=slot)
                break
            except Exception as e:
                logger.error(
                    "worker_loop_error",
                    queue=self._queue,
                    slot=slot,
                    error=str(e),
                    traceback=traceback.format_exc(),
                )
                await asyncio.sleep(self._poll_interval_s)

    async def _reap_loop(self):
        reap_interval = 60  # seconds
        while self._running:
            try:
                await self._job_repo.reap_stale(self._queue, self._stale_timeout_minutes)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.warning("stale_reap_failed", queue=self._queue, error=str(e))
            # Sleep in short steps so stop() is honoured quickly
            for _ in range(int(reap_interval / max(self._poll_interval_s, 0.1))):
                if not self._running:
                    return
                await asyncio.sleep(max(self._poll_interval_s, 0.1))

    async def _execute_job(self, job: Job):
        """Execute a single claimed job."""
        log = logger.bind(job_id=str(job.id), queue=job.queue)
        log.info("job_executing", attempts_made=job.attempts_made)

        try:
            processor = self._registry.get_processor(job.queue)
        except KeyError:
            error = f"No processor registered for queue: {job.queue}"
            failed = await self._job_repo.fail(job.id, error, should_retry=False)
            self._report_failure(failed, error)
            return

        context = JobContext(
            job=job,
            worker_id=self._worker_id,
            job_repo=self._job_repo,
            services=self._services,
        )

        JOBS_INFLIGHT.labels(queue=job.queue).inc()
        try:
            result = await processor(job, context)
        except ArgumentError as e:
            # Malformed input won't get better with another attempt
            failed = await self._job_repo.fail(job.id, str(e), should_retry=False)
            self._report_failure(failed, str(e))
        except Exception as e:
            failed = await self._job_repo.fail(job.id, str(e), should_retry=True)
            self._report_failure(failed, str(e), traceback.format_exc())
        else:
            await self._job_repo.complete(job.id, result)
            JOBS_PROCESSED_TOTAL.labels(queue=job.queue, status="completed").inc()
            log.info("job_succeeded")
        finally:
            JOBS_INFLIGHT.labels(queue=job.queue).dec()

    def _report_failure(self, job: Job, error: str, tb: Optional[str] = None):
        """Log a failed attempt; only the terminal failure is logged as an error."""
        if job.status is JobStatus.FAILED:
            JOBS_PROCESSED_TOTAL.labels(queue=job.queue, status="failed").inc()
            logger.error(
                "job_failed",
                job_id=str(job.id),
                queue=job.queue,
                attempts_made=job.attempts_made,
                max_attempts=job.max_attempts,
                error=error,
                traceback=tb,
            )
        else:
            JOBS_PROCESSED_TOTAL.labels(queue=job.queue, status="retried").inc()
            logger.info(
                "job_attempt_failed",
                job_id=str(job.id),
                queue=job.queue,
                attempts_made=job.attempts_made,
                error=error,
            )
