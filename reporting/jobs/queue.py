"""Queue facade: enqueue and introspection keyed by queue name."""

from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Union
from uuid import UUID

import structlog

from reporting.errors import ArgumentError, NotFoundError
from reporting.jobs.models import GenerationData, Job, JobSummary
from reporting.jobs.types import PENDING_STATES, JobState, JobStatus, QueueName
from reporting.repositories.jobs import JobRepository

logger = structlog.get_logger(__name__)

# Stored status backing each observable state
_STATE_STATUS = {
    JobState.WAITING: JobStatus.WAITING,
    JobState.DELAYED: JobStatus.WAITING,
    JobState.PAUSED: JobStatus.WAITING,
    JobState.ACTIVE: JobStatus.ACTIVE,
    JobState.COMPLETED: JobStatus.COMPLETED,
    JobState.FAILED: JobStatus.FAILED,
}


def _parse_job_id(job_id: Union[str, UUID]) -> Optional[UUID]:
    if isinstance(job_id, UUID):
        return job_id
    try:
        return UUID(str(job_id))
    except ValueError:
        return None


class QueueManager:
    """Named persistent queues backed by the jobs table.

    Unknown queue names raise NotFoundError; unknown jobs yield None.
    """

    def __init__(
        self,
        job_repo: JobRepository,
        queues: Iterable[str] = tuple(q.value for q in QueueName),
        max_attempts: int = 3,
    ):
        self._repo = job_repo
        self._queues = tuple(queues)
        self._max_attempts = max_attempts

    @property
    def names(self) -> tuple[str, ...]:
        return self._queues

    def _check_queue(self, queue: str) -> str:
        if queue not in self._queues:
            raise NotFoundError(f'Queue "{queue}" not found')
        return queue

    async def enqueue(
        self,
        queue: str,
        data: dict[str, Any],
        dedupe_key: Optional[str] = None,
    ) -> Job:
        """Append a job to a queue and return it without waiting for processing."""
        self._check_queue(queue)
        job = await self._repo.create(
            queue,
            data,
            dedupe_key=dedupe_key,
            max_attempts=self._max_attempts,
        )
        logger.info("job_enqueued", queue=queue, job_id=str(job.id))
        return job

    async def add_generation(
        self, data: GenerationData, dedupe_key: Optional[str] = None
    ) -> Job:
        """Queue the generation of a task's report."""
        return await self.enqueue(
            QueueName.GENERATION.value, data.to_payload(), dedupe_key=dedupe_key
        )

    async def pause(self, queue: str) -> None:
        """Stop claiming new jobs from a queue. Active jobs run to completion."""
        await self._repo.set_paused(self._check_queue(queue), True)
        logger.info("queue_paused", queue=queue)

    async def resume(self, queue: str) -> None:
        """Start claiming jobs from a queue again."""
        await self._repo.set_paused(self._check_queue(queue), False)
        logger.info("queue_resumed", queue=queue)

    async def is_paused(self, queue: str) -> bool:
        return await self._repo.is_paused(self._check_queue(queue))

    async def queue_status(self, queue: str) -> str:
        """Either "paused" or "active"."""
        return "paused" if await self.is_paused(queue) else "active"

    async def list_jobs(
        self,
        queue: str,
        states: Iterable[Union[JobState, str]] = PENDING_STATES,
    ) -> list[JobSummary]:
        """List the jobs of a queue whose observable state matches the filter.

        Raises:
            NotFoundError: If the queue is unknown
            ArgumentError: If a state is unknown
        """
        self._check_queue(queue)
        try:
            wanted = {JobState(s) for s in states}
        except ValueError as e:
            raise ArgumentError(f"Job state is not valid: {e}") from e

        statuses = sorted({_STATE_STATUS[s] for s in wanted}, key=lambda s: s.value)
        paused = await self._repo.is_paused(queue)
        jobs = await self._repo.list_by_status(queue, statuses)

        now = datetime.now(timezone.utc)
        summaries = []
        for job in jobs:
            state = job.resolve_state(paused, now)
            if state in wanted:
                summaries.append(JobSummary.from_job(job, state))
        return summaries

    async def queue_info(self, queue: str) -> dict[str, Any]:
        """Status of a queue and its pending jobs."""
        jobs = await self.list_jobs(queue)
        return {
            "status": await self.queue_status(queue),
            "jobs": [job.to_dict() for job in jobs],
        }

    async def get_job(self, queue: str, job_id: Union[str, UUID]) -> Optional[JobSummary]:
        """Get a job summary, or None when the job doesn't exist."""
        self._check_queue(queue)
        parsed = _parse_job_id(job_id)
        if parsed is None:
            return None
        job = await self._repo.get(queue, parsed)
        if job is None:
            return None
        paused = await self._repo.is_paused(queue)
        return JobSummary.from_job(job, job.resolve_state(paused))

    async def retry_job(self, queue: str, job_id: Union[str, UUID]) -> Optional[JobSummary]:
        """Put a failed job back in the waiting set, or None if not found."""
        self._check_queue(queue)
        parsed = _parse_job_id(job_id)
        if parsed is None:
            return None
        job = await self._repo.retry(queue, parsed)
        if job is None:
            return None
        paused = await self._repo.is_paused(queue)
        return JobSummary.from_job(job, job.resolve_state(paused))
