"""Repository for job queue operations."""

import random
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Sequence
from uuid import UUID

import asyncpg
import structlog

from reporting.errors import ArgumentError, ConflictError, NotFoundError
from reporting.jobs.models import Job
from reporting.jobs.types import JobStatus

logger = structlog.get_logger(__name__)


class JobRepository:
    """Repository for job queue operations.

    The ``jobs`` table is the single source of truth for job state: claims,
    progress updates and state transitions are single-statement updates.
    """

    def __init__(self, pool):
        self._pool = pool

    def _calculate_backoff(self, attempt: int) -> int:
        """Calculate retry backoff: min(300, 2^attempt * 5) + jitter."""
        base = min(300, (2**attempt) * 5)
        jitter = random.randint(0, min(10, base // 2))
        return base + jitter

    async def create(
        self,
        queue: str,
        data: dict[str, Any],
        dedupe_key: Optional[str] = None,
        priority: int = 100,
        max_attempts: int = 3,
        run_after: Optional[datetime] = None,
    ) -> Job:
        """Add a job to a queue.

        When a live (waiting or active) job already holds ``dedupe_key``,
        that job is returned instead of creating a new one.
        """
        query = """
            INSERT INTO jobs (queue, data, dedupe_key, priority, max_attempts, run_after)
            VALUES ($1, $2, $3, $4, $5, COALESCE($6, now()))
            ON CONFLICT (dedupe_key)
                WHERE dedupe_key IS NOT NULL AND status IN ('waiting', 'active')
            DO UPDATE SET id = jobs.id  -- no-op, just return existing
            RETURNING *
        """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                query,
                queue,
                data,
                dedupe_key,
                priority,
                max_attempts,
                run_after,
            )
        job = self._row_to_job(row)
        logger.debug("job_created", job_id=str(job.id), queue=queue)
        return job

    async def claim(self, queue: str, worker_id: str) -> Optional[Job]:
        """Claim the next runnable job of a queue using FOR UPDATE SKIP LOCKED.

        Paused queues are never claimed from. Returns None if no job is
        available.
        """
        query = """
            WITH cte AS (
                SELECT id FROM jobs
                WHERE queue = $1
                  AND status = 'waiting'
                  AND run_after <= now()
                  AND NOT EXISTS (
                      SELECT 1 FROM queues q WHERE q.name = $1 AND q.paused
                  )
                ORDER BY priority, created_at
                FOR UPDATE SKIP LOCKED
                LIMIT 1
            )
            UPDATE jobs j SET
                status = 'active',
                locked_at = now(),
                locked_by = $2,
                started_at = now(),
                progress = 0
            FROM cte
            WHERE j.id = cte.id
            RETURNING j.*
        """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(query, queue, worker_id)

        if row:
            logger.info(
                "job_claimed",
                job_id=str(row["id"]),
                queue=queue,
                worker_id=worker_id,
            )
            return self._row_to_job(row)
        return None

    async def update_progress(self, job_id: UUID, progress: float) -> None:
        """Store the progress (0..1) of an active job."""
        progress = min(1.0, max(0.0, progress))
        query = "UPDATE jobs SET progress = $2 WHERE id = $1 AND status = 'active'"
        async with self._pool.acquire() as conn:
            await conn.execute(query, job_id, progress)

    async def complete(
        self, job_id: UUID, result: Optional[dict[str, Any]] = None
    ) -> Job:
        """Mark a job as completed."""
        query = """
            UPDATE jobs SET
                status = 'completed',
                progress = 1,
                result = $2,
                locked_at = NULL,
                locked_by = NULL,
                finished_at = now()
            WHERE id = $1
            RETURNING *
        """
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(query, job_id, result or {})
        logger.info("job_completed", job_id=str(job_id))
        return self._row_to_job(row)

    async def fail(self, job_id: UUID, error: str, should_retry: bool = True) -> Job:
        """Record a failed attempt, scheduling a retry while attempts are left."""
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM jobs WHERE id = $1", job_id)
            if not row:
                raise NotFoundError(f'Job "{job_id}" not found')

            attempts_made = row["attempts_made"] + 1
            max_attempts = row["max_attempts"]

            if should_retry and attempts_made < max_attempts:
                backoff = self._calculate_backoff(attempts_made)
                run_after = datetime.now(timezone.utc) + timedelta(seconds=backoff)
                query = """
                    UPDATE jobs SET
                        status = 'waiting',
                        attempts_made = $2,
                        locked_at = NULL,
                        locked_by = NULL,
                        run_after = $3,
                        failed_reason = $4
                    WHERE id = $1
                    RETURNING *
                """
                row = await conn.fetchrow(query, job_id, attempts_made, run_after, error)
                logger.info(
                    "job_retry_scheduled",
                    job_id=str(job_id),
                    attempts_made=attempts_made,
                    backoff=backoff,
                )
            else:
                query = """
                    UPDATE jobs SET
                        status = 'failed',
                        attempts_made = $2,
                        locked_at = NULL,
                        locked_by = NULL,
                        finished_at = now(),
                        failed_reason = $3
                    WHERE id = $1
                    RETURNING *
                """
                row = await conn.fetchrow(query, job_id, attempts_made, error)

        return self._row_to_job(row)

    async def get(self, queue: str, job_id: UUID) -> Optional[Job]:
        """Get a job of a queue by ID."""
        query = "SELECT * FROM jobs WHERE id = $1 AND queue = $2"
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(query, job_id, queue)
        return self._row_to_job(row) if row else None

    async def list_by_status(
        self, queue: str, statuses: Sequence[JobStatus]
    ) -> list[Job]:
        """List the jobs of a queue having one of the given stored statuses."""
        query = """
            SELECT * FROM jobs
            WHERE queue = $1 AND status = ANY($2)
            ORDER BY created_at
        """
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(query, queue, [s.value for s in statuses])
        return [self._row_to_job(row) for row in rows]

    async def retry(self, queue: str, job_id: UUID) -> Optional[Job]:
        """Put a failed job back in the waiting set with a fresh attempt budget.

        Returns None if the job doesn't exist.

        Raises:
            ArgumentError: If the job isn't failed
            ConflictError: If a live job with the same dedupe key exists
        """
        query = """
            UPDATE jobs SET
                status = 'waiting',
                attempts_made = 0,
                progress = 0,
                run_after = now(),
                started_at = NULL,
                finished_at = NULL,
                failed_reason = NULL
            WHERE id = $1 AND queue = $2 AND status = 'failed'
            RETURNING *
        """
        async with self._pool.acquire() as conn:
            try:
                row = await conn.fetchrow(query, job_id, queue)
            except asyncpg.UniqueViolationError as e:
                raise ConflictError(
                    f"Job {job_id} duplicates a job already waiting"
                ) from e
            if row is None:
                existing = await conn.fetchrow(
                    "SELECT status FROM jobs WHERE id = $1 AND queue = $2",
                    job_id,
                    queue,
                )
                if existing is None:
                    return None
                raise ArgumentError(
                    f"Job {job_id} is {existing['status']}, only failed jobs can be retried"
                )

        logger.info("job_retried", job_id=str(job_id), queue=queue)
        return self._row_to_job(row)

    async def reap_stale(self, queue: str, stale_minutes: int = 30) -> int:
        """Reset stale active jobs (stuck workers) to waiting for retry."""
        query = """
            UPDATE jobs SET
                status = 'waiting',
                locked_at = NULL,
                locked_by = NULL
            WHERE queue = $1
              AND status = 'active'
              AND locked_at < now() - ($2 || ' minutes')::interval
              AND attempts_made < max_attempts
            RETURNING id
        """
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(query, queue, str(stale_minutes))
        count = len(rows)
        if count > 0:
            logger.warning("stale_jobs_reaped", queue=queue, count=count)
        return count

    async def set_paused(self, queue: str, paused: bool) -> None:
        """Pause or resume a queue. Idempotent."""
        query = """
            INSERT INTO queues (name, paused) VALUES ($1, $2)
            ON CONFLICT (name) DO UPDATE SET paused = $2, updated_at = now()
        """
        async with self._pool.acquire() as conn:
            await conn.execute(query, queue, paused)

    async def is_paused(self, queue: str) -> bool:
        """Check whether a queue is paused."""
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow("SELECT paused FROM queues WHERE name = $1", queue)
        return bool(row and row["paused"])

    def _row_to_job(self, row) -> Job:
        """Convert a database row to a Job model."""
        return Job(
            id=row["id"],
            queue=row["queue"],
            status=JobStatus(row["status"]),
            data=row["data"],
            progress=row["progress"],
            attempts_made=row["attempts_made"],
            max_attempts=row["max_attempts"],
            run_after=row["run_after"],
            locked_at=row["locked_at"],
            locked_by=row["locked_by"],
            dedupe_key=row["dedupe_key"],
            priority=row["priority"],
            created_at=row["created_at"],
            started_at=row["started_at"],
            finished_at=row["finished_at"],
            result=row["result"],
            failed_reason=row["failed_reason"],
        )
