"""Tests for job repository."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import asyncpg
import pytest

from reporting.errors import ArgumentError, ConflictError
from reporting.jobs.types import JobStatus
from reporting.repositories.jobs import JobRepository


def make_row(**overrides):
    now = datetime.now(timezone.utc)
    row = {
        "id": uuid4(),
        "queue": "generation",
        "status": "waiting",
        "data": {"origin": "admin"},
        "progress": 0.0,
        "attempts_made": 0,
        "max_attempts": 3,
        "run_after": now,
        "locked_at": None,
        "locked_by": None,
        "dedupe_key": None,
        "priority": 100,
        "created_at": now,
        "started_at": None,
        "finished_at": None,
        "result": None,
        "failed_reason": None,
    }
    row.update(overrides)
    return row


def make_pool(mock_conn):
    mock_pool = MagicMock()
    mock_pool.acquire.return_value.__aenter__.return_value = mock_conn
    return mock_pool


class TestJobRepository:
    def test_repository_creation(self):
        mock_pool = MagicMock()
        repo = JobRepository(mock_pool)
        assert repo._pool == mock_pool

    def test_backoff_calculation(self):
        repo = JobRepository(MagicMock())
        # Formula: min(300, 2^attempt * 5) + jitter
        assert 10 <= repo._calculate_backoff(1) <= 15
        assert 20 <= repo._calculate_backoff(2) <= 30
        assert 300 <= repo._calculate_backoff(10) <= 310


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_job(self):
        row = make_row(dedupe_key="generation:abc:2024-03-04")
        mock_conn = AsyncMock()
        mock_conn.fetchrow = AsyncMock(return_value=row)
        repo = JobRepository(make_pool(mock_conn))

        job = await repo.create("generation", {"origin": "admin"}, dedupe_key=row["dedupe_key"])

        assert job.id == row["id"]
        assert job.status == JobStatus.WAITING
        assert job.dedupe_key == "generation:abc:2024-03-04"
        args = mock_conn.fetchrow.call_args[0]
        assert "ON CONFLICT (dedupe_key)" in args[0]
        assert args[1] == "generation"
        assert args[3] == "generation:abc:2024-03-04"


class TestClaim:
    @pytest.mark.asyncio
    async def test_claim_returns_active_job(self):
        row = make_row(status="active", locked_by="host:1")
        mock_conn = AsyncMock()
        mock_conn.fetchrow = AsyncMock(return_value=row)
        repo = JobRepository(make_pool(mock_conn))

        job = await repo.claim("generation", "host:1")

        assert job is not None
        assert job.status == JobStatus.ACTIVE
        query = mock_conn.fetchrow.call_args[0][0]
        assert "FOR UPDATE SKIP LOCKED" in query
        assert "q.paused" in query

    @pytest.mark.asyncio
    async def test_claim_empty_queue(self):
        mock_conn = AsyncMock()
        mock_conn.fetchrow = AsyncMock(return_value=None)
        repo = JobRepository(make_pool(mock_conn))

        assert await repo.claim("generation", "host:1") is None


class TestFail:
    @pytest.mark.asyncio
    async def test_fail_schedules_retry(self):
        current = make_row(status="active", attempts_made=0, max_attempts=3)
        updated = make_row(id=current["id"], status="waiting", attempts_made=1)
        mock_conn = AsyncMock()
        mock_conn.fetchrow = AsyncMock(side_effect=[current, updated])
        repo = JobRepository(make_pool(mock_conn))

        job = await repo.fail(current["id"], "boom")

        assert job.status == JobStatus.WAITING
        assert job.attempts_made == 1
        query, _, attempts, _, error = mock_conn.fetchrow.call_args[0]
        assert "status = 'waiting'" in query
        assert attempts == 1
        assert error == "boom"

    @pytest.mark.asyncio
    async def test_fail_last_attempt_is_terminal(self):
        current = make_row(status="active", attempts_made=2, max_attempts=3)
        updated = make_row(id=current["id"], status="failed", attempts_made=3)
        mock_conn = AsyncMock()
        mock_conn.fetchrow = AsyncMock(side_effect=[current, updated])
        repo = JobRepository(make_pool(mock_conn))

        job = await repo.fail(current["id"], "boom")

        assert job.status == JobStatus.FAILED
        assert "status = 'failed'" in mock_conn.fetchrow.call_args[0][0]

    @pytest.mark.asyncio
    async def test_fail_without_retry(self):
        current = make_row(status="active", attempts_made=0, max_attempts=3)
        updated = make_row(id=current["id"], status="failed", attempts_made=1)
        mock_conn = AsyncMock()
        mock_conn.fetchrow = AsyncMock(side_effect=[current, updated])
        repo = JobRepository(make_pool(mock_conn))

        job = await repo.fail(current["id"], "bad input", should_retry=False)

        assert job.status == JobStatus.FAILED
        assert "status = 'failed'" in mock_conn.fetchrow.call_args[0][0]


class TestRetry:
    @pytest.mark.asyncio
    async def test_retry_failed_job(self):
        row = make_row(status="waiting", attempts_made=0)
        mock_conn = AsyncMock()
        mock_conn.fetchrow = AsyncMock(return_value=row)
        repo = JobRepository(make_pool(mock_conn))

        job = await repo.retry("generation", row["id"])

        assert job.status == JobStatus.WAITING
        assert "attempts_made = 0" in mock_conn.fetchrow.call_args[0][0]

    @pytest.mark.asyncio
    async def test_retry_unknown_job(self):
        mock_conn = AsyncMock()
        mock_conn.fetchrow = AsyncMock(side_effect=[None, None])
        repo = JobRepository(make_pool(mock_conn))

        assert await repo.retry("generation", uuid4()) is None

    @pytest.mark.asyncio
    async def test_retry_job_not_failed(self):
        mock_conn = AsyncMock()
        mock_conn.fetchrow = AsyncMock(side_effect=[None, {"status": "completed"}])
        repo = JobRepository(make_pool(mock_conn))

        with pytest.raises(ArgumentError, match="completed"):
            await repo.retry("generation", uuid4())

    @pytest.mark.asyncio
    async def test_retry_conflicting_dedupe_key(self):
        mock_conn = AsyncMock()
        mock_conn.fetchrow = AsyncMock(side_effect=asyncpg.UniqueViolationError("dup"))
        repo = JobRepository(make_pool(mock_conn))

        with pytest.raises(ConflictError):
            await repo.retry("generation", uuid4())


class TestPause:
    @pytest.mark.asyncio
    async def test_is_paused(self):
        mock_conn = AsyncMock()
        mock_conn.fetchrow = AsyncMock(return_value={"paused": True})
        repo = JobRepository(make_pool(mock_conn))

        assert await repo.is_paused("generation") is True

    @pytest.mark.asyncio
    async def test_unknown_queue_row_is_not_paused(self):
        mock_conn = AsyncMock()
        mock_conn.fetchrow = AsyncMock(return_value=None)
        repo = JobRepository(make_pool(mock_conn))

        assert await repo.is_paused("generation") is False

    @pytest.mark.asyncio
    async def test_set_paused_upserts(self):
        mock_conn = AsyncMock()
        repo = JobRepository(make_pool(mock_conn))

        await repo.set_paused("generation", True)

        query, queue, paused = mock_conn.execute.call_args[0]
        assert "ON CONFLICT (name)" in query
        assert (queue, paused) == ("generation", True)


class TestReapStale:
    @pytest.mark.asyncio
    async def test_reap_stale_counts_rows(self):
        mock_conn = AsyncMock()
        mock_conn.fetch = AsyncMock(return_value=[{"id": uuid4()}, {"id": uuid4()}])
        repo = JobRepository(make_pool(mock_conn))

        assert await repo.reap_stale("generation", stale_minutes=15) == 2
        assert mock_conn.fetch.call_args[0][2] == "15"
