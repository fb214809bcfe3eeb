"""Tests for the queue facade."""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from reporting.errors import ArgumentError, NotFoundError
from reporting.jobs.models import Job
from reporting.jobs.queue import QueueManager
from reporting.jobs.types import JobState, JobStatus


def make_job(status=JobStatus.WAITING, **kwargs) -> Job:
    return Job(id=uuid4(), queue="generation", status=status, data={"origin": "admin"}, **kwargs)


@pytest.fixture
def repo():
    repo = MagicMock()
    repo.create = AsyncMock()
    repo.set_paused = AsyncMock()
    repo.is_paused = AsyncMock(return_value=False)
    repo.list_by_status = AsyncMock(return_value=[])
    repo.get = AsyncMock(return_value=None)
    repo.retry = AsyncMock(return_value=None)
    return repo


class TestUnknownQueue:
    @pytest.mark.asyncio
    async def test_enqueue_unknown_queue(self, repo):
        queues = QueueManager(repo)
        with pytest.raises(NotFoundError, match='Queue "reports" not found'):
            await queues.enqueue("reports", {})
        repo.create.assert_not_called()

    @pytest.mark.asyncio
    async def test_pause_unknown_queue(self, repo):
        with pytest.raises(NotFoundError):
            await QueueManager(repo).pause("nope")

    @pytest.mark.asyncio
    async def test_list_unknown_queue(self, repo):
        with pytest.raises(NotFoundError):
            await QueueManager(repo).list_jobs("nope")


class TestEnqueue:
    @pytest.mark.asyncio
    async def test_enqueue_passes_max_attempts(self, repo):
        job = make_job()
        repo.create.return_value = job
        queues = QueueManager(repo, max_attempts=5)

        result = await queues.enqueue("mail", {"to": "a@b.c"}, dedupe_key="k")

        assert result is job
        repo.create.assert_awaited_once_with("mail", {"to": "a@b.c"}, dedupe_key="k", max_attempts=5)

    @pytest.mark.asyncio
    async def test_enqueued_job_is_listed_as_waiting(self, repo):
        job = make_job()
        repo.create.return_value = job
        repo.list_by_status.return_value = [job]
        queues = QueueManager(repo)

        await queues.enqueue("generation", job.data)
        jobs = await queues.list_jobs("generation")

        assert len(jobs) == 1
        assert jobs[0].status == JobState.WAITING
        assert jobs[0].progress == 0
        assert jobs[0].attempts == 1


class TestPause:
    @pytest.mark.asyncio
    async def test_pause_twice_is_idempotent(self, repo):
        queues = QueueManager(repo)
        await queues.pause("generation")
        await queues.pause("generation")
        assert repo.set_paused.await_count == 2
        repo.set_paused.assert_awaited_with("generation", True)

    @pytest.mark.asyncio
    async def test_resume(self, repo):
        await QueueManager(repo).resume("cron")
        repo.set_paused.assert_awaited_once_with("cron", False)

    @pytest.mark.asyncio
    async def test_queue_status(self, repo):
        queues = QueueManager(repo)
        assert await queues.queue_status("cron") == "active"

        repo.is_paused.return_value = True
        assert await queues.queue_status("cron") == "paused"

    @pytest.mark.asyncio
    async def test_waiting_jobs_of_paused_queue(self, repo):
        repo.is_paused.return_value = True
        repo.list_by_status.return_value = [make_job()]

        jobs = await QueueManager(repo).list_jobs("generation")

        assert [j.status for j in jobs] == [JobState.PAUSED]


class TestListJobs:
    @pytest.mark.asyncio
    async def test_delayed_job_filtered_by_state(self, repo):
        later = datetime.now(timezone.utc) + timedelta(minutes=5)
        delayed = make_job(run_after=later, attempts_made=1)
        waiting = make_job()
        repo.list_by_status.return_value = [delayed, waiting]

        jobs = await QueueManager(repo).list_jobs("generation", ["delayed"])

        assert [j.id for j in jobs] == [delayed.id]
        assert jobs[0].attempts == 2
        statuses = repo.list_by_status.call_args[0][1]
        assert statuses == [JobStatus.WAITING]

    @pytest.mark.asyncio
    async def test_unknown_state(self, repo):
        with pytest.raises(ArgumentError):
            await QueueManager(repo).list_jobs("generation", ["sleeping"])

    @pytest.mark.asyncio
    async def test_queue_info(self, repo):
        repo.list_by_status.return_value = [make_job(status=JobStatus.ACTIVE)]

        info = await QueueManager(repo).queue_info("generation")

        assert info["status"] == "active"
        assert info["jobs"][0]["status"] == "active"


class TestGetJob:
    @pytest.mark.asyncio
    async def test_invalid_id_is_not_found(self, repo):
        assert await QueueManager(repo).get_job("generation", "not-a-uuid") is None
        repo.get.assert_not_called()

    @pytest.mark.asyncio
    async def test_get_completed_job(self, repo):
        job = make_job(status=JobStatus.COMPLETED, progress=1.0)
        repo.get.return_value = job

        summary = await QueueManager(repo).get_job("generation", str(job.id))

        assert summary.status == JobState.COMPLETED
        assert summary.to_dict()["id"] == str(job.id)

    @pytest.mark.asyncio
    async def test_retry_job(self, repo):
        job = make_job()
        repo.retry.return_value = job

        summary = await QueueManager(repo).retry_job("generation", job.id)

        assert summary.status == JobState.WAITING
        repo.retry.assert_awaited_once_with("generation", job.id)
