"""Tests for the generation queue processor."""

import os
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest

from reporting.config import Settings
from reporting.errors import ArgumentError
from reporting.jobs.handlers.generation import parse_generation_data, process_generation
from reporting.jobs.models import GenerationData, Job
from reporting.jobs.types import JobStatus
from reporting.models import Task
from reporting.recurrence import Recurrence
from reporting.services.generation import ReportDetail, ReportFiles, ReportResult, ReportStats

UTC = timezone.utc
NOW = datetime(2024, 3, 4, 12, 0, tzinfo=UTC)


def make_task() -> Task:
    return Task(
        id=uuid4(),
        name="Rapport hebdo",
        institution="inst-1",
        recurrence=Recurrence.WEEKLY,
        next_run=NOW,
        template={"extends": "basic"},
        targets=["doc@example.org"],
    )


def make_job(data: GenerationData) -> Job:
    return Job(id=uuid4(), queue="generation", status=JobStatus.ACTIVE, data=data.to_payload())


def make_result(task: Task, success: bool) -> ReportResult:
    files = ReportFiles(detail="2024/2024-03/report.json")
    if success:
        files.report = "2024/2024-03/report.pdf"
    return ReportResult(
        success=success,
        detail=ReportDetail(
            date=NOW,
            task=task.id,
            files=files,
            stats=ReportStats(page_count=1, size=4) if success else None,
            error=None if success else "boom",
        ),
    )


@pytest.fixture
def services(tmp_path):
    services = MagicMock()
    services.settings = Settings(_env_file=None, report_root=str(tmp_path))
    services.mail.send_report = AsyncMock()
    out = os.path.join(services.settings.output_path, "2024", "2024-03")
    os.makedirs(out)
    for name, content in (("report.pdf", b"%PDF"), ("report.json", b"{}")):
        with open(os.path.join(out, name), "wb") as f:
            f.write(content)
    return services


def make_ctx(services):
    ctx = MagicMock()
    ctx.services = services
    ctx.progress = AsyncMock()
    return ctx


class TestParseGenerationData:
    def test_malformed_payload(self):
        with pytest.raises(ArgumentError):
            parse_generation_data({"origin": "admin"})

    def test_bad_recurrence(self):
        payload = GenerationData(task=make_task(), origin="admin").to_payload()
        payload["task"]["recurrence"] = "HOURLY"
        with pytest.raises(ArgumentError):
            parse_generation_data(payload)


class TestProcessGeneration:
    @pytest.mark.asyncio
    async def test_success_is_mailed(self, services):
        task = make_task()
        data = GenerationData(task=task, origin="daily-cron-job")
        generate = AsyncMock(return_value=make_result(task, True))

        with patch("reporting.jobs.handlers.generation.task_lock") as lock, patch(
            "reporting.jobs.handlers.generation.generate_report", generate
        ):
            lock.return_value.__aenter__.return_value = True
            output = await process_generation(make_job(data), make_ctx(services))

        assert output["status"] == "success"
        lock.assert_called_once_with(services.pool, "generation", task.id)
        kwargs = services.mail.send_report.call_args.kwargs
        assert kwargs["success"] is True
        assert kwargs["content"] == b"%PDF"
        assert kwargs["url"] == "/2024/2024-03/report.pdf"

    @pytest.mark.asyncio
    async def test_concurrent_run_is_skipped(self, services):
        data = GenerationData(task=make_task(), origin="daily-cron-job")
        generate = AsyncMock()

        with patch("reporting.jobs.handlers.generation.task_lock") as lock, patch(
            "reporting.jobs.handlers.generation.generate_report", generate
        ):
            lock.return_value.__aenter__.return_value = False
            output = await process_generation(make_job(data), make_ctx(services))

        assert output == {"status": "already_running"}
        generate.assert_not_called()
        services.mail.send_report.assert_not_called()

    @pytest.mark.asyncio
    async def test_test_run_takes_no_lock_and_failure_is_not_mailed(self, services):
        task = make_task()
        data = GenerationData(task=task, origin="admin", write_history=False)
        generate = AsyncMock(return_value=make_result(task, False))

        with patch("reporting.jobs.handlers.generation.task_lock") as lock, patch(
            "reporting.jobs.handlers.generation.generate_report", generate
        ):
            output = await process_generation(make_job(data), make_ctx(services))

        lock.assert_not_called()
        assert output["status"] == "error"
        services.mail.send_report.assert_not_called()

    @pytest.mark.asyncio
    async def test_failure_detail_is_mailed(self, services):
        task = make_task()
        data = GenerationData(task=task, origin="daily-cron-job")
        generate = AsyncMock(return_value=make_result(task, False))

        with patch("reporting.jobs.handlers.generation.task_lock") as lock, patch(
            "reporting.jobs.handlers.generation.generate_report", generate
        ):
            lock.return_value.__aenter__.return_value = True
            await process_generation(make_job(data), make_ctx(services))

        kwargs = services.mail.send_report.call_args.kwargs
        assert kwargs["success"] is False
        assert kwargs["content"] == b"{}"

    @pytest.mark.asyncio
    async def test_debug_run_records_events(self, services):
        task = make_task()
        data = GenerationData(task=task, origin="admin", write_history=False, debug=True)

        async def generate(ctx, data, observer=None, meta=None):
            observer.on_event("creation")
            return make_result(task, True)

        with patch("reporting.jobs.handlers.generation.generate_report", generate):
            output = await process_generation(make_job(data), make_ctx(services))

        assert output["events"] == ["creation"]

    @pytest.mark.asyncio
    async def test_mail_failure_does_not_fail_the_generation(self, services):
        task = make_task()
        data = GenerationData(task=task, origin="daily-cron-job")
        generate = AsyncMock(return_value=make_result(task, True))
        services.mail.send_report.side_effect = OSError("mail queue unavailable")

        with patch("reporting.jobs.handlers.generation.task_lock") as lock, patch(
            "reporting.jobs.handlers.generation.generate_report", generate
        ), patch("reporting.jobs.handlers.generation.logger") as mock_logger:
            lock.return_value.__aenter__.return_value = True
            output = await process_generation(make_job(data), make_ctx(services))

        assert output["status"] == "success"
        generate.assert_awaited_once()
        mock_logger.error.assert_called_once()
        assert mock_logger.error.call_args.args[0] == "result_mail_failed"

    @pytest.mark.asyncio
    async def test_missing_report_file_is_logged(self, services):
        task = make_task()
        data = GenerationData(task=task, origin="daily-cron-job")
        result = make_result(task, True)
        result.detail.files.report = "2024/2024-03/missing.pdf"
        generate = AsyncMock(return_value=result)

        with patch("reporting.jobs.handlers.generation.task_lock") as lock, patch(
            "reporting.jobs.handlers.generation.generate_report", generate
        ), patch("reporting.jobs.handlers.generation.logger") as mock_logger:
            lock.return_value.__aenter__.return_value = True
            output = await process_generation(make_job(data), make_ctx(services))

        assert output["status"] == "success"
        services.mail.send_report.assert_not_called()
        assert mock_logger.error.call_args.args[0] == "result_mail_failed"
