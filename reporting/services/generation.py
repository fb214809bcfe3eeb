"""Report generation: template -> data -> PDF, with history bookkeeping."""

import asyncio
import os
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

import structlog
from pydantic import BaseModel, Field, model_validator

from reporting.compositor import PageGeometry, layout_producer, render_report
from reporting.errors import ArgumentError, NotFoundError
from reporting.jobs.models import GenerationData
from reporting.models import HistoryType, Task
from reporting.recurrence import Interval, calc_next_date, calc_period
from reporting.services.elastic import Institution
from reporting.services.observer import GenerationObserver, LoggingObserver
from reporting.templates.models import ResolvedTemplate
from reporting.utils import deep_merge, normalize_filename

logger = structlog.get_logger(__name__)


class ReportFiles(BaseModel):
    detail: str
    report: Optional[str] = None


class ReportStats(BaseModel):
    page_count: int
    size: int


class ReportDetail(BaseModel):
    date: datetime
    time: int = Field(default=0, description="Duration in milliseconds")
    task: UUID
    files: ReportFiles
    sent_to: Optional[list[str]] = None
    period: Optional[Interval] = None
    run_as: Optional[str] = None
    stats: Optional[ReportStats] = None
    error: Optional[str] = None
    meta: Optional[Any] = None


class ReportResult(BaseModel):
    """Outcome of one generation attempt, written as JSON next to the PDF."""

    success: bool
    detail: ReportDetail

    @model_validator(mode="after")
    def check_outcome(self) -> "ReportResult":
        if self.success and (self.detail.stats is None or self.detail.error is not None):
            raise ValueError("a successful result has stats and no error")
        if not self.success and (self.detail.error is None or self.detail.stats is not None):
            raise ValueError("a failed result has an error and no stats")
        return self


def build_filename(prefix: str, task_name: str, unique: bool) -> str:
    """``reporting_<prefix>_<normalized name>[_<uuid>]``."""
    filename = f"reporting_{prefix}_{normalize_filename(task_name)}"
    if unique:
        filename += f"_{uuid.uuid4()}"
    return filename


def merge_fetch_options(
    template: ResolvedTemplate,
    layout_options: dict[str, Any],
    task: Task,
    period: Interval,
    institution: Institution,
    user: str,
) -> dict[str, Any]:
    """Template < layout < task < values forced by the generation."""
    return deep_merge(
        template.fetch_options,
        layout_options,
        {"index_suffix": ""},
        template.task_fetch_options,
        {
            "recurrence": task.recurrence.value,
            "period": period,
            "index_prefix": institution.index_prefix or "*",
            "user": user,
        },
    )


async def _fetch_layouts(
    ctx,
    template: ResolvedTemplate,
    task: Task,
    period: Interval,
    institution: Institution,
    user: str,
    observer: GenerationObserver,
) -> None:
    """Fill the data of every layout that doesn't carry its own."""

    async def fetch(layout) -> None:
        if layout.data is not None or layout.fetcher == "none":
            return
        fetcher = ctx.fetchers.get(layout.fetcher)
        if fetcher is None:
            raise ArgumentError(f'Fetcher "{layout.fetcher}" not found')
        options = merge_fetch_options(
            template, layout.fetch_options, task, period, institution, user
        )
        layout.fetch_options = options
        layout.data = await fetcher.fetch(options, observer)

    await asyncio.gather(*(fetch(layout) for layout in template.layouts))


async def generate_report(
    ctx,
    data: GenerationData,
    observer: Optional[GenerationObserver] = None,
    meta: Optional[Any] = None,
    now: Optional[datetime] = None,
) -> ReportResult:
    """Generate the report of a task.

    Failures don't propagate: they give a failed result and, when writing
    history, disable the task with a ``generation-error`` entry. The JSON
    result is always written.

    Args:
        ctx: ReportingContext
        data: Job data (task snapshot, origin, flags, custom period)
        observer: Receives creation/contactFound/templateResolved/templateFetched
        meta: Stored in the result and the history entry
        now: Generation date

    Returns:
        The ReportResult written to disk
    """
    settings = ctx.settings
    task = data.task
    today = now or datetime.now(timezone.utc)
    observer = observer or LoggingObserver(task_id=str(task.id))

    month_dir = today.strftime("%Y/%Y-%m")
    base_path = os.path.join(settings.output_path, month_dir)
    filename = build_filename(
        settings.report_prefix,
        task.name,
        unique=settings.is_production or data.write_history,
    )
    report_name = f"{month_dir}/{filename}"

    log = logger.bind(task_id=str(task.id), origin=data.origin, report=report_name)
    log.info("generation_started")
    observer.on_event("creation")

    os.makedirs(base_path, exist_ok=True)
    start = time.monotonic()
    detail: dict[str, Any] = {
        "date": today,
        "task": task.id,
        "files": {"detail": f"{report_name}.json"},
        "meta": meta,
    }

    try:
        targets = [target for target in task.targets if target]
        if not targets:
            raise ArgumentError("Targets can't be null")

        institution = await ctx.institutions.get_institution(task.institution)
        if institution is None:
            raise NotFoundError(f'Institution "{task.institution}" not found')

        contact = await ctx.institutions.get_contact(institution)
        if contact is None:
            raise NotFoundError(
                f'No suitable contact found for your institution "{task.institution}".'
                " Please add doc_contact or tech_contact."
            )
        observer.on_event("contactFound", contact)

        period = data.custom_period or calc_period(task.next_run, task.recurrence)

        template = ctx.templates.resolve(task.template)
        observer.on_event("templateResolved", template)

        await _fetch_layouts(ctx, template, task, period, institution, contact.username, observer)
        observer.on_event("templateFetched", template)

        grid = template.render_options.grid
        stats = await render_report(
            os.path.join(base_path, f"{filename}.pdf"),
            task.name,
            [layout_producer(layout) for layout in template.layouts],
            task.recurrence,
            period=period,
            geometry=PageGeometry.a4(template.render_options.orientation),
            grid=(grid.rows, grid.cols),
            locale=settings.report_locale,
            debug=data.debug,
        )

        if data.write_history:
            await ctx.tasks.edit_with_history(
                task.id,
                {"next_run": calc_next_date(today, task.recurrence), "last_run": today},
                HistoryType.GENERATION_SUCCESS,
                f'Rapport "{report_name}" généré par {data.origin}',
                meta,
            )

        detail.update(
            files={"detail": f"{report_name}.json", "report": f"{report_name}.pdf"},
            sent_to=targets,
            period=period,
            run_as=contact.username,
            stats=stats.to_dict(),
        )
        result = ReportResult(
            success=True,
            detail=ReportDetail(time=int((time.monotonic() - start) * 1000), **detail),
        )
        log.info("generation_succeeded", duration_ms=result.detail.time)

    except Exception as e:
        if data.write_history:
            await _disable_task(ctx, task, report_name, data.origin, meta)

        result = ReportResult(
            success=False,
            detail=ReportDetail(
                time=int((time.monotonic() - start) * 1000),
                error=str(e),
                **detail,
            ),
        )
        log.error("generation_failed", error=str(e), duration_ms=result.detail.time)

    with open(os.path.join(base_path, f"{filename}.json"), "w", encoding="utf-8") as f:
        f.write(result.model_dump_json())
    return result


async def _disable_task(ctx, task: Task, report_name: str, origin: str, meta: Optional[Any]) -> None:
    try:
        await ctx.tasks.edit_with_history(
            task.id,
            {"enabled": False},
            HistoryType.GENERATION_ERROR,
            f'Rapport "{report_name}" non généré par {origin} suite à une erreur.',
            meta,
        )
    except NotFoundError:
        # Deleted while generating
        logger.warning("generation_task_missing", task_id=str(task.id))
