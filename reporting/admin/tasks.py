"""Task management endpoints."""

from typing import Any, Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from reporting.admin.deps import actor, get_context, http_error, page_meta, require_admin_token
from reporting.context import ReportingContext
from reporting.errors import ReportingError
from reporting.jobs.models import GenerationData
from reporting.models import Task
from reporting.repositories.tasks import DEFAULT_PAGE_SIZE
from reporting.schemas import RunRequest, TaskCreate, TaskUpdate, UnsubscribeRequest

router = APIRouter(tags=["tasks"], dependencies=[Depends(require_admin_token)])
# Reached from the link of a report mail, authenticated by its own token
public_router = APIRouter(tags=["tasks"])
logger = structlog.get_logger(__name__)


async def _get_task_or_404(ctx: ReportingContext, task_id: UUID) -> Task:
    task = await ctx.tasks.get(task_id)
    if task is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f'Task "{task_id}" not found',
        )
    return task


@router.get("/tasks")
async def list_tasks(
    institution: Optional[str] = Query(default=None),
    previous: Optional[UUID] = Query(default=None, description="Id of the last task of the previous page"),
    count: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=200),
    ctx: ReportingContext = Depends(get_context),
) -> dict[str, Any]:
    tasks = await ctx.tasks.list_tasks(institution=institution, previous=previous, count=count)
    return {
        "items": [task.to_dict(with_history=False) for task in tasks],
        "meta": page_meta(tasks, count, tasks[-1].id if tasks else None),
    }


@router.post("/tasks", status_code=status.HTTP_201_CREATED)
async def create_task(
    body: TaskCreate,
    request: Request,
    ctx: ReportingContext = Depends(get_context),
) -> dict[str, Any]:
    """Create a task. Its template must resolve against a registered template."""
    try:
        ctx.templates.resolve(body.template)
        task = await ctx.tasks.create(body.to_data(), creator=actor(request))
    except ReportingError as e:
        raise http_error(e) from e
    return task.to_dict()


@router.get("/tasks/{task_id}")
async def get_task(task_id: UUID, ctx: ReportingContext = Depends(get_context)) -> dict[str, Any]:
    task = await _get_task_or_404(ctx, task_id)
    return task.to_dict()


@router.put("/tasks/{task_id}")
async def edit_task(
    task_id: UUID,
    body: TaskUpdate,
    request: Request,
    ctx: ReportingContext = Depends(get_context),
) -> dict[str, Any]:
    changes = body.to_changes()
    try:
        if body.template is not None:
            ctx.templates.resolve(body.template)
        task = await ctx.tasks.edit(task_id, changes, editor=actor(request))
    except ReportingError as e:
        raise http_error(e) from e
    return task.to_dict()


@router.delete("/tasks/{task_id}")
async def delete_task(task_id: UUID, ctx: ReportingContext = Depends(get_context)) -> dict[str, Any]:
    task = await ctx.tasks.delete(task_id)
    if task is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f'Task "{task_id}" not found',
        )
    return task.to_dict(with_history=False)


@router.put("/tasks/{task_id}/enable")
async def enable_task(
    task_id: UUID, request: Request, ctx: ReportingContext = Depends(get_context)
) -> dict[str, Any]:
    try:
        task = await ctx.tasks.enable(task_id, editor=actor(request))
    except ReportingError as e:
        raise http_error(e) from e
    return task.to_dict(with_history=False)


@router.put("/tasks/{task_id}/disable")
async def disable_task(
    task_id: UUID, request: Request, ctx: ReportingContext = Depends(get_context)
) -> dict[str, Any]:
    try:
        task = await ctx.tasks.disable(task_id, editor=actor(request))
    except ReportingError as e:
        raise http_error(e) from e
    return task.to_dict(with_history=False)


@router.post("/tasks/{task_id}/run", status_code=status.HTTP_202_ACCEPTED)
async def run_task(
    task_id: UUID,
    request: Request,
    body: Optional[RunRequest] = None,
    ctx: ReportingContext = Depends(get_context),
) -> dict[str, Any]:
    """Queue a generation of the task now.

    ``test_emails`` sends the report to those addresses only, without
    touching the task's history. ``debug`` is refused in production.
    """
    body = body or RunRequest()
    if body.debug and ctx.settings.is_production:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Debug runs are not available in production",
        )

    task = await _get_task_or_404(ctx, task_id)
    snapshot = task.snapshot(targets=body.test_emails) if body.test_emails else task.snapshot()

    try:
        data = GenerationData(
            task=snapshot,
            origin=actor(request),
            write_history=not body.test_emails,
            debug=body.debug,
            custom_period=body.custom_period,
        )
        job = await ctx.queues.add_generation(data)
    except ReportingError as e:
        raise http_error(e) from e

    logger.info(
        "task_run_requested",
        task_id=str(task_id),
        job_id=str(job.id),
        test=bool(body.test_emails),
    )
    return {"job_id": str(job.id), "queue": job.queue, "task_id": str(task_id)}


@public_router.put("/tasks/{task_id}/unsubscribe")
async def unsubscribe(
    task_id: UUID,
    body: UnsubscribeRequest,
    ctx: ReportingContext = Depends(get_context),
) -> dict[str, Any]:
    """Remove a recipient from a task, given the token of its mail link."""
    try:
        task = await ctx.tasks.unsubscribe(task_id, body.email, body.unsub_id)
    except ReportingError as e:
        raise http_error(e) from e
    return task.to_dict(with_history=False)


@router.get("/history")
async def list_history(
    institution: Optional[str] = Query(default=None),
    previous: Optional[int] = Query(default=None, description="Id of the last entry of the previous page"),
    count: int = Query(default=DEFAULT_PAGE_SIZE, ge=1, le=200),
    ctx: ReportingContext = Depends(get_context),
) -> dict[str, Any]:
    entries = await ctx.tasks.list_history(institution=institution, previous=previous, count=count)
    return {
        "items": [entry.to_dict() for entry in entries],
        "meta": page_meta(entries, count, entries[-1].id if entries else None),
    }
