"""Queue introspection and control endpoints."""

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from reporting.admin.deps import get_context, http_error, require_admin_token
from reporting.context import ReportingContext
from reporting.errors import ReportingError
from reporting.jobs.types import PENDING_STATES

router = APIRouter(
    prefix="/queues",
    tags=["queues"],
    dependencies=[Depends(require_admin_token)],
)


@router.get("")
async def list_queues(ctx: ReportingContext = Depends(get_context)) -> dict[str, Any]:
    """Names and pause status of every queue."""
    items = []
    for name in ctx.queues.names:
        paused = await ctx.queues.is_paused(name)
        items.append({"name": name, "status": "paused" if paused else "active"})
    return {"items": items}


@router.get("/{queue}")
async def get_queue(queue: str, ctx: ReportingContext = Depends(get_context)) -> dict[str, Any]:
    """Status of a queue and its pending jobs."""
    try:
        info = await ctx.queues.queue_info(queue)
    except ReportingError as e:
        raise http_error(e) from e
    return {"name": queue, **info}


@router.put("/{queue}/pause")
async def pause_queue(queue: str, ctx: ReportingContext = Depends(get_context)) -> dict[str, Any]:
    """Stop claiming jobs. Pausing a paused queue is a no-op."""
    try:
        await ctx.queues.pause(queue)
    except ReportingError as e:
        raise http_error(e) from e
    return {"name": queue, "status": "paused"}


@router.put("/{queue}/resume")
async def resume_queue(queue: str, ctx: ReportingContext = Depends(get_context)) -> dict[str, Any]:
    try:
        await ctx.queues.resume(queue)
    except ReportingError as e:
        raise http_error(e) from e
    return {"name": queue, "status": "active"}


@router.get("/{queue}/jobs")
async def list_queue_jobs(
    queue: str,
    state: Optional[list[str]] = Query(
        default=None, description="Observable states to include (defaults to pending ones)"
    ),
    ctx: ReportingContext = Depends(get_context),
) -> dict[str, Any]:
    states = state or [s.value for s in PENDING_STATES]
    try:
        jobs = await ctx.queues.list_jobs(queue, states)
    except ReportingError as e:
        raise http_error(e) from e
    return {"items": [job.to_dict() for job in jobs], "count": len(jobs)}


@router.get("/{queue}/jobs/{job_id}")
async def get_queue_job(
    queue: str, job_id: str, ctx: ReportingContext = Depends(get_context)
) -> dict[str, Any]:
    try:
        job = await ctx.queues.get_job(queue, job_id)
    except ReportingError as e:
        raise http_error(e) from e
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f'Job "{job_id}" not found',
        )
    return job.to_dict()


@router.post("/{queue}/jobs/{job_id}/retry")
async def retry_queue_job(
    queue: str, job_id: str, ctx: ReportingContext = Depends(get_context)
) -> dict[str, Any]:
    """Put a failed job back in the waiting set."""
    try:
        job = await ctx.queues.retry_job(queue, job_id)
    except ReportingError as e:
        raise http_error(e) from e
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f'Job "{job_id}" not found',
        )
    return job.to_dict()
