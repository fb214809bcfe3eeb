"""Reporting service - FastAPI application.

Runs the admin API, the queue workers and (optionally) the cron trigger of
the daily sweep in one process.
"""

import asyncio
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

import structlog
from fastapi import FastAPI, Request

from reporting import __version__
from reporting.admin import router as admin_router
from reporting.config import Settings, get_settings
from reporting.context import ReportingContext, build_context
from reporting.db import create_pool
from reporting.jobs.handlers import register_processors
from reporting.jobs.worker import WorkerRunner, generate_worker_id
from reporting.logging_setup import configure_logging
from reporting.routers import health
from reporting.scheduler import create_scheduler
from reporting.sentry import init_sentry

logger = structlog.get_logger(__name__)


def create_workers(ctx: ReportingContext, worker_id: Optional[str] = None) -> list[WorkerRunner]:
    """One runner per queue with a processor in this process."""
    worker_id = worker_id or generate_worker_id()
    return [
        WorkerRunner(
            ctx.jobs,
            ctx.registry,
            queue,
            concurrency=ctx.settings.queue_concurrency,
            worker_id=f"{worker_id}:{queue}",
            poll_interval_s=ctx.settings.job_poll_interval_s,
            stale_timeout_minutes=ctx.settings.job_stale_timeout_minutes,
            services=ctx,
        )
        for queue in ctx.registry.queues
    ]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    settings: Settings = app.state.settings
    logger.info(
        "Starting reporting service",
        version=__version__,
        environment=settings.environment,
        host=settings.service_host,
        port=settings.service_port,
    )

    pool = await create_pool(settings)
    ctx = build_context(settings, pool)
    register_processors(ctx.registry)
    app.state.reporting = ctx

    workers = create_workers(ctx)
    worker_tasks = [asyncio.create_task(worker.start()) for worker in workers]

    scheduler = None
    if settings.scheduler_enabled:
        scheduler = create_scheduler(ctx.queues, settings.cron_generate_reports)
        scheduler.start()

    try:
        yield
    finally:
        logger.info("Shutting down reporting service")
        if scheduler is not None:
            scheduler.shutdown(wait=False)
        for worker in workers:
            await worker.stop()
        # Running jobs finish, idle loops exit after their poll interval
        await asyncio.gather(*worker_tasks, return_exceptions=True)
        await ctx.close()
        await pool.close()
        app.state.reporting = None
        logger.info("Reporting service stopped")


async def request_middleware(request: Request, call_next):
    """Bind a request id to the log context and time the request."""
    request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(
        request_id=request_id,
        method=request.method,
        path=request.url.path,
    )

    start_time = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start_time) * 1000

    response.headers["X-Request-ID"] = request_id
    response.headers["X-API-Version"] = __version__
    if request.url.path not in ("/health", "/metrics"):
        logger.info(
            "Request completed",
            status_code=response.status_code,
            duration_ms=round(duration_ms, 2),
        )
    return response


def create_app(settings: Optional[Settings] = None, with_lifespan: bool = True) -> FastAPI:
    """Build the application.

    Without lifespan (tests), ``app.state.reporting`` must be set by the caller.
    """
    settings = settings or get_settings()
    configure_logging(settings)
    init_sentry(settings)

    app = FastAPI(
        title="Reporting",
        description="Scheduled PDF reports generated from Elasticsearch data",
        version=__version__,
        lifespan=lifespan if with_lifespan else None,
    )
    app.state.settings = settings
    app.state.reporting = None
    app.middleware("http")(request_middleware)

    app.include_router(health.router, tags=["health"])
    app.include_router(admin_router)
    return app


def run() -> None:
    """Entry point of the ``reporting`` console script."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "reporting.main:create_app",
        factory=True,
        host=settings.service_host,
        port=settings.service_port,
        log_config=None,
    )


if __name__ == "__main__":
    run()
