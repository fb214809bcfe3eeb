"""Health check and Prometheus endpoints."""

import asyncio
import time
from typing import Any, Optional

import structlog
from fastapi import APIRouter, Request, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel

from reporting import __version__

router = APIRouter()
logger = structlog.get_logger(__name__)


class DependencyHealth(BaseModel):
    status: str
    latency_ms: Optional[float] = None
    error: Optional[str] = None


class HealthResponse(BaseModel):
    status: str
    version: str
    database: DependencyHealth
    elastic: DependencyHealth
    queues: dict[str, str] = {}


async def check_database_health(pool) -> DependencyHealth:
    """Check PostgreSQL connectivity."""
    start = time.perf_counter()
    try:
        async with pool.acquire() as conn:
            await conn.fetchval("SELECT 1")
        return DependencyHealth(status="ok", latency_ms=(time.perf_counter() - start) * 1000)
    except Exception as e:
        latency = (time.perf_counter() - start) * 1000
        return DependencyHealth(status="error", latency_ms=latency, error=str(e))


async def check_elastic_health(client) -> DependencyHealth:
    """Check Elasticsearch connectivity."""
    start = time.perf_counter()
    try:
        await client.ping()
        return DependencyHealth(status="ok", latency_ms=(time.perf_counter() - start) * 1000)
    except Exception as e:
        latency = (time.perf_counter() - start) * 1000
        return DependencyHealth(status="error", latency_ms=latency, error=str(e))


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Status of the service, its dependencies and its queues."""
    ctx = getattr(request.app.state, "reporting", None)
    if ctx is None:
        missing = DependencyHealth(status="error", error="not initialized")
        return HealthResponse(
            status="degraded", version=__version__, database=missing, elastic=missing
        )

    database, elastic = await asyncio.gather(
        check_database_health(ctx.pool),
        check_elastic_health(ctx.elastic),
    )

    queues: dict[str, str] = {}
    if database.status == "ok":
        for name in ctx.queues.names:
            queues[name] = "paused" if await ctx.queues.is_paused(name) else "active"

    overall = "ok" if database.status == "ok" and elastic.status == "ok" else "degraded"
    response = HealthResponse(
        status=overall,
        version=__version__,
        database=database,
        elastic=elastic,
        queues=queues,
    )
    logger.info("Health check completed", status=overall)
    return response


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Any:
    """Prometheus metrics in text format."""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
