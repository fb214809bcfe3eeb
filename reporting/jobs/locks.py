"""Advisory lock utilities for report generation."""

import hashlib
from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import UUID

import structlog

logger = structlog.get_logger(__name__)


def task_lock_key(scope: str, task_id: UUID) -> int:
    """
    Generate stable 64-bit lock key for pg_try_advisory_lock.

    Args:
        scope: What is locked (e.g., "generation")
        task_id: Task UUID

    Returns:
        Signed 64-bit integer (PostgreSQL bigint range)
    """
    raw = f"{scope}:{task_id}"
    h = hashlib.sha256(raw.encode()).digest()[:8]
    return int.from_bytes(h, byteorder="big", signed=True)


@asynccontextmanager
async def task_lock(pool, scope: str, task_id: UUID) -> AsyncIterator[bool]:
    """Hold a session advisory lock for a task while the block runs.

    Yields whether the lock was acquired; the caller decides what to do when
    another process already holds it. The lock is released on exit.
    """
    key = task_lock_key(scope, task_id)
    async with pool.acquire() as conn:
        acquired = await conn.fetchval("SELECT pg_try_advisory_lock($1)", key)
        if not acquired:
            logger.info("task_lock_busy", scope=scope, task_id=str(task_id))
            yield False
            return
        try:
            yield True
        finally:
            await conn.execute("SELECT pg_advisory_unlock($1)", key)
