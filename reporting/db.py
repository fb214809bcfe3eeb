"""Database pool."""

import json

import asyncpg
import structlog

from reporting.config import Settings

logger = structlog.get_logger(__name__)


async def _init_connection(conn) -> None:
    # jsonb columns (job data, templates, history meta) as Python objects
    await conn.set_type_codec(
        "jsonb",
        encoder=lambda value: json.dumps(value, default=str),
        decoder=json.loads,
        schema="pg_catalog",
    )


async def create_pool(settings: Settings) -> asyncpg.Pool:
    """Create the asyncpg pool shared by every repository."""
    pool = await asyncpg.create_pool(
        settings.database_url,
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
        command_timeout=60,
        init=_init_connection,
    )
    logger.info(
        "Database pool initialized",
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
    )
    return pool
