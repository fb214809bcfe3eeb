#!/usr/bin/env python3
"""Create the reporting tables (tasks, history, queues and jobs)."""
import asyncio
import os

import asyncpg

SCHEMA = """
CREATE TABLE IF NOT EXISTS tasks (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    name TEXT NOT NULL,
    institution TEXT NOT NULL,
    recurrence TEXT NOT NULL CHECK (
        recurrence IN ('DAILY', 'WEEKLY', 'MONTHLY', 'QUARTERLY', 'BIENNIAL', 'YEARLY')
    ),
    next_run TIMESTAMPTZ NOT NULL,
    last_run TIMESTAMPTZ,
    template JSONB NOT NULL DEFAULT '{}',
    targets TEXT[] NOT NULL DEFAULT '{}',
    enabled BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ
);

CREATE INDEX IF NOT EXISTS idx_tasks_institution ON tasks(institution);
CREATE INDEX IF NOT EXISTS idx_tasks_enabled_next_run ON tasks(next_run) WHERE enabled;
CREATE INDEX IF NOT EXISTS idx_tasks_created ON tasks(created_at, id);

CREATE TABLE IF NOT EXISTS task_history (
    id BIGSERIAL PRIMARY KEY,
    task_id UUID NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
    type TEXT NOT NULL CHECK (
        type IN ('creation', 'edition', 'generation-success', 'generation-error', 'unsubscription')
    ),
    message TEXT NOT NULL,
    meta JSONB,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_task_history_task ON task_history(task_id, created_at);

CREATE TABLE IF NOT EXISTS queues (
    name TEXT PRIMARY KEY,
    paused BOOLEAN NOT NULL DEFAULT FALSE,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS jobs (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    queue TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'waiting' CHECK (
        status IN ('waiting', 'active', 'completed', 'failed')
    ),
    data JSONB NOT NULL DEFAULT '{}',
    progress DOUBLE PRECISION NOT NULL DEFAULT 0,
    attempts_made INTEGER NOT NULL DEFAULT 0,
    max_attempts INTEGER NOT NULL DEFAULT 3,
    priority INTEGER NOT NULL DEFAULT 100,
    run_after TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    locked_at TIMESTAMPTZ,
    locked_by TEXT,
    dedupe_key TEXT,
    result JSONB,
    failed_reason TEXT,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    started_at TIMESTAMPTZ,
    finished_at TIMESTAMPTZ
);

-- One live job per dedupe key
CREATE UNIQUE INDEX IF NOT EXISTS idx_jobs_dedupe_live ON jobs(dedupe_key)
    WHERE dedupe_key IS NOT NULL AND status IN ('waiting', 'active');
CREATE INDEX IF NOT EXISTS idx_jobs_claim ON jobs(queue, priority, created_at)
    WHERE status = 'waiting';
CREATE INDEX IF NOT EXISTS idx_jobs_queue_status ON jobs(queue, status);
"""


async def main():
    conn = await asyncpg.connect(os.environ["DATABASE_URL"])
    try:
        await conn.execute(SCHEMA)
        print("Reporting schema applied")

        count = await conn.fetchval(
            """
            SELECT COUNT(*) FROM information_schema.tables
            WHERE table_name IN ('tasks', 'task_history', 'queues', 'jobs')
            """
        )
        print(f"{count} reporting tables present")
    finally:
        await conn.close()


if __name__ == "__main__":
    asyncio.run(main())
