"""Repository for tasks and their history."""

import base64
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID
from urllib.parse import unquote

import structlog

from reporting.errors import ArgumentError, ConflictError, NotFoundError
from reporting.models import HistoryEntry, HistoryType, Task
from reporting.recurrence import Recurrence, calc_next_date, parse_recurrence

logger = structlog.get_logger(__name__)

# Columns an edit may change
EDITABLE_FIELDS = (
    "name",
    "institution",
    "recurrence",
    "next_run",
    "last_run",
    "template",
    "targets",
    "enabled",
)

DEFAULT_PAGE_SIZE = 15


def unsubscribe_token(task_id: UUID, email: str) -> str:
    """Integrity token of an unsubscribe link."""
    task_part = base64.b64encode(str(task_id).encode()).decode("ascii")
    email_part = base64.b64encode(email.encode()).decode("ascii")
    return f"{task_part}:{email_part}"


class TaskRepository:
    """Tasks (``tasks`` table) and their append-only history (``task_history``).

    Every history append happens in the transaction that edits the task,
    under a row lock on the task.
    """

    def __init__(self, pool):
        self._pool = pool

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, task_id: UUID, institution: Optional[str] = None) -> Optional[Task]:
        """Get a task with its history."""
        query = "SELECT * FROM tasks WHERE id = $1"
        params: list[Any] = [task_id]
        if institution is not None:
            query += " AND institution = $2"
            params.append(institution)

        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(query, *params)
            if not row:
                return None
            history = await conn.fetch(
                "SELECT * FROM task_history WHERE task_id = $1 ORDER BY created_at, id",
                task_id,
            )

        task = self._row_to_task(row)
        task.history = [self._row_to_entry(h) for h in history]
        return task

    async def list_tasks(
        self,
        institution: Optional[str] = None,
        enabled: Optional[bool] = None,
        previous: Optional[UUID] = None,
        count: Optional[int] = DEFAULT_PAGE_SIZE,
    ) -> list[Task]:
        """List tasks (without history), oldest first.

        Args:
            institution: Only tasks of this institution
            enabled: Only enabled (or disabled) tasks
            previous: Cursor, id of the last task of the previous page
            count: Page size, None for every task
        """
        conditions = []
        params: list[Any] = []
        param_idx = 1

        if institution is not None:
            conditions.append(f"institution = ${param_idx}")
            params.append(institution)
            param_idx += 1

        if enabled is not None:
            conditions.append(f"enabled = ${param_idx}")
            params.append(enabled)
            param_idx += 1

        if previous is not None:
            conditions.append(
                f"(created_at, id) > (SELECT created_at, id FROM tasks WHERE id = ${param_idx})"
            )
            params.append(previous)
            param_idx += 1

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        query = f"SELECT * FROM tasks {where} ORDER BY created_at, id"
        if count is not None:
            query += f" LIMIT ${param_idx}"
            params.append(count)

        async with self._pool.acquire() as conn:
            rows = await conn.fetch(query, *params)
        return [self._row_to_task(row) for row in rows]

    async def list_enabled(self) -> list[Task]:
        """Every enabled task, without pagination."""
        return await self.list_tasks(enabled=True, count=None)

    async def list_history(
        self,
        institution: Optional[str] = None,
        previous: Optional[int] = None,
        count: int = DEFAULT_PAGE_SIZE,
    ) -> list[HistoryEntry]:
        """List history entries across tasks, oldest first."""
        conditions = []
        params: list[Any] = []
        param_idx = 1

        if institution is not None:
            conditions.append(f"t.institution = ${param_idx}")
            params.append(institution)
            param_idx += 1

        if previous is not None:
            conditions.append(f"h.id > ${param_idx}")
            params.append(previous)
            param_idx += 1

        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        query = f"""
            SELECT h.* FROM task_history h
            JOIN tasks t ON t.id = h.task_id
            {where}
            ORDER BY h.id
            LIMIT ${param_idx}
        """
        params.append(count)

        async with self._pool.acquire() as conn:
            rows = await conn.fetch(query, *params)
        return [self._row_to_entry(row) for row in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(self, data: dict[str, Any], creator: str) -> Task:
        """Create a task and its ``creation`` history entry."""
        recurrence = parse_recurrence(data["recurrence"])
        next_run = data.get("next_run") or calc_next_date(
            datetime.now(timezone.utc), recurrence
        )

        async with self._pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    """
                    INSERT INTO tasks (
                        name, institution, recurrence, next_run, template,
                        targets, enabled
                    ) VALUES ($1, $2, $3, $4, $5, $6, $7)
                    RETURNING *
                    """,
                    data["name"],
                    data["institution"],
                    recurrence.value,
                    next_run,
                    data.get("template") or {},
                    list(data.get("targets") or []),
                    data.get("enabled", True),
                )
                entry = await self._insert_history(
                    conn,
                    row["id"],
                    HistoryType.CREATION,
                    f"Tâche créée par {creator}",
                )

        task = self._row_to_task(row)
        task.history = [entry]
        logger.info("task_created", task_id=str(task.id), creator=creator)
        return task

    async def edit(self, task_id: UUID, changes: dict[str, Any], editor: str) -> Task:
        """Edit a task, appending an ``edition`` entry.

        When the recurrence changes but the next run doesn't, the next run is
        recomputed from the last run (or now) with the new recurrence.

        Raises:
            NotFoundError: If the task doesn't exist
        """
        return await self.edit_with_history(
            task_id,
            changes,
            HistoryType.EDITION,
            f"Tâche éditée par {editor}",
        )

    async def edit_with_history(
        self,
        task_id: UUID,
        changes: dict[str, Any],
        entry_type: HistoryType,
        message: str,
        meta: Optional[dict[str, Any]] = None,
    ) -> Task:
        """Apply changes and append one history entry, atomically."""
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                current = await self._lock_task(conn, task_id)
                changes = self._recompute_next_run(current, changes)
                row = await self._update(conn, task_id, changes) if changes else current
                await self._insert_history(conn, task_id, entry_type, message, meta)
                history = await conn.fetch(
                    "SELECT * FROM task_history WHERE task_id = $1 ORDER BY created_at, id",
                    task_id,
                )

        task = self._row_to_task(row)
        task.history = [self._row_to_entry(h) for h in history]
        logger.info(
            "task_edited",
            task_id=str(task_id),
            history_type=entry_type.value,
            fields=sorted(changes),
        )
        return task

    async def delete(self, task_id: UUID) -> Optional[Task]:
        """Delete a task and its history. Returns the deleted task."""
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow("DELETE FROM tasks WHERE id = $1 RETURNING *", task_id)
        if row is None:
            return None
        logger.info("task_deleted", task_id=str(task_id))
        return self._row_to_task(row)

    async def enable(self, task_id: UUID, editor: str) -> Task:
        return await self._set_enabled(task_id, True, f"Tâche activée par {editor}")

    async def disable(self, task_id: UUID, editor: str) -> Task:
        return await self._set_enabled(task_id, False, f"Tâche désactivée par {editor}")

    async def _set_enabled(self, task_id: UUID, enabled: bool, message: str) -> Task:
        """Raises ConflictError when the task is already in the requested state."""
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                current = await self._lock_task(conn, task_id)
                if current["enabled"] == enabled:
                    state = "enabled" if enabled else "disabled"
                    raise ConflictError(f'Task "{task_id}" is already {state}')
                row = await self._update(conn, task_id, {"enabled": enabled})
                await self._insert_history(conn, task_id, HistoryType.EDITION, message)
        return self._row_to_task(row)

    async def unsubscribe(self, task_id: UUID, email: str, token: str) -> Task:
        """Remove a recipient from a task.

        Raises:
            ArgumentError: If the token doesn't match or the email isn't a target
            NotFoundError: If the task doesn't exist
        """
        # Tokens come from mail links, possibly percent-encoded
        if unquote(token) != unsubscribe_token(task_id, email):
            raise ArgumentError("Integrity check failed")

        async with self._pool.acquire() as conn:
            async with conn.transaction():
                current = await self._lock_task(conn, task_id)
                targets = list(current["targets"] or [])
                if email not in targets:
                    raise ArgumentError(f'Email "{email}" not found in targets of task "{task_id}"')
                targets.remove(email)
                row = await self._update(conn, task_id, {"targets": targets})
                await self._insert_history(
                    conn,
                    task_id,
                    HistoryType.UNSUBSCRIPTION,
                    f"{email} s'est désinscrit de la liste de diffusion.",
                )

        logger.info("task_unsubscribed", task_id=str(task_id))
        return self._row_to_task(row)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _lock_task(self, conn, task_id: UUID):
        row = await conn.fetchrow("SELECT * FROM tasks WHERE id = $1 FOR UPDATE", task_id)
        if row is None:
            raise NotFoundError(f'Task "{task_id}" not found')
        return row

    @staticmethod
    def _recompute_next_run(current, changes: dict[str, Any]) -> dict[str, Any]:
        if "recurrence" not in changes:
            return changes
        recurrence = parse_recurrence(changes["recurrence"])
        changes = {**changes, "recurrence": recurrence}
        unchanged_next_run = changes.get("next_run", current["next_run"]) == current["next_run"]
        if recurrence.value != current["recurrence"] and unchanged_next_run:
            base = current["last_run"] or datetime.now(timezone.utc)
            changes["next_run"] = calc_next_date(base, recurrence)
        return changes

    async def _update(self, conn, task_id: UUID, changes: dict[str, Any]):
        unknown = set(changes) - set(EDITABLE_FIELDS)
        if unknown:
            raise ArgumentError(f"Fields can't be edited: {', '.join(sorted(unknown))}")

        set_clauses = []
        params: list[Any] = [task_id]
        param_idx = 2
        for column in EDITABLE_FIELDS:
            if column not in changes:
                continue
            value = changes[column]
            if isinstance(value, Recurrence):
                value = value.value
            set_clauses.append(f"{column} = ${param_idx}")
            params.append(value)
            param_idx += 1
        set_clauses.append("updated_at = now()")

        query = f"UPDATE tasks SET {', '.join(set_clauses)} WHERE id = $1 RETURNING *"
        return await conn.fetchrow(query, *params)

    async def _insert_history(
        self,
        conn,
        task_id: UUID,
        entry_type: HistoryType,
        message: str,
        meta: Optional[dict[str, Any]] = None,
    ) -> HistoryEntry:
        row = await conn.fetchrow(
            """
            INSERT INTO task_history (task_id, type, message, meta)
            VALUES ($1, $2, $3, $4)
            RETURNING *
            """,
            task_id,
            entry_type.value,
            message,
            meta,
        )
        return self._row_to_entry(row)

    def _row_to_task(self, row) -> Task:
        return Task(
            id=row["id"],
            name=row["name"],
            institution=row["institution"],
            recurrence=Recurrence(row["recurrence"]),
            next_run=row["next_run"],
            last_run=row["last_run"],
            template=row["template"] or {},
            targets=list(row["targets"] or []),
            enabled=row["enabled"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _row_to_entry(self, row) -> HistoryEntry:
        return HistoryEntry(
            id=row["id"],
            task_id=row["task_id"],
            type=HistoryType(row["type"]),
            message=row["message"],
            meta=row["meta"],
            created_at=row["created_at"],
        )
