"""Job system data models."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional
from uuid import UUID

from reporting.jobs.types import JobState, JobStatus
from reporting.models import Task
from reporting.recurrence import Interval


@dataclass
class Job:
    """A job in a queue."""

    id: UUID
    queue: str
    status: JobStatus
    data: dict[str, Any]

    progress: float = 0.0

    # Retry handling
    attempts_made: int = 0
    max_attempts: int = 3
    run_after: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    # Lock info
    locked_at: Optional[datetime] = None
    locked_by: Optional[str] = None

    dedupe_key: Optional[str] = None
    priority: int = 100

    # Lifecycle timestamps
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    result: Optional[dict[str, Any]] = None
    failed_reason: Optional[str] = None

    def resolve_state(self, queue_paused: bool, now: Optional[datetime] = None) -> JobState:
        """Get the observable state of the job."""
        if self.status is not JobStatus.WAITING:
            return JobState(self.status.value)
        if queue_paused:
            return JobState.PAUSED
        now = now or datetime.now(timezone.utc)
        if self.run_after > now:
            return JobState.DELAYED
        return JobState.WAITING


@dataclass
class JobSummary:
    """Job as exposed by the queue introspection API."""

    id: UUID
    data: dict[str, Any]
    progress: float
    added: datetime
    started: Optional[datetime]
    ended: Optional[datetime]
    attempts: int
    status: JobState

    @classmethod
    def from_job(cls, job: Job, state: JobState) -> "JobSummary":
        return cls(
            id=job.id,
            data=job.data,
            progress=job.progress,
            added=job.created_at,
            started=job.started_at,
            ended=job.finished_at,
            # Attempt currently running (or about to)
            attempts=job.attempts_made + 1,
            status=state,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "data": self.data,
            "progress": self.progress,
            "added": self.added.isoformat(),
            "started": self.started.isoformat() if self.started else None,
            "ended": self.ended.isoformat() if self.ended else None,
            "attempts": self.attempts,
            "status": self.status.value,
        }


@dataclass
class GenerationData:
    """Payload of a report generation job.

    The task is a snapshot taken at enqueue time: targets may have been
    overridden for a test run.
    """

    task: Task
    origin: str
    write_history: bool = True
    debug: bool = False
    custom_period: Optional[Interval] = None

    def to_payload(self) -> dict[str, Any]:
        return {
            "task": self.task.to_dict(with_history=False),
            "origin": self.origin,
            "write_history": self.write_history,
            "debug": self.debug,
            "custom_period": self.custom_period.to_dict() if self.custom_period else None,
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "GenerationData":
        custom_period = payload.get("custom_period")
        return cls(
            task=Task.from_dict(payload["task"]),
            origin=payload["origin"],
            write_history=payload.get("write_history", True),
            debug=payload.get("debug", False),
            custom_period=Interval.from_dict(custom_period) if custom_period else None,
        )
