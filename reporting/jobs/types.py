"""Job system type definitions."""

from enum import Enum


class QueueName(str, Enum):
    """Queues known to the reporting service."""

    GENERATION = "generation"
    CRON = "cron"
    # Consumed by the mail service, only fed from here
    MAIL = "mail"


class JobStatus(str, Enum):
    """Stored job lifecycle statuses."""

    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Check if this status is terminal (job won't change)."""
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class JobState(str, Enum):
    """Job state as seen by queue observers.

    A waiting job is reported as ``delayed`` while its retry backoff is
    running, and as ``paused`` while its queue is paused.
    """

    WAITING = "waiting"
    ACTIVE = "active"
    DELAYED = "delayed"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"


# Default filter of list_jobs: everything not finished
PENDING_STATES = (JobState.ACTIVE, JobState.DELAYED, JobState.PAUSED, JobState.WAITING)
