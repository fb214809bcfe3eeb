"""Persistent job queues.

Queues live in the ``jobs`` table; workers claim jobs with
``FOR UPDATE SKIP LOCKED``. Each queue has exactly one processor.
"""

from reporting.jobs.models import GenerationData, Job, JobSummary
from reporting.jobs.registry import QueueRegistry
from reporting.jobs.types import JobState, JobStatus, QueueName

__all__ = [
    "GenerationData",
    "Job",
    "JobState",
    "JobStatus",
    "JobSummary",
    "QueueName",
    "QueueRegistry",
]
