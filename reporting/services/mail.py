"""Feed of the mail queue, consumed by the mail service."""

import base64
import traceback
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import structlog

from reporting.jobs.models import Job
from reporting.jobs.queue import QueueManager
from reporting.jobs.types import QueueName
from reporting.models import Task
from reporting.recurrence import Recurrence

logger = structlog.get_logger(__name__)


@dataclass
class MailTask:
    recurrence: str
    name: str
    targets: list[str] = field(default_factory=list)
    institution: str = ""


@dataclass
class MailData:
    """Payload of a mail job."""

    success: bool
    file: str  # base64
    task: MailTask
    date: str
    url: str

    def to_payload(self) -> dict[str, Any]:
        return asdict(self)


def format_error(error: BaseException, date: str) -> str:
    """Text attachment describing an unexpected error."""
    stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
    return (
        f"[ErrorName] {type(error).__name__}\n"
        f"[ErrorMessage] {error}\n"
        f"[ErrorDate] {date}\n\n"
        f"{stack}"
    )


class MailFeed:
    """Pushes generated artifacts (or errors) on the mail queue."""

    def __init__(self, queues: QueueManager, environment: str = "development"):
        self._queues = queues
        self._environment = environment

    async def send_report(
        self,
        task: Task,
        success: bool,
        content: bytes,
        url: str,
        date: Optional[datetime] = None,
    ) -> Job:
        """Queue the mail of a generated report (or of its failure detail)."""
        data = MailData(
            success=success,
            file=base64.b64encode(content).decode("ascii"),
            task=MailTask(
                recurrence=task.recurrence.value,
                name=task.name,
                targets=list(task.targets),
                institution=task.institution,
            ),
            date=(date or datetime.now(timezone.utc)).isoformat(),
            url=url,
        )
        job = await self._queues.enqueue(QueueName.MAIL.value, data.to_payload())
        logger.info("mail_queued", task_id=str(task.id), success=success, job_id=str(job.id))
        return job

    async def send_error(self, error: BaseException, origin: str) -> Optional[Job]:
        """Report an unexpected error through the same channel as failed reports.

        Never raises: failing to report an error must not hide the error.
        """
        date = datetime.now(timezone.utc).isoformat()
        data = MailData(
            success=False,
            file=base64.b64encode(format_error(error, date).encode()).decode("ascii"),
            task=MailTask(
                recurrence=Recurrence.DAILY.value,
                name=f"[CRON] {origin}",
                # Unused, failures go to the administrators
                targets=[],
                institution=self._environment,
            ),
            date=date,
            url=f"/ErrCron-{origin}-{date}.txt",
        )
        try:
            job = await self._queues.enqueue(QueueName.MAIL.value, data.to_payload())
        except Exception as e:
            logger.error("error_report_failed", origin=origin, error=str(e))
            return None
        logger.info("error_report_queued", origin=origin, job_id=str(job.id))
        return job
