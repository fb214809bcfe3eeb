"""Explicit service context handed to processors and routes."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from reporting.config import Settings
from reporting.jobs.queue import QueueManager
from reporting.jobs.registry import QueueRegistry
from reporting.repositories.jobs import JobRepository
from reporting.repositories.tasks import TaskRepository
from reporting.services.elastic import (
    ElasticClient,
    ElasticFetcher,
    ElasticInstitutionResolver,
    Fetcher,
    InstitutionResolver,
    NoneFetcher,
)
from reporting.services.mail import MailFeed
from reporting.templates import TemplateRegistry


@dataclass
class ReportingContext:
    """Everything the queues, the sweep and the generation need.

    Built once at startup and passed around; nothing is looked up from
    module globals.
    """

    settings: Settings
    pool: Any
    jobs: JobRepository
    queues: QueueManager
    registry: QueueRegistry
    tasks: TaskRepository
    templates: TemplateRegistry
    institutions: InstitutionResolver
    mail: MailFeed
    fetchers: dict[str, Fetcher] = field(default_factory=dict)
    elastic: Optional[ElasticClient] = None

    async def close(self) -> None:
        if self.elastic is not None:
            await self.elastic.close()


def build_context(
    settings: Settings,
    pool: Any,
    elastic: Optional[ElasticClient] = None,
    templates: Optional[TemplateRegistry] = None,
) -> ReportingContext:
    """Wire repositories and collaborators together.

    Queue processors are registered separately (see ``reporting.jobs.handlers``).
    """
    elastic = elastic or ElasticClient.from_settings(settings)
    jobs = JobRepository(pool)
    queues = QueueManager(jobs, max_attempts=settings.queue_max_attempts)
    if templates is None:
        directory = Path(settings.templates_dir) if settings.templates_dir else None
        templates = TemplateRegistry.from_directory(directory)

    return ReportingContext(
        settings=settings,
        pool=pool,
        jobs=jobs,
        queues=queues,
        registry=QueueRegistry(),
        tasks=TaskRepository(pool),
        templates=templates,
        institutions=ElasticInstitutionResolver(
            elastic, index=settings.elastic_institutions_index
        ),
        mail=MailFeed(queues, environment=settings.environment),
        fetchers={"elastic": ElasticFetcher(elastic), "none": NoneFetcher()},
        elastic=elastic,
    )
