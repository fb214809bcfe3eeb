"""Queue processors.

Processor contract:
    async def process_<queue>(job: Job, ctx: JobContext) -> dict:
        - job: The claimed Job with its data
        - ctx: JobContext (progress reporting, ReportingContext as ``services``)
        - Returns: Result dict stored in job.result on success
"""

from reporting.jobs.handlers.generation import process_generation
from reporting.jobs.handlers.sweep import process_sweep
from reporting.jobs.registry import QueueRegistry
from reporting.jobs.types import QueueName


def register_processors(registry: QueueRegistry) -> QueueRegistry:
    """Register the processors of the queues consumed by this service.

    The ``mail`` queue is consumed by the mail service.
    """
    registry.register(QueueName.GENERATION.value, process_generation)
    registry.register(QueueName.CRON.value, process_sweep)
    return registry


__all__ = ["process_generation", "process_sweep", "register_processors"]
