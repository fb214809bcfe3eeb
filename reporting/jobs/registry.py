"""Queue processor registry."""

from typing import Any, Callable, Coroutine

from reporting.jobs.models import Job

# Processor signature: async def processor(job: Job, ctx: JobContext) -> dict
JobProcessor = Callable[[Job, Any], Coroutine[Any, Any, dict[str, Any]]]


class QueueRegistry:
    """Registry mapping each queue to its single processor."""

    def __init__(self):
        self._processors: dict[str, JobProcessor] = {}

    def register(self, queue: str, processor: JobProcessor) -> None:
        """Register the processor of a queue.

        Raises:
            ValueError: If the queue already has a processor
        """
        if queue in self._processors:
            raise ValueError(f"Queue {queue} already has a processor")
        self._processors[queue] = processor

    def get_processor(self, queue: str) -> JobProcessor:
        """Get the processor for a queue. Raises KeyError if not found."""
        if queue not in self._processors:
            raise KeyError(f"No processor registered for queue: {queue}")
        return self._processors[queue]

    def has_processor(self, queue: str) -> bool:
        return queue in self._processors

    @property
    def queues(self) -> list[str]:
        return list(self._processors)

    def processor(self, queue: str) -> Callable[[JobProcessor], JobProcessor]:
        """Decorator to register a processor."""

        def decorator(fn: JobProcessor) -> JobProcessor:
            self.register(queue, fn)
            return fn

        return decorator
