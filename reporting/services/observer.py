"""Instrumentation points of a report generation."""

from typing import Any, Protocol

import structlog

logger = structlog.get_logger(__name__)


class GenerationObserver(Protocol):
    """Receives the steps of a generation.

    Event names: ``creation``, ``contactFound``, ``templateResolved``,
    ``templateFetched``.
    """

    def on_event(self, event: str, payload: Any = None) -> None: ...


class LoggingObserver:
    """Logs generation steps at debug level."""

    def __init__(self, **context: Any):
        self._log = logger.bind(**context)

    def on_event(self, event: str, payload: Any = None) -> None:
        self._log.debug("generation_event", generation_event=event)


class RecordingObserver:
    """Keeps every event, used for debug runs."""

    def __init__(self):
        self.events: list[tuple[str, Any]] = []

    def on_event(self, event: str, payload: Any = None) -> None:
        self.events.append((event, payload))

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.events]
