"""Error kinds shared across the reporting service."""


class ReportingError(Exception):
    """Base class for reporting errors."""

    pass


class ArgumentError(ReportingError):
    """Raised on malformed input (bad recurrence, invalid template, ...).

    Never retried by the job queue.
    """

    pass


class NotFoundError(ReportingError):
    """Raised when a queue or task that must exist does not."""

    pass


class ConflictError(ReportingError):
    """Raised when a state change is requested on a resource already in that state."""

    pass
