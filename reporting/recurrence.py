"""Recurrence engine: report periods and next run dates.

All computations happen in UTC so that a task's period does not shift with the
host timezone. Naive datetimes are assumed to already be UTC.

Example:
    A WEEKLY task due on Monday 2024-03-04 reports on 2024-02-26 00:00
    through 2024-03-03 23:59:59.999999.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum

from dateutil.relativedelta import relativedelta

from reporting.errors import ArgumentError

# Next run dates are normalized to this hour (UTC) so month-length
# differences never make them drift.
NEXT_RUN_HOUR = 0


class Recurrence(str, Enum):
    """Cadence of a report task."""

    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    QUARTERLY = "QUARTERLY"
    BIENNIAL = "BIENNIAL"
    YEARLY = "YEARLY"


@dataclass(frozen=True)
class Interval:
    """A period of time, both bounds included."""

    start: datetime
    end: datetime

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}

    @classmethod
    def from_dict(cls, data: dict) -> "Interval":
        """Build an interval from ISO strings or datetimes.

        Raises:
            ArgumentError: If a bound is missing or start is after end
        """
        try:
            start = _parse(data["start"])
            end = _parse(data["end"])
        except (KeyError, TypeError, ValueError) as e:
            raise ArgumentError(f"Period is not valid: {e}") from e
        if start > end:
            raise ArgumentError("Period start must be before period end")
        return cls(start=start, end=end)


@dataclass(frozen=True)
class DisplayFormat:
    """Vega-Lite time unit and d3 time format for axis labels."""

    time_unit: str
    format: str


# Unit advanced by calc_next_date / length of a period
_STEPS: dict[Recurrence, relativedelta] = {
    Recurrence.DAILY: relativedelta(days=1),
    Recurrence.WEEKLY: relativedelta(weeks=1),
    Recurrence.MONTHLY: relativedelta(months=1),
    Recurrence.QUARTERLY: relativedelta(months=3),
    Recurrence.BIENNIAL: relativedelta(years=2),
    Recurrence.YEARLY: relativedelta(years=1),
}

# Histogram bucket used inside a period of the given recurrence
_INTERVALS: dict[Recurrence, str] = {
    Recurrence.DAILY: "day",
    Recurrence.WEEKLY: "day",
    Recurrence.MONTHLY: "week",
    Recurrence.QUARTERLY: "month",
    Recurrence.BIENNIAL: "quarter",
    Recurrence.YEARLY: "month",
}

_FORMATS: dict[str, DisplayFormat] = {
    "day": DisplayFormat(time_unit="yearmonthdate", format="%d/%m/%Y"),
    "week": DisplayFormat(time_unit="yearweek", format="%d/%m/%Y"),
    "month": DisplayFormat(time_unit="yearmonth", format="%B %Y"),
    "quarter": DisplayFormat(time_unit="yearquarter", format="T%q %Y"),
    "year": DisplayFormat(time_unit="year", format="%Y"),
}


def _parse(value) -> datetime:
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, str):
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        return to_utc(datetime.fromisoformat(value))
    raise TypeError(f"Can't parse date from {type(value).__name__}")


def to_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_recurrence(value) -> Recurrence:
    """Coerce a string to a Recurrence.

    Raises:
        ArgumentError: If the value is not a known recurrence
    """
    if isinstance(value, Recurrence):
        return value
    try:
        return Recurrence(value)
    except ValueError as e:
        raise ArgumentError(f'Recurrence "{value}" not found') from e


def _period_start(anchor: datetime, recurrence: Recurrence) -> datetime:
    """Start of the period containing the anchor."""
    day = anchor.replace(hour=0, minute=0, second=0, microsecond=0)

    if recurrence is Recurrence.DAILY:
        return day
    if recurrence is Recurrence.WEEKLY:
        # ISO week starts on Monday
        return day - timedelta(days=day.weekday())
    if recurrence is Recurrence.MONTHLY:
        return day.replace(day=1)
    if recurrence is Recurrence.QUARTERLY:
        first_month = (day.month - 1) // 3 * 3 + 1
        return day.replace(month=first_month, day=1)
    if recurrence is Recurrence.BIENNIAL:
        # Blocks are aligned on even years (2022-2023, 2024-2025, ...)
        return day.replace(year=day.year - day.year % 2, month=1, day=1)
    if recurrence is Recurrence.YEARLY:
        return day.replace(month=1, day=1)
    raise ArgumentError(f'Recurrence "{recurrence}" not found')


def calc_period(anchor: datetime, recurrence: Recurrence | str) -> Interval:
    """Get the full period preceding the anchor date.

    Args:
        anchor: Reference date, usually the task's next run
        recurrence: Recurrence of the task

    Returns:
        Interval whose end is just before the start of the anchor's period

    Raises:
        ArgumentError: If recurrence is unknown
    """
    recurrence = parse_recurrence(recurrence)
    current_start = _period_start(to_utc(anchor), recurrence)
    return Interval(
        start=current_start - _STEPS[recurrence],
        end=current_start - timedelta(microseconds=1),
    )


def calc_next_date(from_date: datetime, recurrence: Recurrence | str) -> datetime:
    """Get the next run date of a task.

    Args:
        from_date: Date of the last (or current) run
        recurrence: Recurrence of the task

    Returns:
        from_date advanced by one recurrence unit, at NEXT_RUN_HOUR UTC

    Raises:
        ArgumentError: If recurrence is unknown
    """
    recurrence = parse_recurrence(recurrence)
    next_date = to_utc(from_date) + _STEPS[recurrence]
    return next_date.replace(hour=NEXT_RUN_HOUR, minute=0, second=0, microsecond=0)


def calc_interval(recurrence: Recurrence | str) -> str:
    """Get the aggregation bucket size (Elasticsearch calendar_interval)."""
    return _INTERVALS[parse_recurrence(recurrence)]


def calc_format(recurrence: Recurrence | str) -> DisplayFormat:
    """Get the axis label granularity for charts of this recurrence."""
    return _FORMATS[calc_interval(recurrence)]
