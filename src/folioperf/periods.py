"""Reporting periods and series granularities."""

from dataclasses import dataclass
from datetime import date, timedelta
from enum import Enum


class Granularity(Enum):
    """Spacing of points in a performance series."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


@dataclass(frozen=True)
class Period:
    """An inclusive date range ``[start, end]``."""

    start: date
    end: date

    def __post_init__(self):
        if self.end < self.start:
            raise ValueError(f"Period end {self.end} is before start {self.start}")

    @property
    def days(self) -> int:
        """Length of the period in calendar days (0 for a single day)."""
        return (self.end - self.start).days

    def contains(self, d: date) -> bool:
        return self.start <= d <= self.end

    @classmethod
    def custom(cls, start: date, end: date) -> "Period":
        return cls(start, end)

    @classmethod
    def month_to_date(cls, as_of: date) -> "Period":
        return cls(as_of.replace(day=1), as_of)

    @classmethod
    def year_to_date(cls, as_of: date) -> "Period":
        return cls(date(as_of.year, 1, 1), as_of)

    @classmethod
    def trailing_year(cls, as_of: date) -> "Period":
        """The year ending on ``as_of``; Feb 29 maps to Feb 28 of the prior year."""
        try:
            start = as_of.replace(year=as_of.year - 1)
        except ValueError:
            start = as_of.replace(year=as_of.year - 1, day=28)
        return cls(start, as_of)

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


def _is_boundary(d: date, granularity: Granularity) -> bool:
    next_day = d + timedelta(days=1)
    if granularity == Granularity.DAILY:
        return True
    if granularity == Granularity.WEEKLY:
        return d.weekday() == 6
    if granularity == Granularity.MONTHLY:
        return next_day.day == 1
    if granularity == Granularity.QUARTERLY:
        return next_day.day == 1 and d.month in (3, 6, 9, 12)
    return d.month == 12 and d.day == 31


def period_boundaries(period: Period, granularity: Granularity) -> list[date]:
    """
    List the step dates of a series over ``period``.

    The start date is not a step (it anchors the first window); the end date
    always is, even when it does not fall on a granularity boundary.

    Args:
        period: The reporting period.
        granularity: Spacing of the steps.

    Returns:
        Ascending list of step dates in ``(start, end]``. Empty for a
        single-day period.
    """
    boundaries: list[date] = []
    current = period.start + timedelta(days=1)
    while current <= period.end:
        if current == period.end or _is_boundary(current, granularity):
            boundaries.append(current)
        current += timedelta(days=1)
    return boundaries
