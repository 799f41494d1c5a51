"""Release-week calendar.

Release weeks run Saturday to Friday, which is how new music is scheduled
(releases land on Fridays).  Week numbers are counted from the week that
contains January 1st and are not ISO weeks.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta

WEEK_START_WEEKDAY = 5  # Saturday
WEEK_END_WEEKDAY = 4  # Friday


@dataclass(frozen=True)
class WeekOfYear:
    """A release week: its number, anchor year and its seven dates (Sat..Fri)."""

    week_number: int
    year: int
    dates: tuple[date, ...]

    @property
    def start(self) -> date:
        return self.dates[0]

    @property
    def end(self) -> date:
        return self.dates[-1]

    def __contains__(self, day: object) -> bool:
        return isinstance(day, date) and self.start <= day <= self.end

    def label(self) -> str:
        return f"{self.week_number}/{self.year}"


def week_start_on_or_before(day: date) -> date:
    """Return the Saturday on or before *day*."""
    return day - timedelta(days=(day.weekday() - WEEK_START_WEEKDAY) % 7)


def week_number_for(day: date) -> tuple[int, int]:
    """Return ``(week_number, anchor_year)`` for *day*.

    The anchor year is the year of *day* unless the week started in the
    previous year; such a week keeps the numbering of the year it started in.
    When January 1st is itself a Saturday the count is shifted by one so the
    first week is 1, not 0.
    """
    week_start = week_start_on_or_before(day)
    anchor_year = week_start.year if week_start.year < day.year else day.year

    jan1 = date(anchor_year, 1, 1)
    first_week_start = week_start_on_or_before(jan1)
    weeks = (week_start - first_week_start).days // 7

    if jan1.weekday() == WEEK_START_WEEKDAY:
        weeks += 1
    return weeks, anchor_year


def build_week(day: date) -> WeekOfYear:
    """Return the release week containing *day*."""
    week_start = week_start_on_or_before(day)
    week_number, year = week_number_for(week_start)
    return WeekOfYear(
        week_number=week_number,
        year=year,
        dates=tuple(week_start + timedelta(days=offset) for offset in range(7)),
    )


def week_range(reference: date, previous_weeks: int) -> list[WeekOfYear]:
    """Return ``previous_weeks + 1`` release weeks, most recent first.

    On a Friday the week containing *reference* is complete and comes first.
    On any other day that week is still in progress and is skipped, so the
    range starts at the last completed week.
    """
    if previous_weeks < 0:
        raise ValueError("previous_weeks must not be negative")

    offset = 0 if reference.weekday() == WEEK_END_WEEKDAY else 1
    return [build_week(reference - timedelta(weeks=i)) for i in range(offset, previous_weeks + offset + 1)]


def parse_date(value: str | None, *, today: date | None = None) -> date:
    """Parse ``YYYY-MM-DD``; ``None`` or an unparseable value means today."""
    fallback = today or date.today()
    if not value:
        return fallback
    try:
        return parse_release_date(value.strip())
    except ValueError:
        return fallback


def parse_release_date(value: str) -> date:
    """Strict ``YYYY-MM-DD`` parse; raises :class:`ValueError` otherwise."""
    return datetime.strptime(value, "%Y-%m-%d").date()
