"""Group releases into release weeks, deduplicate and order them for display."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

import structlog

from sporl.releases.calendar import WeekOfYear, build_week, parse_release_date
from sporl.storage.models import ReleaseItem, ReleaseKind

log = structlog.get_logger(__name__)


@dataclass
class ReleaseWeek:
    """Releases that fall into one release week."""

    week: WeekOfYear
    year: int
    releases: list[ReleaseItem] = field(default_factory=list)


def bucket(items: Iterable[ReleaseItem]) -> list[ReleaseWeek]:
    """Group *items* by (year, week_number) of their release date.

    Only day-precision releases have a well defined week; the others are left
    out.  A release whose date does not parse is skipped with a warning.  The
    order of the returned groups is unspecified.
    """
    groups: dict[tuple[int, int], ReleaseWeek] = {}

    for item in items:
        if item.date_precision != "day":
            continue
        try:
            released = parse_release_date(item.release_date)
        except ValueError as exc:
            log.warning("release_date_unparseable", release=item.title, id=item.id, error=str(exc))
            continue

        week = build_week(released)
        key = (week.year, week.week_number)
        group = groups.get(key)
        if group is None:
            group = groups[key] = ReleaseWeek(week=week, year=week.year)
        group.releases.append(item)

    return list(groups.values())


def remove_duplicates(items: Iterable[ReleaseItem]) -> list[ReleaseItem]:
    """Drop repeated ids, keeping the first occurrence and the input order."""
    seen: set[str] = set()
    unique: list[ReleaseItem] = []
    for item in items:
        if item.id in seen:
            continue
        seen.add(item.id)
        unique.append(item)
    return unique


def sort_releases(items: Iterable[ReleaseItem]) -> list[ReleaseItem]:
    """Newest release date first, ties broken by first artist name (A→Z)."""
    by_artist = sorted(items, key=lambda item: item.first_artist_name.lower())
    return sorted(by_artist, key=lambda item: item.release_date, reverse=True)


def filter_kinds(items: Iterable[ReleaseItem], kinds: Iterable[ReleaseKind]) -> list[ReleaseItem]:
    wanted = set(kinds)
    return [item for item in items if item.kind in wanted]
