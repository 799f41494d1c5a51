"""Release weeks: calendar math and bucketing."""

from sporl.releases.bucketing import ReleaseWeek, bucket, filter_kinds, remove_duplicates, sort_releases
from sporl.releases.calendar import (
    WeekOfYear,
    build_week,
    parse_date,
    parse_release_date,
    week_number_for,
    week_range,
    week_start_on_or_before,
)

__all__ = [
    "ReleaseWeek",
    "WeekOfYear",
    "bucket",
    "build_week",
    "filter_kinds",
    "parse_date",
    "parse_release_date",
    "remove_duplicates",
    "sort_releases",
    "week_number_for",
    "week_range",
    "week_start_on_or_before",
]
