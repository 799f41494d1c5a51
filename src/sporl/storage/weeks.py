"""Week bucket cache: one ``releases/<year>/<week>/releases.json`` per release week."""

from __future__ import annotations

from pathlib import Path

from pydantic import ValidationError

from sporl.storage.files import StoreError, read_json, write_json
from sporl.storage.models import ReleaseItem


class WeekBucketStore:
    """Reads and overwrites week buckets below *releases_dir*."""

    def __init__(self, releases_dir: Path) -> None:
        self._root = releases_dir

    def path_for(self, year: int, week_number: int) -> Path:
        return self._root / str(year) / str(week_number) / "releases.json"

    def exists(self, year: int, week_number: int) -> bool:
        return self.path_for(year, week_number).is_file()

    def save(self, year: int, week_number: int, releases: list[ReleaseItem]) -> Path:
        """Overwrite the bucket for (year, week_number) with *releases*."""
        path = self.path_for(year, week_number)
        write_json(path, [release.model_dump(mode="json") for release in releases])
        return path

    def load(self, year: int, week_number: int) -> list[ReleaseItem]:
        """Return the cached releases; raises :class:`StoreError` if the bucket is unavailable."""
        path = self.path_for(year, week_number)
        raw = read_json(path)
        if not isinstance(raw, list):
            raise StoreError(f"Week bucket {path} is not a list")
        try:
            return [ReleaseItem.model_validate(item) for item in raw]
        except ValidationError as exc:
            raise StoreError(f"Week bucket {path} has invalid releases: {exc}") from exc
