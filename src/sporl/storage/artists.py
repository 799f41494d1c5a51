"""Artist → releases cache (``cache/artists.json``)."""

from __future__ import annotations

from pathlib import Path

import structlog
from pydantic import ValidationError

from sporl.storage.files import StoreError, read_json, write_json
from sporl.storage.models import Artist, ArtistReleaseRecord, ReleaseItem

log = structlog.get_logger(__name__)


class ArtistReleaseStore:
    """Source of truth for followed artists and their latest releases.

    Holds at most one record per artist id.  An artist's releases are always
    replaced as a whole because the catalog API cannot return "releases since"
    a point in time.
    """

    def __init__(self, path: Path, records: list[ArtistReleaseRecord] | None = None) -> None:
        self._path = path
        self._records: list[ArtistReleaseRecord] = []
        self._index: dict[str, ArtistReleaseRecord] = {}
        for record in records or []:
            self._upsert(record.artist, record.releases)

    @classmethod
    def load(cls, path: Path) -> ArtistReleaseStore:
        """Load the store; raises :class:`StoreError` on a missing or corrupt file."""
        raw = read_json(path)
        if not isinstance(raw, list):
            raise StoreError(f"Artist cache {path} is not a list")
        try:
            records = [ArtistReleaseRecord.model_validate(item) for item in raw]
        except ValidationError as exc:
            raise StoreError(f"Artist cache {path} has invalid records: {exc}") from exc
        return cls(path, records)

    @classmethod
    def load_or_empty(cls, path: Path) -> ArtistReleaseStore:
        try:
            return cls.load(path)
        except StoreError as exc:
            log.warning("artist_store_unavailable", path=str(path), error=str(exc))
            return cls(path)

    def persist(self) -> None:
        write_json(self._path, [record.model_dump(mode="json") for record in self._records])

    # -- mutations -----------------------------------------------------------

    def add_artists(self, artists: list[Artist]) -> int:
        """Insert new artists (empty releases) and refresh known ones.

        Returns the number of artists that were not in the store before.
        """
        added = 0
        for artist in artists:
            if self._upsert(artist, None):
                added += 1
        return added

    def replace_releases_for_artist(self, artist_id: str, releases: list[ReleaseItem]) -> None:
        """Swap in *releases* for the artist; unknown artist ids are ignored."""
        record = self._index.get(artist_id)
        if record is None:
            return
        record.releases.clear()
        record.releases.extend(releases)

    def _upsert(self, artist: Artist, releases: list[ReleaseItem] | None) -> bool:
        record = self._index.get(artist.id)
        if record is not None:
            record.artist = artist
            if releases is not None:
                record.releases = list(releases)
            return False
        record = ArtistReleaseRecord(artist=artist, releases=list(releases or []))
        self._records.append(record)
        self._index[artist.id] = record
        return True

    # -- accessors -----------------------------------------------------------

    def all(self) -> list[ArtistReleaseRecord]:
        return list(self._records)

    def all_artists(self) -> list[Artist]:
        return [record.artist for record in self._records]

    def releases_for_artist(self, artist_id: str) -> list[ReleaseItem]:
        record = self._index.get(artist_id)
        return list(record.releases) if record else []

    def count_artists(self) -> int:
        return len(self._records)

    def count_releases(self) -> int:
        return sum(len(record.releases) for record in self._records)
