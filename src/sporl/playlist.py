"""Weekly playlists built from the cached release weeks."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date
from enum import StrEnum
from typing import TYPE_CHECKING

import structlog

from sporl.releases.bucketing import filter_kinds, remove_duplicates, sort_releases
from sporl.releases.calendar import WeekOfYear, week_range
from sporl.spotify.client import AlbumDetails, SpotifyAPIError, SpotifyClient, create_client
from sporl.storage import StoreError, WeekBucketStore
from sporl.storage.models import ReleaseKind

if TYPE_CHECKING:
    from sporl.config import AppConfig

log = structlog.get_logger(__name__)

_ALBUM_CHUNK = 20


class PlaylistStatus(StrEnum):
    CREATED = "created"
    EXISTS = "exists"
    EMPTY = "empty"
    NOT_CACHED = "not_cached"
    FAILED = "failed"


@dataclass
class PlaylistResult:
    name: str
    status: PlaylistStatus
    tracks_added: int = 0


def playlist_name(week: WeekOfYear, kind: ReleaseKind) -> str:
    return f"Weekly Picks {week.week_number}/{week.year} ({kind})"


class PlaylistBuilder:
    """Creates one private playlist per release week and kind.

    Each playlist holds the first track of every release of that week, in the
    order releases are listed by ``sporl releases``.
    """

    def __init__(
        self,
        config: AppConfig,
        *,
        client_factory: Callable[[AppConfig], SpotifyClient] | None = None,
        on_progress: Callable[[str], None] | None = None,
    ) -> None:
        self._config = config
        self._client_factory = client_factory or create_client
        self._on_progress = on_progress
        self._weeks = WeekBucketStore(config.releases_dir)

    def _progress(self, message: str) -> None:
        if self._on_progress is not None:
            self._on_progress(message)

    async def build(
        self,
        reference: date,
        previous_weeks: int = 0,
        kinds: Iterable[ReleaseKind] = (ReleaseKind.ALBUM, ReleaseKind.SINGLE),
    ) -> list[PlaylistResult]:
        weeks = week_range(reference, previous_weeks)
        results: list[PlaylistResult] = []

        async with self._client_factory(self._config) as client:
            for kind in kinds:
                for week in weeks:
                    results.append(await self._build_one(client, week, kind))
        return results

    async def _build_one(self, client: SpotifyClient, week: WeekOfYear, kind: ReleaseKind) -> PlaylistResult:
        name = playlist_name(week, kind)

        try:
            existing = await client.find_playlist(name)
        except SpotifyAPIError as exc:
            log.warning("playlist_lookup_failed", name=name, error=str(exc))
            existing = None
        if existing is not None:
            log.info("playlist_exists", name=name)
            self._progress(f"Playlist '{name}' already exists.")
            return PlaylistResult(name, PlaylistStatus.EXISTS)

        try:
            cached = self._weeks.load(week.year, week.week_number)
        except StoreError as exc:
            log.warning("week_not_cached", week=week.week_number, year=week.year, error=str(exc))
            self._progress(f"No releases cached for week {week.label()}. Run: sporl releases update")
            return PlaylistResult(name, PlaylistStatus.NOT_CACHED)

        releases = sort_releases(filter_kinds(remove_duplicates(cached), {kind}))
        if not releases:
            self._progress(f"No {kind} releases in week {week.label()}.")
            return PlaylistResult(name, PlaylistStatus.EMPTY)

        albums = await self._album_details(client, [release.id for release in releases])
        uris = [album.tracks[0].uri for album in albums if album.tracks]
        if not uris:
            return PlaylistResult(name, PlaylistStatus.EMPTY)

        description = f"First tracks of {kind} releases from {week.label()}"
        try:
            playlist_id = await client.create_playlist(name, description, public=False)
            added = await client.add_tracks(playlist_id, uris)
        except SpotifyAPIError as exc:
            log.warning("playlist_failed", name=name, error=str(exc))
            self._progress(f"Could not create playlist '{name}': {exc}")
            return PlaylistResult(name, PlaylistStatus.FAILED)
        log.info("playlist_created", name=name, playlist_id=playlist_id, tracks=added)
        self._progress(f"Created playlist '{name}' with {added} tracks.")
        return PlaylistResult(name, PlaylistStatus.CREATED, added)

    async def _album_details(self, client: SpotifyClient, album_ids: list[str]) -> list[AlbumDetails]:
        """Fetch album details in concurrent chunks; failed chunks are dropped."""
        chunks = [album_ids[i : i + _ALBUM_CHUNK] for i in range(0, len(album_ids), _ALBUM_CHUNK)]
        results = await asyncio.gather(*(client.get_several_albums(chunk) for chunk in chunks), return_exceptions=True)

        albums: list[AlbumDetails] = []
        for chunk, result in zip(chunks, results, strict=True):
            if isinstance(result, BaseException):
                log.warning("album_details_failed", ids=len(chunk), error=str(result))
                continue
            albums.extend(result)
        return albums
