"""Followed-artists sync into the artist cache."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from sporl.spotify.client import SpotifyClient, create_client
from sporl.storage import ArtistReleaseStore

if TYPE_CHECKING:
    from sporl.config import AppConfig

log = structlog.get_logger(__name__)


@dataclass
class ArtistSyncSummary:
    cached_before: int = 0
    remote: int = 0
    added: int = 0
    total: int = 0
    skipped: bool = False

    @property
    def message(self) -> str:
        if self.skipped:
            return f"Artist cache is up to date ({self.cached_before} artists)."
        return f"Artist cache updated: {self.added} new, {self.total} artists in total."


class ArtistSyncEngine:
    def __init__(
        self,
        config: AppConfig,
        *,
        client_factory: Callable[[AppConfig], SpotifyClient] | None = None,
    ) -> None:
        self._config = config
        self._client_factory = client_factory or create_client

    async def sync(self, force: bool = False) -> ArtistSyncSummary:
        """Refresh the artist cache from ``/me/following``.

        Without *force* the remote count is checked first and nothing is
        fetched unless the cache holds fewer artists than the account follows.
        """
        store = ArtistReleaseStore.load_or_empty(self._config.artists_path)
        summary = ArtistSyncSummary(cached_before=store.count_artists())

        async with self._client_factory(self._config) as client:
            summary.remote = await client.get_followed_artist_count()
            if not force and summary.cached_before >= summary.remote:
                log.info("artist_sync_skipped", cached=summary.cached_before, remote=summary.remote)
                summary.skipped = True
                summary.total = summary.cached_before
                return summary

            artists = await client.get_all_followed_artists()

        summary.added = store.add_artists(artists)
        store.persist()
        summary.total = store.count_artists()
        log.info("artist_sync_finished", fetched=len(artists), added=summary.added, total=summary.total)
        return summary
