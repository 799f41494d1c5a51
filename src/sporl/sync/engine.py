"""Incremental release sync: fetch releases per artist, checkpoint, re-bucket by week."""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date
from enum import StrEnum
from typing import TYPE_CHECKING

import httpx
import structlog

from sporl.releases.bucketing import bucket, filter_kinds, remove_duplicates, sort_releases
from sporl.releases.calendar import WeekOfYear, week_range
from sporl.spotify.auth import SpotifyAuthError
from sporl.spotify.client import SpotifyAPIError, SpotifyClient, SpotifyRateLimitError, create_client
from sporl.storage import STATE_RELEASES, ArtistReleaseStore, StoreError, SyncState, WeekBucketStore
from sporl.storage.models import Artist, ReleaseItem, ReleaseKind, ReleaseKinds

if TYPE_CHECKING:
    from sporl.config import AppConfig

log = structlog.get_logger(__name__)


class SyncPhase(StrEnum):
    IDLE = "idle"
    COMPUTING_DELTA = "computing_delta"
    FETCHING = "fetching"
    RATE_LIMITED = "rate_limited"
    PERSISTING = "persisting"
    ABORTED = "aborted"


ClientFactory = Callable[["AppConfig"], SpotifyClient]
ProgressCallback = Callable[[str], None]


@dataclass
class SyncSummary:
    artists_total: int = 0
    fetched: int = 0
    cached: int = 0
    deferred: int = 0
    releases: int = 0
    weeks_written: int = 0
    completed: bool = False
    aborted: bool = False
    error: str | None = None

    @property
    def message(self) -> str:
        if self.artists_total == 0:
            return "No artists cached. Run: sporl artists update"
        if self.aborted:
            return (
                f"Sync aborted after {self.fetched} fetched artists: {self.error}. "
                "Progress was saved; run the update again to resume."
            )
        text = (
            f"Release cache updated: {self.fetched} artists fetched, {self.cached} from cache, "
            f"{self.weeks_written} release weeks written."
        )
        if self.deferred:
            text += f" {self.deferred} artists were deferred by rate limiting; run the update again later."
        return text


class ReleaseSyncEngine:
    """Drives a release sync pass and answers week queries from the cache."""

    def __init__(
        self,
        config: AppConfig,
        *,
        client_factory: ClientFactory | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> None:
        self._config = config
        self._client_factory = client_factory or create_client
        self._on_progress = on_progress
        self._phase = SyncPhase.IDLE
        self._lock = asyncio.Lock()

    @property
    def phase(self) -> SyncPhase:
        return self._phase

    @property
    def weeks(self) -> WeekBucketStore:
        return WeekBucketStore(self._config.releases_dir)

    def _progress(self, message: str) -> None:
        if self._on_progress is not None:
            self._on_progress(message)

    # ── SYNC ───────────────────────────────────────────────────────────────

    async def sync(self, force: bool = False, kinds: ReleaseKinds | None = None) -> SyncSummary:
        """Run one sync pass.  Raises :class:`SpotifyAuthError` when no token can be produced."""
        if self._lock.locked():
            raise RuntimeError("Sync already in progress")

        async with self._lock:
            self._phase = SyncPhase.COMPUTING_DELTA
            try:
                summary = await self._do_sync(force, kinds or ReleaseKinds.default())
            except Exception:
                self._phase = SyncPhase.ABORTED
                raise
            self._phase = SyncPhase.ABORTED if summary.aborted else SyncPhase.IDLE
            return summary

    async def _do_sync(self, force: bool, kinds: ReleaseKinds) -> SyncSummary:
        cfg = self._config
        state = SyncState.load_or_new(cfg.state_dir, STATE_RELEASES)
        store = ArtistReleaseStore.load_or_empty(cfg.artists_path)
        artists = store.all_artists()

        summary = SyncSummary(artists_total=len(artists))
        if not artists:
            log.warning("release_sync_no_artists")
            return summary

        log.info(
            "release_sync_start",
            artists=len(artists),
            already_processed=len(state),
            force=force,
            kinds=str(kinds),
        )

        collected: list[ReleaseItem] = []
        size = cfg.sync.batch_size
        batches = [artists[i : i + size] for i in range(0, len(artists), size)]

        async with self._client_factory(cfg) as client:
            for index, batch in enumerate(batches):
                self._phase = SyncPhase.FETCHING
                remote_calls = await self._process_batch(client, batch, state, store, kinds, force, collected, summary)
                if summary.aborted:
                    break

                state.persist()
                is_last = index == len(batches) - 1
                if remote_calls and not is_last and cfg.sync.cooldown_seconds:
                    self._progress(f"Cooling down for {cfg.sync.cooldown_seconds}s to respect rate limits...")
                    log.debug("batch_cooldown", batch=index + 1, seconds=cfg.sync.cooldown_seconds)
                    await asyncio.sleep(cfg.sync.cooldown_seconds)

        summary.releases = len(collected)
        summary.completed = not summary.aborted and summary.deferred == 0
        if summary.completed:
            state.clear()

        self._phase = SyncPhase.PERSISTING
        summary.weeks_written = self._write_buckets(collected)

        log.info(
            "release_sync_finished",
            fetched=summary.fetched,
            cached=summary.cached,
            deferred=summary.deferred,
            releases=summary.releases,
            weeks_written=summary.weeks_written,
            aborted=summary.aborted,
        )
        return summary

    async def _process_batch(
        self,
        client: SpotifyClient,
        batch: list[Artist],
        state: SyncState,
        store: ArtistReleaseStore,
        kinds: ReleaseKinds,
        force: bool,
        collected: list[ReleaseItem],
        summary: SyncSummary,
    ) -> int:
        """Process one batch; returns the number of artists that needed a remote call."""
        remote_calls = 0
        for artist in batch:
            position = f"({summary.fetched + summary.cached + summary.deferred + 1}/{summary.artists_total})"

            if not force and state.has(artist.id):
                cached = store.releases_for_artist(artist.id)
                collected.extend(cached)
                summary.cached += 1
                self._progress(f"Releases for {artist.name} already cached. {position}")
                continue

            remote_calls += 1
            try:
                releases = await self._fetch_releases(client, artist, kinds)
            except SpotifyAuthError:
                state.persist()
                raise
            except (SpotifyAPIError, httpx.HTTPError) as exc:
                log.error("release_fetch_failed", artist_id=artist.id, artist=artist.name, error=str(exc))
                state.persist()
                summary.aborted = True
                summary.error = str(exc)
                self._progress(f"Failed to load releases for {artist.name}: {exc} {position}")
                return remote_calls

            if releases is None:
                summary.deferred += 1
                self._progress(f"Deferred {artist.name} (rate limited). {position}")
                continue

            store.replace_releases_for_artist(artist.id, releases)
            try:
                store.persist()
            except OSError as exc:
                log.error("artist_store_persist_failed", artist_id=artist.id, error=str(exc))
                state.persist()
                summary.aborted = True
                summary.error = f"cannot write artist cache: {exc}"
                return remote_calls

            collected.extend(releases)
            state.add(artist.id)
            summary.fetched += 1
            log.debug("releases_fetched", artist_id=artist.id, artist=artist.name, count=len(releases))
            self._progress(f"Fetched {len(releases)} releases from {artist.name}. {position}")

        return remote_calls

    async def _fetch_releases(
        self,
        client: SpotifyClient,
        artist: Artist,
        kinds: ReleaseKinds,
    ) -> list[ReleaseItem] | None:
        """Fetch with bounded waits on 429; ``None`` means the artist is deferred to a later run."""
        sync_cfg = self._config.sync
        retries = 0
        while True:
            try:
                return await client.get_artist_releases(artist.id, kinds, sync_cfg.fetch_limit)
            except SpotifyRateLimitError as exc:
                if exc.retry_after > sync_cfg.max_retry_after:
                    log.warning(
                        "rate_limit_wait_too_long",
                        artist_id=artist.id,
                        retry_after=exc.retry_after,
                        limit=sync_cfg.max_retry_after,
                    )
                    return None
                if retries >= sync_cfg.max_rate_limit_retries:
                    log.warning("rate_limit_retries_exhausted", artist_id=artist.id, retries=retries)
                    return None
                retries += 1
                self._phase = SyncPhase.RATE_LIMITED
                self._progress(f"Rate limited, waiting {exc.retry_after}s...")
                log.info("rate_limited", artist_id=artist.id, retry_after=exc.retry_after, attempt=retries)
                await asyncio.sleep(exc.retry_after)
                self._phase = SyncPhase.FETCHING

    def _write_buckets(self, releases: list[ReleaseItem]) -> int:
        written = 0
        weeks = self.weeks
        for release_week in bucket(releases):
            week = release_week.week
            try:
                weeks.save(release_week.year, week.week_number, remove_duplicates(release_week.releases))
            except OSError as exc:
                log.warning("bucket_save_failed", year=release_week.year, week=week.week_number, error=str(exc))
                continue
            written += 1
            log.debug("bucket_saved", year=release_week.year, week=week.week_number, releases=len(release_week.releases))
        return written

    # ── QUERIES ────────────────────────────────────────────────────────────

    def weekly_releases(self, week: WeekOfYear, kinds: set[ReleaseKind] | None = None) -> list[ReleaseItem]:
        """Releases cached for *week*, deduplicated and sorted; raises :class:`StoreError` if missing."""
        releases = remove_duplicates(self.weeks.load(week.year, week.week_number))
        if kinds is not None:
            releases = filter_kinds(releases, kinds)
        return sort_releases(releases)

    def query_weeks(
        self,
        reference: date,
        previous_weeks: int = 0,
        *,
        kinds: set[ReleaseKind] | None = None,
        on_missing: Callable[[WeekOfYear], None] | None = None,
    ) -> list[tuple[WeekOfYear, list[ReleaseItem]]]:
        """Cached releases for ``previous_weeks + 1`` weeks, most recent week first.

        Weeks without a cache bucket are reported (log and *on_missing*) and skipped.
        """
        results: list[tuple[WeekOfYear, list[ReleaseItem]]] = []
        for week in week_range(reference, previous_weeks):
            try:
                releases = self.weekly_releases(week, kinds)
            except StoreError as exc:
                log.warning("week_not_cached", week=week.week_number, year=week.year, error=str(exc))
                if on_missing is not None:
                    on_missing(week)
                continue
            results.append((week, releases))
        return results

    async def artist_count(self) -> tuple[int, int]:
        """Return ``(cached, remote)`` followed-artist counts."""
        cached = ArtistReleaseStore.load_or_empty(self._config.artists_path).count_artists()
        async with self._client_factory(self._config) as client:
            try:
                remote = await client.get_followed_artist_count()
            except SpotifyAPIError as exc:
                log.warning("remote_artist_count_failed", error=str(exc))
                remote = 0
        return cached, remote
