"""Async Spotify Web API client using httpx.

Endpoints:
- GET /artists/{id}/albums (releases of an artist, filtered by include_groups)
- GET /me/following?type=artist (cursor paginated)
- GET /albums?ids=... (max 20 ids)
- GET /me/playlists, POST /users/{user}/playlists, POST /playlists/{id}/tracks
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from dataclasses import dataclass

import httpx
import structlog

from sporl.config import AppConfig, SpotifyConfig
from sporl.spotify.auth import SpotifyAuthError, SpotifyError, TokenManager
from sporl.storage.models import Artist, ReleaseItem, ReleaseKinds

log = structlog.get_logger(__name__)

_MAX_RETRIES = 3
_BAD_GATEWAY_PAUSE = 10
_FOLLOWING_LIMIT = 50
_ALBUMS_PER_REQUEST = 20
_TRACKS_PER_REQUEST = 100
_PLAYLISTS_LIMIT = 50


class SpotifyAPIError(SpotifyError):
    """Raised for non-retryable Spotify API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SpotifyRateLimitError(SpotifyAPIError):
    """Raised on HTTP 429 when the caller owns the retry policy."""

    def __init__(self, retry_after: int) -> None:
        super().__init__(f"Rate limited, retry after {retry_after}s", status_code=429)
        self.retry_after = retry_after


@dataclass(frozen=True)
class AlbumTrack:
    id: str
    name: str
    uri: str


@dataclass(frozen=True)
class AlbumDetails:
    """Full album object, reduced to what playlists need."""

    id: str
    name: str
    release_date: str
    tracks: tuple[AlbumTrack, ...]


def _retry_after(resp: httpx.Response) -> int:
    try:
        return max(int(resp.headers.get("Retry-After", "1")), 0)
    except ValueError:
        return 1


class SpotifyClient:
    """Async Spotify Web API client; bearer tokens come from a :class:`TokenManager`."""

    def __init__(
        self,
        config: SpotifyConfig,
        tokens: TokenManager,
        *,
        max_retry_after: int = 120,
        _transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config
        self._tokens = tokens
        self._max_retry_after = max_retry_after
        self._transport = _transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> SpotifyClient:
        kw: dict = {"timeout": 30.0}
        if self._transport is not None:
            kw["transport"] = self._transport
        self._client = httpx.AsyncClient(**kw)
        return self

    async def __aexit__(self, *exc: object) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _url(self, path: str) -> str:
        return f"{self._config.api_url.rstrip('/')}{path}"

    # -- request helper --

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: dict | list | None = None,
        params: dict | None = None,
        retry_rate_limit: bool = True,
    ) -> httpx.Response:
        assert self._client is not None  # noqa: S101
        url = self._url(path)
        force_refresh = False

        for attempt in range(_MAX_RETRIES):
            token = await self._tokens.get_valid_token(self._client, force_refresh=force_refresh)
            force_refresh = False
            headers = {"Authorization": f"Bearer {token}"}

            try:
                resp = await self._client.request(method, url, headers=headers, json=json, params=params)
            except httpx.TransportError as exc:
                if attempt >= _MAX_RETRIES - 1:
                    raise SpotifyAPIError(f"Network error after {_MAX_RETRIES} retries: {exc}") from exc
                wait = 2**attempt
                log.warning("spotify_network_error", error=str(exc), retry_in=wait, attempt=attempt)
                await asyncio.sleep(wait)
                continue

            if resp.status_code == 401:
                if attempt == 0:
                    force_refresh = True
                    continue
                raise SpotifyAuthError("Spotify rejected the access token after a refresh. Run: sporl auth")

            if resp.status_code == 429:
                retry_after = _retry_after(resp)
                if not retry_rate_limit or retry_after > self._max_retry_after:
                    raise SpotifyRateLimitError(retry_after)
                log.warning("spotify_rate_limited", retry_after=retry_after, attempt=attempt)
                await asyncio.sleep(retry_after)
                continue

            if resp.status_code == 502:
                log.warning("spotify_bad_gateway", path=path, retry_in=_BAD_GATEWAY_PAUSE, attempt=attempt)
                await asyncio.sleep(_BAD_GATEWAY_PAUSE)
                continue

            if resp.status_code >= 400:
                raise SpotifyAPIError(f"Spotify API error: {resp.status_code} {resp.text}", resp.status_code)

            return resp

        raise SpotifyAPIError(f"Max retries ({_MAX_RETRIES}) exceeded for {method} {path}")

    # -- releases --

    async def get_artist_releases(
        self,
        artist_id: str,
        kinds: ReleaseKinds,
        limit: int = 50,
    ) -> list[ReleaseItem]:
        """Return the newest releases of an artist for the selected kinds.

        A 429 is not retried here; it surfaces as :class:`SpotifyRateLimitError`
        carrying ``retry_after`` so the sync engine can decide how to wait.
        """
        resp = await self._request(
            "GET",
            f"/artists/{artist_id}/albums",
            params={"include_groups": str(kinds), "limit": limit},
            retry_rate_limit=False,
        )
        return [ReleaseItem.from_spotify(item) for item in resp.json().get("items", []) if item]

    async def get_several_albums(self, album_ids: list[str]) -> list[AlbumDetails]:
        """Fetch full album objects (with tracks) for up to 20 ids."""
        if len(album_ids) > _ALBUMS_PER_REQUEST:
            raise ValueError(f"At most {_ALBUMS_PER_REQUEST} albums per request")
        resp = await self._request("GET", "/albums", params={"ids": ",".join(album_ids)})
        albums: list[AlbumDetails] = []
        for album in resp.json().get("albums", []):
            if not album:
                continue
            tracks = tuple(
                AlbumTrack(id=t["id"], name=t.get("name", ""), uri=t["uri"])
                for t in album.get("tracks", {}).get("items", [])
                if t and t.get("uri")
            )
            albums.append(
                AlbumDetails(
                    id=album["id"],
                    name=album.get("name", ""),
                    release_date=album.get("release_date", ""),
                    tracks=tracks,
                )
            )
        return albums

    # -- artists --

    async def get_followed_artists(
        self,
        *,
        limit: int = _FOLLOWING_LIMIT,
        after: str | None = None,
    ) -> tuple[list[Artist], str | None]:
        """Return one page of followed artists and the cursor for the next page."""
        params: dict = {"type": "artist", "limit": limit}
        if after:
            params["after"] = after
        resp = await self._request("GET", "/me/following", params=params)
        container = resp.json().get("artists", {})
        artists = [
            Artist(id=a["id"], name=a.get("name", ""), genres=a.get("genres", []))
            for a in container.get("items", [])
        ]
        next_after = (container.get("cursors") or {}).get("after")
        return artists, next_after

    async def get_all_followed_artists(self) -> list[Artist]:
        artists: list[Artist] = []
        after: str | None = None
        while True:
            page, after = await self.get_followed_artists(after=after)
            artists.extend(page)
            if not page or after is None:
                return artists

    async def get_followed_artist_count(self) -> int:
        resp = await self._request("GET", "/me/following", params={"type": "artist", "limit": 1})
        return int(resp.json().get("artists", {}).get("total") or 0)

    # -- playlists --

    async def find_playlist(self, name: str) -> str | None:
        """Return the id of the current user's playlist called *name*, if any."""
        offset = 0
        while True:
            resp = await self._request(
                "GET",
                "/me/playlists",
                params={"limit": _PLAYLISTS_LIMIT, "offset": offset},
            )
            data = resp.json()
            for playlist in data.get("items", []):
                if playlist and playlist.get("name") == name:
                    return playlist["id"]
            if data.get("next") is None:
                return None
            offset += _PLAYLISTS_LIMIT

    async def create_playlist(self, name: str, description: str = "", *, public: bool = False) -> str:
        """Create a playlist for the configured user and return its id."""
        if not self._config.user_id:
            raise SpotifyAPIError("spotify.user_id is not configured (sporl config set spotify.user_id <id>)")
        resp = await self._request(
            "POST",
            f"/users/{self._config.user_id}/playlists",
            json={"name": name, "description": description, "public": public, "collaborative": False},
        )
        return resp.json()["id"]

    async def add_tracks(self, playlist_id: str, uris: Iterable[str]) -> int:
        """Append tracks in batches of 100; returns how many were sent."""
        uris = list(uris)
        for i in range(0, len(uris), _TRACKS_PER_REQUEST):
            batch = uris[i : i + _TRACKS_PER_REQUEST]
            await self._request("POST", f"/playlists/{playlist_id}/tracks", json={"uris": batch})
        return len(uris)


def create_client(config: AppConfig) -> SpotifyClient:
    """Build a client from the stored token; raises :class:`SpotifyAuthError` when there is none."""
    tokens = TokenManager.load(config.spotify, config.token_path)
    return SpotifyClient(config.spotify, tokens, max_retry_after=config.sync.max_retry_after)
