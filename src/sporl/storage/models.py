"""Pydantic models for the sporl cache files."""

from __future__ import annotations

from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, Field

DatePrecision = Literal["day", "month", "year"]


class ReleaseKind(StrEnum):
    """Release groups understood by the ``include_groups`` filter."""

    ALBUM = "album"
    SINGLE = "single"
    APPEARS_ON = "appears_on"
    COMPILATION = "compilation"


class ReleaseKinds(frozenset[ReleaseKind]):
    """A non-empty set of release kinds, rendered in canonical order."""

    def ordered(self) -> list[ReleaseKind]:
        return [kind for kind in ReleaseKind if kind in self]

    def __str__(self) -> str:
        return ",".join(kind.value for kind in self.ordered())

    @classmethod
    def all(cls) -> ReleaseKinds:
        return cls(ReleaseKind)

    @classmethod
    def default(cls) -> ReleaseKinds:
        return cls({ReleaseKind.ALBUM, ReleaseKind.SINGLE})


_ALLOWED_KINDS = "album, single, appears_on, compilation, all"


def parse_release_kinds(raw: str) -> ReleaseKinds:
    """Parse a comma-separated ``--type`` value such as ``album,appears-on``.

    ``all`` expands to every kind.  Matching ignores case and treats ``-`` as
    ``_``.  Raises :class:`ValueError` for empty input, empty segments or
    unknown kinds.
    """
    if not raw.strip():
        raise ValueError("value for --type cannot be empty")

    kinds: set[ReleaseKind] = set()
    for segment in raw.split(","):
        part = segment.strip()
        if not part:
            raise ValueError("malformed --type: empty segment between commas")

        normalized = part.lower().replace("-", "_")
        if normalized == "all":
            kinds.update(ReleaseKind)
            continue
        try:
            kinds.add(ReleaseKind(normalized))
        except ValueError:
            raise ValueError(f"invalid value '{part}' for --type (allowed: {_ALLOWED_KINDS})") from None

    return ReleaseKinds(kinds)


class Artist(BaseModel):
    """A followed artist."""

    id: str
    name: str
    genres: list[str] = Field(default_factory=list)


class ReleaseArtist(BaseModel):
    """Artist credit on a release."""

    id: str
    name: str


class ReleaseItem(BaseModel):
    """A release (album, single, ...) as cached locally.

    Identity is ``id``; two items with the same id are duplicates.
    """

    id: str
    title: str
    release_date: str
    date_precision: DatePrecision = "day"
    kind: ReleaseKind = ReleaseKind.ALBUM
    artists: list[ReleaseArtist] = Field(default_factory=list)

    @property
    def first_artist_name(self) -> str:
        return self.artists[0].name if self.artists else ""

    @classmethod
    def from_spotify(cls, album: dict) -> ReleaseItem:
        """Build from a Spotify simplified album object."""
        group = album.get("album_group") or album.get("album_type") or ReleaseKind.ALBUM.value
        try:
            kind = ReleaseKind(group)
        except ValueError:
            kind = ReleaseKind.ALBUM
        return cls(
            id=album["id"],
            title=album.get("name", ""),
            release_date=album.get("release_date", ""),
            date_precision=album.get("release_date_precision", "day"),
            kind=kind,
            artists=[ReleaseArtist(id=a.get("id", ""), name=a.get("name", "")) for a in album.get("artists", [])],
        )


class ArtistReleaseRecord(BaseModel):
    """An artist together with its most recently fetched releases."""

    artist: Artist
    releases: list[ReleaseItem] = Field(default_factory=list)


class Token(BaseModel):
    """OAuth token as persisted in ``cache/token.json``."""

    access_token: str
    refresh_token: str
    scope: str = ""
    expires_in: int = 3600
    obtained_at: int = 0
