"""Shared fixtures for sporl tests."""

from __future__ import annotations

from pathlib import Path

import pytest

from sporl.storage.models import ReleaseArtist, ReleaseItem, ReleaseKind


@pytest.fixture()
def base_dir(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Redirect all sporl runtime files to a temporary directory.

    Patches ``sporl.config.get_base_dir`` so that nothing touches the real
    ``~/.sporl/``.  Every derived path on ``AppConfig`` follows it.
    """
    fake_base = tmp_path / ".sporl"
    fake_base.mkdir()
    (fake_base / "logs").mkdir()

    monkeypatch.setattr("sporl.config.get_base_dir", lambda: fake_base)

    return fake_base


def make_release(
    release_id: str,
    release_date: str,
    *,
    title: str | None = None,
    artist: str = "Artist",
    kind: ReleaseKind = ReleaseKind.ALBUM,
    precision: str = "day",
) -> ReleaseItem:
    return ReleaseItem(
        id=release_id,
        title=title or f"Release {release_id}",
        release_date=release_date,
        date_precision=precision,
        kind=kind,
        artists=[ReleaseArtist(id=f"artist-{artist.lower()}", name=artist)],
    )
