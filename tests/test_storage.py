"""Tests for the sporl storage layer."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from conftest import make_release

from sporl.storage import (
    STATE_RELEASES,
    ArtistReleaseStore,
    StateError,
    StoreError,
    SyncState,
    WeekBucketStore,
)
from sporl.storage.files import read_json, write_json
from sporl.storage.models import Artist


def _artist(artist_id: str, name: str | None = None) -> Artist:
    return Artist(id=artist_id, name=name or artist_id.upper(), genres=["rock"])


# ---------------------------------------------------------------------------
# JSON helpers
# ---------------------------------------------------------------------------


def test_write_json_creates_parents_and_leaves_no_temp(tmp_path: Path):
    path = tmp_path / "a" / "b" / "data.json"
    write_json(path, {"x": 1})

    assert json.loads(path.read_text()) == {"x": 1}
    assert [p.name for p in path.parent.iterdir()] == ["data.json"]


def test_read_json_missing_file(tmp_path: Path):
    with pytest.raises(StoreError):
        read_json(tmp_path / "nope.json")


def test_read_json_corrupt_file(tmp_path: Path):
    path = tmp_path / "bad.json"
    path.write_text("{not json")
    with pytest.raises(StoreError, match="Corrupt"):
        read_json(path)


# ---------------------------------------------------------------------------
# SyncState
# ---------------------------------------------------------------------------


def test_state_add_is_idempotent(tmp_path: Path):
    state = SyncState(tmp_path, STATE_RELEASES)
    state.add("a")
    state.add("b")
    state.add("a")

    assert len(state) == 2
    assert state.has("a")
    assert not state.has("c")
    assert state.processed_ids() == ["a", "b"]


def test_state_persist_and_load_round_trip(tmp_path: Path):
    state = SyncState(tmp_path, STATE_RELEASES, ["x", "y"])
    state.persist()

    assert state.path == tmp_path / "releases.json"
    assert json.loads(state.path.read_text()) == ["x", "y"]

    loaded = SyncState.load(tmp_path, STATE_RELEASES)
    assert loaded.processed_ids() == ["x", "y"]


def test_state_load_missing_raises(tmp_path: Path):
    with pytest.raises(StateError):
        SyncState.load(tmp_path, STATE_RELEASES)


def test_state_load_rejects_non_list(tmp_path: Path):
    (tmp_path / "releases.json").write_text('{"a": 1}')
    with pytest.raises(StateError):
        SyncState.load(tmp_path, STATE_RELEASES)


def test_state_load_or_new_on_corrupt_file(tmp_path: Path):
    (tmp_path / "releases.json").write_text("[")
    state = SyncState.load_or_new(tmp_path, STATE_RELEASES)
    assert len(state) == 0


def test_state_clear_removes_file(tmp_path: Path):
    state = SyncState(tmp_path, STATE_RELEASES, ["a"])
    state.persist()
    state.clear()

    assert len(state) == 0
    assert not state.path.exists()
    # clearing twice is fine
    state.clear()


# ---------------------------------------------------------------------------
# ArtistReleaseStore
# ---------------------------------------------------------------------------


def test_add_artists_upserts_by_id(tmp_path: Path):
    store = ArtistReleaseStore(tmp_path / "artists.json")
    assert store.add_artists([_artist("a"), _artist("b")]) == 2

    store.replace_releases_for_artist("a", [make_release("r1", "2024-05-17")])
    assert store.add_artists([_artist("a", "Renamed"), _artist("c")]) == 1

    assert [a.id for a in store.all_artists()] == ["a", "b", "c"]
    assert store.all_artists()[0].name == "Renamed"
    # re-adding an artist keeps its releases
    assert [r.id for r in store.releases_for_artist("a")] == ["r1"]


def test_replace_releases_swaps_whole_list(tmp_path: Path):
    store = ArtistReleaseStore(tmp_path / "artists.json")
    store.add_artists([_artist("a")])
    store.replace_releases_for_artist("a", [make_release("r1", "2024-05-10"), make_release("r2", "2024-05-11")])
    store.replace_releases_for_artist("a", [make_release("r3", "2024-05-17")])

    assert [r.id for r in store.releases_for_artist("a")] == ["r3"]
    assert store.count_releases() == 1


def test_replace_releases_for_unknown_artist_is_noop(tmp_path: Path):
    store = ArtistReleaseStore(tmp_path / "artists.json")
    store.add_artists([_artist("a")])
    store.replace_releases_for_artist("ghost", [make_release("r1", "2024-05-17")])

    assert store.count_artists() == 1
    assert store.count_releases() == 0
    assert store.releases_for_artist("ghost") == []


def test_store_persist_and_load(tmp_path: Path):
    path = tmp_path / "cache" / "artists.json"
    store = ArtistReleaseStore(path)
    store.add_artists([_artist("a"), _artist("b")])
    store.replace_releases_for_artist("b", [make_release("r1", "2024-05-17")])
    store.persist()

    raw = json.loads(path.read_text())
    assert raw[1]["artist"]["id"] == "b"
    assert raw[1]["releases"][0]["id"] == "r1"

    loaded = ArtistReleaseStore.load(path)
    assert loaded.count_artists() == 2
    assert [r.id for r in loaded.releases_for_artist("b")] == ["r1"]
    assert loaded.all()[0].artist.genres == ["rock"]


def test_store_load_missing_raises_and_load_or_empty_recovers(tmp_path: Path):
    path = tmp_path / "artists.json"
    with pytest.raises(StoreError):
        ArtistReleaseStore.load(path)
    assert ArtistReleaseStore.load_or_empty(path).count_artists() == 0


def test_store_load_invalid_records(tmp_path: Path):
    path = tmp_path / "artists.json"
    path.write_text('[{"artist": {"name": "no id"}}]')
    with pytest.raises(StoreError, match="invalid records"):
        ArtistReleaseStore.load(path)


# ---------------------------------------------------------------------------
# WeekBucketStore
# ---------------------------------------------------------------------------


def test_week_bucket_save_and_load(tmp_path: Path):
    weeks = WeekBucketStore(tmp_path / "releases")
    path = weeks.save(2024, 19, [make_release("a", "2024-05-17"), make_release("b", "2024-05-16")])

    assert path == tmp_path / "releases" / "2024" / "19" / "releases.json"
    assert weeks.exists(2024, 19)
    assert [r.id for r in weeks.load(2024, 19)] == ["a", "b"]


def test_week_bucket_save_overwrites(tmp_path: Path):
    weeks = WeekBucketStore(tmp_path)
    weeks.save(2024, 19, [make_release("a", "2024-05-17")])
    weeks.save(2024, 19, [make_release("b", "2024-05-17")])
    assert [r.id for r in weeks.load(2024, 19)] == ["b"]


def test_week_bucket_missing(tmp_path: Path):
    weeks = WeekBucketStore(tmp_path)
    assert not weeks.exists(2024, 1)
    with pytest.raises(StoreError):
        weeks.load(2024, 1)


def test_week_bucket_corrupt(tmp_path: Path):
    weeks = WeekBucketStore(tmp_path)
    path = weeks.path_for(2024, 2)
    path.parent.mkdir(parents=True)
    path.write_text('{"not": "a list"}')
    with pytest.raises(StoreError):
        weeks.load(2024, 2)
