"""sporl storage layer: JSON cache files for artists, sync state and release weeks."""

from sporl.storage.artists import ArtistReleaseStore
from sporl.storage.files import StoreError
from sporl.storage.state import STATE_ARTISTS, STATE_RELEASES, StateError, SyncState
from sporl.storage.weeks import WeekBucketStore

__all__ = [
    "STATE_ARTISTS",
    "STATE_RELEASES",
    "ArtistReleaseStore",
    "StateError",
    "StoreError",
    "SyncState",
    "WeekBucketStore",
]
