"""Sync module: release sync pass and followed-artist sync."""

from sporl.sync.artists import ArtistSyncEngine, ArtistSyncSummary
from sporl.sync.engine import ReleaseSyncEngine, SyncPhase, SyncSummary

__all__ = ["ArtistSyncEngine", "ArtistSyncSummary", "ReleaseSyncEngine", "SyncPhase", "SyncSummary"]
