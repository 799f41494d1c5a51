"""Durable record of which entity ids a sync pass has already handled."""

from __future__ import annotations

from pathlib import Path

import structlog

from sporl.storage.files import StoreError, read_json, write_json

log = structlog.get_logger(__name__)

STATE_ARTISTS = "artists"
STATE_RELEASES = "releases"


class StateError(StoreError):
    """Raised when persisted sync state is missing or malformed."""


class SyncState:
    """Set of processed ids for one state kind, persisted as a JSON list.

    Lifecycle: fresh (empty) → accumulating (persisted after each batch) →
    complete (:meth:`clear` removes the file).  A state left on disk by an
    interrupted run lets the next run skip ids it already handled.
    """

    def __init__(self, state_dir: Path, kind: str, processed: list[str] | None = None) -> None:
        self._path = state_dir / f"{kind}.json"
        self.kind = kind
        self._order: list[str] = []
        self._seen: set[str] = set()
        for item in processed or []:
            self.add(item)

    @classmethod
    def load(cls, state_dir: Path, kind: str) -> SyncState:
        """Load a persisted state; raises :class:`StateError` when there is none."""
        path = state_dir / f"{kind}.json"
        try:
            raw = read_json(path)
        except StoreError as exc:
            raise StateError(str(exc)) from exc
        if not isinstance(raw, list) or not all(isinstance(item, str) for item in raw):
            raise StateError(f"State file {path} is not a list of ids")
        return cls(state_dir, kind, raw)

    @classmethod
    def load_or_new(cls, state_dir: Path, kind: str) -> SyncState:
        try:
            state = cls.load(state_dir, kind)
        except StateError as exc:
            log.debug("state_fresh", kind=kind, reason=str(exc))
            return cls(state_dir, kind)
        log.info("state_resumed", kind=kind, processed=len(state))
        return state

    @property
    def path(self) -> Path:
        return self._path

    def __len__(self) -> int:
        return len(self._order)

    def has(self, item_id: str) -> bool:
        return item_id in self._seen

    def add(self, item_id: str) -> None:
        if item_id in self._seen:
            return
        self._seen.add(item_id)
        self._order.append(item_id)

    def processed_ids(self) -> list[str]:
        return list(self._order)

    def persist(self) -> None:
        write_json(self._path, self._order)

    def clear(self) -> None:
        """Forget everything and delete the persisted file."""
        self._order.clear()
        self._seen.clear()
        self._path.unlink(missing_ok=True)
        log.info("state_cleared", kind=self.kind)
