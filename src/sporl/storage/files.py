"""JSON file helpers shared by the cache stores."""

from __future__ import annotations

import json
import os
from pathlib import Path


class StoreError(Exception):
    """Raised when a cache file is missing or cannot be decoded."""


def read_json(path: Path) -> object:
    """Read and decode *path*; any I/O or decode problem becomes :class:`StoreError`."""
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise StoreError(f"Cannot read {path}: {exc}") from exc
    try:
        return json.loads(content)
    except json.JSONDecodeError as exc:
        raise StoreError(f"Corrupt cache file {path}: {exc}") from exc


def write_json(path: Path, payload: object) -> None:
    """Write *payload* as pretty JSON, replacing *path* atomically.

    Parent directories are created as needed.  Readers see either the old
    file or the new one, never a partial write.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.tmp")
    tmp.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
    os.replace(tmp, path)
