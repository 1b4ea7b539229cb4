"""Ancestor snapshot persistence.

Three-way merging needs the body both sides agreed on at the last sync.
``SnapshotStore`` keeps that body per remote identifier in a JSON file
(``snapshots.json``) inside the state directory (typically ``.docsync/``).

Key design choices:

* **Atomic writes** -- ``save()`` writes to a temp file then calls
  ``os.replace()`` so readers never see partial data.
* **Load once, save once** -- entries are held in memory during a pass
  and persisted at the end of it.
* A missing snapshot is not an error: the resolver treats it as "no
  common ancestor".
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from .metadata import content_hash

logger = logging.getLogger(__name__)

_STATE_VERSION = 1


class SnapshotStore:
    """Load, save, and query ancestor snapshots.

    Args:
        state_dir: Directory where ``snapshots.json`` is stored.
    """

    def __init__(self, state_dir: Path) -> None:
        self._state_dir = state_dir
        self._entries: dict[str, dict] | None = None
        self._dirty = False

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    @property
    def path(self) -> Path:
        return self._state_dir / "snapshots.json"

    def load(self) -> dict[str, dict]:
        """Load entries from disk (once); an absent file means no entries."""
        if self._entries is not None:
            return self._entries
        if not self.path.exists():
            self._entries = {}
            return self._entries
        with open(self.path, encoding="utf-8") as fh:
            data = json.load(fh)
        if data.get("version") != _STATE_VERSION:
            logger.warning(
                "Ignoring snapshot file with unknown version %r",
                data.get("version"),
            )
            self._entries = {}
        else:
            self._entries = data.get("entries", {})
        return self._entries

    def save(self) -> None:
        """Persist entries atomically if anything changed.

        Writes to a temporary file in the same directory then atomically
        replaces the target.  Creates ``state_dir`` if it does not exist.
        """
        if not self._dirty or self._entries is None:
            return
        self._state_dir.mkdir(parents=True, exist_ok=True)
        state = {
            "version": _STATE_VERSION,
            "saved_at": datetime.now(timezone.utc).isoformat(),
            "entries": self._entries,
        }
        fd, tmp_path = tempfile.mkstemp(
            dir=str(self._state_dir), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(state, fh, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
        self._dirty = False

    # ------------------------------------------------------------------
    # Entry helpers
    # ------------------------------------------------------------------

    def get_ancestor(
        self, identifier: str, expected_hash: str | None = None
    ) -> str | None:
        """Return the last-synced body for *identifier*.

        When *expected_hash* is given (the hash recorded in the document's
        metadata) a snapshot with a different hash is stale and ignored.
        """
        entry = self.load().get(identifier)
        if entry is None:
            return None
        if expected_hash is not None and entry.get("hash") != expected_hash:
            logger.debug("Stale snapshot for %s ignored", identifier)
            return None
        return entry.get("content")

    def record(self, identifier: str, content: str, path: str) -> None:
        """Remember *content* as the agreed body for *identifier*."""
        self.load()[identifier] = {
            "content": content,
            "hash": content_hash(content),
            "path": path,
        }
        self._dirty = True

    def forget(self, identifier: str) -> None:
        """Drop the snapshot for *identifier*.  No-op if not present."""
        if self.load().pop(identifier, None) is not None:
            self._dirty = True
