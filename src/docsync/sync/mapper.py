"""Folder mapping between local paths and remote derived paths.

A local path maps to a remote location in three steps:

1. **Base folder** -- the configured ``base_folder`` prefix is stripped;
   paths outside it are not synced.
2. **Folders** -- the remaining parent directories become the remote
   folder path, unchanged.
3. **Display name** -- the filename minus the document extension becomes
   the display name with ``_`` and `` `` swapped.

The name transform is an involution (applying it twice is the identity),
so ``remote_to_local(local_to_remote(p)) == p`` for every synced path.
That exactness is what makes remote-move detection safe to enable.
"""

from __future__ import annotations

import fnmatch
from pathlib import PurePosixPath

from ..config_schema import PolicyConfig

_NAME_SWAP = str.maketrans({"_": " ", " ": "_"})

_SUSPICIOUS_NAMES = ("untitled folder", "new folder")

# Local folder holding sync state; never part of the synced scope.
STATE_FOLDER = ".docsync"


def to_display_name(stem: str) -> str:
    """Filename stem -> remote display name (``my_note`` -> ``my note``)."""
    return stem.translate(_NAME_SWAP)


def to_file_stem(display_name: str) -> str:
    """Remote display name -> filename stem (exact inverse)."""
    return display_name.translate(_NAME_SWAP)


def is_suspicious_name(path: str) -> bool:
    """Return ``True`` if any component looks like an accidental folder."""
    for part in PurePosixPath(path).parts:
        lowered = part.lower()
        for pattern in _SUSPICIOUS_NAMES:
            if lowered == pattern or lowered.startswith(pattern + " "):
                return True
    return False


def reserved_folders(policy: PolicyConfig) -> tuple[str, ...]:
    """Local folders sync never reads from: archive and state."""
    folders = (policy.archive_folder.strip("/"), STATE_FOLDER)
    return tuple(f for f in folders if f)


class FolderMapper:
    """Map local document paths to remote derived paths and back.

    Args:
        policy: Provides ``base_folder``, ``document_extension``, the
            ``exclude`` globs and ``archive_folder``.

    The archive folder and ``STATE_FOLDER`` are outside the synced scope
    whatever the storage lists.
    """

    def __init__(self, policy: PolicyConfig) -> None:
        self._base = policy.base_folder.strip("/")
        self._extension = policy.document_extension
        self._exclude = list(policy.exclude)
        self._reserved = reserved_folders(policy)

    # ------------------------------------------------------------------
    # Local -> Remote
    # ------------------------------------------------------------------

    def is_synced(self, local_path: str) -> bool:
        """Whether *local_path* falls inside the synced scope."""
        if not local_path.endswith(self._extension):
            return False
        if self.is_reserved(local_path):
            return False
        if any(fnmatch.fnmatch(local_path, p) for p in self._exclude):
            return False
        if self._base:
            return local_path.startswith(self._base + "/")
        return True

    def is_reserved(self, local_path: str) -> bool:
        """Whether *local_path* lies in the archive or state folder."""
        return any(
            local_path == folder or local_path.startswith(folder + "/")
            for folder in self._reserved
        )

    def local_to_remote(self, local_path: str) -> tuple[str, str] | None:
        """Return ``(folder_scope, display_name)`` or ``None`` if unsynced."""
        if not self.is_synced(local_path):
            return None
        rel = local_path[len(self._base) + 1 :] if self._base else local_path
        p = PurePosixPath(rel)
        stem = p.name[: -len(self._extension)] if self._extension else p.name
        folder = "" if str(p.parent) == "." else str(p.parent)
        return folder, to_display_name(stem)

    def expected_derived_path(self, local_path: str) -> str | None:
        """Remote derived path the document at *local_path* should have."""
        mapped = self.local_to_remote(local_path)
        if mapped is None:
            return None
        folder, name = mapped
        return f"{folder}/{name}" if folder else name

    # ------------------------------------------------------------------
    # Remote -> Local
    # ------------------------------------------------------------------

    def remote_to_local(self, derived_path: str) -> str:
        """Local path a remote document with *derived_path* belongs at."""
        p = PurePosixPath(derived_path.strip("/"))
        filename = to_file_stem(p.name) + self._extension
        parts = [self._base] if self._base else []
        if str(p.parent) != ".":
            parts.append(str(p.parent))
        parts.append(filename)
        return "/".join(parts)
