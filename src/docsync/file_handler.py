"""File handler module: encoding-aware read/write and a filesystem LocalStorage.

Provides the file I/O used by the bundled ``FilesystemStorage``.
All functions are blocking; the engine calls them through ``run_sync()``.
"""

import fnmatch
import logging
import os
from datetime import datetime, timezone
from pathlib import Path, PurePosixPath

from charset_normalizer import from_bytes

from .config_schema import PolicyConfig
from .sync.mapper import reserved_folders

logger = logging.getLogger(__name__)

# =============================================================================
# File Read/Write
# =============================================================================


def read_file_with_encoding(path: Path) -> tuple[str, str]:
    """Read a file with automatic encoding detection.

    Reads raw bytes first, then uses charset-normalizer to detect encoding.
    Defaults to UTF-8 for empty files or when detection fails.

    Args:
        path: Path to the file to read.

    Returns:
        Tuple of (content_string, detected_encoding).
    """
    raw = path.read_bytes()
    if not raw:
        return ("", "utf-8")

    result = from_bytes(raw).best()
    if result is None:
        encoding = "utf-8"
        content = raw.decode(encoding, errors="replace")
    else:
        encoding = result.encoding
        # ascii is a strict subset of utf-8
        if encoding == "ascii":
            encoding = "utf-8"
        content = str(result)
    return (content, encoding)


def write_file(path: Path, content: str, encoding: str = "utf-8") -> int:
    """Write content to a file, creating parent directories as needed.

    Returns:
        Number of bytes written.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    encoded = content.encode(encoding)
    path.write_bytes(encoded)
    return len(encoded)


# =============================================================================
# Filesystem storage
# =============================================================================


class FilesystemStorage:
    """``LocalStorage`` backed by a directory tree.

    Args:
        root: Directory holding the synced documents.
        extension: Extension of documents to list (default ``.md``).
        exclude: Glob patterns (relative POSIX paths) never listed.
        hidden_folders: Folders never listed, such as the archive and
            state folders.  Use ``from_policy`` to take them from the
            sync policy.
    """

    def __init__(
        self,
        root: Path,
        extension: str = ".md",
        exclude: list[str] | None = None,
        hidden_folders: tuple[str, ...] = (".trash", ".docsync"),
    ) -> None:
        self._root = root
        self._extension = extension
        self._exclude = list(exclude or [])
        self._hidden = hidden_folders

    @classmethod
    def from_policy(
        cls, root: Path, policy: PolicyConfig
    ) -> "FilesystemStorage":
        """Storage listing exactly what ``policy`` may sync."""
        return cls(
            root,
            extension=policy.document_extension,
            exclude=list(policy.exclude),
            hidden_folders=reserved_folders(policy),
        )

    @property
    def root(self) -> Path:
        return self._root

    def _resolve(self, path: str) -> Path:
        """Map a relative document path into the root, refusing escapes."""
        rel = PurePosixPath(path)
        if rel.is_absolute() or ".." in rel.parts:
            raise ValueError(f"Path must stay inside the root: {path}")
        return self._root.joinpath(*rel.parts)

    def read_document(self, path: str) -> str:
        content, _encoding = read_file_with_encoding(self._resolve(path))
        return content

    def write_document(self, path: str, raw: str) -> None:
        write_file(self._resolve(path), raw)

    def list_documents(self) -> list[str]:
        """Return sorted relative paths of every document under the root."""
        if not self._root.is_dir():
            return []
        result: list[str] = []
        for file in self._root.rglob(f"*{self._extension}"):
            if not file.is_file():
                continue
            rel = file.relative_to(self._root).as_posix()
            if any(rel.startswith(f + "/") for f in self._hidden):
                continue
            if any(fnmatch.fnmatch(rel, p) for p in self._exclude):
                continue
            result.append(rel)
        return sorted(result)

    def move_document(self, source: str, target: str) -> None:
        src = self._resolve(source)
        dst = self._resolve(target)
        if dst.exists():
            raise FileExistsError(f"Target already exists: {target}")
        dst.parent.mkdir(parents=True, exist_ok=True)
        os.replace(src, dst)
        logger.debug("Moved %s -> %s", source, target)

    def delete_document(self, path: str) -> None:
        self._resolve(path).unlink()

    def exists(self, path: str) -> bool:
        return self._resolve(path).exists()

    def modified_at(self, path: str) -> datetime:
        mtime = self._resolve(path).stat().st_mtime
        return datetime.fromtimestamp(mtime, tz=timezone.utc)
