"""Collaborator interfaces the engine is written against.

The engine never talks HTTP, touches the disk or parses frontmatter by
itself.  Hosts inject implementations of these protocols:

- ``RemoteClient``: async access to the remote document service.
- ``LocalStorage``: blocking access to local documents; the engine calls
  it through ``run_sync`` so the event loop is never blocked.
- ``MetadataCodec``: splits a raw local document into metadata and body.
- ``LinkChecker``: classifies identifiers missing from a listing.
- ``Syncer``: anything that can run one pass (used by the background
  manager).

Paths handed to ``LocalStorage`` are POSIX-style and relative to the
storage root.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:
    from ..sync.models import (
        LinkStatus,
        PassContext,
        PassSummary,
        RemoteObservation,
    )


class RemoteClient(Protocol):
    """Async remote document service.

    Implementations raise the ``docsync.errors`` taxonomy:
    ``DocumentNotFoundError`` for a missing identifier,
    ``AuthenticationError`` for bad credentials and ``NetworkError``
    subclasses for transport failures.
    """

    async def get_document(self, identifier: str) -> RemoteObservation:
        ...  # pragma: no cover

    async def list_documents(
        self, folder_scope: str | None = None
    ) -> list[RemoteObservation]:
        """List documents under *folder_scope* (``None`` = whole root).

        Listed observations may carry empty ``content``; the engine fetches
        bodies with ``get_document`` when it needs them.
        """
        ...  # pragma: no cover

    async def create_document(
        self, name: str, content: str, folder_scope: str
    ) -> str:
        """Create a document and return its new identifier."""
        ...  # pragma: no cover

    async def update_document(self, identifier: str, content: str) -> None:
        ...  # pragma: no cover

    async def move_document(
        self, identifier: str, folder_scope: str, name: str | None = None
    ) -> None:
        """Move (and optionally rename) a document."""
        ...  # pragma: no cover

    async def delete_document(self, identifier: str) -> None:
        ...  # pragma: no cover


class LocalStorage(Protocol):
    """Blocking local document store."""

    def read_document(self, path: str) -> str:
        ...  # pragma: no cover

    def write_document(self, path: str, raw: str) -> None:
        ...  # pragma: no cover

    def list_documents(self) -> list[str]:
        ...  # pragma: no cover

    def move_document(self, source: str, target: str) -> None:
        ...  # pragma: no cover

    def delete_document(self, path: str) -> None:
        ...  # pragma: no cover

    def exists(self, path: str) -> bool:
        ...  # pragma: no cover

    def modified_at(self, path: str) -> datetime:
        ...  # pragma: no cover


class MetadataCodec(Protocol):
    """Parse and serialize the metadata block of a local document."""

    def decode(self, raw: str) -> tuple[dict[str, Any], str]:
        ...  # pragma: no cover

    def encode(self, metadata: dict[str, Any], body: str) -> str:
        ...  # pragma: no cover


class LinkChecker(Protocol):
    """Tell whether an identifier is live, deleted or outside our scope."""

    async def check(self, identifier: str) -> LinkStatus:
        ...  # pragma: no cover


class Syncer(Protocol):
    """Runs one reconciliation pass.

    ``paths=None`` means a full pass; otherwise only the given local paths
    are reconciled.
    """

    async def run_pass(
        self,
        context: PassContext,
        paths: list[str] | None = None,
    ) -> PassSummary:
        ...  # pragma: no cover
