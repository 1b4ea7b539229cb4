"""Change detection for one document relative to its last sync.

``ChangeDetector.detect()`` compares a local observation, the remote
observation (``None`` when the remote document is gone) and the tracked
metadata, and reports what changed as a ``SyncState``.  It performs no
writes: a first-time deletion stamp comes back as
``SyncState.updated_metadata`` for the caller to persist.
"""

from __future__ import annotations

import logging
from datetime import datetime

from ..config_schema import PolicyConfig
from ..core.ports import RemoteClient
from ..core.retry import retry_async
from ..errors import DocumentNotFoundError
from .mapper import FolderMapper
from .metadata import content_hash
from .models import (
    DeleteReason,
    LocalObservation,
    RemoteObservation,
    SyncState,
    TrackedDocument,
    utcnow,
)

logger = logging.getLogger(__name__)


def local_content_changed(
    meta: TrackedDocument,
    body: str,
    modified_at: datetime,
) -> bool:
    """Whether the local body changed since the last sync.

    A recorded content hash is authoritative, since rewriting metadata
    touches the modification time without changing the body.  Without a
    hash the modification time is compared with ``last_synced_at``; a
    document never synced counts as changed.
    """
    if meta.last_synced_content_hash:
        return content_hash(body) != meta.last_synced_content_hash
    if meta.last_synced_at is None:
        return True
    return modified_at > meta.last_synced_at


def remote_content_changed(
    meta: TrackedDocument,
    remote_modified_at: datetime,
    remote_body: str | None = None,
) -> bool:
    """Whether the remote document changed since the last sync.

    The remote timestamp must be newer than ``last_synced_at``; when a body
    and a recorded hash are both available the body must also differ, so
    our own push is not mistaken for a remote edit.
    """
    if meta.last_synced_at is None:
        return True
    if remote_modified_at <= meta.last_synced_at:
        return False
    if remote_body is not None and meta.last_synced_content_hash:
        return content_hash(remote_body) != meta.last_synced_content_hash
    return True


class ChangeDetector:
    """Classify what changed for one linked document.

    Args:
        policy: Supplies ``detect_remote_moves``.
        mapper: Folder mapping used for remote-move detection.
    """

    def __init__(self, policy: PolicyConfig, mapper: FolderMapper) -> None:
        self._policy = policy
        self._mapper = mapper

    def detect(
        self,
        local: LocalObservation,
        remote: RemoteObservation | None,
        now: datetime | None = None,
    ) -> SyncState:
        """Return the ``SyncState`` for *local* against *remote*."""
        meta = local.tracked
        flags: dict = {
            "has_local_changes": local_content_changed(
                meta, local.content, local.modified_at
            ),
        }

        # Deletion
        if remote is None or remote.trashed:
            now = now or utcnow()
            reason = (
                DeleteReason.REMOTE_DELETED
                if remote is None
                else DeleteReason.REMOTE_TRASHED
            )
            flags["has_remote_delete"] = True
            flags["delete_reason"] = reason
            if meta.deletion_scheduled_at is None:
                meta = meta.model_copy(update={"deletion_scheduled_at": now})
                flags["updated_metadata"] = meta
            flags["remote_deleted_at"] = (
                remote.modified_at
                if remote is not None
                else meta.deletion_scheduled_at
            )
            logger.debug(
                "Remote delete observed for %s (%s)", local.path, reason.value
            )
        else:
            flags["has_remote_changes"] = remote_content_changed(
                meta,
                remote.modified_at,
                remote.content if remote.content else None,
            )

        # Moves are reported whatever ``sync_moves`` says; the planner
        # decides whether to act on them.
        if meta.last_synced_path and meta.last_synced_path != local.path:
            flags["has_local_move"] = True
            flags["local_move_from"] = meta.last_synced_path

        remote_live = remote is not None and not remote.trashed
        if self._policy.detect_remote_moves and remote_live:
            anchor = meta.last_synced_path or local.path
            expected = self._mapper.expected_derived_path(anchor)
            if expected is not None and remote.derived_path != expected:
                flags["has_remote_move"] = True
                flags["remote_move_from"] = expected

        return SyncState(**flags)

    async def observe(
        self, client: RemoteClient, identifier: str, **retry_kwargs
    ) -> RemoteObservation | None:
        """Fetch the remote side; ``None`` means the document is gone."""
        try:
            return await retry_async(
                client.get_document,
                identifier,
                operation=f"get document {identifier}",
                **retry_kwargs,
            )
        except DocumentNotFoundError:
            logger.info("Remote document %s not found", identifier)
            return None
