"""Moves, remote deletions, archiving and restore.

``DeletionAndMoveHandler`` runs before content reconciliation for a
document.  Rules:

* **Local move** -- with ``sync_moves`` on, the remote document follows
  the local path.
* **Remote move** -- the local document follows the remote location; an
  occupied target aborts with ``MoveCollisionError``.
* **Move/move** -- the side with the newer modification time keeps its
  location (ties to local).
* **Remote delete** -- a local edit since the last sync always wins: the
  remote document is recreated under a new identifier.  Otherwise
  ``delete_handling`` applies: ``archive``, ``sync`` (hard delete) or
  ``ignore``.

Archives live under ``<archive_folder>/YYYY-MM-DD/`` with the sync keys
stripped and the original path recorded, so ``restore()`` can put them
back without ever overwriting an existing document.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import PurePosixPath
from typing import Callable

from ..config_schema import DeleteHandling, PolicyConfig, RetryConfig
from ..core.async_utils import run_sync
from ..core.ports import LocalStorage, MetadataCodec, RemoteClient
from ..core.retry import retry_async
from ..errors import MoveCollisionError, SyncError
from .detector import local_content_changed
from .mapper import FolderMapper
from .metadata import (
    ARCHIVE_KEYS,
    KEY_ARCHIVED_FROM,
    KEY_DELETION_REASON,
    KEY_DELETION_SCHEDULED,
    KEY_ORIGINAL_PATH,
    content_hash,
    encode_document,
    metadata_from_tracked,
    strip_keys,
)
from .models import (
    LocalObservation,
    RemoteObservation,
    ResultKind,
    SyncState,
    TrackedDocument,
    utcnow,
)
from .state import SnapshotStore

logger = logging.getLogger(__name__)


def remote_wins_location(
    local: LocalObservation, remote: RemoteObservation
) -> bool:
    """Move/move tie-break: ``True`` if the remote location should win."""
    return remote.modified_at > local.modified_at


def _disambiguate(path: str, exists: Callable[[str], bool]) -> str:
    """``a/b.md`` -> ``a/b (restored).md`` -> ``a/b (restored 2).md``."""
    if not exists(path):
        return path
    p = PurePosixPath(path)
    candidate = str(p.with_name(f"{p.stem} (restored){p.suffix}"))
    counter = 2
    while exists(candidate):
        name = f"{p.stem} (restored {counter}){p.suffix}"
        candidate = str(p.with_name(name))
        counter += 1
    return candidate


class DeletionAndMoveHandler:
    """Apply move and delete rules for one document at a time.

    Args:
        policy: Supplies ``sync_moves``, ``delete_handling`` and the
            archive folder.
        mapper: Folder mapping between local paths and remote locations.
        remote: Remote client.
        local: Local storage.
        codec: Metadata codec.
        snapshots: Ancestor store, kept in step with identifiers.
        retry: Retry settings for remote calls.
    """

    def __init__(
        self,
        policy: PolicyConfig,
        mapper: FolderMapper,
        remote: RemoteClient,
        local: LocalStorage,
        codec: MetadataCodec,
        snapshots: SnapshotStore | None = None,
        retry: RetryConfig | None = None,
    ) -> None:
        self._policy = policy
        self._mapper = mapper
        self._remote = remote
        self._local = local
        self._codec = codec
        self._snapshots = snapshots
        self._retry = retry or RetryConfig()

    async def _write(
        self, path: str, doc: TrackedDocument | None, body: str
    ) -> None:
        raw = encode_document(self._codec, doc, body)
        await run_sync(self._local.write_document, path, raw)

    def _commit_location(
        self, local: LocalObservation, path: str, now: datetime
    ) -> TrackedDocument:
        meta = local.tracked
        return meta.committed(
            content_hash=meta.last_synced_content_hash
            or content_hash(local.content),
            path=path,
            at=meta.last_synced_at or now,
        )

    # ------------------------------------------------------------------
    # Moves
    # ------------------------------------------------------------------

    async def handle_local_move(
        self, local: LocalObservation, now: datetime | None = None
    ) -> str:
        """Move the remote document to match the local path.

        Returns:
            The local path, which does not change.
        """
        identifier = local.identifier
        mapped = self._mapper.local_to_remote(local.path)
        if identifier is None or mapped is None:
            raise SyncError(f"Cannot move unlinked or unsynced {local.path}")
        if not self._policy.sync_moves:
            return local.path

        folder, name = mapped
        await retry_async(
            self._remote.move_document,
            identifier,
            folder,
            name,
            config=self._retry,
            operation=f"move {identifier}",
        )
        meta = self._commit_location(local, local.path, now or utcnow())
        await self._write(local.path, meta, local.content)
        logger.info(
            "Moved remote %s to %s/%s",
            identifier,
            folder or "<root>",
            name,
        )
        return local.path

    async def handle_remote_move(
        self,
        local: LocalObservation,
        remote: RemoteObservation,
        now: datetime | None = None,
    ) -> str:
        """Move the local document to match the remote location.

        Returns:
            The new local path.

        Raises:
            MoveCollisionError: A document already exists at the target.
        """
        target = self._mapper.remote_to_local(remote.derived_path)
        if target == local.path:
            return local.path
        if await run_sync(self._local.exists, target):
            raise MoveCollisionError(local.path, target)

        await run_sync(self._local.move_document, local.path, target)
        meta = self._commit_location(local, target, now or utcnow())
        await self._write(target, meta, local.content)
        logger.info("Moved local %s -> %s", local.path, target)
        return target

    async def handle_move_conflict(
        self,
        local: LocalObservation,
        remote: RemoteObservation,
        now: datetime | None = None,
    ) -> str:
        """Both sides moved: the newer side keeps its location."""
        if remote_wins_location(local, remote):
            logger.info(
                "Move conflict for %s: remote location wins", local.path
            )
            return await self.handle_remote_move(local, remote, now)
        logger.info("Move conflict for %s: local location wins", local.path)
        return await self.handle_local_move(local, now)

    # ------------------------------------------------------------------
    # Remote deletion
    # ------------------------------------------------------------------

    async def handle_remote_delete(
        self,
        local: LocalObservation,
        state: SyncState,
        now: datetime | None = None,
    ) -> tuple[ResultKind, str]:
        """Apply edit-beats-delete, then ``delete_handling``.

        Returns:
            ``(kind, detail)`` describing what was done.
        """
        now = now or utcnow()
        meta = state.updated_metadata or local.tracked
        edited = local_content_changed(meta, local.content, local.modified_at)
        deleted_at = meta.deletion_scheduled_at or state.remote_deleted_at
        if not edited and meta.last_synced_content_hash is None:
            edited = deleted_at is not None and local.modified_at > deleted_at

        if edited:
            new_id = await self.recreate(local, meta, now)
            return (
                ResultKind.CREATED,
                f"recreated as {new_id} (was {local.identifier})",
            )

        reason = (
            state.delete_reason.value
            if state.delete_reason
            else "remote-deleted"
        )
        match self._policy.delete_handling:
            case DeleteHandling.ARCHIVE:
                archived = await self.archive(local, meta, reason, now)
                return ResultKind.ARCHIVED, f"archived to {archived}"
            case DeleteHandling.SYNC:
                await run_sync(self._local.delete_document, local.path)
                if self._snapshots is not None and local.identifier:
                    self._snapshots.forget(local.identifier)
                logger.info("Deleted %s after remote %s", local.path, reason)
                return ResultKind.DELETED, f"deleted after {reason}"
            case DeleteHandling.IGNORE:
                if state.updated_metadata is not None:
                    stamped = meta.model_copy(
                        update={
                            "last_synced_revision": meta.last_synced_revision
                            + 1
                        }
                    )
                    await self._write(local.path, stamped, local.content)
                return ResultKind.SKIPPED, f"{reason} ignored by policy"

    async def recreate(
        self,
        local: LocalObservation,
        meta: TrackedDocument,
        now: datetime,
    ) -> str:
        """Create a new remote document from local content.

        The old identifier is never reused; it is recorded as
        ``original-doc-id``.
        """
        mapped = self._mapper.local_to_remote(local.path)
        if mapped is None:
            raise SyncError(f"{local.path} is outside the synced scope")
        folder, name = mapped
        new_id = await retry_async(
            self._remote.create_document,
            name,
            local.content,
            folder,
            config=self._retry,
            operation=f"recreate {local.path}",
        )
        old_id = meta.identifier
        updated = meta.committed(
            content_hash=content_hash(local.content),
            path=local.path,
            at=now,
            identifier=new_id,
        ).model_copy(
            update={
                "original_identifier": old_id,
                "restored_from_delete_at": now,
            }
        )
        await self._write(local.path, updated, local.content)
        if self._snapshots is not None:
            if old_id:
                self._snapshots.forget(old_id)
            self._snapshots.record(new_id, local.content, local.path)
        logger.warning(
            "Local edits beat remote delete: recreated %s as %s (was %s)",
            local.path,
            new_id,
            old_id,
        )
        return new_id

    # ------------------------------------------------------------------
    # Archive and restore
    # ------------------------------------------------------------------

    def archive_path_for(self, path: str, now: datetime) -> str:
        p = PurePosixPath(path)
        stamp = now.strftime("%Y-%m-%dT%H-%M-%S")
        folder = f"{self._policy.archive_folder}/{now:%Y-%m-%d}"
        return f"{folder}/{p.stem}_{stamp}{p.suffix}"

    async def archive(
        self,
        local: LocalObservation,
        meta: TrackedDocument,
        reason: str,
        now: datetime,
    ) -> str:
        """Move *local* into the dated archive folder and return its path."""
        target = await run_sync(
            _disambiguate,
            self.archive_path_for(local.path, now),
            self._local.exists,
        )
        metadata = dict(meta.extra)
        metadata[KEY_DELETION_SCHEDULED] = meta.deletion_scheduled_at or now
        metadata[KEY_DELETION_REASON] = reason
        metadata[KEY_ORIGINAL_PATH] = local.path
        metadata[KEY_ARCHIVED_FROM] = "remote-delete"

        raw = self._codec.encode(metadata, local.content)
        await run_sync(self._local.write_document, target, raw)
        await run_sync(self._local.delete_document, local.path)
        if self._snapshots is not None and meta.identifier:
            self._snapshots.forget(meta.identifier)
        logger.info("Archived %s -> %s (%s)", local.path, target, reason)
        return target

    async def restore(self, archive_path: str) -> str:
        """Restore an archived document; returns the path written.

        The archive entry is removed only after the restored copy exists.
        The document comes back unlinked: the next pass creates a new
        remote document for it.
        """
        raw = await run_sync(self._local.read_document, archive_path)
        metadata, body = self._codec.decode(raw)
        original = metadata.get(KEY_ORIGINAL_PATH)
        if not original:
            raise SyncError(
                f"{archive_path} has no {KEY_ORIGINAL_PATH} to restore to"
            )
        target = await run_sync(
            _disambiguate, str(original), self._local.exists
        )
        cleaned = strip_keys(metadata, ARCHIVE_KEYS)
        await run_sync(
            self._local.write_document,
            target,
            self._codec.encode(metadata_from_tracked(None, cleaned), body),
        )
        await run_sync(self._local.delete_document, archive_path)
        logger.info("Restored %s -> %s", archive_path, target)
        return target
