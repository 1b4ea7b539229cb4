"""Per-document sync decisions.

``SyncDecisionEngine.decide()`` is a pure state machine over content
only (moves and deletions are settled before it runs):

==================  ==================  ==========================
local changed       remote changed      action
==================  ==================  ==========================
no                  no                  ``no_change``
yes                 no                  ``push``
no                  yes                 ``pull``
yes                 yes                 resolver -> ``merge`` or
                                        ``conflict_manual``
==================  ==================  ==========================

Both sides changed to the same body converges as a ``pull`` that only
commits metadata.  Every committed decision bumps the revision by one.

``apply()`` performs the writes through the injected collaborators and
``sync_document()`` combines both, honouring ``dry_run``.  Failures come
back as ``DecisionResult(success=False)`` so a batch pass can move on to
the next document; only ``AuthenticationError`` propagates.
"""

from __future__ import annotations

import logging
from datetime import datetime

from ..config_schema import PolicyConfig, RetryConfig
from ..core.async_utils import run_sync
from ..core.ports import LocalStorage, MetadataCodec, RemoteClient
from ..core.retry import retry_async
from ..errors import AuthenticationError
from .detector import local_content_changed, remote_content_changed
from .metadata import content_hash, encode_document
from .models import (
    DecisionResult,
    LocalObservation,
    RemoteObservation,
    ResolutionOutcome,
    SyncAction,
    SyncDecision,
    TrackedDocument,
    utcnow,
)
from .resolver import has_unresolved_conflicts, resolve
from .state import SnapshotStore

logger = logging.getLogger(__name__)


class DecisionError(ValueError):
    """A decision was refused because its preconditions do not hold."""


class SyncDecisionEngine:
    """Decide and apply push/pull/merge for one linked document.

    Args:
        policy: Supplies the conflict policy.
        remote: Remote client used by ``apply()``.
        local: Local storage used by ``apply()``.
        codec: Metadata codec used when writing local documents.
        snapshots: Ancestor store; updated after every commit.
        retry: Retry settings for remote writes.
    """

    def __init__(
        self,
        policy: PolicyConfig,
        remote: RemoteClient | None = None,
        local: LocalStorage | None = None,
        codec: MetadataCodec | None = None,
        snapshots: SnapshotStore | None = None,
        retry: RetryConfig | None = None,
    ) -> None:
        self._policy = policy
        self._remote = remote
        self._local = local
        self._codec = codec
        self._snapshots = snapshots
        self._retry = retry or RetryConfig()

    # ------------------------------------------------------------------
    # Decide
    # ------------------------------------------------------------------

    def decide(
        self,
        local_content: str,
        metadata: TrackedDocument | None,
        remote_content: str,
        remote_modified_at: datetime,
        *,
        local_path: str,
        local_modified_at: datetime,
        ancestor: str | None = None,
        now: datetime | None = None,
    ) -> DecisionResult:
        """Compute the decision for one document without side effects."""
        try:
            decision = self._decide(
                local_content,
                metadata or TrackedDocument(),
                remote_content,
                remote_modified_at,
                local_path=local_path,
                local_modified_at=local_modified_at,
                ancestor=ancestor,
                now=now or utcnow(),
            )
        except Exception as exc:
            logger.error("Decision failed for %s: %s", local_path, exc)
            return DecisionResult(success=False, error=str(exc))
        return DecisionResult(success=True, decision=decision)

    def _decide(
        self,
        local_content: str,
        meta: TrackedDocument,
        remote_content: str,
        remote_modified_at: datetime,
        *,
        local_path: str,
        local_modified_at: datetime,
        ancestor: str | None,
        now: datetime,
    ) -> SyncDecision:
        local_hash = content_hash(local_content)
        remote_hash = content_hash(remote_content)
        local_changed = local_content_changed(
            meta, local_content, local_modified_at
        )
        remote_changed = remote_content_changed(
            meta, remote_modified_at, remote_content
        )
        flags = {
            "local_changed": local_changed,
            "remote_changed": remote_changed,
        }

        def commit(body_hash: str) -> TrackedDocument:
            return meta.committed(
                content_hash=body_hash, path=local_path, at=now
            )

        if not local_changed and not remote_changed:
            return SyncDecision(action=SyncAction.NO_CHANGE, **flags)

        if local_changed and not remote_changed:
            if has_unresolved_conflicts(local_content):
                raise DecisionError(
                    f"{local_path} still contains conflict markers; "
                    "resolve them before pushing"
                )
            return SyncDecision(
                action=SyncAction.PUSH,
                updated_metadata=commit(local_hash),
                content_to_write_remote=local_content,
                **flags,
            )

        if remote_changed and not local_changed:
            return SyncDecision(
                action=SyncAction.PULL,
                updated_metadata=commit(remote_hash),
                content_to_write_local=remote_content,
                **flags,
            )

        if local_hash == remote_hash:
            # Converged independently; record the agreement only
            return SyncDecision(
                action=SyncAction.PULL,
                updated_metadata=commit(remote_hash),
                **flags,
            )

        resolution = resolve(
            local_content,
            remote_content,
            ancestor,
            self._policy.conflict_policy,
            local_modified_at,
            remote_modified_at,
        )
        if resolution.outcome == ResolutionOutcome.UNRESOLVED:
            logger.warning(
                "Unresolved conflict for %s under %s",
                local_path,
                self._policy.conflict_policy.value,
            )
            return SyncDecision(
                action=SyncAction.CONFLICT_MANUAL,
                merged_content=resolution.content,
                conflict_markers=resolution.conflict_markers,
                **flags,
            )

        merged = resolution.content
        if has_unresolved_conflicts(merged) and merged != remote_content:
            raise DecisionError(
                f"{local_path} still contains conflict markers; "
                "resolve them before pushing"
            )
        merged_hash = content_hash(merged)
        return SyncDecision(
            action=SyncAction.MERGE,
            merged_content=merged,
            conflict_markers=resolution.conflict_markers,
            updated_metadata=commit(merged_hash),
            content_to_write_local=(
                merged if merged_hash != local_hash else None
            ),
            content_to_write_remote=(
                merged if merged_hash != remote_hash else None
            ),
            **flags,
        )

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    async def apply(
        self,
        local: LocalObservation,
        decision: SyncDecision,
        identifier: str,
    ) -> None:
        """Perform the writes of a committed decision.

        Remote first, then the local document (body and metadata), then
        the ancestor snapshot.  Raises on collaborator failure.
        """
        if decision.updated_metadata is None:
            return
        if self._local is None or self._codec is None:
            raise RuntimeError("apply() needs local storage and a codec")

        if decision.content_to_write_remote is not None:
            if self._remote is None:
                raise RuntimeError("apply() needs a remote client to push")
            await retry_async(
                self._remote.update_document,
                identifier,
                decision.content_to_write_remote,
                config=self._retry,
                operation=f"update {identifier}",
            )

        body = (
            decision.content_to_write_local
            if decision.content_to_write_local is not None
            else local.content
        )
        raw = encode_document(self._codec, decision.updated_metadata, body)
        await run_sync(self._local.write_document, local.path, raw)

        if self._snapshots is not None:
            self._snapshots.record(identifier, body, local.path)

    async def sync_document(
        self,
        local: LocalObservation,
        remote: RemoteObservation,
        *,
        ancestor: str | None = None,
        dry_run: bool = False,
    ) -> DecisionResult:
        """Decide for *local* against *remote* and, unless *dry_run*, apply.

        ``AuthenticationError`` propagates: it is fatal to the whole pass.
        """
        if ancestor is None and self._snapshots is not None:
            ancestor = self._snapshots.get_ancestor(
                remote.identifier, local.tracked.last_synced_content_hash
            )
        result = self.decide(
            local.content,
            local.metadata,
            remote.content,
            remote.modified_at,
            local_path=local.path,
            local_modified_at=local.modified_at,
            ancestor=ancestor,
        )
        if dry_run or not result.success or result.decision is None:
            return result

        try:
            await self.apply(local, result.decision, remote.identifier)
        except AuthenticationError:
            raise
        except Exception as exc:
            logger.error(
                "Failed to apply %s for %s: %s",
                result.decision.action.value,
                local.path,
                exc,
            )
            return DecisionResult(
                success=False, decision=result.decision, error=str(exc)
            )
        logger.info("%s %s", result.decision.action.value, local.path)
        return result
