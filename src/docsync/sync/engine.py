"""Sync engine that executes one reconciliation pass.

The ``SyncEngine`` ties together the detector, decision engine, planner
and move/delete handler into a complete pass.  It:

1. Observes every synced local document.
2. Lists remote documents and prefetches the bodies it needs to compare.
3. Builds a ``SyncPlan`` and refuses to execute an unsafe one.
4. Executes planned operations sequentially, checking for cancellation
   between documents.
5. Persists ancestor snapshots and returns a ``PassSummary``.

Error handling is per-document: a single failure does not abort the pass.
``AuthenticationError`` and ``PlanUnsafe`` are the exceptions, both stop
the pass before (or instead of) further writes.
"""

from __future__ import annotations

import logging
from pathlib import Path

from ..config_schema import DeleteHandling, UnifiedConfig
from ..core.async_utils import gather_limited, init_semaphore, run_sync
from ..core.ports import LinkChecker, LocalStorage, MetadataCodec, RemoteClient
from ..core.retry import retry_async
from ..errors import AuthenticationError, ConflictUnresolved, PlanUnsafe, SyncError
from .decision import SyncDecisionEngine
from .detector import ChangeDetector, remote_content_changed
from .handler import DeletionAndMoveHandler
from .mapper import FolderMapper
from .metadata import (
    FrontmatterCodec,
    content_hash,
    encode_document,
    observe_local,
)
from .models import (
    DocumentResult,
    LocalObservation,
    PassContext,
    PassSummary,
    PlanAction,
    PlannedOperation,
    RemoteObservation,
    ResultKind,
    SyncAction,
    SyncPlan,
    TrackedDocument,
    utcnow,
)
from .planner import PlanBuilder
from .resolver import has_unresolved_conflicts
from .state import SnapshotStore

logger = logging.getLogger(__name__)

_DRY_RUN_KINDS: dict[PlanAction, ResultKind] = {
    PlanAction.CREATE_REMOTE: ResultKind.CREATED,
    PlanAction.CREATE_LOCAL: ResultKind.CREATED,
    PlanAction.PUSH: ResultKind.UPDATED,
    PlanAction.PULL: ResultKind.UPDATED,
    PlanAction.MERGE: ResultKind.UPDATED,
    PlanAction.LINK: ResultKind.UPDATED,
    PlanAction.CONFLICT: ResultKind.CONFLICTED,
    PlanAction.LOCAL_MOVE: ResultKind.MOVED,
    PlanAction.REMOTE_MOVE: ResultKind.MOVED,
    PlanAction.MOVE_CONFLICT: ResultKind.MOVED,
    PlanAction.SKIP: ResultKind.SKIPPED,
}

_DELETE_KINDS: dict[DeleteHandling, ResultKind] = {
    DeleteHandling.ARCHIVE: ResultKind.ARCHIVED,
    DeleteHandling.SYNC: ResultKind.DELETED,
    DeleteHandling.IGNORE: ResultKind.SKIPPED,
}


class SyncEngine:
    """Run reconciliation passes between local storage and a remote service.

    Args:
        remote: Remote document client.
        local: Local document storage.
        config: Unified configuration (defaults if omitted).
        codec: Metadata codec (YAML frontmatter if omitted).
        state_dir: Directory for ancestor snapshots; without one, merges
            have no common ancestor.
        link_checker: Classifies identifiers missing from the listing.
    """

    def __init__(
        self,
        remote: RemoteClient,
        local: LocalStorage,
        config: UnifiedConfig | None = None,
        codec: MetadataCodec | None = None,
        state_dir: Path | None = None,
        link_checker: LinkChecker | None = None,
    ) -> None:
        self.config = config or UnifiedConfig()
        self.remote = remote
        self.local = local
        self.codec = codec or FrontmatterCodec()

        policy = self.config.policy
        retry = self.config.retry
        self.snapshots = SnapshotStore(state_dir) if state_dir else None
        self.mapper = FolderMapper(policy)
        self.detector = ChangeDetector(policy, self.mapper)
        self.decisions = SyncDecisionEngine(
            policy,
            remote=remote,
            local=local,
            codec=self.codec,
            snapshots=self.snapshots,
            retry=retry,
        )
        self.handler = DeletionAndMoveHandler(
            policy,
            self.mapper,
            remote,
            local,
            self.codec,
            snapshots=self.snapshots,
            retry=retry,
        )
        self.planner = PlanBuilder(
            policy,
            self.mapper,
            self.detector,
            self.decisions,
            link_checker=link_checker,
            snapshots=self.snapshots,
        )

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    async def _observe(self, path: str) -> LocalObservation:
        return await run_sync(observe_local, self.local, self.codec, path)

    async def _fetch(self, identifier: str) -> RemoteObservation | None:
        return await self.detector.observe(
            self.remote, identifier, config=self.config.retry
        )

    async def observe_local_documents(self) -> list[LocalObservation]:
        """Observe every local document inside the synced scope."""
        paths = await run_sync(self.local.list_documents)
        docs: list[LocalObservation] = []
        for path in paths:
            if not self.mapper.is_synced(path):
                continue
            docs.append(await self._observe(path))
        return docs

    async def _prefetch(
        self, identifier: str, failures: dict[str, str]
    ) -> RemoteObservation | None:
        try:
            return await self._fetch(identifier)
        except AuthenticationError:
            raise
        except Exception as exc:
            logger.error("Could not fetch remote %s: %s", identifier, exc)
            failures[identifier] = str(exc)
            return None

    async def list_remote_documents(
        self,
        local_docs: list[LocalObservation],
        failures: dict[str, str] | None = None,
    ) -> list[RemoteObservation]:
        """List remote documents and fetch bodies needed for comparison.

        A body is fetched when the listing omits it and either the linked
        local document may be out of date or an unlinked local document
        sits at the expected path.  Fetches run with bounded concurrency.

        A fetch that still fails after retries is recorded in
        ``failures`` (identifier -> error) and the listing entry is kept
        without a body; other documents are unaffected.
        """
        if failures is None:
            failures = {}
        listing = await retry_async(
            self.remote.list_documents,
            None,
            config=self.config.retry,
            operation="list documents",
        )
        owners = {doc.identifier: doc for doc in local_docs if doc.identifier}
        local_paths = {doc.path for doc in local_docs}

        wanted: list[str] = []
        for remote in listing:
            if remote.trashed or remote.content:
                continue
            owner = owners.get(remote.identifier)
            if owner is not None:
                if remote_content_changed(owner.tracked, remote.modified_at):
                    wanted.append(remote.identifier)
            elif self.mapper.remote_to_local(remote.derived_path) in local_paths:
                wanted.append(remote.identifier)

        if not wanted:
            return list(listing)

        fetched = await gather_limited(
            [self._prefetch(i, failures) for i in wanted]
        )
        bodies = dict(zip(wanted, fetched))
        result: list[RemoteObservation] = []
        for remote in listing:
            if remote.identifier not in bodies:
                result.append(remote)
                continue
            full = bodies[remote.identifier]
            if remote.identifier in failures:
                result.append(remote)
                continue
            if full is None:
                # Vanished between listing and fetch
                continue
            result.append(full)
        logger.debug("Prefetched %d remote document(s)", len(wanted))
        return result

    async def build_plan(self) -> SyncPlan:
        """Observe both sides and build a plan without executing it."""
        plan, _ = await self._plan()
        return plan

    async def _plan(self) -> tuple[SyncPlan, dict[str, str]]:
        local_docs = await self.observe_local_documents()
        failures: dict[str, str] = {}
        remote_docs = await self.list_remote_documents(local_docs, failures)
        plan = await self.planner.build(local_docs, remote_docs)
        if failures:
            plan = _without_unfetched(plan, failures)
        return plan, failures

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    async def run_pass(
        self,
        context: PassContext,
        paths: list[str] | None = None,
    ) -> PassSummary:
        """Execute one pass.

        Args:
            context: Progress and cancellation for this pass.  Its
                ``dry_run`` flag computes the summary without writing, and
                ``skip_paths`` lists parked documents.
            paths: Restrict execution to these local paths (the plan is
                still built over the whole corpus).

        Raises:
            PlanUnsafe: The plan has duplicate documents or unresolved
                conflicts; nothing was written.
            AuthenticationError: Credentials were rejected.
        """
        init_semaphore(self.config.retry.max_parallel_requests)
        plan, unfetched = await self._plan()

        ops = plan.operations
        if paths is not None:
            wanted = set(paths)
            ops = [o for o in ops if _touches(o, wanted)]

        conflicts = [o for o in ops if o.action == PlanAction.CONFLICT]
        if not context.dry_run and (plan.blocking_warnings or conflicts):
            for warning in plan.blocking_warnings:
                logger.error("Blocking warning: %s", warning.message)
            for op in conflicts:
                logger.error(
                    "Unresolved conflict: %s (%s)", op.local_path, op.reason
                )
            raise PlanUnsafe(plan)

        context.total = len(ops)
        results: list[DocumentResult] = []
        # Paths and identifiers whose earlier operation failed this pass
        failed: set[str] = set()
        try:
            for op in ops:
                if context.cancelled:
                    logger.info(
                        "Pass cancelled after %d of %d operation(s)",
                        context.current,
                        context.total,
                    )
                    break
                label = op.local_path or op.target_path or op.identifier or ""
                context.advance(f"{op.action.value} {label}")

                if _touches(op, context.skip_paths):
                    results.append(
                        _result(
                            op,
                            ResultKind.SKIPPED,
                            "parked after repeated failures",
                        )
                    )
                    continue

                keys = _keys(op)
                if keys & failed:
                    results.append(
                        _result(
                            op,
                            ResultKind.SKIPPED,
                            "skipped after an earlier failure on this document",
                        )
                    )
                    continue
                if op.identifier in unfetched:
                    failed |= keys
                    error = unfetched[op.identifier]
                    results.append(_failure(op, f"fetch failed: {error}"))
                    continue

                try:
                    if context.dry_run:
                        results.append(self._preview(op))
                    else:
                        results.append(await self._execute(op))
                except AuthenticationError:
                    logger.error("Authentication failed; aborting pass")
                    raise
                except Exception as exc:
                    logger.error(
                        "Error during %s for %s: %s",
                        op.action.value,
                        label,
                        exc,
                    )
                    failed |= keys
                    results.append(_failure(op, str(exc)))
        finally:
            if self.snapshots is not None and not context.dry_run:
                self.snapshots.save()

        summary = PassSummary(
            dry_run=context.dry_run,
            cancelled=context.cancelled,
            results=results,
            warnings=plan.warnings,
            started_at=context.started_at,
            completed_at=utcnow(),
        )
        logger.info(summary.summary())
        return summary

    async def sync_paths(
        self, paths: list[str], dry_run: bool = False
    ) -> PassSummary:
        """Convenience wrapper: one pass restricted to *paths*."""
        return await self.run_pass(PassContext(dry_run=dry_run), paths)

    async def restore(self, archive_path: str) -> str:
        """Restore an archived document to its original location."""
        return await self.handler.restore(archive_path)

    # ------------------------------------------------------------------
    # Per-operation execution
    # ------------------------------------------------------------------

    def _preview(self, op: PlannedOperation) -> DocumentResult:
        if op.action == PlanAction.REMOTE_DELETE:
            if op.state is not None and op.state.has_local_changes:
                return _result(op, ResultKind.CREATED, "would recreate")
            kind = _DELETE_KINDS[self.config.policy.delete_handling]
            return _result(op, kind, f"would apply {kind.value}")
        return _result(op, _DRY_RUN_KINDS[op.action], f"would {op.action.value}")

    async def _execute(self, op: PlannedOperation) -> DocumentResult:
        match op.action:
            case PlanAction.CREATE_REMOTE:
                return await self._create_remote(op)
            case PlanAction.CREATE_LOCAL:
                return await self._create_local(op)
            case PlanAction.LINK:
                return await self._link(op)
            case (
                PlanAction.PUSH
                | PlanAction.PULL
                | PlanAction.MERGE
                | PlanAction.CONFLICT
            ):
                return await self._sync_content(op)
            case PlanAction.LOCAL_MOVE:
                local = await self._observe(_path(op))
                await self.handler.handle_local_move(local)
                return _result(op, ResultKind.MOVED, op.reason)
            case PlanAction.REMOTE_MOVE | PlanAction.MOVE_CONFLICT:
                local = await self._observe(_path(op))
                remote = await self._require_remote(op)
                if op.action == PlanAction.REMOTE_MOVE:
                    target = await self.handler.handle_remote_move(local, remote)
                else:
                    target = await self.handler.handle_move_conflict(
                        local, remote
                    )
                return _result(op, ResultKind.MOVED, f"now at {target}")
            case PlanAction.REMOTE_DELETE:
                local = await self._observe(_path(op))
                state = op.state or self.detector.detect(local, None)
                kind, detail = await self.handler.handle_remote_delete(
                    local, state
                )
                return _result(op, kind, detail)
            case PlanAction.SKIP:
                return _result(op, ResultKind.SKIPPED, op.reason)

    async def _require_remote(self, op: PlannedOperation) -> RemoteObservation:
        if op.identifier is None:
            raise SyncError(f"{op.action.value} has no remote identifier")
        remote = await self._fetch(op.identifier)
        if remote is None or remote.trashed:
            raise SyncError(
                f"Remote document {op.identifier} disappeared during the pass"
            )
        return remote

    async def _create_remote(self, op: PlannedOperation) -> DocumentResult:
        local = await self._observe(_path(op))
        _check_owner(op, local, op.previous_identifier)
        mapped = self.mapper.local_to_remote(local.path)
        if mapped is None:
            raise SyncError(f"{local.path} is outside the synced scope")
        if has_unresolved_conflicts(local.content):
            raise SyncError(f"{local.path} still contains conflict markers")

        folder, name = mapped
        identifier = await retry_async(
            self.remote.create_document,
            name,
            local.content,
            folder,
            config=self.config.retry,
            operation=f"create {local.path}",
        )
        meta = local.tracked.committed(
            content_hash=content_hash(local.content),
            path=local.path,
            at=utcnow(),
            identifier=identifier,
        )
        if op.previous_identifier:
            meta = meta.model_copy(
                update={"original_identifier": op.previous_identifier}
            )
        await self._write(local.path, meta, local.content)
        if self.snapshots is not None:
            self.snapshots.record(identifier, local.content, local.path)
        logger.info("Created remote %s for %s", identifier, local.path)
        return DocumentResult(
            local_path=local.path,
            identifier=identifier,
            action=op.action,
            kind=ResultKind.CREATED,
            detail=f"linked to {identifier}",
        )

    async def _create_local(self, op: PlannedOperation) -> DocumentResult:
        remote = await self._require_remote(op)
        target = op.target_path or self.mapper.remote_to_local(
            remote.derived_path
        )
        if await run_sync(self.local.exists, target):
            raise SyncError(f"{target} already exists; not overwriting")

        meta = TrackedDocument().committed(
            content_hash=content_hash(remote.content),
            path=target,
            at=utcnow(),
            identifier=remote.identifier,
        )
        await self._write(target, meta, remote.content)
        if self.snapshots is not None:
            self.snapshots.record(remote.identifier, remote.content, target)
        logger.info("Pulled new remote %s to %s", remote.identifier, target)
        return _result(op, ResultKind.CREATED, f"pulled to {target}")

    async def _link(self, op: PlannedOperation) -> DocumentResult:
        local = await self._observe(_path(op))
        _check_owner(op, local, op.previous_identifier)
        remote = await self._require_remote(op)
        meta = local.tracked.model_copy(
            update={
                "identifier": remote.identifier,
                "last_synced_content_hash": None,
                "last_synced_at": None,
                "deletion_scheduled_at": None,
            }
        )
        if op.previous_identifier:
            meta = meta.model_copy(
                update={"original_identifier": op.previous_identifier}
            )
        linked = local.model_copy(update={"metadata": meta})
        result = await self.decisions.sync_document(linked, remote)
        if not result.success or result.decision is None:
            raise SyncError(result.error or "link failed")
        if result.decision.action == SyncAction.CONFLICT_MANUAL:
            # Keep the link so the conflict is reported against it
            await self._write(local.path, meta, local.content)
            return self._conflict_result(op, local, result.decision)
        return _result(op, ResultKind.UPDATED, op.reason)

    async def _sync_content(self, op: PlannedOperation) -> DocumentResult:
        local = await self._observe(_path(op))
        _check_owner(op, local, op.identifier)
        remote = await self._require_remote(op)
        result = await self.decisions.sync_document(local, remote)
        if not result.success or result.decision is None:
            raise SyncError(result.error or "sync failed")
        decision = result.decision
        match decision.action:
            case SyncAction.NO_CHANGE:
                return _result(op, ResultKind.SKIPPED, "unchanged")
            case SyncAction.CONFLICT_MANUAL:
                return self._conflict_result(op, local, decision)
            case _:
                return _result(op, ResultKind.UPDATED, decision.action.value)

    def _conflict_result(self, op, local, decision) -> DocumentResult:
        exc = ConflictUnresolved(
            local.path,
            op.identifier,
            "; ".join(decision.conflict_markers) or "overlapping edits",
        )
        logger.warning("%s", exc)
        return _result(op, ResultKind.CONFLICTED, str(exc))

    async def _write(
        self, path: str, meta: TrackedDocument, body: str
    ) -> None:
        raw = encode_document(self.codec, meta, body)
        await run_sync(self.local.write_document, path, raw)


def _path(op: PlannedOperation) -> str:
    if op.local_path is None:
        raise SyncError(f"{op.action.value} has no local path")
    return op.local_path


def _check_owner(
    op: PlannedOperation, local: LocalObservation, expected: str | None
) -> None:
    """Refuse to write over a document linked to something else.

    The file at the operation's path may have changed since planning,
    e.g. when an earlier move for another document was aborted.
    """
    if local.identifier != expected:
        raise SyncError(
            f"{local.path} is linked to {local.identifier or 'nothing'}, "
            f"expected {expected or 'nothing'}; not touching it"
        )


def _touches(op: PlannedOperation, paths: set[str] | frozenset[str]) -> bool:
    return op.local_path in paths or op.target_path in paths


def _keys(op: PlannedOperation) -> set[str]:
    keys = {op.local_path, op.target_path, op.identifier}
    keys.discard(None)
    return keys


def _without_unfetched(
    plan: SyncPlan, unfetched: dict[str, str]
) -> SyncPlan:
    """Replace operations on documents whose body could not be fetched.

    They are planned against an empty remote body, so whatever was
    decided for them is meaningless.
    """
    ops = [
        op
        if op.identifier not in unfetched
        else PlannedOperation(
            action=PlanAction.SKIP,
            local_path=op.local_path,
            target_path=op.target_path,
            identifier=op.identifier,
            reason=f"remote fetch failed: {unfetched[op.identifier]}",
        )
        for op in plan.operations
    ]
    safe = not plan.blocking_warnings and not any(
        op.action == PlanAction.CONFLICT for op in ops
    )
    return plan.model_copy(update={"operations": ops, "safe": safe})


def _failure(op: PlannedOperation, error: str) -> DocumentResult:
    return DocumentResult(
        local_path=op.local_path or op.target_path,
        identifier=op.identifier,
        action=op.action,
        success=False,
        error=error,
    )


def _result(
    op: PlannedOperation, kind: ResultKind, detail: str | None = None
) -> DocumentResult:
    return DocumentResult(
        local_path=op.local_path or op.target_path,
        identifier=op.identifier,
        action=op.action,
        kind=kind,
        detail=detail,
    )
