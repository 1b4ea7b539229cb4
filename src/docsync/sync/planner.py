"""Whole-corpus sync planning.

``PlanBuilder.build()`` turns the full local and remote document sets
into a ``SyncPlan``: one or more ``PlannedOperation`` per document plus
warnings.  Building a plan never writes anything.

Order of work:

1. Index remote documents by identifier and by derived path.
2. Linked local documents: compare against their remote document
   (deletes first, then moves, then content).  Identifiers missing from
   the listing go through the ``LinkChecker`` and the cross-domain
   policy.
3. Remote documents nobody owns: link an unlinked local document sitting
   at the expected path, or schedule a local create.
4. Remaining unlinked local documents: schedule a remote create.
5. Warnings and the ``safe`` flag.  Only duplicate documents and
   unresolved conflicts make a plan unsafe.
"""

from __future__ import annotations

import logging
from collections import defaultdict

from ..config_schema import CrossDomainPolicy, PolicyConfig
from ..core.ports import LinkChecker
from .decision import SyncDecisionEngine
from .detector import ChangeDetector
from .handler import remote_wins_location
from .mapper import FolderMapper, is_suspicious_name
from .models import (
    LinkStatus,
    LocalObservation,
    PlanAction,
    PlannedOperation,
    PlanWarning,
    RemoteObservation,
    SyncAction,
    SyncPlan,
    WarningType,
)
from .state import SnapshotStore

logger = logging.getLogger(__name__)

_CONTENT_ACTIONS: dict[SyncAction, PlanAction] = {
    SyncAction.PUSH: PlanAction.PUSH,
    SyncAction.PULL: PlanAction.PULL,
    SyncAction.MERGE: PlanAction.MERGE,
    SyncAction.CONFLICT_MANUAL: PlanAction.CONFLICT,
    SyncAction.NO_CHANGE: PlanAction.SKIP,
}


class PlanBuilder:
    """Build a read-only ``SyncPlan`` for one pass.

    Args:
        policy: Reconciliation policy.
        mapper: Folder mapping shared with the executor.
        detector: Change detector.
        decisions: Decision engine, used in decide-only mode.
        link_checker: Classifies identifiers absent from the listing.
            Without one they are treated as foreign.
        snapshots: Ancestor store feeding merge previews.
    """

    def __init__(
        self,
        policy: PolicyConfig,
        mapper: FolderMapper,
        detector: ChangeDetector,
        decisions: SyncDecisionEngine,
        link_checker: LinkChecker | None = None,
        snapshots: SnapshotStore | None = None,
    ) -> None:
        self._policy = policy
        self._mapper = mapper
        self._detector = detector
        self._decisions = decisions
        self._link_checker = link_checker
        self._snapshots = snapshots

    async def build(
        self,
        local_docs: list[LocalObservation],
        remote_docs: list[RemoteObservation],
    ) -> SyncPlan:
        """Reconcile the two document sets into a plan."""
        ops: list[PlannedOperation] = []
        warnings: list[PlanWarning] = []

        # 1. Index remote documents
        remote_by_id: dict[str, RemoteObservation] = {}
        for remote in remote_docs:
            if remote.identifier in remote_by_id:
                warnings.append(
                    PlanWarning(
                        type=WarningType.DUPLICATE_DOCUMENT,
                        message=(
                            f"Remote listing contains {remote.identifier} "
                            "more than once"
                        ),
                        details={"identifier": remote.identifier},
                    )
                )
                continue
            remote_by_id[remote.identifier] = remote

        remote_by_path: dict[str, list[RemoteObservation]] = defaultdict(list)
        remote_by_name: dict[str, list[RemoteObservation]] = defaultdict(list)
        for remote in remote_by_id.values():
            if remote.trashed:
                continue
            remote_by_path[remote.derived_path].append(remote)
            remote_by_name[remote.name].append(remote)

        local_by_path = {doc.path: doc for doc in local_docs}
        owners: dict[str, list[str]] = defaultdict(list)
        linked = [doc for doc in local_docs if doc.identifier]
        unlinked = [doc for doc in local_docs if not doc.identifier]

        # 2. Linked local documents
        for local in linked:
            identifier = local.identifier
            assert identifier is not None
            remote = remote_by_id.get(identifier)
            if remote is None:
                ops.extend(
                    await self._plan_unresolved(
                        local, remote_by_path, remote_by_name, owners, warnings
                    )
                )
                continue
            owners[identifier].append(local.path)
            ops.extend(self._plan_linked(local, remote))

        # 3. Remote documents nobody owns
        consumed: set[str] = set()
        expected_owner: dict[str, list[str]] = defaultdict(list)
        for remote in remote_by_id.values():
            if remote.trashed or remote.identifier in owners:
                continue
            target = self._mapper.remote_to_local(remote.derived_path)
            if not self._mapper.is_synced(target):
                continue
            expected_owner[target].append(remote.identifier)
            if is_suspicious_name(remote.derived_path):
                warnings.append(
                    _suspicious(remote.derived_path, remote.identifier)
                )

            existing = local_by_path.get(target)
            if existing is None:
                ops.append(
                    PlannedOperation(
                        action=PlanAction.CREATE_LOCAL,
                        identifier=remote.identifier,
                        target_path=target,
                        reason="remote document has no local copy",
                    )
                )
            elif not existing.identifier:
                if target in consumed:
                    continue
                consumed.add(target)
                owners[remote.identifier].append(target)
                ops.append(
                    PlannedOperation(
                        action=PlanAction.LINK,
                        local_path=target,
                        identifier=remote.identifier,
                        reason="unlinked local document at expected path",
                    )
                )
            else:
                warnings.append(
                    PlanWarning(
                        type=WarningType.EXISTING_FILE,
                        message=(
                            f"{target} already exists and is linked to "
                            f"{existing.identifier}; remote "
                            f"{remote.identifier} was not pulled"
                        ),
                        details={
                            "path": target,
                            "identifier": remote.identifier,
                            "linked_identifier": existing.identifier,
                        },
                    )
                )

        # 4. Unlinked local documents
        for local in unlinked:
            if local.path in consumed:
                continue
            if is_suspicious_name(local.path):
                warnings.append(_suspicious(local.path, None))
            ops.append(
                PlannedOperation(
                    action=PlanAction.CREATE_REMOTE,
                    local_path=local.path,
                    reason="local document has no remote copy",
                )
            )

        # 5. Duplicates and safety
        for identifier, paths in owners.items():
            if len(paths) > 1:
                warnings.append(
                    PlanWarning(
                        type=WarningType.DUPLICATE_DOCUMENT,
                        message=(
                            f"{identifier} is linked to {len(paths)} local "
                            f"documents: {', '.join(sorted(paths))}"
                        ),
                        details={
                            "identifier": identifier,
                            "paths": sorted(paths),
                        },
                    )
                )
        for target, identifiers in expected_owner.items():
            if len(identifiers) > 1:
                warnings.append(
                    PlanWarning(
                        type=WarningType.DUPLICATE_DOCUMENT,
                        message=(
                            f"{len(identifiers)} remote documents map to "
                            f"{target}: {', '.join(sorted(identifiers))}"
                        ),
                        details={
                            "path": target,
                            "identifiers": sorted(identifiers),
                        },
                    )
                )

        blocking = any(
            w.type == WarningType.DUPLICATE_DOCUMENT for w in warnings
        )
        conflicts = any(op.action == PlanAction.CONFLICT for op in ops)
        plan = SyncPlan(
            operations=ops,
            warnings=warnings,
            safe=not blocking and not conflicts,
        )
        logger.info(
            "Plan built: %d operation(s), %d warning(s), safe=%s",
            len(ops),
            len(warnings),
            plan.safe,
        )
        return plan

    # ------------------------------------------------------------------
    # Linked documents
    # ------------------------------------------------------------------

    def _plan_linked(
        self, local: LocalObservation, remote: RemoteObservation
    ) -> list[PlannedOperation]:
        state = self._detector.detect(local, remote)
        base = {
            "local_path": local.path,
            "identifier": remote.identifier,
            "state": state,
        }

        if state.has_remote_delete:
            return [
                PlannedOperation(
                    action=PlanAction.REMOTE_DELETE,
                    reason=(
                        f"remote document {state.delete_reason.value}"
                        if state.delete_reason
                        else "remote document deleted"
                    ),
                    **base,
                )
            ]

        ops: list[PlannedOperation] = []
        content_path = local.path
        moves = self._policy.sync_moves
        if moves and state.has_move_conflict:
            remote_wins = remote_wins_location(local, remote)
            if remote_wins:
                content_path = self._mapper.remote_to_local(
                    remote.derived_path
                )
            ops.append(
                PlannedOperation(
                    action=PlanAction.MOVE_CONFLICT,
                    target_path=content_path,
                    reason=(
                        "moved on both sides; "
                        + ("remote" if remote_wins else "local")
                        + " location is newer"
                    ),
                    **base,
                )
            )
        elif moves and state.has_local_move:
            ops.append(
                PlannedOperation(
                    action=PlanAction.LOCAL_MOVE,
                    reason=f"moved locally from {state.local_move_from}",
                    **base,
                )
            )
        elif moves and state.has_remote_move:
            content_path = self._mapper.remote_to_local(remote.derived_path)
            ops.append(
                PlannedOperation(
                    action=PlanAction.REMOTE_MOVE,
                    target_path=content_path,
                    reason=f"moved remotely to {remote.derived_path}",
                    **base,
                )
            )

        ancestor = None
        if self._snapshots is not None:
            ancestor = self._snapshots.get_ancestor(
                remote.identifier, local.tracked.last_synced_content_hash
            )
        result = self._decisions.decide(
            local.content,
            local.metadata,
            remote.content,
            remote.modified_at,
            local_path=content_path,
            local_modified_at=local.modified_at,
            ancestor=ancestor,
        )
        if not result.success or result.decision is None:
            ops.append(
                PlannedOperation(
                    action=PlanAction.SKIP,
                    reason=f"cannot decide: {result.error}",
                    **{**base, "local_path": content_path},
                )
            )
            return ops

        decision = result.decision
        action = _CONTENT_ACTIONS[decision.action]
        if action == PlanAction.SKIP and ops:
            return ops
        ops.append(
            PlannedOperation(
                action=action,
                decision=decision,
                reason=(
                    "; ".join(decision.conflict_markers)
                    or decision.action.value
                ),
                **{**base, "local_path": content_path},
            )
        )
        return ops

    # ------------------------------------------------------------------
    # Identifiers missing from the listing
    # ------------------------------------------------------------------

    async def _plan_unresolved(
        self,
        local: LocalObservation,
        remote_by_path: dict[str, list[RemoteObservation]],
        remote_by_name: dict[str, list[RemoteObservation]],
        owners: dict[str, list[str]],
        warnings: list[PlanWarning],
    ) -> list[PlannedOperation]:
        identifier = local.identifier
        assert identifier is not None
        status = (
            await self._link_checker.check(identifier)
            if self._link_checker is not None
            else LinkStatus.FOREIGN
        )

        match status:
            case LinkStatus.DELETED:
                owners[identifier].append(local.path)
                state = self._detector.detect(local, None)
                return [
                    PlannedOperation(
                        action=PlanAction.REMOTE_DELETE,
                        local_path=local.path,
                        identifier=identifier,
                        state=state,
                        reason="remote document deleted",
                    )
                ]
            case LinkStatus.ACTIVE:
                owners[identifier].append(local.path)
                return [
                    PlannedOperation(
                        action=PlanAction.SKIP,
                        local_path=local.path,
                        identifier=identifier,
                        reason="linked document is outside the synced scope",
                    )
                ]
            case LinkStatus.FOREIGN:
                return self._plan_foreign(
                    local, remote_by_path, remote_by_name, owners, warnings
                )

    def _plan_foreign(
        self,
        local: LocalObservation,
        remote_by_path: dict[str, list[RemoteObservation]],
        remote_by_name: dict[str, list[RemoteObservation]],
        owners: dict[str, list[str]],
        warnings: list[PlanWarning],
    ) -> list[PlannedOperation]:
        identifier = local.identifier
        note = (
            f"{local.path} is linked to {identifier}, which is not "
            "accessible from this session"
        )
        match self._policy.cross_domain_policy:
            case CrossDomainPolicy.SKIP:
                return [
                    PlannedOperation(
                        action=PlanAction.SKIP,
                        local_path=local.path,
                        identifier=identifier,
                        reason="cross-domain identifier skipped",
                    )
                ]
            case CrossDomainPolicy.WARN:
                warnings.append(
                    PlanWarning(
                        type=WarningType.SUSPICIOUS_PATTERN,
                        message=note,
                        details={
                            "path": local.path,
                            "identifier": identifier,
                        },
                    )
                )
                return [
                    PlannedOperation(
                        action=PlanAction.SKIP,
                        local_path=local.path,
                        identifier=identifier,
                        reason="cross-domain identifier excluded",
                    )
                ]
            case CrossDomainPolicy.AUTO_RELINK:
                candidate = self._find_relink_target(
                    local, remote_by_path, remote_by_name
                )
                if candidate is None:
                    warnings.append(
                        _relink_warning(
                            local.path,
                            identifier,
                            None,
                            f"{note}; link cleared and a new remote "
                            "document will be created",
                        )
                    )
                    return [
                        PlannedOperation(
                            action=PlanAction.CREATE_REMOTE,
                            local_path=local.path,
                            previous_identifier=identifier,
                            reason=f"{note}; creating a new remote document",
                        )
                    ]
                owners[candidate.identifier].append(local.path)
                warnings.append(
                    _relink_warning(
                        local.path,
                        identifier,
                        candidate.identifier,
                        f"{note}; relinked to {candidate.derived_path}",
                    )
                )
                return [
                    PlannedOperation(
                        action=PlanAction.LINK,
                        local_path=local.path,
                        identifier=candidate.identifier,
                        previous_identifier=identifier,
                        reason=(
                            f"relinked from {identifier} to "
                            f"{candidate.identifier} "
                            f"({candidate.derived_path})"
                        ),
                    )
                ]

    def _find_relink_target(
        self,
        local: LocalObservation,
        remote_by_path: dict[str, list[RemoteObservation]],
        remote_by_name: dict[str, list[RemoteObservation]],
    ) -> RemoteObservation | None:
        """Match by expected derived path, then by unique display name."""
        expected = self._mapper.expected_derived_path(local.path)
        if expected is None:
            return None
        by_path = remote_by_path.get(expected, [])
        if len(by_path) == 1:
            return by_path[0]
        if by_path:
            return None
        name = expected.rsplit("/", 1)[-1]
        by_name = remote_by_name.get(name, [])
        if len(by_name) == 1:
            return by_name[0]
        return None


def _relink_warning(
    path: str, old: str | None, new: str | None, reason: str
) -> PlanWarning:
    return PlanWarning(
        type=WarningType.SUSPICIOUS_PATTERN,
        message=reason,
        details={
            "path": path,
            "old_identifier": old,
            "new_identifier": new,
            "reason": reason,
        },
    )


def _suspicious(path: str, identifier: str | None) -> PlanWarning:
    return PlanWarning(
        type=WarningType.SUSPICIOUS_PATTERN,
        message=f"{path} looks like a default folder name",
        details={"path": path, "identifier": identifier},
    )
