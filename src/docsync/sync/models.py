"""Pydantic models for the reconciliation engine.

Defines the core data contracts used across all sync modules:

- ``TrackedDocument``: sync metadata persisted in a local document.
- ``LocalObservation`` / ``RemoteObservation``: current state of each side.
- ``SyncState``: change-detector flags for one document.
- ``Resolution`` / ``ConflictRegion``: conflict-resolver output.
- ``SyncDecision`` / ``DecisionResult``: per-document decision.
- ``PlannedOperation`` / ``PlanWarning`` / ``SyncPlan``: corpus plan.
- ``DocumentResult`` / ``PassSummary``: outcome of an executed pass.
- ``PassContext``: progress and cancellation for one pass.

Value models are frozen (immutable) for safety; derive changed copies
with ``model_copy(update=...)``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import PurePosixPath
from typing import Any

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    """Timezone-aware current time; the only clock the engine reads."""
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class SyncAction(str, Enum):
    """Outcome of the per-document decision engine."""

    PUSH = "push"
    PULL = "pull"
    MERGE = "merge"
    NO_CHANGE = "no_change"
    CONFLICT_MANUAL = "conflict_manual"


class ResolutionOutcome(str, Enum):
    """Outcome of the conflict resolver."""

    TAKE_LOCAL = "take-local"
    TAKE_REMOTE = "take-remote"
    MERGED = "merged"
    UNRESOLVED = "unresolved"


class DeleteReason(str, Enum):
    """Why a remote document counts as deleted."""

    REMOTE_DELETED = "remote-deleted"
    REMOTE_TRASHED = "remote-trashed"


class LinkStatus(str, Enum):
    """Result of checking an identifier the listing did not contain."""

    ACTIVE = "active"
    DELETED = "deleted"
    FOREIGN = "foreign"


class PlanAction(str, Enum):
    """Operations a plan can schedule for one document."""

    CREATE_REMOTE = "create_remote"
    CREATE_LOCAL = "create_local"
    PUSH = "push"
    PULL = "pull"
    MERGE = "merge"
    CONFLICT = "conflict"
    LINK = "link"
    LOCAL_MOVE = "local_move"
    REMOTE_MOVE = "remote_move"
    MOVE_CONFLICT = "move_conflict"
    REMOTE_DELETE = "remote_delete"
    SKIP = "skip"


class WarningType(str, Enum):
    """Plan warning categories; only ``DUPLICATE_DOCUMENT`` blocks."""

    DUPLICATE_DOCUMENT = "duplicate-document"
    SUSPICIOUS_PATTERN = "suspicious-pattern"
    EXISTING_FILE = "existing-file"


class ResultKind(str, Enum):
    """What an executed operation did, for pass summaries."""

    CREATED = "created"
    UPDATED = "updated"
    MOVED = "moved"
    ARCHIVED = "archived"
    DELETED = "deleted"
    SKIPPED = "skipped"
    CONFLICTED = "conflicted"


# ---------------------------------------------------------------------------
# Document state
# ---------------------------------------------------------------------------


class TrackedDocument(BaseModel):
    """Sync metadata stored in a local document's metadata block.

    Attributes:
        identifier: Remote-assigned stable ID; ``None`` until linked.
        last_synced_content_hash: SHA-256 of the body at last sync.
        last_synced_revision: Engine-local counter, +1 per committed sync.
        last_synced_path: Local path at last sync (local-move detection).
        last_synced_at: Time of the last successful sync.
        deletion_scheduled_at: First time a remote delete was observed.
        original_identifier: Identifier this document had before it was
            recreated after a remote delete.
        restored_from_delete_at: When that recreation happened.
        extra: Every metadata key the engine does not own, verbatim.
    """

    identifier: str | None = None
    last_synced_content_hash: str | None = None
    last_synced_revision: int = Field(default=0, ge=0)
    last_synced_path: str | None = None
    last_synced_at: datetime | None = None
    deletion_scheduled_at: datetime | None = None
    original_identifier: str | None = None
    restored_from_delete_at: datetime | None = None
    extra: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @field_validator(
        "last_synced_at", "deletion_scheduled_at", "restored_from_delete_at"
    )
    @classmethod
    def _assume_utc(cls, value: datetime | None) -> datetime | None:
        # Hand-edited metadata may carry naive timestamps
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @property
    def is_linked(self) -> bool:
        return bool(self.identifier)

    def committed(
        self,
        *,
        content_hash: str,
        path: str,
        at: datetime,
        identifier: str | None = None,
    ) -> TrackedDocument:
        """Return the metadata for a committed sync of this document.

        The revision increases by exactly one; a pending deletion flag is
        cleared because the document is live again.
        """
        return self.model_copy(
            update={
                "identifier": identifier or self.identifier,
                "last_synced_content_hash": content_hash,
                "last_synced_revision": self.last_synced_revision + 1,
                "last_synced_path": path,
                "last_synced_at": at,
                "deletion_scheduled_at": None,
            }
        )


class LocalObservation(BaseModel):
    """Current state of a local document."""

    path: str
    content: str
    modified_at: datetime
    metadata: TrackedDocument | None = None

    model_config = {"frozen": True}

    @property
    def identifier(self) -> str | None:
        return self.metadata.identifier if self.metadata else None

    @property
    def tracked(self) -> TrackedDocument:
        """Metadata, or an empty record for a never-synced document."""
        return self.metadata or TrackedDocument()


class RemoteObservation(BaseModel):
    """Current state of a remote document.

    ``derived_path`` is computed from the remote folder hierarchy and has
    no extension, e.g. ``"Projects/Q3 plan"``.
    """

    identifier: str
    content: str = ""
    modified_at: datetime
    derived_path: str
    trashed: bool = False

    model_config = {"frozen": True}

    @property
    def name(self) -> str:
        return PurePosixPath(self.derived_path).name

    @property
    def folder(self) -> str:
        parent = str(PurePosixPath(self.derived_path).parent)
        return "" if parent == "." else parent


class SyncState(BaseModel):
    """Change flags for one document relative to its last sync."""

    has_local_changes: bool = False
    has_remote_changes: bool = False
    has_local_move: bool = False
    has_remote_move: bool = False
    has_remote_delete: bool = False
    local_move_from: str | None = None
    remote_move_from: str | None = None
    delete_reason: DeleteReason | None = None
    remote_deleted_at: datetime | None = None
    updated_metadata: TrackedDocument | None = None

    model_config = {"frozen": True}

    @property
    def has_move_conflict(self) -> bool:
        return self.has_local_move and self.has_remote_move


# ---------------------------------------------------------------------------
# Resolution and decisions
# ---------------------------------------------------------------------------


class ConflictRegion(BaseModel):
    """One overlapping change, as half-open 0-based line ranges."""

    ancestor_start: int
    ancestor_end: int
    local_start: int
    local_end: int
    remote_start: int
    remote_end: int

    model_config = {"frozen": True}

    def describe(self) -> str:
        return (
            f"ancestor lines {self.ancestor_start + 1}-{self.ancestor_end}, "
            f"local lines {self.local_start + 1}-{self.local_end}, "
            f"remote lines {self.remote_start + 1}-{self.remote_end}"
        )


class Resolution(BaseModel):
    """Result of resolving one document changed on both sides.

    ``content`` is the text to keep; for ``UNRESOLVED`` it is the
    marker-annotated text offered for manual resolution.
    """

    outcome: ResolutionOutcome
    content: str
    conflict_markers: list[str] = []
    regions: list[ConflictRegion] = []

    model_config = {"frozen": True}

    @property
    def is_resolved(self) -> bool:
        return self.outcome != ResolutionOutcome.UNRESOLVED


class SyncDecision(BaseModel):
    """What to do with one document, with the exact bodies to write.

    Attributes:
        action: The chosen action.
        merged_content: Result of conflict resolution, when one ran.
        conflict_markers: Human-readable notes on how a conflict was
            handled (or why it was not).
        updated_metadata: Metadata to commit; ``None`` for ``no_change``
            and ``conflict_manual``.
        content_to_write_local: Body to write locally, or ``None``.
        content_to_write_remote: Body to send to the remote service, or
            ``None``.
    """

    action: SyncAction
    merged_content: str | None = None
    conflict_markers: list[str] = []
    updated_metadata: TrackedDocument | None = None
    content_to_write_local: str | None = None
    content_to_write_remote: str | None = None
    local_changed: bool = False
    remote_changed: bool = False

    model_config = {"frozen": True}


class DecisionResult(BaseModel):
    """Envelope returned by the decision engine; never raises."""

    success: bool
    decision: SyncDecision | None = None
    error: str | None = None

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Plans
# ---------------------------------------------------------------------------


class PlanWarning(BaseModel):
    """A destructive-looking or suspicious condition found while planning."""

    type: WarningType
    message: str
    details: dict[str, Any] = {}

    model_config = {"frozen": True}


class PlannedOperation(BaseModel):
    """One scheduled operation for one document.

    Attributes:
        action: What to do.
        local_path: Local document path, if a local side exists.
        identifier: Remote identifier the operation targets.
        target_path: Local path a remote document will be written to.
        previous_identifier: Identifier being replaced by a relink.
        reason: Why the planner chose this action.
        state: Change-detector flags, when the document was compared.
        decision: Dry-run decision for content operations.
    """

    action: PlanAction
    local_path: str | None = None
    identifier: str | None = None
    target_path: str | None = None
    previous_identifier: str | None = None
    reason: str = ""
    state: SyncState | None = None
    decision: SyncDecision | None = None

    model_config = {"frozen": True}


class SyncPlan(BaseModel):
    """Whole-corpus reconciliation result gating bulk execution."""

    operations: list[PlannedOperation] = []
    warnings: list[PlanWarning] = []
    safe: bool = True
    built_at: datetime = Field(default_factory=utcnow)

    model_config = {"frozen": True}

    @property
    def conflicts(self) -> list[PlannedOperation]:
        return [o for o in self.operations if o.action == PlanAction.CONFLICT]

    @property
    def blocking_warnings(self) -> list[PlanWarning]:
        return [
            w
            for w in self.warnings
            if w.type == WarningType.DUPLICATE_DOCUMENT
        ]

    def by_action(self, action: PlanAction) -> list[PlannedOperation]:
        return [o for o in self.operations if o.action == action]


# ---------------------------------------------------------------------------
# Pass results
# ---------------------------------------------------------------------------


class DocumentResult(BaseModel):
    """Outcome of executing one planned operation."""

    local_path: str | None
    identifier: str | None = None
    action: PlanAction
    kind: ResultKind | None = None
    success: bool = True
    error: str | None = None
    detail: str | None = None

    model_config = {"frozen": True}


class PassSummary(BaseModel):
    """Aggregate results for one pass.

    Attributes:
        dry_run: Whether this was a dry-run (no changes applied).
        cancelled: Whether the pass stopped early on request.
        results: Individual document results.
        warnings: Plan warnings surfaced to the operator.
        started_at: When the pass started.
        completed_at: When the pass finished.
    """

    dry_run: bool = False
    cancelled: bool = False
    results: list[DocumentResult] = []
    warnings: list[PlanWarning] = []
    started_at: datetime
    completed_at: datetime | None = None

    model_config = {"frozen": True}

    def _count(self, kind: ResultKind) -> int:
        return sum(1 for r in self.results if r.success and r.kind == kind)

    @property
    def errors(self) -> list[DocumentResult]:
        return [r for r in self.results if not r.success]

    @property
    def conflicts(self) -> list[DocumentResult]:
        return [
            r
            for r in self.results
            if r.success and r.kind == ResultKind.CONFLICTED
        ]

    def counts(self) -> dict[str, int]:
        """Counts by outcome plus ``errors`` and ``total``."""
        return {
            "created": self._count(ResultKind.CREATED),
            "updated": self._count(ResultKind.UPDATED),
            "moved": self._count(ResultKind.MOVED),
            "archived": self._count(ResultKind.ARCHIVED),
            "deleted": self._count(ResultKind.DELETED),
            "skipped": self._count(ResultKind.SKIPPED),
            "conflicted": self._count(ResultKind.CONFLICTED),
            "errors": len(self.errors),
            "total": len(self.results),
        }

    def summary(self) -> str:
        c = self.counts()
        state = "cancelled" if self.cancelled else "completed"
        if self.dry_run:
            state += " (dry run)"
        return (
            f"Sync {state}: {c['created']} created, {c['updated']} updated, "
            f"{c['moved']} moved, {c['archived']} archived, "
            f"{c['conflicted']} conflicted, {c['errors']} errors"
        )


@dataclass
class PassContext:
    """Progress and cooperative cancellation for exactly one pass.

    A fresh context is created per pass and handed by reference to every
    step; nothing about a pass lives in module or manager globals.
    """

    total: int = 0
    current: int = 0
    operation: str = ""
    started_at: datetime = field(default_factory=utcnow)
    skip_paths: frozenset[str] = frozenset()
    dry_run: bool = False
    _cancelled: bool = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def advance(self, operation: str) -> None:
        self.current += 1
        self.operation = operation

    def progress(self) -> dict[str, Any]:
        return {
            "current": self.current,
            "total": self.total,
            "operation": self.operation,
            "started_at": self.started_at.isoformat(),
            "cancelled": self._cancelled,
        }
