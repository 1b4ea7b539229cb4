"""Conflict resolution policies for documents changed on both sides.

Provides one resolver per ``ConflictPolicy``:

- ``PreferLocalResolver`` / ``PreferRemoteResolver``: deterministic,
  timestamps are ignored.
- ``LastWriteWinsResolver``: the newer modification time wins; a tie goes
  to local.
- ``MergeResolver``: three-way merge against the last-synced ancestor;
  overlapping edits come back ``UNRESOLVED`` with conflict markers.

Every resolver is pure: no I/O, no clock, and identical inputs always
produce an identical ``Resolution``.  ``resolve()`` is the entry point;
``create_resolver()`` maps a policy to a resolver instance.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Protocol

from ..config_schema import ConflictPolicy
from .merger import (
    END_MARKER,
    MID_MARKER,
    START_MARKER,
    attempt_merge,
    conflict_regions,
    whole_document_conflict,
)
from .metadata import content_hash
from .models import Resolution, ResolutionOutcome

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class ConflictResolver(Protocol):
    """Protocol that all conflict resolvers must satisfy."""

    def resolve(
        self,
        local: str,
        remote: str,
        ancestor: str | None,
        local_modified_at: datetime | None,
        remote_modified_at: datetime | None,
    ) -> Resolution:
        """Determine the resolution for a document changed on both sides.

        Args:
            local: Current local body.
            remote: Current remote body.
            ancestor: Body at the last sync, or ``None`` if unknown.
            local_modified_at: Local modification time.
            remote_modified_at: Remote modification time.
        """
        ...  # pragma: no cover


def _take_local(local: str, note: str) -> Resolution:
    return Resolution(
        outcome=ResolutionOutcome.TAKE_LOCAL,
        content=local,
        conflict_markers=[note],
    )


def _take_remote(remote: str, note: str) -> Resolution:
    return Resolution(
        outcome=ResolutionOutcome.TAKE_REMOTE,
        content=remote,
        conflict_markers=[note],
    )


# ---------------------------------------------------------------------------
# Simple resolvers
# ---------------------------------------------------------------------------


class PreferLocalResolver:
    """Always resolve conflicts in favour of local content."""

    def resolve(
        self,
        local: str,
        remote: str,
        ancestor: str | None,
        local_modified_at: datetime | None,
        remote_modified_at: datetime | None,
    ) -> Resolution:
        return _take_local(local, "Resolved by prefer-local: kept local")


class PreferRemoteResolver:
    """Always resolve conflicts in favour of remote content."""

    def resolve(
        self,
        local: str,
        remote: str,
        ancestor: str | None,
        local_modified_at: datetime | None,
        remote_modified_at: datetime | None,
    ) -> Resolution:
        return _take_remote(remote, "Resolved by prefer-remote: kept remote")


class LastWriteWinsResolver:
    """Keep the side with the newer modification time.

    Ties, and a missing timestamp on either side, favour local.
    """

    def resolve(
        self,
        local: str,
        remote: str,
        ancestor: str | None,
        local_modified_at: datetime | None,
        remote_modified_at: datetime | None,
    ) -> Resolution:
        if (
            local_modified_at is not None
            and remote_modified_at is not None
            and remote_modified_at > local_modified_at
        ):
            return _take_remote(
                remote, "Resolved by last-write-wins: remote is newer"
            )
        return _take_local(
            local, "Resolved by last-write-wins: local is newer or tied"
        )


# ---------------------------------------------------------------------------
# Merge resolver
# ---------------------------------------------------------------------------


class MergeResolver:
    """Three-way merge with the last-synced body as common ancestor."""

    def resolve(
        self,
        local: str,
        remote: str,
        ancestor: str | None,
        local_modified_at: datetime | None,
        remote_modified_at: datetime | None,
    ) -> Resolution:
        if ancestor is None:
            text, region = whole_document_conflict(local, remote)
            logger.debug("No ancestor available, whole document conflicts")
            return Resolution(
                outcome=ResolutionOutcome.UNRESOLVED,
                content=text,
                conflict_markers=[
                    "No common ancestor; entire document conflicts "
                    f"({region.describe()})"
                ],
                regions=[region],
            )

        ancestor_hash = content_hash(ancestor)
        if content_hash(remote) == ancestor_hash:
            return _take_local(local, "Only local diverged from ancestor")
        if content_hash(local) == ancestor_hash:
            return _take_remote(remote, "Only remote diverged from ancestor")

        merged, has_conflicts = attempt_merge(ancestor, local, remote)
        if not has_conflicts:
            return Resolution(
                outcome=ResolutionOutcome.MERGED,
                content=merged,
                conflict_markers=["Merged disjoint local and remote edits"],
            )

        regions = conflict_regions(ancestor, local, remote)
        return Resolution(
            outcome=ResolutionOutcome.UNRESOLVED,
            content=merged,
            conflict_markers=[
                f"Overlapping edit at {r.describe()}" for r in regions
            ],
            regions=regions,
        )


# ---------------------------------------------------------------------------
# Factory and entry point
# ---------------------------------------------------------------------------

_POLICY_MAP: dict[ConflictPolicy, type] = {
    ConflictPolicy.LAST_WRITE_WINS: LastWriteWinsResolver,
    ConflictPolicy.PREFER_REMOTE: PreferRemoteResolver,
    ConflictPolicy.PREFER_LOCAL: PreferLocalResolver,
    ConflictPolicy.MERGE: MergeResolver,
}


def create_resolver(policy: ConflictPolicy | str) -> ConflictResolver:
    """Create a conflict resolver for the given policy.

    Raises:
        ValueError: If the policy is not recognised.
    """
    try:
        cls = _POLICY_MAP[ConflictPolicy(policy)]
    except ValueError:
        raise ValueError(
            f"Unknown conflict policy: '{policy}'. Valid policies: "
            f"{sorted(p.value for p in ConflictPolicy)}"
        ) from None
    return cls()  # type: ignore[no-any-return]


def resolve(
    local: str,
    remote: str,
    ancestor: str | None,
    policy: ConflictPolicy | str,
    local_modified_at: datetime | None = None,
    remote_modified_at: datetime | None = None,
) -> Resolution:
    """Resolve a document changed on both sides under *policy*.

    Sides that are already equal need no policy and resolve to local.
    """
    if content_hash(local) == content_hash(remote):
        return _take_local(local, "Both sides already identical")
    return create_resolver(policy).resolve(
        local, remote, ancestor, local_modified_at, remote_modified_at
    )


def describe_policy(policy: ConflictPolicy) -> str:
    """Human-readable description of a conflict policy."""
    match policy:
        case ConflictPolicy.LAST_WRITE_WINS:
            return "Use the version that was modified most recently"
        case ConflictPolicy.PREFER_REMOTE:
            return "Always use the remote version when conflicts occur"
        case ConflictPolicy.PREFER_LOCAL:
            return "Always use the local version when conflicts occur"
        case ConflictPolicy.MERGE:
            return "Attempt a three-way merge, fall back to conflict markers"


# ---------------------------------------------------------------------------
# Marker helpers
# ---------------------------------------------------------------------------


def has_unresolved_conflicts(content: str) -> bool:
    """Return ``True`` if *content* still holds a conflict block.

    A bare ``=======`` line is a Markdown heading underline, so both the
    opening and closing markers must be present.
    """
    lines = content.splitlines()
    has_start = any(line.startswith(START_MARKER) for line in lines)
    has_end = any(line.startswith(END_MARKER) for line in lines)
    return has_start and has_end


def strip_conflict_markers(content: str) -> str:
    """Remove marker lines left behind after a manual resolution."""
    kept = [
        line
        for line in content.splitlines(True)
        if not line.startswith((START_MARKER, END_MARKER))
        and line.rstrip("\r\n") != MID_MARKER
    ]
    return "".join(kept)
