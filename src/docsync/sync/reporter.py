"""Sync report formatting functions.

Provides human-readable and machine-readable output for sync passes:

- ``format_pass_summary`` -- full post-pass summary.
- ``format_plan`` -- plan preview grouped by action.
- ``format_conflict_diff`` -- unified diff for manual conflict review.
- ``summary_to_json`` / ``plan_to_json`` -- structured dicts.
"""

from __future__ import annotations

from collections import defaultdict
from typing import TYPE_CHECKING

from .merger import generate_diff
from .models import PlanAction, ResultKind

if TYPE_CHECKING:
    from .models import DocumentResult, PassSummary, SyncPlan

_KIND_HEADINGS: list[tuple[ResultKind, str]] = [
    (ResultKind.CREATED, "Created"),
    (ResultKind.UPDATED, "Updated"),
    (ResultKind.MOVED, "Moved"),
    (ResultKind.ARCHIVED, "Archived"),
    (ResultKind.DELETED, "Deleted"),
    (ResultKind.CONFLICTED, "Conflicts"),
]

_PLAN_ORDER = [
    PlanAction.CREATE_REMOTE,
    PlanAction.CREATE_LOCAL,
    PlanAction.LINK,
    PlanAction.PUSH,
    PlanAction.PULL,
    PlanAction.MERGE,
    PlanAction.LOCAL_MOVE,
    PlanAction.REMOTE_MOVE,
    PlanAction.MOVE_CONFLICT,
    PlanAction.REMOTE_DELETE,
    PlanAction.CONFLICT,
]


def _label(result: DocumentResult) -> str:
    path = result.local_path or "?"
    if result.identifier:
        return f"{path} <-> {result.identifier}"
    return path


# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_pass_summary(summary: PassSummary) -> str:
    """Format a completed pass as human-readable text.

    Sections are only included when they contain at least one result.
    Skipped documents are summarised by count only.
    """
    lines: list[str] = []

    header = "Sync pass"
    if summary.dry_run:
        header += " (DRY RUN)"
    if summary.cancelled:
        header += " (CANCELLED)"
    lines.append(header)
    lines.append(f"Started: {summary.started_at.isoformat()}")
    if summary.completed_at:
        lines.append(f"Completed: {summary.completed_at.isoformat()}")
    lines.append("")
    lines.append(summary.summary())
    lines.append("")

    successes = [r for r in summary.results if r.success]
    for kind, heading in _KIND_HEADINGS:
        matching = [r for r in successes if r.kind == kind]
        if not matching:
            continue
        lines.append(f"{heading}:")
        for r in matching:
            detail = f": {r.detail}" if r.detail else ""
            lines.append(f"  {_label(r)}{detail}")
        lines.append("")

    if summary.errors:
        lines.append("Errors:")
        for r in summary.errors:
            lines.append(f"  {_label(r)}: {r.error}")
        lines.append("")

    if summary.warnings:
        lines.append("Warnings:")
        for w in summary.warnings:
            lines.append(f"  [{w.type.value}] {w.message}")
        lines.append("")

    skipped = summary.counts()["skipped"]
    if skipped > 0:
        lines.append(f"Skipped: {skipped} documents")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Plan preview
# ------------------------------------------------------------------


def format_plan(plan: SyncPlan) -> str:
    """Format a plan grouped by action, followed by its warnings."""
    lines: list[str] = []
    status = "SAFE" if plan.safe else "UNSAFE -- nothing will be executed"
    lines.append(f"Sync plan ({status})")
    lines.append("")

    groups: dict[PlanAction, list[str]] = defaultdict(list)
    for op in plan.operations:
        target = op.local_path or op.target_path or "?"
        if op.target_path and op.local_path and op.target_path != op.local_path:
            target = f"{op.local_path} -> {op.target_path}"
        if op.identifier:
            target += f" <-> {op.identifier}"
        if op.reason:
            target += f" ({op.reason})"
        groups[op.action].append(target)

    for action in _PLAN_ORDER:
        if action not in groups:
            continue
        lines.append(f"[{action.value.upper().replace('_', ' ')}]")
        for entry in groups[action]:
            lines.append(f"  {entry}")
        lines.append("")

    skip_count = len(groups.get(PlanAction.SKIP, []))
    if skip_count > 0:
        lines.append(f"Skipped: {skip_count} documents")
        lines.append("")

    if not any(a != PlanAction.SKIP for a in groups):
        lines.append("No changes needed.")
        lines.append("")

    if plan.warnings:
        lines.append("Warnings:")
        for w in plan.warnings:
            lines.append(f"  [{w.type.value}] {w.message}")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Conflict diff
# ------------------------------------------------------------------


def format_conflict_diff(
    local_path: str,
    local_content: str,
    remote_content: str,
    merged_content: str | None = None,
    identifier: str | None = None,
    preview_lines: int = 20,
) -> str:
    """Format one conflict for manual review.

    Shows a unified diff between the local and remote bodies, plus a
    preview of the merge result when one is available.
    """
    remote_label = identifier or "remote"
    lines = [f"Conflict: {local_path} <-> {remote_label}", ""]

    diff_text = generate_diff(
        local_content,
        remote_content,
        label_old=f"local: {local_path}",
        label_new=f"remote: {remote_label}",
    )
    lines.append(diff_text.rstrip() if diff_text else "(no textual differences)")
    lines.append("")

    if merged_content is not None:
        lines.append("--- Merge result preview ---")
        merge_lines = merged_content.splitlines()
        for ml in merge_lines[:preview_lines]:
            lines.append(f"  {ml}")
        if len(merge_lines) > preview_lines:
            lines.append(
                f"  ... ({len(merge_lines) - preview_lines} more lines)"
            )
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def summary_to_json(summary: PassSummary) -> dict:
    """Convert a pass summary to a JSON-serialisable dict."""
    results = []
    for r in summary.results:
        entry: dict = {
            "local_path": r.local_path,
            "identifier": r.identifier,
            "action": r.action.value,
            "success": r.success,
        }
        if r.kind is not None:
            entry["kind"] = r.kind.value
        if r.error:
            entry["error"] = r.error
        if r.detail:
            entry["detail"] = r.detail
        results.append(entry)

    return {
        "dry_run": summary.dry_run,
        "cancelled": summary.cancelled,
        "started_at": summary.started_at.isoformat(),
        "completed_at": (
            summary.completed_at.isoformat() if summary.completed_at else None
        ),
        "counts": summary.counts(),
        "results": results,
        "warnings": [w.model_dump(mode="json") for w in summary.warnings],
    }


def plan_to_json(plan: SyncPlan) -> dict:
    """Convert a plan to a JSON-serialisable dict."""
    return {
        "safe": plan.safe,
        "built_at": plan.built_at.isoformat(),
        "operations": [
            op.model_dump(
                mode="json", exclude={"state", "decision"}, exclude_none=True
            )
            for op in plan.operations
        ],
        "warnings": [w.model_dump(mode="json") for w in plan.warnings],
    }
