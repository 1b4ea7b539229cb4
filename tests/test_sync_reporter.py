"""Tests for sync reporter formatting functions.

Covers:
- format_pass_summary with various result combinations
- format_plan grouping, safety header and warnings
- format_conflict_diff with diffs and merge preview
- summary_to_json / plan_to_json structure
"""

from __future__ import annotations

import json

from conftest import T0, at

from docsync.sync.models import (
    DocumentResult,
    PassSummary,
    PlanAction,
    PlannedOperation,
    PlanWarning,
    ResultKind,
    SyncPlan,
    WarningType,
)
from docsync.sync.reporter import (
    format_conflict_diff,
    format_pass_summary,
    format_plan,
    plan_to_json,
    summary_to_json,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _result(path, kind=ResultKind.UPDATED, action=PlanAction.PUSH, **kwargs):
    return DocumentResult(local_path=path, action=action, kind=kind, **kwargs)


def _summary(results=None, **kwargs) -> PassSummary:
    return PassSummary(
        results=results or [],
        started_at=T0,
        completed_at=at(1),
        **kwargs,
    )


DUPLICATE = PlanWarning(
    type=WarningType.DUPLICATE_DOCUMENT,
    message="doc-1 is linked to 2 local documents",
)


# ---------------------------------------------------------------------------
# format_pass_summary
# ---------------------------------------------------------------------------


class TestFormatPassSummary:
    def test_sections(self):
        text = format_pass_summary(
            _summary(
                [
                    _result(
                        "notes/a.md", ResultKind.CREATED,
                        PlanAction.CREATE_REMOTE, identifier="new-1",
                    ),
                    _result("notes/b.md", detail="push"),
                    _result(
                        "notes/c.md", None, success=False, error="503 from server"
                    ),
                ]
            )
        )

        assert text.startswith("Sync pass\n")
        assert "Created:\n  notes/a.md <-> new-1" in text
        assert "Updated:\n  notes/b.md: push" in text
        assert "Errors:\n  notes/c.md: 503 from server" in text
        assert "1 created, 1 updated" in text
        assert "Moved:" not in text

    def test_dry_run_and_cancelled_header(self):
        text = format_pass_summary(_summary(dry_run=True, cancelled=True))
        assert text.splitlines()[0] == "Sync pass (DRY RUN) (CANCELLED)"

    def test_skipped_counted_not_listed(self):
        text = format_pass_summary(
            _summary(
                [
                    _result("a.md", ResultKind.SKIPPED, PlanAction.SKIP),
                    _result("b.md", ResultKind.SKIPPED, PlanAction.SKIP),
                ]
            )
        )
        assert "Skipped: 2 documents" in text
        assert "a.md" not in text

    def test_conflicts_and_warnings(self):
        text = format_pass_summary(
            _summary(
                [
                    _result(
                        "notes/a.md", ResultKind.CONFLICTED,
                        PlanAction.CONFLICT, detail="overlapping edits",
                    )
                ],
                warnings=[DUPLICATE],
            )
        )
        assert "Conflicts:\n  notes/a.md: overlapping edits" in text
        assert "[duplicate-document] doc-1 is linked" in text


# ---------------------------------------------------------------------------
# format_plan
# ---------------------------------------------------------------------------


class TestFormatPlan:
    def test_groups_in_order(self):
        plan = SyncPlan(
            operations=[
                PlannedOperation(
                    action=PlanAction.PULL, local_path="b.md", identifier="doc-2"
                ),
                PlannedOperation(
                    action=PlanAction.CREATE_REMOTE, local_path="a.md",
                    reason="local document has no remote copy",
                ),
                PlannedOperation(
                    action=PlanAction.REMOTE_MOVE, local_path="c.md",
                    target_path="x/c.md", identifier="doc-3",
                ),
                PlannedOperation(action=PlanAction.SKIP, local_path="d.md"),
            ]
        )
        text = format_plan(plan)

        assert text.splitlines()[0] == "Sync plan (SAFE)"
        assert text.index("[CREATE REMOTE]") < text.index("[PULL]")
        assert "  a.md (local document has no remote copy)" in text
        assert "  b.md <-> doc-2" in text
        assert "  c.md -> x/c.md <-> doc-3" in text
        assert "Skipped: 1 documents" in text
        assert "No changes needed." not in text

    def test_unsafe_with_warnings(self):
        plan = SyncPlan(warnings=[DUPLICATE], safe=False)
        text = format_plan(plan)

        assert "UNSAFE" in text.splitlines()[0]
        assert "No changes needed." in text
        assert "Warnings:\n  [duplicate-document]" in text


# ---------------------------------------------------------------------------
# format_conflict_diff
# ---------------------------------------------------------------------------


class TestFormatConflictDiff:
    def test_diff_and_preview(self):
        merged = "\n".join(f"line {i}" for i in range(25))
        text = format_conflict_diff(
            "notes/a.md", "one\ntwo\n", "one\nthree\n",
            merged_content=merged, identifier="doc-1", preview_lines=3,
        )

        assert text.startswith("Conflict: notes/a.md <-> doc-1")
        assert "--- local: notes/a.md" in text
        assert "+++ remote: doc-1" in text
        assert "-two" in text
        assert "+three" in text
        assert "  line 2" in text
        assert "  line 3" not in text
        assert "... (22 more lines)" in text

    def test_identical(self):
        text = format_conflict_diff("a.md", "same\n", "same\n")
        assert "(no textual differences)" in text
        assert "Merge result preview" not in text


# ---------------------------------------------------------------------------
# JSON
# ---------------------------------------------------------------------------


class TestJson:
    def test_summary_to_json(self):
        data = summary_to_json(
            _summary(
                [
                    _result("a.md", ResultKind.CREATED, identifier="new-1"),
                    _result("b.md", None, success=False, error="boom"),
                ]
            )
        )

        json.dumps(data)
        assert data["counts"]["created"] == 1
        assert data["counts"]["errors"] == 1
        assert data["results"][0] == {
            "local_path": "a.md",
            "identifier": "new-1",
            "action": "push",
            "success": True,
            "kind": "created",
        }
        assert "kind" not in data["results"][1]
        assert data["completed_at"] == at(1).isoformat()

    def test_plan_to_json(self):
        plan = SyncPlan(
            operations=[
                PlannedOperation(
                    action=PlanAction.LINK, local_path="a.md",
                    identifier="doc-1", previous_identifier="old-1",
                )
            ],
            warnings=[DUPLICATE],
            safe=False,
        )
        data = plan_to_json(plan)

        json.dumps(data)
        assert data["safe"] is False
        assert data["operations"] == [
            {
                "action": "link",
                "local_path": "a.md",
                "identifier": "doc-1",
                "previous_identifier": "old-1",
                "reason": "",
            }
        ]
        assert data["warnings"][0]["type"] == "duplicate-document"
