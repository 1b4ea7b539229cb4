"""Merging and diffing of document bodies.

``attempt_merge`` runs ``merge3`` over base, local and remote bodies and
wraps overlapping edits in ``<<<<<<< LOCAL`` / ``=======`` /
``>>>>>>> REMOTE`` blocks.  Metadata is never merged here: callers split
it off first.  ``conflict_regions`` returns the overlapping line ranges
without rendering markers, and ``generate_diff`` is a thin ``difflib``
wrapper for reports.
"""

from __future__ import annotations

import difflib

from merge3 import Merge3

from .models import ConflictRegion

START_MARKER = "<<<<<<< LOCAL"
MID_MARKER = "======="
END_MARKER = ">>>>>>> REMOTE"


def _lines(content: str) -> list[str]:
    # A final line without newline would fuse with the marker after it
    if content and not content.endswith("\n"):
        content += "\n"
    return content.splitlines(True)


def attempt_merge(
    base_content: str,
    local_content: str,
    remote_content: str,
) -> tuple[str, bool]:
    """Perform a three-way merge of local and remote changes against a base.

    Args:
        base_content: The common ancestor (last synced) content.
        local_content: The current local body.
        remote_content: The current remote body.

    Returns:
        A tuple of ``(merged_text, has_conflicts)`` where *merged_text* is
        the result of the merge (possibly containing conflict markers) and
        *has_conflicts* is ``True`` if conflict markers are present.
    """
    m3 = Merge3(
        _lines(base_content), _lines(local_content), _lines(remote_content)
    )

    merged_text = "".join(
        m3.merge_lines(
            name_a="LOCAL",
            name_b="REMOTE",
            start_marker="<<<<<<<",
            mid_marker=MID_MARKER,
            end_marker=">>>>>>>",
        )
    )
    has_conflicts = START_MARKER in merged_text

    # Neither side ended with a newline: do not invent one
    if (
        not has_conflicts
        and merged_text.endswith("\n")
        and not local_content.endswith("\n")
        and not remote_content.endswith("\n")
    ):
        merged_text = merged_text[:-1]

    return merged_text, has_conflicts


def conflict_regions(
    base_content: str,
    local_content: str,
    remote_content: str,
) -> list[ConflictRegion]:
    """Return every region where local and remote changed the same lines."""
    m3 = Merge3(
        _lines(base_content), _lines(local_content), _lines(remote_content)
    )
    regions: list[ConflictRegion] = []
    for region in m3.merge_regions():
        if region[0] != "conflict":
            continue
        _, z_start, z_end, a_start, a_end, b_start, b_end = region
        regions.append(
            ConflictRegion(
                ancestor_start=z_start,
                ancestor_end=z_end,
                local_start=a_start,
                local_end=a_end,
                remote_start=b_start,
                remote_end=b_end,
            )
        )
    return regions


def whole_document_conflict(
    local_content: str, remote_content: str
) -> tuple[str, ConflictRegion]:
    """Mark the entire document as conflicting (no common ancestor)."""
    local_lines = _lines(local_content)
    remote_lines = _lines(remote_content)
    text = "".join(
        [START_MARKER + "\n", *local_lines, MID_MARKER + "\n"]
        + [*remote_lines, END_MARKER + "\n"]
    )
    region = ConflictRegion(
        ancestor_start=0,
        ancestor_end=0,
        local_start=0,
        local_end=len(local_lines),
        remote_start=0,
        remote_end=len(remote_lines),
    )
    return text, region


def generate_diff(
    old_content: str,
    new_content: str,
    label_old: str = "old",
    label_new: str = "new",
) -> str:
    """Generate a unified diff between two strings.

    Returns:
        A unified diff string.  Empty string if the contents are identical.
    """
    diff_lines = difflib.unified_diff(
        old_content.splitlines(True),
        new_content.splitlines(True),
        fromfile=label_old,
        tofile=label_new,
    )
    return "".join(diff_lines)
