"""Bidirectional document sync engine.

Reconciles a local folder of documents with a remote document service.
Each linked document carries its sync metadata in YAML frontmatter; both
sides are compared against what was last synced, never against each
other directly.

Modules:

- ``engine``     -- ``SyncEngine``: plans and executes one pass.
- ``planner``    -- ``PlanBuilder``: whole-corpus plan with safety warnings.
- ``detector``   -- ``ChangeDetector``: per-document change/move/delete state.
- ``decision``   -- ``SyncDecisionEngine``: push/pull/merge/conflict.
- ``handler``    -- ``DeletionAndMoveHandler``: moves, deletes, archive.
- ``resolver``   -- Conflict policies (prefer-local, prefer-remote,
  last-write-wins, merge).
- ``merger``     -- Three-way merge via the ``merge3`` library.
- ``metadata``   -- Frontmatter codec and content hashing.
- ``mapper``     -- ``FolderMapper``: local paths <-> remote folders.
- ``state``      -- ``SnapshotStore``: ancestor bodies for merges.
- ``background`` -- ``BackgroundSyncManager``: timer and debounce.
- ``reporter``   -- Human-readable and JSON report formatting.

Usage example
-------------
::

    from pathlib import Path
    from docsync.config_loader import load_config
    from docsync.file_handler import FilesystemStorage
    from docsync.logger import setup_logging
    from docsync.sync import SyncEngine, format_pass_summary
    from docsync.sync.models import PassContext

    config = load_config()
    setup_logging(config=config.logging)
    storage = FilesystemStorage.from_policy(Path("notes"), config.policy)
    engine = SyncEngine(remote_client, storage, config=config,
                        state_dir=Path("notes/.docsync"))

    preview = await engine.run_pass(PassContext(dry_run=True))
    print(format_pass_summary(preview))
"""

from .background import BackgroundSyncManager
from .engine import SyncEngine
from .mapper import FolderMapper
from .models import (
    PassContext,
    PassSummary,
    PlanAction,
    SyncAction,
    SyncPlan,
    TrackedDocument,
)
from .reporter import (
    format_conflict_diff,
    format_pass_summary,
    format_plan,
    plan_to_json,
    summary_to_json,
)
from .state import SnapshotStore

__all__ = [
    "BackgroundSyncManager",
    "FolderMapper",
    "PassContext",
    "PassSummary",
    "PlanAction",
    "SnapshotStore",
    "SyncAction",
    "SyncEngine",
    "SyncPlan",
    "TrackedDocument",
    "format_conflict_diff",
    "format_pass_summary",
    "format_plan",
    "plan_to_json",
    "summary_to_json",
]
