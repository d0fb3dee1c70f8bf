"""Peer-to-peer sync of issue records over a git branch.

Architecture
------------
Issue records live as one Markdown file each on a dedicated sync branch,
checked out in its own git worktree.  A sync cycle commits local edits,
merges the remote branch and pushes.  When git cannot merge an issue file
textually, the file is merged **field by field**: each field has a
strategy (immutable, last-write-wins, set union, version counter) and
values lost to last-write-wins are kept in an append-only attic.

Modules:

- ``engine``      -- ``SyncEngine``: orchestrates a full sync cycle.
- ``merger``      -- ``merge_issues``: field-level three-way merge, and
  ``overlay_issue`` for snapshots without an ancestor.
- ``worktree``    -- ``WorktreeManager``: health, init, repair, migration.
- ``consistency`` -- commit-position checks for worktree and branches.
- ``workspace``   -- named snapshots and the outbox.
- ``filter``      -- ``get_updated_issues``: substantive-change filter.
- ``attic``       -- ``AtticStore``: conflict log.
- ``models``      -- result and report data contracts.
- ``reporter``    -- human-readable and JSON report formatting.

Usage example
-------------
::

    from pathlib import Path
    from tracker_sync.config import load_settings
    from tracker_sync.sync import SyncEngine, format_sync_report

    root = Path(".")
    engine = SyncEngine(root, load_settings(root))

    preview = engine.run(dry_run=True)
    print(format_sync_report(preview))

    report = engine.run()
    print(format_sync_report(report))
"""

from .attic import AtticStore
from .consistency import (
    check_local_branch_health,
    check_remote_branch_health,
    check_sync_consistency,
)
from .engine import SyncEngine
from .filter import get_updated_issues
from .merger import issues_substantively_equal, merge_issues, overlay_issue
from .models import (
    ConflictRecord,
    MergeResult,
    SyncReport,
    SyncStatus,
    WorktreeHealth,
    WorktreeStatus,
)
from .reporter import (
    format_conflict,
    format_dry_run_preview,
    format_status,
    format_sync_report,
    report_to_json,
)
from .workspace import (
    delete_workspace,
    import_from_workspace,
    list_workspaces,
    save_to_workspace,
    workspace_exists,
)
from .worktree import WorktreeManager

__all__ = [
    "AtticStore",
    "ConflictRecord",
    "MergeResult",
    "SyncEngine",
    "SyncReport",
    "SyncStatus",
    "WorktreeHealth",
    "WorktreeManager",
    "WorktreeStatus",
    "check_local_branch_health",
    "check_remote_branch_health",
    "check_sync_consistency",
    "delete_workspace",
    "format_conflict",
    "format_dry_run_preview",
    "format_status",
    "format_sync_report",
    "get_updated_issues",
    "import_from_workspace",
    "issues_substantively_equal",
    "list_workspaces",
    "merge_issues",
    "overlay_issue",
    "report_to_json",
    "save_to_workspace",
    "workspace_exists",
]
