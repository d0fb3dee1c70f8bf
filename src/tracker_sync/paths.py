"""Repository-relative locations used by the sync engine.

Every function takes the repository root explicitly; nothing here
depends on the process working directory.
"""

from __future__ import annotations

from pathlib import Path

from .errors import WorktreeMissingError

TRACKER_DIR = ".tracker"
DATA_SYNC_DIR_NAME = "data-sync"
WORKTREE_DIR_NAME = "data-sync-worktree"
WORKSPACES_DIR_NAME = "workspaces"
BACKUPS_DIR_NAME = "backups"

ISSUES_DIR = "issues"
MAPPINGS_DIR = "mappings"
ATTIC_DIR = "attic"
META_FILE = "meta.yml"

SYNC_BRANCH = "tracker-sync"
DEFAULT_REMOTE = "origin"
OUTBOX = "outbox"


def tracker_dir(root: Path) -> Path:
    return Path(root) / TRACKER_DIR


def worktree_path(root: Path) -> Path:
    """``<root>/.tracker/data-sync-worktree``"""
    return tracker_dir(root) / WORKTREE_DIR_NAME


def worktree_data_dir(root: Path) -> Path:
    """Data directory inside the worktree, as committed on the sync branch."""
    return worktree_path(root) / TRACKER_DIR / DATA_SYNC_DIR_NAME


def legacy_data_dir(root: Path) -> Path:
    """Data directory outside the worktree; data found here is misplaced."""
    return tracker_dir(root) / DATA_SYNC_DIR_NAME


def workspaces_dir(root: Path) -> Path:
    return tracker_dir(root) / WORKSPACES_DIR_NAME


def workspace_dir(root: Path, name: str) -> Path:
    return workspaces_dir(root) / name


def backups_dir(root: Path) -> Path:
    return tracker_dir(root) / BACKUPS_DIR_NAME


def data_subdirs(data_dir: Path) -> tuple[Path, Path, Path]:
    """(issues, mappings, attic) directories under *data_dir*."""
    data_dir = Path(data_dir)
    return (data_dir / ISSUES_DIR, data_dir / MAPPINGS_DIR, data_dir / ATTIC_DIR)


def resolve_data_sync_dir(root: Path, allow_fallback: bool = True) -> Path:
    """Pick the data directory for reads and writes.

    Returns the worktree data directory when it exists.  Otherwise the
    legacy location is returned, unless *allow_fallback* is ``False``.

    Raises:
        WorktreeMissingError: When the worktree data directory is absent
            and fallback is disabled.
    """
    in_worktree = worktree_data_dir(root)
    if in_worktree.is_dir():
        return in_worktree
    if not allow_fallback:
        raise WorktreeMissingError(
            f"Sync worktree not found at {worktree_path(root)}. "
            "Run a sync or repair to create it."
        )
    return legacy_data_dir(root)
