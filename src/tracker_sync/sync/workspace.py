"""Named snapshots of issue records.

A workspace is a directory under ``.tracker/workspaces/{name}`` with the
same ``issues/``, ``mappings/`` and ``attic/`` layout as a data
directory.  Saving into an existing workspace merges rather than
overwrites, and importing merges back into a data directory.  The
workspace called ``outbox`` holds changes that could not be pushed yet
and is drained by a successful import.
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Iterable
from pathlib import Path

from tracker_sync.errors import WorkspaceNotFoundError
from tracker_sync.id_mapping import load_id_mapping, merge_id_mappings, save_id_mapping
from tracker_sync.models import Issue
from tracker_sync.paths import ATTIC_DIR, OUTBOX, workspace_dir, workspaces_dir
from tracker_sync.storage import list_issues, try_read_issue, write_issue
from tracker_sync.sync.attic import AtticStore
from tracker_sync.sync.filter import get_updated_issues
from tracker_sync.sync.merger import overlay_issue
from tracker_sync.sync.models import ImportResult, SaveResult
from tracker_sync.validators import validate_workspace_name

logger = logging.getLogger(__name__)


def resolve_workspace_dir(
    root: Path,
    *,
    name: str | None = None,
    outbox: bool = False,
    directory: Path | None = None,
) -> Path:
    """Pick the workspace directory: explicit *directory*, outbox, or *name*.

    Raises:
        ValueError: If no target is given or the name is invalid.
    """
    if directory is not None:
        return Path(directory)
    if outbox:
        name = OUTBOX
    if not name:
        raise ValueError("A workspace name, outbox or directory is required")
    is_valid, message = validate_workspace_name(name)
    if not is_valid:
        raise ValueError(message)
    return workspace_dir(root, name)


def _merge_into(
    target_dir: Path,
    incoming: Issue,
    existing: Issue | None,
    attic: AtticStore,
) -> int:
    """Write *incoming* into *target_dir*, merging with *existing*.

    The newer copy wins field by field; values it displaces or rejects
    go to *attic*.  Returns the number of conflicts.
    """
    if existing is None:
        write_issue(target_dir, incoming)
        return 0
    result = overlay_issue(existing, incoming)
    if result.conflicts:
        attic.record(result.conflicts, existing, incoming)
    if result.merged != existing:
        write_issue(target_dir, result.merged)
    return len(result.conflicts)


# ------------------------------------------------------------------
# Save
# ------------------------------------------------------------------


def save_to_workspace(
    root: Path,
    data_dir: Path,
    *,
    name: str | None = None,
    outbox: bool = False,
    directory: Path | None = None,
    updates_only: bool = False,
    baseline: Iterable[Issue] | None = None,
) -> SaveResult:
    """Copy the records in *data_dir* into a workspace.

    Args:
        root: Repository root.
        data_dir: Source data directory.
        name: Workspace name.
        outbox: Target the outbox; implies *updates_only*.
        directory: Explicit target directory, overriding name/outbox.
        updates_only: Only save records that differ from *baseline*.
        baseline: Records to compare against (usually the remote's).

    Returns:
        A ``SaveResult``.  Id mappings are copied only for the records
        actually saved.
    """
    target = resolve_workspace_dir(root, name=name, outbox=outbox, directory=directory)
    if outbox:
        updates_only = True

    issues = list_issues(data_dir)
    if updates_only and baseline is not None:
        issues = get_updated_issues(issues, baseline)

    attic = AtticStore(target / ATTIC_DIR)
    conflicts = 0
    for issue in issues:
        conflicts += _merge_into(target, issue, try_read_issue(target, issue.id), attic)

    mappings_copied = 0
    if issues:
        wanted = load_id_mapping(data_dir).subset(issue.id for issue in issues)
        if len(wanted):
            save_id_mapping(target, merge_id_mappings(load_id_mapping(target), wanted))
            mappings_copied = len(wanted)

    logger.info(
        "Saved %d issue(s) to %s (%d conflict(s))", len(issues), target, conflicts
    )
    return SaveResult(
        saved=len(issues),
        conflicts=conflicts,
        target_dir=str(target),
        mappings_copied=mappings_copied,
    )


# ------------------------------------------------------------------
# Import
# ------------------------------------------------------------------


def import_from_workspace(
    root: Path,
    data_dir: Path,
    *,
    name: str | None = None,
    outbox: bool = False,
    directory: Path | None = None,
    clear_on_success: bool | None = None,
) -> ImportResult:
    """Merge a workspace's records into *data_dir*.

    Each record is laid over the destination copy with
    ``overlay_issue()``, so an older workspace copy never reverts newer
    destination edits.  Displaced values go to the destination attic
    and id mappings are unioned.

    Args:
        clear_on_success: Delete the workspace after a non-empty import.
            Defaults to ``True`` for the outbox, ``False`` otherwise.
            Explicit directories are never deleted.

    Raises:
        WorkspaceNotFoundError: If the workspace does not exist.
    """
    source = resolve_workspace_dir(root, name=name, outbox=outbox, directory=directory)
    if not source.is_dir():
        raise WorkspaceNotFoundError(str(source))
    if clear_on_success is None:
        clear_on_success = outbox

    data_dir = Path(data_dir)
    attic = AtticStore(data_dir / ATTIC_DIR)
    incoming = list_issues(source)
    conflicts = 0
    for issue in incoming:
        conflicts += _merge_into(data_dir, issue, try_read_issue(data_dir, issue.id), attic)

    workspace_mapping = load_id_mapping(source)
    if len(workspace_mapping):
        save_id_mapping(
            data_dir, merge_id_mappings(load_id_mapping(data_dir), workspace_mapping)
        )

    cleared = False
    if clear_on_success and directory is None and incoming:
        shutil.rmtree(source)
        cleared = True

    logger.info(
        "Imported %d issue(s) from %s (%d conflict(s))%s",
        len(incoming),
        source,
        conflicts,
        "; workspace cleared" if cleared else "",
    )
    return ImportResult(
        imported=len(incoming),
        conflicts=conflicts,
        source_dir=str(source),
        cleared=cleared,
    )


# ------------------------------------------------------------------
# Listing
# ------------------------------------------------------------------


def list_workspaces(root: Path) -> list[str]:
    base = workspaces_dir(root)
    if not base.is_dir():
        return []
    return sorted(entry.name for entry in base.iterdir() if entry.is_dir())


def workspace_exists(root: Path, name: str) -> bool:
    return resolve_workspace_dir(root, name=name).is_dir()


def delete_workspace(root: Path, name: str) -> None:
    """Remove a named workspace.

    Raises:
        WorkspaceNotFoundError: If it does not exist.
    """
    target = resolve_workspace_dir(root, name=name)
    if not target.is_dir():
        raise WorkspaceNotFoundError(str(target))
    shutil.rmtree(target)
    logger.info("Deleted workspace %s", name)
