"""Text and JSON renderings of sync reports.

Functions:

- ``format_sync_report``: summary of a finished sync.
- ``format_dry_run_preview``: planned actions of a dry run.
- ``format_conflict``: one resolved field conflict.
- ``format_status``: worktree health and branch positions.
- ``report_to_json``: structured dict for JSON output.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from .models import ConflictRecord, SyncReport, SyncStatus

# Longest rendering of a lost or winning value before it is cut.
VALUE_PREVIEW_CHARS = 80


def _preview(value: Any) -> str:
    if value is None:
        return "(none)"
    text = value if isinstance(value, str) else json.dumps(value, sort_keys=True, default=str)
    text = text.replace("\n", "\\n")
    if len(text) > VALUE_PREVIEW_CHARS:
        return text[: VALUE_PREVIEW_CHARS - 3] + "..."
    return text


# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def format_sync_report(report: SyncReport) -> str:
    """Render the post-sync summary shown after a real run.

    Sections are only included when they contain something.

    Args:
        report: The completed sync report.

    Returns:
        Multi-line formatted string.
    """
    if report.dry_run:
        return format_dry_run_preview(report)

    lines: list[str] = []

    # Header
    lines.append(f"Sync report for {report.remote}/{report.branch}")
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append("")

    if report.in_sync:
        lines.append("Already in sync.")
    else:
        lines.append(
            f"Received {report.received_commits} commit(s), "
            f"sent {report.sent_commits} commit(s), "
            f"{len(report.conflicts)} conflict(s)"
        )
    lines.append("")

    if report.repair is not None:
        lines.append(f"Repaired worktree (was {report.repair.repaired_from})")
        if report.repair.backup_path:
            lines.append(f"  backup: {report.repair.backup_path}")
        lines.append("")

    if report.migrated_count:
        lines.append(f"Migrated {report.migrated_count} misplaced file(s) into the worktree")
        lines.append("")

    if report.conflicts:
        lines.append("Conflicts (losing values kept in the attic):")
        for conflict in report.conflicts:
            lines.append(f"  {format_conflict(conflict)}")
        lines.append("")

    if report.push_error:
        lines.append(
            f"Push failed after {report.push_attempts} attempt(s) "
            f"[{report.error_type}]:"
        )
        lines.append(f"  {report.push_error}")
        if report.outbox_saved:
            lines.append(f"  {report.outbox_saved} issue(s) saved to the outbox")
        lines.append("")

    if report.outbox_imported:
        lines.append(f"Imported {report.outbox_imported} issue(s) from the outbox")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Dry-run preview
# ------------------------------------------------------------------


def format_dry_run_preview(report: SyncReport) -> str:
    """Format the planned actions of a dry run, one per line."""
    lines: list[str] = []
    lines.append("Dry run: nothing will be written or pushed")
    lines.append(f"Branch: {report.remote}/{report.branch}")
    if report.worktree_status:
        lines.append(f"Worktree: {report.worktree_status}")
    lines.append("")

    for action in report.actions:
        lines.append(f"  {action}")
    if not report.actions:
        lines.append("No changes needed.")

    return "\n".join(lines).rstrip()


def format_conflict(conflict: ConflictRecord) -> str:
    """One line: ``<issue> <field>: kept <winner> (<side>), lost <loser>``."""
    return (
        f"{conflict.issue_id} {conflict.field} [{conflict.resolution}]: "
        f"kept {_preview(conflict.winner_value)} ({conflict.winner_source}), "
        f"lost {_preview(conflict.lost_value)} ({conflict.loser_source})"
    )


def format_status(status: SyncStatus) -> str:
    """Format worktree health, branch positions and pending changes."""
    health = status.health
    lines = [f"Worktree: {health.status}"]
    if health.error:
        lines.append(f"  {health.error}")
    if health.valid:
        lines.append(f"  branch: {health.branch or '(detached HEAD)'}")
        lines.append(f"  commit: {health.commit}")

    consistency = status.consistency
    if consistency is not None:
        lines.append(
            f"Branch {consistency.branch}: "
            f"{consistency.local_ahead} ahead, {consistency.local_behind} behind "
            f"{consistency.remote}/{consistency.branch}"
        )
        for defect in consistency.defects:
            lines.append(f"  defect: {defect}")

    if status.pending_changes:
        lines.append(f"Uncommitted changes: {len(status.pending_changes)}")
        for change in status.pending_changes:
            lines.append(f"  {change}")

    return "\n".join(lines)


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: SyncReport) -> dict:
    """Plain-dict view of *report*, safe to pass to ``json.dumps``.

    Args:
        report: The sync report.

    Returns:
        Dict with branch info, counts, and per-conflict details.
    """
    conflicts_list = []
    for c in report.conflicts:
        conflicts_list.append(
            {
                "issue_id": c.issue_id,
                "field": c.field,
                "resolution": c.resolution,
                "winner_source": c.winner_source,
                "winner_value": c.winner_value,
                "lost_value": c.lost_value,
                "local_version": c.local_version,
                "remote_version": c.remote_version,
                "timestamp": c.timestamp,
            }
        )

    result: dict = {
        "branch": report.branch,
        "remote": report.remote,
        "dry_run": report.dry_run,
        "success": report.success,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "worktree_status": report.worktree_status,
        "counts": {
            "migrated": report.migrated_count,
            "received_commits": report.received_commits,
            "sent_commits": report.sent_commits,
            "conflicts": len(report.conflicts),
            "push_attempts": report.push_attempts,
            "outbox_saved": report.outbox_saved,
            "outbox_imported": report.outbox_imported,
        },
        "conflicts": conflicts_list,
        "actions": list(report.actions),
    }
    if report.push_error:
        result["error"] = {"message": report.push_error, "type": report.error_type}
    return result
