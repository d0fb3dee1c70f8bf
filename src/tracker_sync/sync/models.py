"""Pydantic models for the sync engine.

Defines the data contracts shared across the sync modules:

- ``ConflictRecord``: a value lost during a field-level merge.
- ``MergeResult``: merged issue plus its conflicts.
- ``AtticEntry``: on-disk form of a conflict in the attic.
- ``WorktreeStatus`` / ``WorktreeHealth``: health of the sync worktree.
- ``BranchHealth`` / ``SyncConsistency``: commit positions of the
  worktree, local branch and remote-tracking branch.
- ``InitResult``, ``RepairResult``, ``MigrationResult``: worktree
  lifecycle outcomes.
- ``SaveResult``, ``ImportResult``: workspace outcomes.
- ``PushResult``, ``SyncReport``, ``SyncStatus``: sync cycle outcomes.

All models are frozen (immutable).
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from tracker_sync.errors import PushRejectedError
from tracker_sync.models import Issue

Side = Literal["local", "remote"]


class Resolution(str, Enum):
    LWW = "lww"
    UNION = "union"
    MANUAL = "manual"


class ConflictRecord(BaseModel):
    """A value that lost a merge.

    Attributes:
        issue_id: Id of the merged issue.
        field: Field name, or ``whole_issue`` for a no-ancestor merge.
        timestamp: Filename-safe UTC timestamp of the merge.
        lost_value: The discarded value.
        winner_value: The value that was kept.
        local_version: ``version`` of the local input.
        remote_version: ``version`` of the remote input.
        resolution: Strategy that decided the winner.
        winner_source: Which input supplied ``winner_value``.
    """

    issue_id: str
    field: str
    timestamp: str
    lost_value: Any = None
    winner_value: Any = None
    local_version: int
    remote_version: int
    resolution: Resolution = Resolution.LWW
    winner_source: Side = "local"

    model_config = {"frozen": True, "use_enum_values": True}

    @property
    def loser_source(self) -> Side:
        return "remote" if self.winner_source == "local" else "local"


class MergeResult(BaseModel):
    merged: Issue
    conflicts: list[ConflictRecord] = []
    version_bumped: bool = False

    model_config = {"frozen": True}


class AtticContext(BaseModel):
    local_version: int
    remote_version: int
    local_updated_at: str
    remote_updated_at: str

    model_config = {"frozen": True}


class AtticEntry(BaseModel):
    """Persisted conflict, one YAML file per entry."""

    entity_id: str
    timestamp: str
    field: str
    lost_value: str
    winner_source: Side
    loser_source: Side
    context: AtticContext

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Worktree
# ---------------------------------------------------------------------------


class WorktreeStatus(str, Enum):
    VALID = "valid"
    MISSING = "missing"
    PRUNABLE = "prunable"
    CORRUPTED = "corrupted"


class WorktreeHealth(BaseModel):
    """Snapshot of the sync worktree's health.

    Attributes:
        status: Overall classification.
        exists: Whether the worktree directory exists.
        valid: ``True`` only when ``status`` is ``valid``.
        branch: Checked-out branch, ``None`` when HEAD is detached or the
            worktree is unusable.
        commit: HEAD commit, when resolvable.
        error: Diagnostic detail for unhealthy states.
    """

    status: WorktreeStatus
    exists: bool
    valid: bool
    branch: str | None = None
    commit: str | None = None
    error: str | None = None

    model_config = {"frozen": True, "use_enum_values": True}

    @property
    def detached(self) -> bool:
        return self.valid and self.branch is None


class InitResult(BaseModel):
    path: str
    created: bool

    model_config = {"frozen": True}


class RepairResult(BaseModel):
    path: str
    repaired_from: WorktreeStatus
    backup_path: str | None = None

    model_config = {"frozen": True, "use_enum_values": True}


class MigrationResult(BaseModel):
    migrated_count: int = 0
    backup_path: str | None = None
    removed_source: bool = False

    model_config = {"frozen": True}


class BranchHealth(BaseModel):
    exists: bool
    head: str | None = None

    model_config = {"frozen": True}


class SyncConsistency(BaseModel):
    """Commit positions of worktree, local branch and remote-tracking ref.

    Attributes:
        worktree_head: HEAD commit inside the worktree.
        worktree_branch: Branch checked out in the worktree, ``None`` if
            detached.
        local_head: Tip of ``refs/heads/<branch>``.
        remote_head: Tip of ``refs/remotes/<remote>/<branch>``.
        local_ahead: Commits on the local branch not on the remote.
        local_behind: Commits on the remote not on the local branch.
        worktree_matches_local: Worktree HEAD equals the local tip.
    """

    branch: str
    remote: str
    worktree_head: str | None = None
    worktree_branch: str | None = None
    local_head: str | None = None
    remote_head: str | None = None
    local_ahead: int = 0
    local_behind: int = 0
    worktree_matches_local: bool = False

    model_config = {"frozen": True}

    @property
    def defects(self) -> list[str]:
        """Problems that need worktree repair rather than a merge."""
        problems: list[str] = []
        if self.worktree_head is None:
            problems.append("worktree HEAD cannot be resolved")
        if self.local_head is None:
            problems.append(f"local branch '{self.branch}' does not exist")
        if self.worktree_head is not None and self.worktree_branch is None:
            problems.append("worktree HEAD is detached")
        elif (
            self.worktree_branch is not None
            and self.worktree_branch != self.branch
        ):
            problems.append(
                f"worktree is on '{self.worktree_branch}', expected '{self.branch}'"
            )
        if (
            self.worktree_head is not None
            and self.local_head is not None
            and not self.worktree_matches_local
        ):
            problems.append("worktree HEAD differs from local branch tip")
        return problems

    @property
    def healthy(self) -> bool:
        return not self.defects


# ---------------------------------------------------------------------------
# Workspaces
# ---------------------------------------------------------------------------


class SaveResult(BaseModel):
    saved: int = 0
    conflicts: int = 0
    target_dir: str
    mappings_copied: int = 0

    model_config = {"frozen": True}


class ImportResult(BaseModel):
    imported: int = 0
    conflicts: int = 0
    source_dir: str
    cleared: bool = False

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Sync cycle
# ---------------------------------------------------------------------------


class PushResult(BaseModel):
    success: bool
    attempts: int
    conflicts: list[ConflictRecord] = []
    error: str | None = None

    model_config = {"frozen": True}


class SyncReport(BaseModel):
    """Aggregate report for one sync run.

    Attributes:
        branch: Sync branch name.
        remote: Remote name.
        dry_run: Whether this run only planned actions.
        actions: Human-readable log of what was (or would be) done.
        worktree_status: Worktree status found at the start of the run.
        repair: Repair performed, if any.
        migrated_count: Misplaced files moved into the worktree.
        committed: Whether local worktree changes were committed.
        received_commits: Remote commits merged in.
        sent_commits: Local commits pushed.
        conflicts: Field-level conflicts resolved during the run.
        push_attempts: Number of push attempts made.
        push_error: Final push error, if the push failed.
        error_type: ``classify_sync_error`` of ``push_error``.
        outbox_saved: Records saved to the outbox after a failed push.
        outbox_imported: Records imported from the outbox after a
            successful push.
        started_at: ISO 8601 start time.
        completed_at: ISO 8601 completion time.
    """

    branch: str
    remote: str
    dry_run: bool = False
    actions: list[str] = []
    worktree_status: WorktreeStatus | None = None
    repair: RepairResult | None = None
    migrated_count: int = 0
    committed: bool = False
    received_commits: int = 0
    sent_commits: int = 0
    conflicts: list[ConflictRecord] = []
    push_attempts: int = 0
    push_error: str | None = None
    error_type: str | None = None
    outbox_saved: int = 0
    outbox_imported: int = 0
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True, "use_enum_values": True}

    @property
    def success(self) -> bool:
        return self.push_error is None

    @property
    def in_sync(self) -> bool:
        return (
            self.success
            and not self.committed
            and self.received_commits == 0
            and self.sent_commits == 0
        )

    def raise_for_status(self) -> None:
        """Raise ``PushRejectedError`` if the push ultimately failed."""
        if self.push_error is not None:
            raise PushRejectedError(self.push_error, self.push_attempts)


class SyncStatus(BaseModel):
    health: WorktreeHealth
    consistency: SyncConsistency | None = None
    pending_changes: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}
