"""One full sync cycle against the remote sync branch.

``SyncEngine.run()`` performs, in order:

1. Worktree health check (init, repair or re-attach as needed).
2. Migration of data misplaced outside the worktree.
3. Commit of local worktree changes.
4. Fetch of the remote sync branch.
5. Merge of remote commits, resolving issue conflicts field by field.
6. Push with bounded fetch/merge/retry on non-fast-forward rejection.
7. On final push failure, a copy of unpushed records in the outbox.
8. On success, import of a pending outbox.

With ``dry_run=True`` nothing is written, repaired or fetched; the report
lists what a real run would do.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

from tracker_sync.config_schema import SyncSettings
from tracker_sync.errors import (
    GitError,
    InvalidIssueFileError,
    SyncError,
    classify_sync_error,
)
from tracker_sync.git import GitClient
from tracker_sync.id_mapping import (
    IdMapping,
    MAPPING_FILE,
    load_id_mapping,
    merge_id_mappings,
    parse_id_mapping,
    reconcile_mappings,
    save_id_mapping,
)
from tracker_sync.models import Issue
from tracker_sync.parser import parse_issue
from tracker_sync.paths import ATTIC_DIR, ISSUES_DIR, MAPPINGS_DIR, OUTBOX
from tracker_sync.storage import iter_issue_ids, write_issue
from tracker_sync.sync.attic import AtticStore
from tracker_sync.sync.consistency import check_sync_consistency
from tracker_sync.sync.merger import merge_issues
from tracker_sync.sync.models import (
    ConflictRecord,
    PushResult,
    RepairResult,
    SyncConsistency,
    SyncReport,
    SyncStatus,
    WorktreeStatus,
)
from tracker_sync.sync.workspace import (
    import_from_workspace,
    save_to_workspace,
    workspace_exists,
)
from tracker_sync.sync.worktree import WorktreeManager
from tracker_sync.timeutils import now_iso

logger = logging.getLogger(__name__)

_NON_FAST_FORWARD = re.compile(r"non-fast-forward|fetch first|rejected", re.IGNORECASE)


def is_non_fast_forward(message: str) -> bool:
    """Whether a push failure can be fixed by fetching and merging."""
    return bool(_NON_FAST_FORWARD.search(message)) and (
        classify_sync_error(message) != "permanent"
    )


@dataclass
class _RunLog:
    """Mutable accumulator turned into a frozen ``SyncReport`` at the end."""

    actions: list[str] = field(default_factory=list)
    worktree_status: WorktreeStatus | None = None
    repair: RepairResult | None = None
    migrated_count: int = 0
    committed: bool = False
    received_commits: int = 0
    sent_commits: int = 0
    conflicts: list[ConflictRecord] = field(default_factory=list)
    push_attempts: int = 0
    push_error: str | None = None
    error_type: str | None = None
    outbox_saved: int = 0
    outbox_imported: int = 0

    def note(self, message: str, *args: object) -> None:
        text = message % args if args else message
        logger.info(text)
        self.actions.append(text)


class SyncEngine:
    """Synchronise the sync worktree of *root* with its remote.

    Args:
        root: Repository root.
        settings: Branch, remote and retry settings.
        git: Git client rooted at *root*; created when omitted.
    """

    def __init__(
        self,
        root: Path,
        settings: SyncSettings | None = None,
        git: GitClient | None = None,
    ) -> None:
        self.root = Path(root)
        self.settings = settings or SyncSettings()
        self.git = git or GitClient(self.root, timeout=self.settings.git_timeout)
        self.worktree = WorktreeManager(
            self.root, self.git, self.settings.branch, self.settings.remote
        )

    @property
    def branch(self) -> str:
        return self.settings.branch

    @property
    def remote(self) -> str:
        return self.settings.remote

    @property
    def tracking_ref(self) -> str:
        return f"refs/remotes/{self.remote}/{self.branch}"

    @property
    def data_dir(self) -> Path:
        return self.worktree.data_dir

    @property
    def _data_prefix(self) -> PurePosixPath:
        """Data directory as a path inside the sync branch's tree."""
        return PurePosixPath(self.data_dir.relative_to(self.worktree.path).as_posix())

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def run(self, dry_run: bool = False) -> SyncReport:
        """Run one sync cycle and return its report.

        Raises:
            WorktreeError: If the worktree is unhealthy and auto repair is
                disabled.
            SyncError: If a merge leaves conflicts that cannot be resolved.
            GitError: If a git command outside the push fails.
        """
        started_at = now_iso()
        log = _RunLog()
        if dry_run:
            self._plan(log)
        else:
            self._execute(log)
        return SyncReport(
            branch=self.branch,
            remote=self.remote,
            dry_run=dry_run,
            started_at=started_at,
            completed_at=now_iso(),
            **vars(log),
        )

    def status(self) -> SyncStatus:
        """Worktree health, commit positions and uncommitted changes."""
        health = self.worktree.check_health()
        if not health.valid:
            return SyncStatus(health=health)
        return SyncStatus(
            health=health,
            consistency=check_sync_consistency(
                self.git, self.worktree.path, self.branch, self.remote
            ),
            pending_changes=self.git.status_porcelain(self.worktree.path),
        )

    # ------------------------------------------------------------------
    # Dry run
    # ------------------------------------------------------------------

    def _plan(self, log: _RunLog) -> None:
        health = self.worktree.check_health()
        log.worktree_status = health.status

        if health.status == WorktreeStatus.MISSING:
            log.note("Would initialise sync worktree at %s", self.worktree.path)
        elif not health.valid:
            verb = "repair" if self.settings.auto_repair else "fail on"
            log.note("Would %s %s worktree: %s", verb, health.status, health.error)
        elif health.detached:
            log.note("Would re-attach detached worktree to %s", self.branch)

        misplaced = self.worktree.find_misplaced_files()
        if misplaced:
            log.note("Would migrate %d misplaced file(s) into the worktree", len(misplaced))
            log.migrated_count = len(misplaced)

        if not health.valid:
            return

        pending = self.git.status_porcelain(self.worktree.path)
        if pending:
            log.note("Would commit %d changed file(s)", len(pending))

        consistency = check_sync_consistency(
            self.git, self.worktree.path, self.branch, self.remote
        )
        if consistency.remote_head is None:
            log.note("Would fetch %s/%s (no remote-tracking ref yet)", self.remote, self.branch)
        if consistency.local_behind:
            log.note("Would merge %d remote commit(s)", consistency.local_behind)
            log.received_commits = consistency.local_behind
        if consistency.local_ahead or pending:
            log.note("Would push to %s/%s", self.remote, self.branch)
            log.sent_commits = consistency.local_ahead

    # ------------------------------------------------------------------
    # Real run
    # ------------------------------------------------------------------

    def _execute(self, log: _RunLog) -> None:
        self._ensure_worktree(log)

        migration = self.worktree.migrate_data_to_worktree(remove_source=True)
        if migration.migrated_count:
            log.migrated_count = migration.migrated_count
            log.note(
                "Migrated %d misplaced file(s); backup at %s",
                migration.migrated_count,
                migration.backup_path,
            )

        log.committed = self._commit_local_changes()
        if log.committed:
            log.note("Committed local changes")

        if self._fetch():
            behind = self._consistency().local_behind
            if behind:
                log.conflicts.extend(self._merge_remote())
                log.received_commits = behind
                log.note("Merged %d remote commit(s)", behind)

        ahead = self._consistency().local_ahead
        if ahead:
            result = self.push_with_retry()
            log.push_attempts = result.attempts
            log.conflicts.extend(result.conflicts)
            if result.success:
                log.sent_commits = ahead
                log.note("Pushed %d commit(s) to %s/%s", ahead, self.remote, self.branch)
            else:
                self._handle_push_failure(log, result)
                return

        if self.settings.import_outbox and workspace_exists(self.root, OUTBOX):
            self._drain_outbox(log)

    def _ensure_worktree(self, log: _RunLog) -> None:
        health = self.worktree.check_health()
        log.worktree_status = health.status

        if health.status == WorktreeStatus.MISSING:
            created = self.worktree.init()
            log.note("Initialised sync worktree at %s", created.path)
        elif not health.valid:
            if not self.settings.auto_repair:
                self.worktree.require_valid()
            log.repair = self.worktree.repair(health.status)
            log.note("Repaired %s worktree", health.status)
        elif self.worktree.ensure_attached():
            log.note("Re-attached detached worktree to %s", self.branch)

    def _consistency(self) -> SyncConsistency:
        return check_sync_consistency(
            self.git, self.worktree.path, self.branch, self.remote
        )

    def _commit_local_changes(self, message: str = "tracker sync: local changes") -> bool:
        if not self.git.status_porcelain(self.worktree.path):
            return False
        self.git.add_all(self.worktree.path)
        self.git.commit(self.worktree.path, message)
        return True

    def _fetch(self) -> bool:
        """Fetch the remote branch; ``False`` when it does not exist yet."""
        try:
            self.git.fetch(self.remote, self.branch)
        except GitError:
            if self.git.remote_branch_exists(self.remote, self.branch):
                raise
            logger.info(
                "Remote branch %s/%s not found; treating as first sync",
                self.remote,
                self.branch,
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    def push_with_retry(self) -> PushResult:
        """Push the sync branch, merging and retrying on rejection.

        A non-fast-forward rejection triggers fetch, merge and another
        attempt, up to ``settings.max_push_attempts`` in total.  Any other
        push failure, or a failed fetch, ends the loop at once and is
        reported as the push error.  Conflicts from every retry merge are
        accumulated in the result.
        """
        attempts_allowed = self.settings.max_push_attempts
        conflicts: list[ConflictRecord] = []
        error: str | None = None
        attempt = 0

        while attempt < attempts_allowed:
            attempt += 1
            try:
                self.git.push(self.remote, self.branch)
            except GitError as exc:
                error = str(exc)
                if not is_non_fast_forward(error) or attempt >= attempts_allowed:
                    break
                logger.warning(
                    "Push rejected (attempt %d/%d); fetching and merging before retry",
                    attempt,
                    attempts_allowed,
                )
                try:
                    self.git.fetch(self.remote, self.branch)
                except GitError as fetch_exc:
                    error = str(fetch_exc)
                    logger.warning("Fetch before push retry failed: %s", error)
                    break
                conflicts.extend(self._merge_remote())
                continue
            return PushResult(success=True, attempts=attempt, conflicts=conflicts)

        logger.error("Push failed after %d attempt(s): %s", attempt, error)
        return PushResult(
            success=False, attempts=attempt, conflicts=conflicts, error=error
        )

    def _handle_push_failure(self, log: _RunLog, result: PushResult) -> None:
        log.push_error = result.error
        log.error_type = classify_sync_error(result.error or "")
        log.note("Push failed (%s): %s", log.error_type, result.error)
        if not self.settings.auto_save_outbox:
            return
        baseline = (
            self._records_at(self.tracking_ref)
            if self.git.remote_tracking_exists(self.remote, self.branch)
            else None
        )
        saved = save_to_workspace(
            self.root, self.data_dir, outbox=True, baseline=baseline
        )
        log.outbox_saved = saved.saved
        if saved.saved:
            log.note("Saved %d unpushed issue(s) to the outbox", saved.saved)

    def _drain_outbox(self, log: _RunLog) -> None:
        imported = import_from_workspace(self.root, self.data_dir, outbox=True)
        log.outbox_imported = imported.imported
        log.note("Imported %d issue(s) from the outbox", imported.imported)
        if not self._commit_local_changes("tracker sync: import outbox"):
            return
        result = self.push_with_retry()
        log.push_attempts += result.attempts
        log.conflicts.extend(result.conflicts)
        if not result.success:
            self._handle_push_failure(log, result)

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    def _merge_remote(self) -> list[ConflictRecord]:
        """Merge the remote-tracking branch into the worktree.

        Returns:
            Field-level conflicts resolved while merging issues.

        Raises:
            SyncError: If a conflict cannot be resolved; the merge is
                aborted first.
        """
        worktree = self.worktree.path
        pre_merge_head = self.git.rev_parse("HEAD", cwd=worktree)
        message = f"tracker sync: merge {self.remote}/{self.branch}"
        conflicts: list[ConflictRecord] = []

        try:
            self.git.merge(worktree, self.tracking_ref, message)
        except GitError as exc:
            conflicted = self.git.conflicted_files(worktree)
            if not conflicted:
                raise SyncError(f"Merge of {self.remote}/{self.branch} failed: {exc}") from exc
            try:
                conflicts = self._resolve_conflicts(conflicted)
                leftover = self.git.staged_with_conflict_markers(worktree)
                if leftover:
                    raise SyncError(
                        "Conflict markers remain after resolution in: "
                        + ", ".join(leftover)
                    )
            except SyncError:
                self.git.merge_abort(worktree)
                raise
            self.git.commit(worktree, message)

        self._reconcile_mappings(pre_merge_head)
        return conflicts

    def _resolve_conflicts(self, paths: list[str]) -> list[ConflictRecord]:
        issues_prefix = self._data_prefix / ISSUES_DIR
        mapping_file = self._data_prefix / MAPPINGS_DIR / MAPPING_FILE
        conflicts: list[ConflictRecord] = []

        for raw in paths:
            path = PurePosixPath(raw)
            if path.parent == issues_prefix and path.suffix == ".md":
                conflicts.extend(self._resolve_issue(raw))
            elif path == mapping_file:
                self._resolve_mapping(raw)
            else:
                raise SyncError(f"Cannot resolve merge conflict in {raw}")

        self.git.add_all(self.worktree.path)
        if conflicts:
            logger.info("Resolved %d field conflict(s) while merging", len(conflicts))
        return conflicts

    def _stage(self, number: int, path: str) -> str | None:
        return self.git.show(f":{number}:{path}", cwd=self.worktree.path)

    def _parse_stage(self, number: int, path: str) -> Issue | None:
        text = self._stage(number, path)
        if text is None:
            return None
        try:
            return parse_issue(text)
        except InvalidIssueFileError as exc:
            raise SyncError(f"Cannot merge {path}: {exc}") from exc

    def _resolve_issue(self, path: str) -> list[ConflictRecord]:
        base = self._parse_stage(1, path)
        local = self._parse_stage(2, path)
        remote = self._parse_stage(3, path)

        if local is None or remote is None:
            # Deleted on one side: keep the surviving copy.
            survivor = local or remote
            if survivor is None:
                raise SyncError(f"Cannot resolve merge conflict in {path}")
            write_issue(self.data_dir, survivor)
            return []

        result = merge_issues(base, local, remote)
        write_issue(self.data_dir, result.merged)
        if result.conflicts:
            AtticStore(self.data_dir / ATTIC_DIR).record(result.conflicts, local, remote)
        return list(result.conflicts)

    def _resolve_mapping(self, path: str) -> None:
        local = self._stage(2, path)
        remote = self._stage(3, path)
        merged = merge_id_mappings(
            parse_id_mapping(local or "", f"{path} (local)"),
            parse_id_mapping(remote or "", f"{path} (remote)"),
        )
        save_id_mapping(self.data_dir, merged)

    def _reconcile_mappings(self, previous_head: str | None) -> None:
        """Give every issue a short id, preferring ids it had before."""
        mapping = load_id_mapping(self.data_dir)
        historical = IdMapping()
        if previous_head:
            text = self.git.show(
                f"{previous_head}:{self._data_prefix / MAPPINGS_DIR / MAPPING_FILE}",
                cwd=self.worktree.path,
            )
            if text:
                historical = parse_id_mapping(text, "previous ids.yml")

        result = reconcile_mappings(iter_issue_ids(self.data_dir), mapping, historical)
        if result.total:
            save_id_mapping(self.data_dir, mapping)
            self._commit_local_changes("tracker sync: reconcile id mappings")
            logger.info(
                "Reconciled id mappings: %d created, %d recovered",
                len(result.created),
                len(result.recovered),
            )

    def _records_at(self, ref: str) -> list[Issue]:
        """Issues committed at *ref*, read straight from git."""
        records: list[Issue] = []
        prefix = str(self._data_prefix / ISSUES_DIR)
        for path in self.git.list_tree(ref, prefix):
            if not path.endswith(".md"):
                continue
            text = self.git.show(f"{ref}:{path}", cwd=self.worktree.path)
            if text is None:
                continue
            try:
                records.append(parse_issue(text))
            except InvalidIssueFileError as exc:
                logger.warning("Skipping invalid issue %s at %s: %s", path, ref, exc)
        return records
