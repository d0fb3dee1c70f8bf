"""Lifecycle, health and repair of the sync worktree.

The sync branch is checked out in a dedicated git worktree under
``.tracker/data-sync-worktree`` so sync commits never touch the user's
own checkout or index.

Health states and transitions::

    missing   --init()-->    valid
    valid     (directory deleted, registration stale)   -> prunable
    valid     (registration intact, .git metadata broken) -> corrupted
    prunable  --repair()-->  valid   (prune, re-init)
    corrupted --repair()-->  valid   (backup, remove, prune, re-init)

The worktree is always checked out on the named sync branch.  A detached
HEAD would let commits land without advancing the branch ref, so a
detached worktree is re-attached before it is used.
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

from tracker_sync.errors import (
    GitError,
    InvalidIssueFileError,
    WorktreeCorruptedError,
    WorktreeMissingError,
    WorktreePrunableError,
)
from tracker_sync.file_handler import atomic_write, read_text
from tracker_sync.git import GitClient, WorktreeEntry
from tracker_sync.id_mapping import (
    MAPPING_FILE,
    load_id_mapping,
    merge_id_mappings,
    parse_id_mapping,
    save_id_mapping,
)
from tracker_sync.parser import parse_issue
from tracker_sync.paths import (
    ATTIC_DIR,
    DEFAULT_REMOTE,
    ISSUES_DIR,
    MAPPINGS_DIR,
    META_FILE,
    SYNC_BRANCH,
    backups_dir,
    legacy_data_dir,
    tracker_dir,
    worktree_data_dir,
    worktree_path,
)
from tracker_sync.storage import write_issue
from tracker_sync.sync.attic import AtticStore
from tracker_sync.sync.merger import overlay_issue
from tracker_sync.sync.models import (
    InitResult,
    MigrationResult,
    RepairResult,
    WorktreeHealth,
    WorktreeStatus,
)
from tracker_sync.timeutils import filename_timestamp

logger = logging.getLogger(__name__)

_GITIGNORE_ENTRIES = ("data-sync-worktree/", "data-sync/", "backups/")
_MIGRATED_DIRS = (ISSUES_DIR, MAPPINGS_DIR)


def _same_path(a: Path, b: Path) -> bool:
    return os.path.realpath(a) == os.path.realpath(b)


class WorktreeManager:
    """Manage the sync worktree for one repository.

    Args:
        root: Repository root (the main working tree).
        git: Git client rooted at *root*; created when omitted.
        branch: Sync branch name.
        remote: Remote name used to seed the branch on fresh clones.
    """

    def __init__(
        self,
        root: Path,
        git: GitClient | None = None,
        branch: str = SYNC_BRANCH,
        remote: str = DEFAULT_REMOTE,
    ) -> None:
        self.root = Path(root)
        self.git = git or GitClient(self.root)
        self.branch = branch
        self.remote = remote

    @property
    def path(self) -> Path:
        return worktree_path(self.root)

    @property
    def data_dir(self) -> Path:
        return worktree_data_dir(self.root)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def registration(self) -> WorktreeEntry | None:
        """The ``git worktree list`` entry for our path, if registered."""
        for entry in self.git.worktree_list():
            if _same_path(entry.path, self.path):
                return entry
        return None

    def check_health(self) -> WorktreeHealth:
        """Classify the worktree as valid, missing, prunable or corrupted."""
        registered = self.registration() is not None

        if not self.path.exists():
            if registered:
                return WorktreeHealth(
                    status=WorktreeStatus.PRUNABLE,
                    exists=False,
                    valid=False,
                    error="Worktree directory is missing but still registered with git",
                )
            return WorktreeHealth(
                status=WorktreeStatus.MISSING, exists=False, valid=False
            )

        # Without its .git file, git would walk up into the main repository.
        if not (self.path / ".git").exists():
            return self._corrupted(
                "Worktree directory exists but is not a valid git worktree"
            )
        if not registered:
            return self._corrupted("Worktree directory is not registered with git")

        commit = self.git.rev_parse("HEAD", cwd=self.path)
        if commit is None:
            return self._corrupted("Worktree HEAD cannot be resolved")

        return WorktreeHealth(
            status=WorktreeStatus.VALID,
            exists=True,
            valid=True,
            branch=self.git.current_branch(cwd=self.path),
            commit=commit,
        )

    @staticmethod
    def _corrupted(reason: str) -> WorktreeHealth:
        return WorktreeHealth(
            status=WorktreeStatus.CORRUPTED, exists=True, valid=False, error=reason
        )

    def require_valid(self) -> WorktreeHealth:
        """Return health, raising the matching error unless it is valid."""
        health = self.check_health()
        if health.status == WorktreeStatus.MISSING:
            raise WorktreeMissingError(f"Sync worktree not found at {self.path}")
        if health.status == WorktreeStatus.PRUNABLE:
            raise WorktreePrunableError(health.error or "Worktree is prunable")
        if health.status == WorktreeStatus.CORRUPTED:
            raise WorktreeCorruptedError(health.error or "Worktree is corrupted")
        return health

    # ------------------------------------------------------------------
    # Init
    # ------------------------------------------------------------------

    def init(self) -> InitResult:
        """Create the worktree, or confirm an existing healthy one.

        Order of preference: existing local branch, then the remote
        branch (fetched and tracked), then a new orphan branch seeded
        with an empty data directory.

        Raises:
            WorktreePrunableError: If a stale registration must be
                repaired first.
            WorktreeCorruptedError: If a broken worktree must be repaired
                first.
            GitError: If a git command fails.
        """
        health = self.check_health()
        if health.status == WorktreeStatus.VALID:
            self.ensure_attached()
            return InitResult(path=str(self.path), created=False)
        if health.status != WorktreeStatus.MISSING:
            self.require_valid()

        self._ensure_gitignore()
        self.path.parent.mkdir(parents=True, exist_ok=True)

        if self.git.branch_exists(self.branch):
            logger.info("Creating worktree from local branch %s", self.branch)
            self.git.worktree_add(self.path, self.branch)
        elif self.git.remote_branch_exists(self.remote, self.branch):
            logger.info(
                "Creating worktree from %s/%s", self.remote, self.branch
            )
            self.git.fetch(self.remote, self.branch)
            self.git.create_tracking_branch(
                self.branch, f"{self.remote}/{self.branch}"
            )
            self.git.worktree_add(self.path, self.branch)
        else:
            logger.info("Creating orphan sync branch %s", self.branch)
            self.git.require_version()
            self.git.worktree_add_orphan(self.path, self.branch)
            self._seed_data_dir()
            self.git.add_all(self.path)
            self.git.commit(self.path, f"Initialize {self.branch} branch")

        return InitResult(path=str(self.path), created=True)

    def _seed_data_dir(self) -> None:
        for name in (ISSUES_DIR, MAPPINGS_DIR, ATTIC_DIR):
            directory = self.data_dir / name
            directory.mkdir(parents=True, exist_ok=True)
            (directory / ".gitkeep").touch()
        atomic_write(self.data_dir / META_FILE, "schema_version: 1\n")

    def _ensure_gitignore(self) -> None:
        path = tracker_dir(self.root) / ".gitignore"
        existing = read_text(path).splitlines() if path.exists() else []
        missing = [e for e in _GITIGNORE_ENTRIES if e not in existing]
        if missing:
            atomic_write(path, "\n".join(existing + missing) + "\n")

    def ensure_attached(self) -> bool:
        """Check the worktree out on the sync branch if HEAD is detached.

        Returns:
            ``True`` if the worktree had to be re-attached.

        Raises:
            WorktreeCorruptedError: If HEAD is on another branch or has
                diverged from the sync branch.
        """
        health = self.require_valid()
        if health.branch == self.branch:
            return False
        if health.branch is not None:
            raise WorktreeCorruptedError(
                f"Worktree is on branch '{health.branch}', expected '{self.branch}'"
            )

        head = health.commit or ""
        tip = self.git.rev_parse(f"refs/heads/{self.branch}")
        if tip is None or self.git.is_ancestor(tip, head):
            self.git.checkout(self.path, "-B", self.branch, head)
        elif self.git.is_ancestor(head, tip):
            self.git.checkout(self.path, self.branch)
        else:
            raise WorktreeCorruptedError(
                f"Detached worktree HEAD {head[:12]} has diverged from {self.branch}"
            )
        logger.info("Re-attached worktree to branch %s", self.branch)
        return True

    # ------------------------------------------------------------------
    # Repair / remove
    # ------------------------------------------------------------------

    def repair(self, status: WorktreeStatus | str | None = None) -> RepairResult:
        """Bring the worktree back to ``valid``.

        Args:
            status: Known unhealthy status; detected when omitted.

        Returns:
            A ``RepairResult``; ``backup_path`` is set when a corrupted
            directory was copied aside before removal.
        """
        current = WorktreeStatus(status or self.check_health().status)
        backup_path: Path | None = None
        logger.info("Repairing worktree at %s (status: %s)", self.path, current.value)

        if current == WorktreeStatus.VALID:
            self.ensure_attached()
        elif current == WorktreeStatus.MISSING:
            self.init()
        elif current == WorktreeStatus.PRUNABLE:
            self.git.worktree_prune()
            self.init()
        else:
            if self.path.exists():
                backup_path = self._backup_directory()
            self.remove()
            self.init()

        return RepairResult(
            path=str(self.path),
            repaired_from=current,
            backup_path=str(backup_path) if backup_path else None,
        )

    def _backup_directory(self) -> Path:
        target = backups_dir(self.root) / f"worktree-{filename_timestamp()}"
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.copytree(self.path, target, symlinks=True)
        logger.info("Backed up worktree contents to %s", target)
        return target

    def remove(self) -> None:
        """Remove the worktree directory and its git registration."""
        try:
            self.git.worktree_remove(self.path, force=True)
        except GitError as exc:
            logger.debug("git worktree remove failed (%s); deleting directory", exc)
        if self.path.exists():
            shutil.rmtree(self.path)
        self.git.worktree_prune()

    # ------------------------------------------------------------------
    # Migration of misplaced data
    # ------------------------------------------------------------------

    def find_misplaced_files(self) -> list[Path]:
        """Data files under the legacy directory, relative to it."""
        legacy = legacy_data_dir(self.root)
        found: list[Path] = []
        for name in _MIGRATED_DIRS:
            directory = legacy / name
            if not directory.is_dir():
                continue
            for path in sorted(directory.iterdir()):
                if path.is_file() and path.name != ".gitkeep":
                    found.append(path.relative_to(legacy))
        return found

    def migrate_data_to_worktree(self, remove_source: bool = False) -> MigrationResult:
        """Move misplaced issue and mapping files into the worktree.

        The legacy files are backed up before anything else happens.
        Issues already present in the worktree are combined with
        ``overlay_issue()``, so the newer copy wins and displaced values go
        to the attic; ``ids.yml`` is unioned.
        The result is committed on the sync branch.

        Raises:
            WorktreeError: If the worktree is not valid.
        """
        files = self.find_misplaced_files()
        if not files:
            return MigrationResult()

        self.require_valid()
        self.ensure_attached()
        legacy = legacy_data_dir(self.root)

        backup = backups_dir(self.root) / f"data-sync-{filename_timestamp()}"
        for rel in files:
            (backup / rel).parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(legacy / rel, backup / rel)
        logger.info("Backed up %d misplaced file(s) to %s", len(files), backup)

        for rel in files:
            self._migrate_file(legacy / rel, self.data_dir / rel)

        if self.git.status_porcelain(self.path):
            self.git.add_all(self.path)
            self.git.commit(
                self.path, f"tracker sync: migrate {len(files)} file(s) into worktree"
            )

        if remove_source:
            for rel in files:
                (legacy / rel).unlink(missing_ok=True)

        logger.info("Migrated %d file(s) into %s", len(files), self.data_dir)
        return MigrationResult(
            migrated_count=len(files),
            backup_path=str(backup),
            removed_source=remove_source,
        )

    def _migrate_file(self, source: Path, target: Path) -> None:
        if not target.exists():
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(source, target)
            return
        if source.read_bytes() == target.read_bytes():
            return

        if source.parent.name == MAPPINGS_DIR and source.name == MAPPING_FILE:
            incoming = parse_id_mapping(read_text(source), str(source))
            merged = merge_id_mappings(load_id_mapping(self.data_dir), incoming)
            save_id_mapping(self.data_dir, merged)
            return

        if source.parent.name == ISSUES_DIR:
            try:
                incoming_issue = parse_issue(read_text(source))
                existing_issue = parse_issue(read_text(target))
            except InvalidIssueFileError as exc:
                logger.warning(
                    "Keeping worktree copy of %s; cannot merge: %s", target.name, exc
                )
                return
            result = overlay_issue(existing_issue, incoming_issue)
            if result.conflicts:
                AtticStore(self.data_dir / ATTIC_DIR).record(
                    result.conflicts, existing_issue, incoming_issue
                )
            write_issue(self.data_dir, result.merged)
            return

        logger.warning("Keeping worktree copy of %s; differs from %s", target, source)
