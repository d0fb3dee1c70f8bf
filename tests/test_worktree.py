"""Tests for sync/worktree.py against real git repositories.

Covers:
- init(): orphan branch, idempotent re-init, from a remote branch
- check_health(): valid, missing, prunable, corrupted
- repair(): prunable and corrupted worktrees, with backup
- ensure_attached(): detached HEAD
- migrate_data_to_worktree(): copy, merge, idempotence, invalid files
"""

import shutil
from pathlib import Path

import pytest

from conftest import git, make_id, make_issue, requires_git
from tracker_sync.errors import WorktreeCorruptedError, WorktreePrunableError
from tracker_sync.id_mapping import IdMapping, load_id_mapping, save_id_mapping
from tracker_sync.paths import SYNC_BRANCH, legacy_data_dir
from tracker_sync.storage import issue_path, read_issue, write_issue
from tracker_sync.sync.models import WorktreeStatus
from tracker_sync.sync.worktree import WorktreeManager

pytestmark = requires_git


@pytest.fixture
def manager(repo):
    return WorktreeManager(repo)


@pytest.fixture
def ready(manager):
    """A manager whose worktree has been initialised."""
    manager.init()
    return manager


class TestInit:
    """Tests for WorktreeManager.init()."""

    def test_missing_before_init(self, manager):
        health = manager.check_health()
        assert health.status == WorktreeStatus.MISSING
        assert not health.exists
        assert not health.valid

    def test_creates_orphan_branch(self, manager, repo):
        result = manager.init()

        assert result.created
        health = manager.check_health()
        assert health.valid
        assert health.branch == SYNC_BRANCH
        assert (manager.data_dir / "issues" / ".gitkeep").exists()
        assert (manager.data_dir / "meta.yml").read_text() == "schema_version: 1\n"
        # Orphan: nothing from main is reachable.
        assert git(repo, "log", "--format=%s", SYNC_BRANCH).splitlines() == [
            f"Initialize {SYNC_BRANCH} branch"
        ]

    def test_gitignore_written(self, manager, repo):
        manager.init()
        entries = (repo / ".tracker" / ".gitignore").read_text().splitlines()
        assert "data-sync-worktree/" in entries
        assert "data-sync/" in entries
        assert "backups/" in entries

    def test_reinit_is_noop(self, ready):
        result = ready.init()
        assert not result.created
        assert ready.check_health().valid

    def test_init_from_remote(self, ready, repo, second_repo):
        write_issue(ready.data_dir, make_issue(1))
        git(ready.path, "add", "-A")
        git(ready.path, "commit", "-q", "-m", "add issue")
        git(repo, "push", "-q", "origin", SYNC_BRANCH)

        other = WorktreeManager(second_repo)
        result = other.init()

        assert result.created
        assert read_issue(other.data_dir, make_id(1)).title == "Issue 1"
        assert git(second_repo, "rev-parse", SYNC_BRANCH) == git(
            repo, "rev-parse", SYNC_BRANCH
        )

    def test_init_refuses_prunable(self, ready):
        shutil.rmtree(ready.path)
        with pytest.raises(WorktreePrunableError):
            ready.init()


class TestHealthAndRepair:
    """Tests for check_health() and repair()."""

    def test_deleted_directory_is_prunable(self, ready):
        shutil.rmtree(ready.path)
        assert ready.check_health().status == WorktreeStatus.PRUNABLE

    def test_repair_prunable(self, ready):
        shutil.rmtree(ready.path)

        result = ready.repair()

        assert result.repaired_from == WorktreeStatus.PRUNABLE
        assert result.backup_path is None
        assert ready.check_health().valid

    def test_missing_git_file_is_corrupted(self, ready):
        (ready.path / ".git").unlink()
        health = ready.check_health()
        assert health.status == WorktreeStatus.CORRUPTED
        assert health.exists

    def test_unregistered_directory_is_corrupted(self, ready, repo):
        shutil.rmtree(repo / ".git" / "worktrees")
        assert ready.check_health().status == WorktreeStatus.CORRUPTED

    def test_repair_corrupted_keeps_backup(self, ready, repo):
        write_issue(ready.data_dir, make_issue(1, title="precious"))
        (ready.path / ".git").unlink()

        result = ready.repair()

        assert result.repaired_from == WorktreeStatus.CORRUPTED
        assert result.backup_path is not None
        backup_data = Path(result.backup_path)
        assert "precious" in issue_path(
            backup_data / ".tracker" / "data-sync", make_id(1)
        ).read_text()
        assert ready.check_health().valid

    def test_require_valid_raises_for_corrupted(self, ready):
        (ready.path / ".git").unlink()
        with pytest.raises(WorktreeCorruptedError):
            ready.require_valid()

    def test_remove(self, ready):
        ready.remove()
        assert not ready.path.exists()
        assert ready.registration() is None
        assert ready.check_health().status == WorktreeStatus.MISSING


class TestEnsureAttached:
    """Tests for ensure_attached()."""

    def test_attached_is_noop(self, ready):
        assert ready.ensure_attached() is False

    def test_detached_head_reattached(self, ready, repo):
        git(ready.path, "checkout", "-q", "--detach")
        assert ready.check_health().branch is None

        assert ready.ensure_attached() is True
        assert ready.check_health().branch == SYNC_BRANCH

    def test_detached_commits_kept(self, ready, repo):
        git(ready.path, "checkout", "-q", "--detach")
        write_issue(ready.data_dir, make_issue(2))
        git(ready.path, "add", "-A")
        git(ready.path, "commit", "-q", "-m", "detached work")
        detached_head = git(ready.path, "rev-parse", "HEAD")

        ready.ensure_attached()

        assert git(repo, "rev-parse", SYNC_BRANCH) == detached_head

    def test_other_branch_rejected(self, ready):
        git(ready.path, "checkout", "-q", "-b", "elsewhere")
        with pytest.raises(WorktreeCorruptedError, match="elsewhere"):
            ready.ensure_attached()


class TestMigration:
    """Tests for find_misplaced_files() and migrate_data_to_worktree()."""

    def test_nothing_misplaced(self, ready):
        assert ready.find_misplaced_files() == []
        assert ready.migrate_data_to_worktree().migrated_count == 0

    def test_migrates_and_commits(self, ready, repo):
        legacy = legacy_data_dir(repo)
        write_issue(legacy, make_issue(1))
        (legacy / "issues" / ".gitkeep").touch()

        result = ready.migrate_data_to_worktree(remove_source=True)

        assert result.migrated_count == 1
        assert result.removed_source
        assert read_issue(ready.data_dir, make_id(1)).title == "Issue 1"
        assert not issue_path(legacy, make_id(1)).exists()
        assert git(ready.path, "status", "--porcelain") == ""
        assert "migrate" in git(ready.path, "log", "-1", "--format=%s")

    def test_second_run_migrates_nothing(self, ready, repo):
        write_issue(legacy_data_dir(repo), make_issue(1))
        ready.migrate_data_to_worktree(remove_source=True)
        assert ready.migrate_data_to_worktree(remove_source=True).migrated_count == 0

    def test_backup_written(self, ready, repo):
        write_issue(legacy_data_dir(repo), make_issue(1))
        result = ready.migrate_data_to_worktree()
        assert result.backup_path is not None
        assert issue_path(Path(result.backup_path), make_id(1)).exists()

    def test_unparseable_file_copied_verbatim(self, ready, repo):
        legacy = legacy_data_dir(repo) / "issues"
        legacy.mkdir(parents=True)
        (legacy / "is-bogus.md").write_text("# Test Issue\n\nThis is a test.")

        result = ready.migrate_data_to_worktree()

        assert result.migrated_count == 1
        assert (ready.data_dir / "issues" / "is-bogus.md").read_text() == (
            "# Test Issue\n\nThis is a test."
        )

    def test_existing_issue_merged(self, ready, repo):
        write_issue(ready.data_dir, make_issue(1, labels=["worktree"]))
        write_issue(
            legacy_data_dir(repo),
            make_issue(1, version=2, title="legacy", updated_at="2025-02-01T00:00:00Z"),
        )

        ready.migrate_data_to_worktree()

        merged = read_issue(ready.data_dir, make_id(1))
        assert merged.title == "legacy"

    def test_mappings_unioned(self, ready, repo):
        ours = IdMapping()
        ours.add(make_id(1)[3:], "aaaa")
        save_id_mapping(ready.data_dir, ours)
        theirs = IdMapping()
        theirs.add(make_id(2)[3:], "bbbb")
        save_id_mapping(legacy_data_dir(repo), theirs)

        ready.migrate_data_to_worktree()

        assert set(load_id_mapping(ready.data_dir).to_dict()) == {"aaaa", "bbbb"}
