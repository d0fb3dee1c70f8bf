"""Tests for sync/consistency.py.

Covers:
- check_local_branch_health() / check_remote_branch_health()
- check_sync_consistency(): ahead/behind counts, missing refs, defects
"""

from unittest.mock import MagicMock

from conftest import git, requires_git
from tracker_sync.git import GitClient
from tracker_sync.paths import SYNC_BRANCH
from tracker_sync.sync.consistency import (
    check_local_branch_health,
    check_remote_branch_health,
    check_sync_consistency,
)
from tracker_sync.sync.worktree import WorktreeManager

LOCAL = "a" * 40
REMOTE = "b" * 40


def _mock_git(refs: dict, counts: dict | None = None, branch: str | None = SYNC_BRANCH):
    client = MagicMock(spec=GitClient)
    client.rev_parse.side_effect = lambda ref, cwd=None: refs.get(ref)
    client.current_branch.return_value = branch
    client.count_commits.side_effect = lambda rng: (counts or {}).get(rng, 0)
    return client


class TestBranchHealth:
    """Tests for the single-ref health checks."""

    def test_local_exists(self):
        client = _mock_git({f"refs/heads/{SYNC_BRANCH}": LOCAL})
        health = check_local_branch_health(client, SYNC_BRANCH)
        assert health.exists
        assert health.head == LOCAL

    def test_remote_missing(self):
        health = check_remote_branch_health(_mock_git({}), "origin", SYNC_BRANCH)
        assert not health.exists
        assert health.head is None


class TestSyncConsistency:
    """Tests for check_sync_consistency() with a mocked client."""

    def test_in_sync(self, tmp_path):
        client = _mock_git(
            {
                "HEAD": LOCAL,
                f"refs/heads/{SYNC_BRANCH}": LOCAL,
                f"refs/remotes/origin/{SYNC_BRANCH}": LOCAL,
            }
        )

        result = check_sync_consistency(client, tmp_path, SYNC_BRANCH, "origin")

        assert result.healthy
        assert result.worktree_matches_local
        assert (result.local_ahead, result.local_behind) == (0, 0)

    def test_ahead_and_behind(self, tmp_path):
        client = _mock_git(
            {
                "HEAD": LOCAL,
                f"refs/heads/{SYNC_BRANCH}": LOCAL,
                f"refs/remotes/origin/{SYNC_BRANCH}": REMOTE,
            },
            counts={f"{REMOTE}..{LOCAL}": 2, f"{LOCAL}..{REMOTE}": 3},
        )

        result = check_sync_consistency(client, tmp_path, SYNC_BRANCH, "origin")

        assert result.local_ahead == 2
        assert result.local_behind == 3
        assert result.healthy

    def test_no_tracking_ref_counts_whole_branch(self, tmp_path):
        client = _mock_git(
            {"HEAD": LOCAL, f"refs/heads/{SYNC_BRANCH}": LOCAL},
            counts={LOCAL: 4},
        )

        result = check_sync_consistency(client, tmp_path, SYNC_BRANCH, "origin")

        assert result.remote_head is None
        assert result.local_ahead == 4
        assert result.local_behind == 0

    def test_missing_worktree(self, tmp_path):
        client = _mock_git({f"refs/heads/{SYNC_BRANCH}": LOCAL})

        result = check_sync_consistency(
            client, tmp_path / "absent", SYNC_BRANCH, "origin"
        )

        assert result.worktree_head is None
        assert "worktree HEAD cannot be resolved" in result.defects
        client.current_branch.assert_not_called()

    def test_detached_and_mismatched(self, tmp_path):
        client = _mock_git(
            {"HEAD": REMOTE, f"refs/heads/{SYNC_BRANCH}": LOCAL}, branch=None
        )

        result = check_sync_consistency(client, tmp_path, SYNC_BRANCH, "origin")

        assert "worktree HEAD is detached" in result.defects
        assert "worktree HEAD differs from local branch tip" in result.defects
        assert not result.healthy

    def test_wrong_branch(self, tmp_path):
        client = _mock_git(
            {"HEAD": LOCAL, f"refs/heads/{SYNC_BRANCH}": LOCAL}, branch="main"
        )
        result = check_sync_consistency(client, tmp_path, SYNC_BRANCH, "origin")
        assert any("expected" in defect for defect in result.defects)


@requires_git
class TestSyncConsistencyRealGit:
    """check_sync_consistency() on a real repository."""

    def test_fresh_worktree(self, repo):
        manager = WorktreeManager(repo)
        manager.init()

        result = check_sync_consistency(
            manager.git, manager.path, SYNC_BRANCH, "origin"
        )

        assert result.healthy
        assert result.local_ahead == 1
        assert result.remote_head is None

    def test_after_push_and_local_commit(self, repo):
        manager = WorktreeManager(repo)
        manager.init()
        git(repo, "push", "-q", "origin", SYNC_BRANCH)
        (manager.data_dir / "note.txt").write_text("x\n")
        git(manager.path, "add", "-A")
        git(manager.path, "commit", "-q", "-m", "local")

        result = check_sync_consistency(
            manager.git, manager.path, SYNC_BRANCH, "origin"
        )

        assert result.local_ahead == 1
        assert result.local_behind == 0
