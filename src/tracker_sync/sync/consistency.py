"""Commit-position checks across the worktree, local branch and remote.

These functions only read refs.  A mismatch is reported through
``SyncConsistency.defects`` for the worktree manager to repair; it is
never merged around here.
"""

from __future__ import annotations

import logging
from pathlib import Path

from tracker_sync.git import GitClient
from tracker_sync.sync.models import BranchHealth, SyncConsistency

logger = logging.getLogger(__name__)


def check_local_branch_health(git: GitClient, branch: str) -> BranchHealth:
    head = git.rev_parse(f"refs/heads/{branch}")
    return BranchHealth(exists=head is not None, head=head)


def check_remote_branch_health(git: GitClient, remote: str, branch: str) -> BranchHealth:
    """Health of the remote-tracking ref (as of the last fetch)."""
    head = git.rev_parse(f"refs/remotes/{remote}/{branch}")
    return BranchHealth(exists=head is not None, head=head)


def check_sync_consistency(
    git: GitClient, worktree_path: Path, branch: str, remote: str
) -> SyncConsistency:
    """Compare worktree HEAD, local branch tip and remote-tracking tip.

    Args:
        git: Client rooted at the main repository.
        worktree_path: Sync worktree directory.
        branch: Sync branch name.
        remote: Remote name.

    Returns:
        A ``SyncConsistency``.  Without a remote-tracking ref, ahead is
        the branch's full commit count and behind is zero.
    """
    worktree_head = None
    worktree_branch = None
    if Path(worktree_path).exists():
        worktree_head = git.rev_parse("HEAD", cwd=worktree_path)
        if worktree_head is not None:
            worktree_branch = git.current_branch(cwd=worktree_path)

    local = check_local_branch_health(git, branch)
    tracking = check_remote_branch_health(git, remote, branch)

    ahead = behind = 0
    if local.exists and tracking.exists:
        ahead = git.count_commits(f"{tracking.head}..{local.head}")
        behind = git.count_commits(f"{local.head}..{tracking.head}")
    elif local.exists:
        ahead = git.count_commits(local.head)

    consistency = SyncConsistency(
        branch=branch,
        remote=remote,
        worktree_head=worktree_head,
        worktree_branch=worktree_branch,
        local_head=local.head,
        remote_head=tracking.head,
        local_ahead=ahead,
        local_behind=behind,
        worktree_matches_local=(
            worktree_head is not None and worktree_head == local.head
        ),
    )
    if consistency.defects:
        logger.debug("Sync consistency defects: %s", "; ".join(consistency.defects))
    return consistency
