"""Thin subprocess wrapper around the ``git`` executable.

Only a small fixed command set is used: worktree add/remove/prune/list,
branch and ref queries, rev-list counts, fetch/push, and the
add/commit/merge/show plumbing needed inside the sync worktree.

Every call runs with a timeout and with terminal prompts disabled, so a
missing credential or an unreachable remote fails instead of hanging.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path

from .errors import GitError, GitTimeoutError

logger = logging.getLogger(__name__)

MIN_GIT_VERSION = "2.42.0"
DEFAULT_TIMEOUT = 60.0

_VERSION_RE = re.compile(r"git version (\d+)\.(\d+)\.(\d+)")


@dataclass(frozen=True)
class GitVersion:
    major: int
    minor: int
    patch: int
    raw: str = ""

    def at_least(self, required: str) -> bool:
        parts = [int(p) for p in required.split(".")]
        parts += [0] * (3 - len(parts))
        return (self.major, self.minor, self.patch) >= tuple(parts[:3])

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


@dataclass(frozen=True)
class WorktreeEntry:
    """One record from ``git worktree list --porcelain``."""

    path: Path
    head: str | None = None
    branch: str | None = None
    detached: bool = False
    prunable: bool = False
    locked: bool = False
    bare: bool = False


def parse_worktree_list(output: str) -> list[WorktreeEntry]:
    entries: list[WorktreeEntry] = []
    current: dict = {}

    def flush() -> None:
        if "path" in current:
            entries.append(WorktreeEntry(**current))
        current.clear()

    for line in output.splitlines():
        line = line.strip()
        if not line:
            flush()
            continue
        key, _, value = line.partition(" ")
        if key == "worktree":
            flush()
            current["path"] = Path(value)
        elif key == "HEAD":
            current["head"] = value
        elif key == "branch":
            current["branch"] = value.removeprefix("refs/heads/")
        elif key in ("detached", "prunable", "locked", "bare"):
            current[key] = True
    flush()
    return entries


class GitClient:
    """Run git commands rooted at *cwd*.

    Args:
        cwd: Repository root; commands run here unless ``cwd=`` is given.
        timeout: Per-command timeout in seconds.
    """

    def __init__(self, cwd: Path, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.cwd = Path(cwd)
        self.timeout = timeout

    # ------------------------------------------------------------------
    # Core runner
    # ------------------------------------------------------------------

    def run(self, *args: str, cwd: Path | None = None) -> str:
        """Run ``git <args>`` and return stripped stdout.

        Raises:
            GitTimeoutError: If the command exceeds the timeout.
            GitError: If git is missing or exits non-zero.
        """
        cmd = ["git", *args]
        workdir = Path(cwd) if cwd is not None else self.cwd
        logger.debug("Running git command in %s: %s", workdir, " ".join(cmd))

        env = dict(os.environ)
        env["GIT_TERMINAL_PROMPT"] = "0"
        try:
            result = subprocess.run(
                cmd,
                cwd=workdir,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=env,
            )
        except subprocess.TimeoutExpired as exc:
            raise GitTimeoutError(
                f"Git command timed out after {self.timeout}s: {' '.join(cmd)}",
                command=cmd,
            ) from exc
        except FileNotFoundError as exc:
            raise GitError("git not found in PATH", command=cmd) from exc

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise GitError(
                f"Git command failed: {' '.join(cmd)}",
                command=cmd,
                stderr=stderr or (result.stdout or "").strip(),
                returncode=result.returncode,
            )
        return (result.stdout or "").strip()

    def succeeds(self, *args: str, cwd: Path | None = None) -> bool:
        """Return ``True`` when the command exits zero."""
        try:
            self.run(*args, cwd=cwd)
        except GitTimeoutError:
            raise
        except GitError:
            return False
        return True

    # ------------------------------------------------------------------
    # Version
    # ------------------------------------------------------------------

    def version(self) -> GitVersion:
        raw = self.run("--version")
        match = _VERSION_RE.search(raw)
        if match is None:
            raise GitError(f"Unable to parse git version from: {raw}")
        return GitVersion(*(int(g) for g in match.groups()), raw=raw)

    def require_version(self, minimum: str = MIN_GIT_VERSION) -> GitVersion:
        """Raise ``GitError`` unless the installed git is at least *minimum*."""
        version = self.version()
        if not version.at_least(minimum):
            raise GitError(
                f"Git {version} detected. Git {minimum}+ required "
                "(worktree add --orphan). Upgrade: https://git-scm.com/downloads"
            )
        return version

    # ------------------------------------------------------------------
    # Refs and branches
    # ------------------------------------------------------------------

    def rev_parse(self, ref: str, cwd: Path | None = None) -> str | None:
        """Resolve *ref* to a commit id, or ``None`` if it does not exist."""
        try:
            return self.run("rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}", cwd=cwd)
        except GitTimeoutError:
            raise
        except GitError:
            return None

    def branch_exists(self, branch: str) -> bool:
        return self.rev_parse(f"refs/heads/{branch}") is not None

    def remote_tracking_exists(self, remote: str, branch: str) -> bool:
        return self.rev_parse(f"refs/remotes/{remote}/{branch}") is not None

    def remote_branch_exists(self, remote: str, branch: str) -> bool:
        """Ask the remote itself (``ls-remote``) whether *branch* exists."""
        return self.succeeds("ls-remote", "--exit-code", "--heads", remote, branch)

    def current_branch(self, cwd: Path | None = None) -> str | None:
        """Branch checked out at *cwd*, or ``None`` on a detached HEAD."""
        try:
            return self.run("symbolic-ref", "--quiet", "--short", "HEAD", cwd=cwd)
        except GitTimeoutError:
            raise
        except GitError:
            return None

    def create_tracking_branch(self, branch: str, start: str) -> None:
        self.run("branch", "--track", branch, start)

    def count_commits(self, revision_range: str) -> int:
        output = self.run("rev-list", "--count", revision_range)
        return int(output or 0)

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        return self.succeeds("merge-base", "--is-ancestor", ancestor, descendant)

    # ------------------------------------------------------------------
    # Remote
    # ------------------------------------------------------------------

    def fetch(self, remote: str, branch: str) -> None:
        self.run("fetch", remote, f"+refs/heads/{branch}:refs/remotes/{remote}/{branch}")

    def push(self, remote: str, branch: str) -> None:
        self.run("push", remote, f"refs/heads/{branch}:refs/heads/{branch}")

    # ------------------------------------------------------------------
    # Worktrees
    # ------------------------------------------------------------------

    def worktree_add(self, path: Path, branch: str) -> None:
        self.run("worktree", "add", str(path), branch)

    def worktree_add_orphan(self, path: Path, branch: str) -> None:
        self.run("worktree", "add", "--orphan", "-b", branch, str(path))

    def worktree_remove(self, path: Path, force: bool = True) -> None:
        args = ["worktree", "remove", str(path)]
        if force:
            args.append("--force")
        self.run(*args)

    def worktree_prune(self) -> None:
        self.run("worktree", "prune")

    def worktree_list(self) -> list[WorktreeEntry]:
        return parse_worktree_list(self.run("worktree", "list", "--porcelain"))

    # ------------------------------------------------------------------
    # Working tree plumbing (always with an explicit cwd)
    # ------------------------------------------------------------------

    def status_porcelain(self, cwd: Path) -> list[str]:
        output = self.run("status", "--porcelain", cwd=cwd)
        return [line for line in output.splitlines() if line.strip()]

    def add_all(self, cwd: Path) -> None:
        self.run("add", "-A", cwd=cwd)

    def commit(self, cwd: Path, message: str) -> None:
        self.run("commit", "--no-verify", "-m", message, cwd=cwd)

    def checkout(self, cwd: Path, *args: str) -> None:
        self.run("checkout", *args, cwd=cwd)

    def merge(self, cwd: Path, ref: str, message: str) -> None:
        # Replicas that initialised independently share no history.
        self.run(
            "merge", "--no-edit", "--allow-unrelated-histories", "-m", message, ref,
            cwd=cwd,
        )

    def merge_abort(self, cwd: Path) -> None:
        self.run("merge", "--abort", cwd=cwd)

    def conflicted_files(self, cwd: Path) -> list[str]:
        output = self.run("diff", "--name-only", "--diff-filter=U", cwd=cwd)
        return [line for line in output.splitlines() if line.strip()]

    def show(self, spec: str, cwd: Path | None = None) -> str | None:
        """Return the blob at *spec* (``<rev>:<path>`` or ``:<stage>:<path>``)."""
        try:
            return self.run("show", spec, cwd=cwd)
        except GitTimeoutError:
            raise
        except GitError:
            return None

    def staged_with_conflict_markers(self, cwd: Path) -> list[str]:
        output = self.run("diff", "--cached", "--name-only", "-S<<<<<<< ", cwd=cwd)
        return [line for line in output.splitlines() if line.strip()]

    def list_tree(self, ref: str, path: str) -> list[str]:
        """File paths under *path* in commit *ref*, relative to the repo root."""
        output = self.run("ls-tree", "-r", "--name-only", ref, "--", path)
        return [line for line in output.splitlines() if line.strip()]
