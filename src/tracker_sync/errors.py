"""Exception hierarchy for tracker_sync.

Every error raised by the package derives from ``TrackerSyncError`` so
callers can catch the whole family at the command boundary.  Merge
conflicts are deliberately absent: they are result values
(``ConflictRecord``), never exceptions.
"""

from __future__ import annotations

import re


class TrackerSyncError(Exception):
    """Base class for all tracker_sync errors."""


# ---------------------------------------------------------------------------
# Lookup failures
# ---------------------------------------------------------------------------


class NotFoundError(TrackerSyncError):
    """A record or workspace does not exist."""


class IssueNotFoundError(NotFoundError):
    def __init__(self, issue_id: str, data_dir: str = "") -> None:
        location = f" in {data_dir}" if data_dir else ""
        super().__init__(f"Issue not found: {issue_id}{location}")
        self.issue_id = issue_id


class WorkspaceNotFoundError(NotFoundError):
    def __init__(self, location: str) -> None:
        super().__init__(f"Workspace not found: {location}")
        self.location = location


class InvalidIssueFileError(TrackerSyncError):
    """An issue file could not be parsed or failed schema validation."""


# ---------------------------------------------------------------------------
# Git transport
# ---------------------------------------------------------------------------


class GitError(TrackerSyncError):
    """A git command failed.

    Attributes:
        command: The full argv that was executed.
        stderr: Captured standard error (stripped).
        returncode: Process exit status, or ``None`` if it never ran.
    """

    def __init__(
        self,
        message: str,
        command: list[str] | None = None,
        stderr: str = "",
        returncode: int | None = None,
    ) -> None:
        super().__init__(message)
        self.command = command or []
        self.stderr = stderr
        self.returncode = returncode

    def __str__(self) -> str:
        base = super().__str__()
        if self.stderr:
            return f"{base}\n{self.stderr}"
        return base


class GitTimeoutError(GitError):
    """A git command exceeded its timeout."""


# ---------------------------------------------------------------------------
# Worktree health
# ---------------------------------------------------------------------------


class WorktreeError(TrackerSyncError):
    """Base class for sync worktree problems."""


class WorktreeMissingError(WorktreeError):
    """The sync worktree has not been created."""


class WorktreePrunableError(WorktreeError):
    """The worktree directory is gone but git still has it registered."""


class WorktreeCorruptedError(WorktreeError):
    """The worktree directory exists but its git metadata is broken."""


# ---------------------------------------------------------------------------
# Sync cycle
# ---------------------------------------------------------------------------


class SyncError(TrackerSyncError):
    """The sync cycle could not complete."""


class PushRejectedError(SyncError):
    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


# ---------------------------------------------------------------------------
# Push failure classification
# ---------------------------------------------------------------------------

_PERMANENT_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"HTTP 40[13]\b",
        r"forbidden",
        r"permission denied",
        r"protected branch",
        r"remote rejected",
        r"pre-receive hook declined",
        r"push declined",
        r"not allowed to push",
    )
]

_TRANSIENT_PATTERNS = [
    re.compile(p, re.IGNORECASE)
    for p in (
        r"timed? ?out",
        r"connection refused",
        r"connection reset",
        r"network is unreachable",
        r"could not resolve host",
        r"\bDNS\b",
        r"HTTP 5\d\d\b",
        r"server error",
    )
]


def classify_sync_error(message: str) -> str:
    """Classify a push/fetch failure message.

    Returns:
        ``"permanent"`` when retrying cannot help (auth, branch
        protection, hooks), ``"transient"`` for network-level failures,
        ``"unknown"`` otherwise.
    """
    if any(p.search(message) for p in _PERMANENT_PATTERNS):
        return "permanent"
    if any(p.search(message) for p in _TRANSIENT_PATTERNS):
        return "transient"
    return "unknown"
