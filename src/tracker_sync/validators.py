"""
Input validation functions for tracker-sync.

Validates branch, remote and workspace names and issue ids before they
reach git or the filesystem.  Every validator returns a
``(is_valid, error_message)`` tuple; the message is empty when valid.
"""

import re

from .models import ISSUE_ID_PATTERN

WORKSPACE_NAME_MAX = 64

_WORKSPACE_NAME = re.compile(r"^[a-z0-9][a-z0-9_-]*$")
_REMOTE_NAME = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
_BRANCH_FORBIDDEN = set(" ~^:?*[\\")


# ---------------------------------------------------------------------------
# Error message formatting helpers
# ---------------------------------------------------------------------------


def format_validation_error(field_name: str, reason: str) -> str:
    """
    Generate consistent error message for validation failures.

    Args:
        field_name: Human-readable field name (e.g., "Branch name")
        reason: Description of validation failure (e.g., "cannot be empty")

    Returns:
        Formatted error message string
    """
    return f"{field_name} {reason}"


def validate_branch_name(branch: str) -> tuple[bool, str]:
    """
    Validate a git branch name.

    A practical subset of ``git check-ref-format --branch``:
        - Cannot be empty
        - Cannot contain whitespace, control characters or any of ``~^:?*[\\``
        - Cannot contain '..', '//' or '@{'
        - Cannot start with '-' or '/', or end with '/', '.' or '.lock'
    """
    if not branch or not branch.strip():
        return (False, format_validation_error("Branch name", "cannot be empty"))

    if any(ch in _BRANCH_FORBIDDEN or ord(ch) < 32 or ch == "\x7f" for ch in branch):
        return (
            False,
            format_validation_error(
                "Branch name", "contains a character git does not allow"
            ),
        )

    for sequence in ("..", "//", "@{"):
        if sequence in branch:
            return (
                False,
                format_validation_error("Branch name", f"cannot contain '{sequence}'"),
            )

    if branch.startswith(("-", "/")):
        return (
            False,
            format_validation_error("Branch name", "cannot start with '-' or '/'"),
        )

    if branch.endswith(("/", ".", ".lock")):
        return (
            False,
            format_validation_error(
                "Branch name", "cannot end with '/', '.' or '.lock'"
            ),
        )

    return (True, "")


def validate_remote_name(remote: str) -> tuple[bool, str]:
    """Validate a git remote name (letters, digits, '.', '_', '-')."""
    if not remote:
        return (False, format_validation_error("Remote name", "cannot be empty"))
    if not _REMOTE_NAME.match(remote) or ".." in remote:
        return (
            False,
            format_validation_error("Remote name", f"'{remote}' is not a valid remote"),
        )
    return (True, "")


def validate_workspace_name(name: str) -> tuple[bool, str]:
    """
    Validate a workspace name.

    Workspace names become directory names under ``.tracker/workspaces``,
    so they are restricted to lowercase letters, digits, '-' and '_', must
    not start with '-' or '.', and are at most 64 characters.
    """
    if not name:
        return (False, format_validation_error("Workspace name", "cannot be empty"))

    if len(name) > WORKSPACE_NAME_MAX:
        return (
            False,
            format_validation_error(
                "Workspace name",
                f"exceeds maximum length of {WORKSPACE_NAME_MAX} characters",
            ),
        )

    if not _WORKSPACE_NAME.match(name):
        return (
            False,
            format_validation_error(
                "Workspace name",
                "must use lowercase letters, digits, '-' or '_' and not start "
                "with '-' or '.'",
            ),
        )

    return (True, "")


def validate_issue_id(issue_id: str) -> tuple[bool, str]:
    """Validate an internal issue id (``is-`` followed by a 26-char ULID)."""
    if not issue_id:
        return (False, format_validation_error("Issue id", "cannot be empty"))
    if not ISSUE_ID_PATTERN.match(issue_id):
        return (
            False,
            format_validation_error("Issue id", f"'{issue_id}' is not a valid id"),
        )
    return (True, "")
