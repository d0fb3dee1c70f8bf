"""Per-record file storage for issues.

One issue per file under ``<data_dir>/issues/{id}.md``.  Listing scans
the directory lazily and parses files in parallel on a bounded thread
pool, so a corpus of thousands of small files lists quickly without any
index or cache.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from .errors import InvalidIssueFileError, IssueNotFoundError
from .file_handler import atomic_write, read_text
from .models import Issue
from .parser import parse_issue, serialize_issue
from .paths import ISSUES_DIR

logger = logging.getLogger(__name__)

ISSUE_SUFFIX = ".md"

# Parsing is I/O bound; a small pool saturates local disks.
MAX_READ_WORKERS = 8


def issue_path(data_dir: Path, issue_id: str) -> Path:
    return Path(data_dir) / ISSUES_DIR / f"{issue_id}{ISSUE_SUFFIX}"


def read_issue(data_dir: Path, issue_id: str) -> Issue:
    """Read one issue.

    Raises:
        IssueNotFoundError: If no file exists for *issue_id*.
        InvalidIssueFileError: If the file cannot be parsed.
    """
    path = issue_path(data_dir, issue_id)
    try:
        content = read_text(path)
    except FileNotFoundError:
        raise IssueNotFoundError(issue_id, str(data_dir)) from None
    return parse_issue(content)


def try_read_issue(data_dir: Path, issue_id: str) -> Issue | None:
    """Like ``read_issue`` but returns ``None`` when the file is absent."""
    try:
        return read_issue(data_dir, issue_id)
    except IssueNotFoundError:
        return None


def write_issue(data_dir: Path, issue: Issue) -> Path:
    """Atomically write *issue*, replacing any previous copy."""
    path = issue_path(data_dir, issue.id)
    atomic_write(path, serialize_issue(issue))
    return path


def delete_issue(data_dir: Path, issue_id: str) -> None:
    """Remove an issue file.  Missing files are ignored."""
    try:
        issue_path(data_dir, issue_id).unlink()
    except FileNotFoundError:
        pass


def iter_issue_ids(data_dir: Path) -> Iterator[str]:
    """Yield issue ids from file names without parsing any file."""
    issues_dir = Path(data_dir) / ISSUES_DIR
    try:
        entries = os.scandir(issues_dir)
    except FileNotFoundError:
        return
    with entries:
        for entry in entries:
            if entry.is_file() and entry.name.endswith(ISSUE_SUFFIX):
                yield entry.name[: -len(ISSUE_SUFFIX)]


def _load(path: Path) -> Issue | None:
    try:
        return parse_issue(read_text(path))
    except FileNotFoundError:
        # Removed between scan and read.
        return None
    except InvalidIssueFileError as exc:
        logger.warning("Skipping invalid issue file %s: %s", path.name, exc)
        return None


def list_issues(data_dir: Path) -> list[Issue]:
    """Load every readable issue in *data_dir*.

    Returns an empty list when the issues directory does not exist.
    Unparseable files are skipped with a warning rather than failing the
    whole listing.
    """
    paths = [issue_path(data_dir, i) for i in iter_issue_ids(data_dir)]
    if not paths:
        return []
    workers = min(MAX_READ_WORKERS, len(paths))
    with ThreadPoolExecutor(max_workers=workers) as pool:
        loaded = list(pool.map(_load, paths))
    return [issue for issue in loaded if issue is not None]
