"""Shared pytest fixtures for tracker-sync tests."""

import shutil
import subprocess
from pathlib import Path

import pytest
from dotenv import load_dotenv

from tracker_sync.git import MIN_GIT_VERSION, GitClient
from tracker_sync.models import Issue

load_dotenv()

ULID_STEM = "01hx5zzkbkactav9wevgem"


def make_id(n: int) -> str:
    """Deterministic valid issue id for index *n*."""
    return f"is-{ULID_STEM}{n:04d}"


def make_issue(n: int = 1, **overrides) -> Issue:
    data = {
        "id": make_id(n),
        "version": 1,
        "title": f"Issue {n}",
        "created_at": "2025-01-01T00:00:00Z",
        "updated_at": "2025-01-01T00:00:00Z",
    }
    data.update(overrides)
    return Issue(**data)


def _git_usable() -> bool:
    if shutil.which("git") is None:
        return False
    try:
        return GitClient(Path.cwd()).version().at_least(MIN_GIT_VERSION)
    except Exception:
        return False


requires_git = pytest.mark.skipif(
    not _git_usable(), reason=f"requires git >= {MIN_GIT_VERSION}"
)


def git(cwd: Path, *args: str) -> str:
    """Run git for test setup, failing loudly."""
    result = subprocess.run(
        ["git", *args], cwd=cwd, capture_output=True, text=True, check=True
    )
    return result.stdout.strip()


def _init_clone(path: Path, remote: Path) -> Path:
    path.mkdir()
    git(path, "init", "-q", "-b", "main")
    git(path, "config", "user.email", "tests@example.com")
    git(path, "config", "user.name", "Tests")
    git(path, "config", "commit.gpgsign", "false")
    git(path, "remote", "add", "origin", str(remote))
    (path / "README.md").write_text("repo\n")
    git(path, "add", "README.md")
    git(path, "commit", "-q", "-m", "initial")
    return path


@pytest.fixture
def issue_factory():
    """Factory fixture returning ``make_issue``."""
    return make_issue


@pytest.fixture
def bare_remote(tmp_path):
    remote = tmp_path / "remote.git"
    git(tmp_path, "init", "-q", "--bare", str(remote))
    return remote


@pytest.fixture
def repo(tmp_path, bare_remote):
    """A clone with one commit on main and ``origin`` pointing at a bare repo."""
    return _init_clone(tmp_path / "alice", bare_remote)


@pytest.fixture
def second_repo(tmp_path, bare_remote):
    """Another clone of the same bare remote."""
    return _init_clone(tmp_path / "bob", bare_remote)
