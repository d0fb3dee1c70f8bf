"""Tests for storage.py: one issue per file.

Covers:
- read_issue() / try_read_issue() including NotFound
- write_issue() atomic replace
- delete_issue() no-op on missing
- iter_issue_ids() lazy scan
- list_issues() parallel load skipping invalid files
"""

import pytest

from conftest import make_id, make_issue
from tracker_sync.errors import IssueNotFoundError, NotFoundError
from tracker_sync.storage import (
    delete_issue,
    issue_path,
    iter_issue_ids,
    list_issues,
    read_issue,
    try_read_issue,
    write_issue,
)


class TestReadWrite:
    """Tests for single-record reads and writes."""

    def test_write_then_read(self, tmp_path):
        issue = make_issue(1, description="Body")
        path = write_issue(tmp_path, issue)
        assert path == tmp_path / "issues" / f"{make_id(1)}.md"
        assert read_issue(tmp_path, issue.id) == issue

    def test_read_missing_raises_not_found(self, tmp_path):
        with pytest.raises(IssueNotFoundError) as excinfo:
            read_issue(tmp_path, make_id(9))
        assert isinstance(excinfo.value, NotFoundError)
        assert excinfo.value.issue_id == make_id(9)

    def test_try_read_missing_returns_none(self, tmp_path):
        assert try_read_issue(tmp_path, make_id(9)) is None

    def test_write_overwrites(self, tmp_path):
        write_issue(tmp_path, make_issue(1, title="old"))
        write_issue(tmp_path, make_issue(1, title="new"))
        assert read_issue(tmp_path, make_id(1)).title == "new"

    def test_delete(self, tmp_path):
        write_issue(tmp_path, make_issue(1))
        delete_issue(tmp_path, make_id(1))
        assert not issue_path(tmp_path, make_id(1)).exists()

    def test_delete_missing_is_noop(self, tmp_path):
        delete_issue(tmp_path, make_id(1))


class TestListing:
    """Tests for iter_issue_ids() and list_issues()."""

    def test_missing_dir_lists_nothing(self, tmp_path):
        assert list_issues(tmp_path / "nope") == []
        assert list(iter_issue_ids(tmp_path / "nope")) == []

    def test_lists_all(self, tmp_path):
        for n in range(20):
            write_issue(tmp_path, make_issue(n))
        issues = list_issues(tmp_path)
        assert sorted(i.id for i in issues) == [make_id(n) for n in range(20)]

    def test_ignores_non_markdown(self, tmp_path):
        write_issue(tmp_path, make_issue(1))
        (tmp_path / "issues" / ".gitkeep").touch()
        (tmp_path / "issues" / "notes.txt").write_text("x")
        assert list(iter_issue_ids(tmp_path)) == [make_id(1)]

    def test_skips_invalid_files(self, tmp_path, caplog):
        write_issue(tmp_path, make_issue(1))
        (tmp_path / "issues" / f"{make_id(2)}.md").write_text("# not front matter\n")
        issues = list_issues(tmp_path)
        assert [i.id for i in issues] == [make_id(1)]
        assert "Skipping invalid issue file" in caplog.text
