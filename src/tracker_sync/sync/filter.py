"""Substantive-change detection between two record sets."""

from __future__ import annotations

from collections.abc import Iterable

from tracker_sync.models import Issue
from tracker_sync.sync.merger import issues_substantively_equal


def get_updated_issues(local: Iterable[Issue], remote: Iterable[Issue]) -> list[Issue]:
    """Return the records of *local* that carry a real change.

    A record counts as updated when *remote* has no record with the same
    id, or when the two differ in anything but ``version`` and
    ``updated_at``.  Input order of *local* is preserved.
    """
    remote_by_id = {issue.id: issue for issue in remote}
    updated: list[Issue] = []
    for issue in local:
        counterpart = remote_by_id.get(issue.id)
        if counterpart is None or not issues_substantively_equal(issue, counterpart):
            updated.append(issue)
    return updated
