"""Append-only attic of values lost during merges.

Each conflict becomes one YAML file named
``{issue_id}_{timestamp}_{field}.yml`` inside an attic directory.  Files
are never rewritten: a name collision gets a numeric suffix instead.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable
from pathlib import Path

import yaml

from tracker_sync.file_handler import atomic_write, read_text
from tracker_sync.models import Issue
from tracker_sync.sync.models import AtticContext, AtticEntry, ConflictRecord

logger = logging.getLogger(__name__)


def _encode_lost_value(value: object) -> str:
    if value is None:
        return ""
    return json.dumps(value, sort_keys=True, default=str)


class AtticStore:
    """Write-once conflict log rooted at *attic_dir*."""

    def __init__(self, attic_dir: Path) -> None:
        self._attic_dir = Path(attic_dir)

    @property
    def path(self) -> Path:
        return self._attic_dir

    # ------------------------------------------------------------------
    # Append
    # ------------------------------------------------------------------

    def append(
        self,
        conflict: ConflictRecord,
        *,
        local_updated_at: str,
        remote_updated_at: str,
    ) -> Path:
        """Persist *conflict* and return the new file's path."""
        entry = AtticEntry(
            entity_id=conflict.issue_id,
            timestamp=conflict.timestamp,
            field=conflict.field,
            lost_value=_encode_lost_value(conflict.lost_value),
            winner_source=conflict.winner_source,
            loser_source=conflict.loser_source,
            context=AtticContext(
                local_version=conflict.local_version,
                remote_version=conflict.remote_version,
                local_updated_at=local_updated_at,
                remote_updated_at=remote_updated_at,
            ),
        )
        content = yaml.safe_dump(
            entry.model_dump(mode="json"), sort_keys=True, allow_unicode=True
        )
        target = self._free_path(conflict)
        atomic_write(target, content)
        logger.info(
            "Recorded %s conflict for %s in %s",
            conflict.field,
            conflict.issue_id,
            target.name,
        )
        return target

    def record(
        self,
        conflicts: Iterable[ConflictRecord],
        local: Issue,
        remote: Issue,
    ) -> list[Path]:
        """Append every conflict from one merge of *local* and *remote*."""
        return [
            self.append(
                conflict,
                local_updated_at=local.updated_at,
                remote_updated_at=remote.updated_at,
            )
            for conflict in conflicts
        ]

    def _free_path(self, conflict: ConflictRecord) -> Path:
        stem = f"{conflict.issue_id}_{conflict.timestamp}_{conflict.field}"
        candidate = self._attic_dir / f"{stem}.yml"
        counter = 1
        while candidate.exists():
            candidate = self._attic_dir / f"{stem}-{counter}.yml"
            counter += 1
        return candidate

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def entries(self) -> list[AtticEntry]:
        """All entries, ordered by file name (issue id, then time)."""
        if not self._attic_dir.is_dir():
            return []
        result: list[AtticEntry] = []
        for path in sorted(self._attic_dir.glob("*.yml")):
            data = yaml.safe_load(read_text(path))
            result.append(AtticEntry.model_validate(data))
        return result

    def entries_for(self, issue_id: str) -> list[AtticEntry]:
        return [e for e in self.entries() if e.entity_id == issue_id]
