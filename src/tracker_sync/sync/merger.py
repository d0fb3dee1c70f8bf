"""Field-level three-way merge of issue records.

Every ``Issue`` field is assigned a strategy in ``FIELD_STRATEGIES``;
``merge_issues()`` interprets that table generically, so supporting a new
field is a one-line change to the table.

Strategies:

* ``immutable`` -- identity fields; the ancestor's value is kept.
* ``lww`` -- last write wins by ``updated_at``.  When both sides changed
  a field to different values the loser is recorded as a conflict.
* ``union`` -- set semantics; both sides' members are kept.
* ``counter`` -- ``version``; see ``_finalise_version()``.
* ``max`` -- the later ``updated_at``.

Equal ``updated_at`` timestamps resolve in favour of the local side for
every LWW field, which keeps the rule deterministic on both replicas of a
pair (each treats itself as local, and both converge after the next
exchange because the merged record is pushed).
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from tracker_sync.models import Issue
from tracker_sync.sync.models import ConflictRecord, MergeResult, Resolution
from tracker_sync.timeutils import filename_timestamp, now_iso, parse_timestamp

logger = logging.getLogger(__name__)

WHOLE_ISSUE = "whole_issue"


class MergeStrategy(str, Enum):
    IMMUTABLE = "immutable"
    LWW = "lww"
    UNION = "union"
    COUNTER = "counter"
    MAX = "max"


FIELD_STRATEGIES: dict[str, MergeStrategy] = {
    # Identity
    "type": MergeStrategy.IMMUTABLE,
    "id": MergeStrategy.IMMUTABLE,
    "created_at": MergeStrategy.IMMUTABLE,
    "created_by": MergeStrategy.IMMUTABLE,
    # Bookkeeping
    "version": MergeStrategy.COUNTER,
    "updated_at": MergeStrategy.MAX,
    # Sets
    "labels": MergeStrategy.UNION,
    "dependencies": MergeStrategy.UNION,
    # Scalars and whole values
    "kind": MergeStrategy.LWW,
    "title": MergeStrategy.LWW,
    "description": MergeStrategy.LWW,
    "notes": MergeStrategy.LWW,
    "status": MergeStrategy.LWW,
    "priority": MergeStrategy.LWW,
    "assignee": MergeStrategy.LWW,
    "parent_id": MergeStrategy.LWW,
    "child_order_hints": MergeStrategy.LWW,
    "due_date": MergeStrategy.LWW,
    "deferred_until": MergeStrategy.LWW,
    "closed_at": MergeStrategy.LWW,
    "close_reason": MergeStrategy.LWW,
    "spec_path": MergeStrategy.LWW,
    "external_issue_url": MergeStrategy.LWW,
    "extensions": MergeStrategy.LWW,
}

# Fields ignored by substantive equality.
BOOKKEEPING_FIELDS = frozenset({"version", "updated_at"})


# ------------------------------------------------------------------
# Equality
# ------------------------------------------------------------------


def _comparable(issue: Issue) -> dict[str, Any]:
    data = issue.model_dump(mode="json", exclude=set(BOOKKEEPING_FIELDS))
    data["labels"] = sorted(set(data["labels"]))
    data["dependencies"] = sorted(
        {(d["type"], d["target"]) for d in data["dependencies"]}
    )
    return data


def issues_substantively_equal(a: Issue, b: Issue) -> bool:
    """Compare two issues ignoring ``version`` and ``updated_at``.

    Set-valued fields compare as sets, so ordering and duplicates in
    ``labels``/``dependencies`` never count as a change.
    """
    return _comparable(a) == _comparable(b)


def _field_value(issue: Issue, name: str) -> Any:
    value = getattr(issue, name)
    if name in ("labels", "dependencies"):
        return _normalise_set(name, value)
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    return value


def _normalise_set(name: str, values: list) -> list:
    if name == "dependencies":
        unique = {dep.key: dep for dep in values}
        return [unique[key] for key in sorted(unique)]
    return sorted(set(values))


def _to_plain(value: Any) -> Any:
    if isinstance(value, list):
        return [_to_plain(item) for item in value]
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    return value


# ------------------------------------------------------------------
# Merge
# ------------------------------------------------------------------


def _local_wins(local: Issue, remote: Issue) -> bool:
    return local.updated >= remote.updated


def _conflict(
    issue_id: str,
    field: str,
    lost: Any,
    winner: Any,
    local: Issue,
    remote: Issue,
    winner_source: str,
    stamp: str,
    resolution: Resolution = Resolution.LWW,
) -> ConflictRecord:
    return ConflictRecord(
        issue_id=issue_id,
        field=field,
        timestamp=stamp,
        lost_value=_to_plain(lost),
        winner_value=_to_plain(winner),
        local_version=local.version,
        remote_version=remote.version,
        resolution=resolution,
        winner_source=winner_source,
    )


def _merge_without_base(local: Issue, remote: Issue, stamp: str) -> MergeResult:
    """Resolve two independently created records.

    The earlier ``created_at`` wins the whole record; equal creation
    times favour local.
    """
    local_first = local.created <= remote.created
    winner, loser = (local, remote) if local_first else (remote, local)
    top_version = max(local.version, remote.version)
    merged = winner.model_copy(update={"version": top_version})

    if issues_substantively_equal(local, remote):
        return MergeResult(merged=merged)

    logger.info(
        "No common ancestor for %s; keeping %s copy (earlier created_at)",
        local.id,
        "local" if local_first else "remote",
    )
    conflict = _conflict(
        loser.id,
        WHOLE_ISSUE,
        loser.model_dump(mode="json"),
        winner.model_dump(mode="json"),
        local,
        remote,
        "local" if local_first else "remote",
        stamp,
    )
    return MergeResult(merged=merged, conflicts=[conflict])


def merge_issues(
    base: Issue | None,
    local: Issue,
    remote: Issue,
    *,
    now: str | None = None,
) -> MergeResult:
    """Three-way merge of *local* and *remote* against *base*.

    Args:
        base: Common ancestor, or ``None`` when both replicas created the
            record independently.
        local: This replica's copy.
        remote: The other replica's copy.
        now: ISO 8601 timestamp to stamp on a bumped ``updated_at``
            (defaults to the current time).

    Returns:
        A ``MergeResult``.  Conflicts are values, never exceptions.
    """
    stamp = filename_timestamp()
    if base is None:
        return _merge_without_base(local, remote, stamp)

    local_newer = _local_wins(local, remote)
    merged: dict[str, Any] = {}
    conflicts: list[ConflictRecord] = []

    for name, strategy in FIELD_STRATEGIES.items():
        base_val = _field_value(base, name)
        local_val = _field_value(local, name)
        remote_val = _field_value(remote, name)

        if strategy is MergeStrategy.COUNTER:
            continue

        if local_val == base_val and remote_val == base_val:
            merged[name] = _pick(base, name, strategy)
            continue
        if local_val == base_val:
            merged[name] = _pick(remote, name, strategy)
            continue
        if remote_val == base_val or local_val == remote_val:
            merged[name] = _pick(local, name, strategy)
            continue

        # Both sides changed the field to different values.
        if strategy is MergeStrategy.IMMUTABLE:
            logger.warning(
                "Immutable field %s of %s changed on both sides; keeping ancestor",
                name,
                base.id,
            )
            merged[name] = getattr(base, name)
        elif strategy is MergeStrategy.UNION:
            merged[name] = _union(name, getattr(local, name), getattr(remote, name))
        elif strategy is MergeStrategy.MAX:
            merged[name] = max(
                (getattr(local, name), getattr(remote, name)),
                key=parse_timestamp,
            )
        elif local_newer:
            merged[name] = getattr(local, name)
            conflicts.append(
                _conflict(
                    local.id, name, remote_val, local_val,
                    local, remote, "local", stamp,
                )
            )
        else:
            merged[name] = getattr(remote, name)
            conflicts.append(
                _conflict(
                    local.id, name, local_val, remote_val,
                    local, remote, "remote", stamp,
                )
            )

    return _finalise_version(merged, local, remote, conflicts, now)


def overlay_issue(existing: Issue, incoming: Issue) -> MergeResult:
    """Lay *incoming* over *existing* when no ancestor is recorded.

    Used for snapshots, where the copy already on disk is the only
    reference point.  The copy with the later ``updated_at`` supplies
    every mutable field; ties favour *incoming*.  Each differing value on
    the losing side becomes a conflict, except when *incoming* is a plain
    successor (newer and with a higher ``version``).  ``version`` and
    ``updated_at`` take the larger of the two copies.

    Conflict records treat *existing* as local and *incoming* as remote.
    """
    stamp = filename_timestamp()
    incoming_wins = incoming.updated >= existing.updated
    successor = incoming_wins and incoming.version > existing.version
    winner, loser = (incoming, existing) if incoming_wins else (existing, incoming)

    merged: dict[str, Any] = {}
    conflicts: list[ConflictRecord] = []
    for name, strategy in FIELD_STRATEGIES.items():
        if strategy is MergeStrategy.IMMUTABLE:
            merged[name] = getattr(existing, name)
            continue
        if strategy in (MergeStrategy.COUNTER, MergeStrategy.MAX):
            continue
        merged[name] = _pick(winner, name, strategy)

        kept = _field_value(winner, name)
        lost = _field_value(loser, name)
        if kept == lost or successor:
            continue
        conflicts.append(
            _conflict(
                existing.id, name, lost, kept,
                existing, incoming, "remote" if incoming_wins else "local", stamp,
            )
        )

    merged["version"] = max(existing.version, incoming.version)
    merged["updated_at"] = max(
        (existing.updated_at, incoming.updated_at), key=parse_timestamp
    )
    if conflicts:
        logger.info(
            "Kept %s copy of %s; %d differing field(s) recorded",
            "incoming" if incoming_wins else "existing",
            existing.id,
            len(conflicts),
        )
    return MergeResult(merged=Issue.model_validate(merged), conflicts=conflicts)


def _union(name: str, left: list, right: list) -> list:
    return _normalise_set(name, list(left) + list(right))


def _pick(issue: Issue, name: str, strategy: MergeStrategy) -> Any:
    value = getattr(issue, name)
    if strategy is MergeStrategy.UNION:
        return _normalise_set(name, value)
    return value


def _finalise_version(
    merged: dict[str, Any],
    local: Issue,
    remote: Issue,
    conflicts: list[ConflictRecord],
    now: str | None,
) -> MergeResult:
    """Apply the counter rule to ``version``.

    ``version`` becomes ``max(local, remote)``, bumped by one only when
    the merged record differs substantively from both inputs.  Merges
    that merely pick one side never bump, so replicas exchanging an
    unchanged record do not ratchet versions.
    """
    candidate = max(local.version, remote.version)
    merged["version"] = candidate
    result = Issue.model_validate(merged)

    if issues_substantively_equal(result, local) or issues_substantively_equal(
        result, remote
    ):
        return MergeResult(merged=result, conflicts=conflicts)

    bumped = result.model_copy(
        update={"version": candidate + 1, "updated_at": now or now_iso()}
    )
    return MergeResult(merged=bumped, conflicts=conflicts, version_bumped=True)
