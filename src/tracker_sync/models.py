"""Pydantic schema for issue records.

``Issue`` is the unit of replication: one record per file, merged field
by field during sync.  The model is frozen; derive modified copies with
``issue.model_copy(update={...})``.

Timestamps are kept as ISO 8601 strings so that a read/write round trip
is byte-stable.  YAML loaders may hand back ``datetime``/``date`` objects
for unquoted timestamps; those are coerced back to strings on input.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

from .timeutils import parse_timestamp

ISSUE_ID_PATTERN = re.compile(r"^is-[0-9a-z]{26}$")

_TIMESTAMP_FIELDS = (
    "created_at",
    "updated_at",
    "due_date",
    "deferred_until",
    "closed_at",
)


class IssueStatus(str, Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    BLOCKED = "blocked"
    DEFERRED = "deferred"
    CLOSED = "closed"


class IssueKind(str, Enum):
    BUG = "bug"
    FEATURE = "feature"
    TASK = "task"
    EPIC = "epic"
    CHORE = "chore"


def _check_issue_id(value: str) -> str:
    if not ISSUE_ID_PATTERN.match(value):
        raise ValueError(f"invalid issue id: {value!r}")
    return value


def _coerce_timestamp(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat().replace("+00:00", "Z")
    if isinstance(value, date):
        return value.isoformat()
    return value


class Dependency(BaseModel):
    """A typed edge to another issue."""

    type: Literal["blocks"] = "blocks"
    target: str

    model_config = {"frozen": True}

    @field_validator("target")
    @classmethod
    def _valid_target(cls, value: str) -> str:
        return _check_issue_id(value)

    @property
    def key(self) -> tuple[str, str]:
        return (self.type, self.target)


class Issue(BaseModel):
    """A single issue record.

    Attributes:
        id: Immutable internal id, ``is-`` followed by a lowercase ULID.
        version: Edit counter; only ever increases.
        labels: Unordered set of labels, merged by union.
        dependencies: Unordered set of edges, merged by union on
            ``(type, target)``.
        child_order_hints: Preferred ordering of child ids, replaced as a
            whole list on merge.
        extensions: Free-form namespace for third-party data.
    """

    type: Literal["is"] = "is"
    id: str
    version: int = Field(default=0, ge=0)
    kind: IssueKind = IssueKind.TASK
    title: str = Field(min_length=1, max_length=500)
    description: str | None = Field(default=None, max_length=50000)
    notes: str | None = Field(default=None, max_length=50000)
    status: IssueStatus = IssueStatus.OPEN
    priority: int = Field(default=2, ge=0, le=4)
    assignee: str | None = None
    labels: list[str] = Field(default_factory=list)
    dependencies: list[Dependency] = Field(default_factory=list)
    parent_id: str | None = None
    child_order_hints: list[str] | None = None
    created_at: str
    updated_at: str
    due_date: str | None = None
    deferred_until: str | None = None
    created_by: str | None = None
    closed_at: str | None = None
    close_reason: str | None = None
    spec_path: str | None = None
    external_issue_url: str | None = None
    extensions: dict[str, Any] | None = None

    model_config = {"frozen": True, "use_enum_values": True}

    @field_validator("id")
    @classmethod
    def _valid_id(cls, value: str) -> str:
        return _check_issue_id(value)

    @field_validator("parent_id")
    @classmethod
    def _valid_parent(cls, value: str | None) -> str | None:
        return None if value is None else _check_issue_id(value)

    @field_validator("child_order_hints")
    @classmethod
    def _valid_children(cls, value: list[str] | None) -> list[str] | None:
        if value is not None:
            for child in value:
                _check_issue_id(child)
        return value

    @field_validator(*_TIMESTAMP_FIELDS, mode="before")
    @classmethod
    def _timestamp_as_text(cls, value: Any) -> Any:
        value = _coerce_timestamp(value)
        if value is not None:
            parse_timestamp(value)
        return value

    @property
    def created(self) -> datetime:
        return parse_timestamp(self.created_at)

    @property
    def updated(self) -> datetime:
        return parse_timestamp(self.updated_at)

    @property
    def ulid(self) -> str:
        """The id without its ``is-`` prefix."""
        return self.id.split("-", 1)[1]
