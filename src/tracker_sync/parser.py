"""Markdown + YAML front matter format for issue files.

An issue file looks like::

    ---
    created_at: '2025-01-01T00:00:00Z'
    id: is-01hx5zzkbkactav9wevgemmvrz
    ...
    ---
    Description body.

    ## Notes

    Working notes.

Front matter keys are written sorted and null fields are omitted, so the
serialised form of a record is canonical and diffs cleanly in git.
"""

from __future__ import annotations

import re

import yaml
from pydantic import ValidationError

from .errors import InvalidIssueFileError
from .models import Issue

_DELIMITER = "---"
_NOTES_HEADING = re.compile(r"\n## Notes\n", re.IGNORECASE)
_BODY_FIELDS = {"description", "notes"}


def split_front_matter(content: str) -> tuple[dict, str]:
    """Split file content into (front matter mapping, body text).

    Raises:
        InvalidIssueFileError: If either delimiter is missing or the
            front matter is not a YAML mapping.
    """
    text = content.replace("\r\n", "\n").lstrip("\ufeff")
    lines = text.split("\n")
    if not lines or lines[0].strip() != _DELIMITER:
        raise InvalidIssueFileError(
            "Invalid format: missing front matter opening delimiter"
        )

    for index in range(1, len(lines)):
        if lines[index].strip() == _DELIMITER:
            break
    else:
        raise InvalidIssueFileError(
            "Invalid format: missing front matter closing delimiter"
        )

    raw_yaml = "\n".join(lines[1:index])
    body = "\n".join(lines[index + 1 :])
    try:
        data = yaml.safe_load(raw_yaml) if raw_yaml.strip() else {}
    except yaml.YAMLError as exc:
        raise InvalidIssueFileError(f"Invalid front matter: {exc}") from exc
    if not isinstance(data, dict):
        raise InvalidIssueFileError(
            f"Invalid front matter: expected a mapping, got {type(data).__name__}"
        )
    return data, body


def split_body(body: str) -> tuple[str, str]:
    """Split a body into (description, notes) at the ``## Notes`` heading."""
    text = body.strip()
    # Prefix a newline so a heading on the very first line still matches.
    match = _NOTES_HEADING.search("\n" + text)
    if match is None:
        return text, ""
    start = match.start() - 1
    end = match.end() - 1
    return text[: max(start, 0)].strip(), text[end:].strip()


def parse_issue(content: str) -> Issue:
    """Parse issue file content into an ``Issue``.

    Raises:
        InvalidIssueFileError: On malformed structure or schema errors.
    """
    front_matter, body = split_front_matter(content)
    description, notes = split_body(body)
    data = dict(front_matter)
    data["description"] = description or None
    data["notes"] = notes or None
    try:
        return Issue.model_validate(data)
    except ValidationError as exc:
        raise InvalidIssueFileError(f"Invalid issue record: {exc}") from exc


def serialize_issue(issue: Issue) -> str:
    """Serialise an ``Issue`` to canonical file content."""
    metadata = issue.model_dump(
        mode="json", exclude=_BODY_FIELDS, exclude_none=True
    )
    front_matter = yaml.safe_dump(
        metadata,
        sort_keys=True,
        default_flow_style=False,
        allow_unicode=True,
        width=2**31 - 1,
    )

    parts = [_DELIMITER, front_matter.strip(), _DELIMITER]
    if issue.description:
        parts.append(issue.description.strip())
    if issue.notes:
        parts.extend(["", "## Notes", "", issue.notes.strip()])
    return "\n".join(parts) + "\n"
