"""Short display id <-> internal id mapping.

Stored as ``<data_dir>/mappings/ids.yml``::

    a7k2: 01hx5zzkbkactav9wevgemmvrz
    b3m9: 01hx5zzkbkbctav9wevgemmvrz

Keys are short base36 ids, values are the ULID part of the internal id
(``is-<ulid>``).  Mappings only ever grow, so merging two replicas is a
set union.
"""

from __future__ import annotations

import logging
import re
import secrets
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from .file_handler import atomic_write, read_text
from .paths import MAPPINGS_DIR

logger = logging.getLogger(__name__)

MAPPING_FILE = "ids.yml"

_SHORT_ID = re.compile(r"^[0-9a-z]+$")
_ULID = re.compile(r"^[0-9a-z]{26}$")
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"

ATTEMPTS_PER_LENGTH = 10


def extract_ulid(internal_id: str) -> str:
    """Strip a ``{prefix}-`` from an internal id, e.g. ``is-01h...``."""
    return re.sub(r"^[a-z]+-", "", internal_id.lower())


def _natural_key(value: str) -> tuple:
    return tuple(
        (0, int(part), "") if part.isdigit() else (1, 0, part)
        for part in re.findall(r"\d+|\D+", value)
    )


@dataclass
class IdMapping:
    """Bidirectional short id <-> ULID map."""

    short_to_ulid: dict[str, str] = field(default_factory=dict)
    ulid_to_short: dict[str, str] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.short_to_ulid)

    def add(self, ulid: str, short_id: str) -> None:
        self.short_to_ulid[short_id] = ulid
        self.ulid_to_short[ulid] = short_id

    def short_id_for(self, internal_id: str) -> str | None:
        return self.ulid_to_short.get(extract_ulid(internal_id))

    def has_short_id(self, short_id: str) -> bool:
        return short_id in self.short_to_ulid

    def subset(self, internal_ids: Iterable[str]) -> IdMapping:
        """Return a new mapping restricted to *internal_ids*."""
        result = IdMapping()
        for internal_id in internal_ids:
            ulid = extract_ulid(internal_id)
            short_id = self.ulid_to_short.get(ulid)
            if short_id is not None:
                result.add(ulid, short_id)
        return result

    def to_dict(self) -> dict[str, str]:
        return {
            key: self.short_to_ulid[key]
            for key in sorted(self.short_to_ulid, key=_natural_key)
        }


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


def mapping_path(data_dir: Path) -> Path:
    return Path(data_dir) / MAPPINGS_DIR / MAPPING_FILE


def parse_id_mapping(content: str, source: str = "<string>") -> IdMapping:
    """Parse ``ids.yml`` content.

    Raises:
        ValueError: If the document is not a mapping of short id to ULID.
    """
    data = yaml.safe_load(content) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid ID mapping format in {source}: not a mapping")

    mapping = IdMapping()
    for short_id, ulid in data.items():
        short_id, ulid = str(short_id), str(ulid)
        if not _SHORT_ID.match(short_id) or not _ULID.match(ulid):
            raise ValueError(
                f"Invalid ID mapping format in {source}: {short_id!r} -> {ulid!r}"
            )
        mapping.add(ulid, short_id)
    return mapping


def load_id_mapping(data_dir: Path) -> IdMapping:
    """Load the mapping for *data_dir*; empty when the file is absent."""
    path = mapping_path(data_dir)
    try:
        content = read_text(path)
    except FileNotFoundError:
        return IdMapping()
    return parse_id_mapping(content, str(path))


def save_id_mapping(data_dir: Path, mapping: IdMapping) -> Path:
    path = mapping_path(data_dir)
    content = yaml.safe_dump(mapping.to_dict(), sort_keys=False)
    atomic_write(path, content if mapping.short_to_ulid else "{}\n")
    return path


# ---------------------------------------------------------------------------
# Merging and reconciliation
# ---------------------------------------------------------------------------


def merge_id_mappings(local: IdMapping, remote: IdMapping) -> IdMapping:
    """Union two mappings.  Local wins when either side of a pair clashes."""
    merged = IdMapping(dict(local.short_to_ulid), dict(local.ulid_to_short))
    for short_id, ulid in remote.short_to_ulid.items():
        if short_id in merged.short_to_ulid:
            if merged.short_to_ulid[short_id] != ulid:
                logger.warning(
                    "Short id %s maps to different ids; keeping local", short_id
                )
            continue
        if ulid in merged.ulid_to_short:
            continue
        merged.add(ulid, short_id)
    return merged


def generate_short_id(length: int = 4) -> str:
    return "".join(secrets.choice(_BASE36) for _ in range(length))


def optimal_short_id_length(existing_count: int) -> int:
    return 4 if existing_count < 50_000 else 5


def generate_unique_short_id(mapping: IdMapping) -> str:
    """Generate a short id not already present in *mapping*.

    Raises:
        RuntimeError: If every attempt collided.
    """
    length = optimal_short_id_length(len(mapping))
    for candidate_length in (length, length + 1):
        for _ in range(ATTEMPTS_PER_LENGTH):
            short_id = generate_short_id(candidate_length)
            if not mapping.has_short_id(short_id):
                return short_id
    raise RuntimeError(
        f"Failed to generate a unique short id with {len(mapping)} existing ids"
    )


@dataclass
class ReconcileResult:
    created: list[str] = field(default_factory=list)
    recovered: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.created) + len(self.recovered)


def reconcile_mappings(
    internal_ids: Iterable[str],
    mapping: IdMapping,
    historical: IdMapping | None = None,
) -> ReconcileResult:
    """Give every id in *internal_ids* a short id, mutating *mapping*.

    A short id found in *historical* is restored when it is still free,
    which keeps ids that were already published stable.
    """
    result = ReconcileResult()
    for internal_id in internal_ids:
        ulid = extract_ulid(internal_id)
        if ulid in mapping.ulid_to_short:
            continue
        previous = historical.ulid_to_short.get(ulid) if historical else None
        if previous and not mapping.has_short_id(previous):
            mapping.add(ulid, previous)
            result.recovered.append(internal_id)
        else:
            mapping.add(ulid, generate_unique_short_id(mapping))
            result.created.append(internal_id)
    return result
