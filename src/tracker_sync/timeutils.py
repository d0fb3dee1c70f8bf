"""UTC timestamp helpers shared by the schema, merge engine and attic."""

from __future__ import annotations

from datetime import date, datetime, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def now_iso() -> str:
    """Current UTC time as ISO 8601 with millisecond precision and ``Z``."""
    return format_iso(utc_now())


def format_iso(moment: datetime) -> str:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    moment = moment.astimezone(timezone.utc)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def filename_timestamp(moment: datetime | None = None) -> str:
    """Filesystem-safe timestamp, e.g. ``2025-01-02T03-04-05.678Z``."""
    return format_iso(moment or utc_now()).replace(":", "-")


def parse_timestamp(value: str | datetime | date) -> datetime:
    """Parse an ISO 8601 timestamp into an aware UTC datetime.

    Accepts a trailing ``Z``, naive values (assumed UTC) and bare dates.

    Raises:
        ValueError: If *value* is not a recognisable timestamp.
    """
    if isinstance(value, datetime):
        moment = value
    elif isinstance(value, date):
        moment = datetime(value.year, value.month, value.day)
    else:
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        moment = datetime.fromisoformat(text)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)
