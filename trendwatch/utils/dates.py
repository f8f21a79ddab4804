"""Datetime helpers."""

from __future__ import annotations

from datetime import datetime, timezone

from dateutil import parser as dateparser


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def isoformat(value: datetime) -> str:
    return _as_utc(value).isoformat()


def file_stamp(value: datetime) -> str:
    """Filename-safe stamp whose lexicographic order is chronological."""
    return _as_utc(value).strftime("%Y-%m-%dT%H-%M-%S-%f") + "Z"


def parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return _as_utc(dateparser.isoparse(value))
    except (ValueError, OverflowError):
        return None
