"""Shared utility functions used across agenda modules."""
from __future__ import annotations

from datetime import UTC, datetime

PLACEHOLDER = "—"


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def blank_to_none(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None

