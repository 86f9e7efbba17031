"""Injectable wall clock. Services take a ``Clock`` so tests can move time."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Return the current instant as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


def to_epoch(dt: datetime) -> int:
    """Return whole epoch seconds; naive datetimes are read as UTC."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return int(dt.timestamp())


def from_epoch(ts: int | float) -> datetime:
    """Return the UTC datetime for epoch seconds."""
    return datetime.fromtimestamp(ts, tz=UTC)
