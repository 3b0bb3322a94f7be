"""Pure functions over half-open ``[start, end)`` time ranges.

Anything with ``start_time`` and ``end_time`` attributes can be passed in, so
the same helpers serve both :class:`Interval` and stored events.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone

from scheduler.domain.errors import InvalidInterval


def as_utc(value: datetime) -> datetime:
    """Normalize *value* to an aware UTC datetime (naive values are taken as UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def day_start(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def day_end(day: date) -> datetime:
    """Midnight following *day*; an event may end exactly here."""
    return day_start(day) + timedelta(days=1)


@dataclass(frozen=True)
class Interval:
    start_time: datetime
    end_time: datetime

    def __post_init__(self) -> None:
        if self.start_time >= self.end_time:
            raise InvalidInterval(
                f"start {self.start_time.isoformat()} is not before "
                f"end {self.end_time.isoformat()}"
            )

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time


def overlaps(a, b) -> bool:
    """True iff the two ranges share time. Touching ranges do not overlap."""
    return a.start_time < b.end_time and b.start_time < a.end_time


def overlap(a, b) -> timedelta:
    shared = min(a.end_time, b.end_time) - max(a.start_time, b.start_time)
    return max(shared, timedelta(0))


def overlap_minutes(a, b) -> float:
    """Length of the shared range in minutes; 0 when the ranges are disjoint."""
    return overlap(a, b).total_seconds() / 60
