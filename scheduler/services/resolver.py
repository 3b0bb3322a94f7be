"""Service for computing the event updates that remove a single conflict.

The resolver never touches a store. It returns full, revised event records
and leaves persisting them (and re-running detection, since a shift can
collide with a third event) to the caller.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from scheduler import config
from scheduler.domain.errors import InvalidFactor, WouldCrossDayBoundary
from scheduler.domain.intervals import day_end
from scheduler.domain.models import (
    Conflict,
    Event,
    MoveToNextDay,
    ShiftLater,
    ShortenBoth,
    Strategy,
)


def resolution_options() -> list[Strategy]:
    """Suggested strategies for a conflict, in the order they are offered."""
    return [
        ShiftLater(minutes=config.DEFAULT_SHIFT_MINUTES),
        ShiftLater(minutes=2 * config.DEFAULT_SHIFT_MINUTES),
        MoveToNextDay(),
        ShortenBoth(factor=config.DEFAULT_SHORTEN_FACTOR),
    ]


def resolve(
    conflict: Conflict, strategy: Strategy, now: datetime | None = None
) -> list[Event]:
    """Apply *strategy* to *conflict* and return the updated event(s)."""
    if isinstance(strategy, ShiftLater):
        return [shift_later(conflict.event_b, strategy.minutes, now)]
    if isinstance(strategy, MoveToNextDay):
        return [move_to_next_day(conflict.event_b, now)]
    if isinstance(strategy, ShortenBoth):
        _check_factor(strategy.factor)
        return [
            shorten(conflict.event_a, strategy.factor, now),
            shorten(conflict.event_b, strategy.factor, now),
        ]
    raise TypeError(f"Unknown resolution strategy: {strategy!r}")


def shift_later(event: Event, minutes: int, now: datetime | None = None) -> Event:
    delta = timedelta(minutes=minutes)
    new_end = event.end_time + delta
    boundary = day_end(event.date)
    if new_end > boundary:
        raise WouldCrossDayBoundary(
            f"Shifting {event.id} by {minutes} minutes ends at "
            f"{new_end.isoformat()}, past {boundary.isoformat()}"
        )
    return event.revise(now, start_time=event.start_time + delta, end_time=new_end)


def move_to_next_day(event: Event, now: datetime | None = None) -> Event:
    delta = timedelta(hours=24)
    return event.revise(
        now, start_time=event.start_time + delta, end_time=event.end_time + delta
    )


def shorten(event: Event, factor: float, now: datetime | None = None) -> Event:
    """Scale the event's current duration by *factor*, keeping its start."""
    _check_factor(factor)
    return event.revise(now, end_time=event.start_time + event.duration * factor)


def _check_factor(factor: float) -> None:
    if not 0 < factor < 1:
        raise InvalidFactor(f"Shorten factor must be in (0, 1), got {factor}")
