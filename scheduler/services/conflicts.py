"""Service for detecting scheduling conflicts between events."""

from __future__ import annotations

import heapq
import logging
from collections import defaultdict
from datetime import datetime
from typing import Iterable

from scheduler.domain.models import Conflict, Event

logger = logging.getLogger(__name__)


def detect_conflicts(events: Iterable[Event]) -> list[Conflict]:
    """Return every overlapping pair among *events*.

    Events are only compared with events of the same user anchored to the same
    day. Within a day a sweep over start times keeps the still-open events in a
    heap ordered by end time, so a long event is paired with every shorter one
    it spans, not just its sorted neighbour.

    The result is ordered by ``(event_a.start_time, event_b.start_time)`` with
    ids breaking ties, and is identical across runs on the same input. An id
    that appears more than once is counted once, with its last occurrence.
    """
    unique = {event.id: event for event in events}
    days: dict[tuple, list[Event]] = defaultdict(list)
    for event in unique.values():
        days[(event.user_id, event.date)].append(event)

    conflicts: list[Conflict] = []
    for day_events in days.values():
        conflicts.extend(_sweep(day_events))

    conflicts.sort(
        key=lambda c: (
            c.event_a.start_time,
            c.event_b.start_time,
            c.event_a.id,
            c.event_b.id,
        )
    )
    logger.debug("Detected %d conflict(s) across %d day(s)", len(conflicts), len(days))
    return conflicts


def _sweep(day_events: list[Event]) -> list[Conflict]:
    ordered = sorted(day_events, key=lambda e: (e.start_time, e.id))
    open_events: list[tuple[datetime, str, Event]] = []
    found: list[Conflict] = []

    for current in ordered:
        while open_events and open_events[0][0] <= current.start_time:
            heapq.heappop(open_events)
        # Everything still open ends after current starts and started no later.
        for _, _, other in open_events:
            conflict = Conflict.of(other, current)
            if conflict is not None:
                found.append(conflict)
        heapq.heappush(open_events, (current.end_time, current.id, current))

    return found


def conflict_between(events: Iterable[Event], first_id: str, second_id: str) -> Conflict | None:
    """Return the current conflict for a specific pair of ids, if any."""
    by_id = {e.id: e for e in events}
    first, second = by_id.get(first_id), by_id.get(second_id)
    if first is None or second is None or first.id == second.id:
        return None
    if (first.user_id, first.date) != (second.user_id, second.date):
        return None
    return Conflict.of(first, second)
