"""Domain event handlers — wired up at application startup."""

from __future__ import annotations

import logging
from datetime import date

from scheduler.domain.bus import EventBus
from scheduler.domain.events import (
    ConflictResolved,
    ConflictsDetected,
    EventCreated,
    EventDeleted,
    EventUpdated,
    ScheduleOptimized,
)
from scheduler.domain.models import TimelineEntry, TimelineEntryType
from scheduler.repos.memory import EventRepository, TimelineRepository
from scheduler.services.conflicts import detect_conflicts

logger = logging.getLogger(__name__)


class HandlerRegistry:
    """Re-runs conflict detection after every schedule change and keeps the timeline."""

    def __init__(
        self,
        bus: EventBus,
        event_repo: EventRepository,
        timeline_repo: TimelineRepository,
    ) -> None:
        self.bus = bus
        self.event_repo = event_repo
        self.timeline_repo = timeline_repo
        # Pairs already reported per (user, day), so a standing conflict is
        # written to the timeline once rather than on every re-check.
        self._reported: dict[tuple[str, date], set[tuple[str, str]]] = {}
        self._register()

    def _register(self) -> None:
        self.bus.subscribe(EventCreated, self.on_event_created)
        self.bus.subscribe(EventUpdated, self.on_event_updated)
        self.bus.subscribe(EventDeleted, self.on_event_deleted)
        self.bus.subscribe(ConflictResolved, self.on_conflict_resolved)
        self.bus.subscribe(ScheduleOptimized, self.on_schedule_optimized)
        self.bus.subscribe(ConflictsDetected, self.on_conflicts_detected)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def on_event_created(self, event: EventCreated) -> None:
        self.timeline_repo.add(
            TimelineEntry(event_id=event.event_id, type=TimelineEntryType.CREATED)
        )
        self.recheck_day(event.user_id, event.day)

    def on_event_updated(self, event: EventUpdated) -> None:
        self.timeline_repo.add(
            TimelineEntry(
                event_id=event.event_id,
                type=TimelineEntryType.UPDATED,
                payload={"fields": event.changed_fields},
            )
        )
        self.recheck_day(event.user_id, event.day)
        if event.previous_day is not None and event.previous_day != event.day:
            self.recheck_day(event.user_id, event.previous_day)

    def on_event_deleted(self, event: EventDeleted) -> None:
        self.timeline_repo.add(
            TimelineEntry(event_id=event.event_id, type=TimelineEntryType.DELETED)
        )
        self.recheck_day(event.user_id, event.day)

    def on_conflict_resolved(self, event: ConflictResolved) -> None:
        for event_id in event.event_ids:
            self.timeline_repo.add(
                TimelineEntry(
                    event_id=event_id,
                    type=TimelineEntryType.RESOLVED,
                    payload={"strategy": event.strategy},
                )
            )
        for day in event.days:
            self.recheck_day(event.user_id, day)

    def on_schedule_optimized(self, event: ScheduleOptimized) -> None:
        for event_id in event.event_ids:
            self.timeline_repo.add(
                TimelineEntry(event_id=event_id, type=TimelineEntryType.OPTIMIZED)
            )
        self.recheck_day(event.user_id, event.day)

    def on_conflicts_detected(self, event: ConflictsDetected) -> None:
        key = (event.user_id, event.day)
        seen = self._reported.setdefault(key, set())
        for (a_id, b_id), minutes in zip(event.pairs, event.overlap_minutes):
            if (a_id, b_id) in seen:
                continue
            seen.add((a_id, b_id))
            logger.info(
                "Conflict on %s for user %s: %s overlaps %s by %.1f min",
                event.day,
                event.user_id,
                a_id,
                b_id,
                minutes,
            )
            for own, other in ((a_id, b_id), (b_id, a_id)):
                self.timeline_repo.add(
                    TimelineEntry(
                        event_id=own,
                        type=TimelineEntryType.CONFLICT_DETECTED,
                        payload={"conflicting_event_id": other, "overlap_minutes": minutes},
                    )
                )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def recheck_day(self, user_id: str, day: date) -> None:
        conflicts = detect_conflicts(self.event_repo.list_for_day(user_id, day))
        current = {c.pair for c in conflicts}
        key = (user_id, day)
        # Forget pairs that no longer overlap so a recurrence is reported again.
        if key in self._reported:
            self._reported[key] &= current
            if not self._reported[key]:
                del self._reported[key]
        if conflicts:
            self.bus.publish(
                ConflictsDetected(
                    user_id=user_id,
                    day=day,
                    pairs=[c.pair for c in conflicts],
                    overlap_minutes=[c.overlap_minutes for c in conflicts],
                )
            )
