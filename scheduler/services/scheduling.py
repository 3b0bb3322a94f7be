"""Schedule service: the mutate, detect, resolve, write-back pipeline for one user's day.

Every operation runs to completion before the next starts; the only
suspension point is the optimizer call in :meth:`ScheduleService.optimize_day`,
and nothing is written until its answer has been checked against the
current store contents.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Awaitable, Callable

from pydantic import ValidationError

from scheduler import config
from scheduler.domain.bus import EventBus
from scheduler.domain.errors import (
    ConflictNotFound,
    EventNotFound,
    InvalidInterval,
    OptimizationUnavailable,
    StaleOptimization,
    WouldCrossDayBoundary,
)
from scheduler.domain.events import (
    ConflictResolved,
    EventCreated,
    EventDeleted,
    EventUpdated,
    ScheduleOptimized,
)
from scheduler.domain.models import (
    Conflict,
    ConflictReport,
    CreateEventRequest,
    Event,
    MoveToNextDay,
    ScheduleResult,
    ShiftLater,
    Strategy,
    Task,
    UpdateEventRequest,
)
from scheduler.repos.memory import EventRepository
from scheduler.services.conflicts import conflict_between, detect_conflicts
from scheduler.services.optimization import (
    ensure_current,
    merge_optimization,
    overrides_from_response,
    snapshot_versions,
)
from scheduler.services.optimizer import build_request, optimize
from scheduler.services.resolver import resolution_options, resolve

logger = logging.getLogger(__name__)

Optimizer = Callable[..., Awaitable[list[dict[str, Any]]]]


class ScheduleService:
    def __init__(
        self,
        bus: EventBus,
        event_repo: EventRepository,
        optimizer: Optimizer = optimize,
    ) -> None:
        self.bus = bus
        self.event_repo = event_repo
        self.optimizer = optimizer

    # ------------------------------------------------------------------
    # Event CRUD
    # ------------------------------------------------------------------

    def get_event(self, event_id: str) -> Event:
        event = self.event_repo.get(event_id)
        if event is None:
            raise EventNotFound(f"Event {event_id} not found")
        return event

    def list_events(self, user_id: str, day: date) -> list[Event]:
        return self.event_repo.list_for_day(user_id, day)

    def create_event(self, request: CreateEventRequest) -> ScheduleResult:
        event = Event(**request.model_dump())
        self.event_repo.add(event)
        self.bus.publish(
            EventCreated(event_id=event.id, user_id=event.user_id, day=event.date)
        )
        return ScheduleResult(
            events=[event], conflicts=self.conflicts_for_day(event.user_id, event.date)
        )

    def update_event(self, event_id: str, request: UpdateEventRequest) -> ScheduleResult:
        current = self.get_event(event_id)
        changes = request.changes()
        updated = current.revise(**changes)
        self.event_repo.put(updated, expected_updated_at=request.expected_updated_at)
        self.bus.publish(
            EventUpdated(
                event_id=updated.id,
                user_id=updated.user_id,
                day=updated.date,
                previous_day=current.date,
                changed_fields=sorted(changes),
            )
        )
        return ScheduleResult(
            events=[updated],
            conflicts=self.conflicts_for_day(updated.user_id, updated.date),
        )

    def delete_event(self, event_id: str) -> list[Conflict]:
        current = self.get_event(event_id)
        self.event_repo.delete(event_id)
        self.bus.publish(
            EventDeleted(event_id=event_id, user_id=current.user_id, day=current.date)
        )
        return self.conflicts_for_day(current.user_id, current.date)

    # ------------------------------------------------------------------
    # Conflicts
    # ------------------------------------------------------------------

    def conflicts_for_day(self, user_id: str, day: date) -> list[Conflict]:
        return detect_conflicts(self.event_repo.list_for_day(user_id, day))

    def conflict_reports(self, user_id: str, day: date) -> list[ConflictReport]:
        return [
            ConflictReport(conflict=c, options=resolution_options())
            for c in self.conflicts_for_day(user_id, day)
        ]

    def resolve_conflict(
        self, user_id: str, event_a_id: str, event_b_id: str, strategy: Strategy
    ) -> ScheduleResult:
        """Resolve the current conflict between two events with *strategy*.

        The pair is re-detected from the store first, so a conflict that was
        already resolved elsewhere raises ``ConflictNotFound``.
        """
        conflict = self._current_conflict(user_id, event_a_id, event_b_id)
        updated = resolve(conflict, strategy)
        days = self._write_resolution(conflict, updated, strategy)
        return ScheduleResult(
            events=updated,
            conflicts=[c for day in days for c in self.conflicts_for_day(user_id, day)],
        )

    def auto_resolve(
        self, user_id: str, day: date, minutes: int = config.DEFAULT_SHIFT_MINUTES
    ) -> ScheduleResult:
        """Shift later events until the day is conflict-free.

        Each pass takes the first remaining conflict and applies
        ``ShiftLater(minutes)``; when that would run past midnight the event
        is moved to the next day instead.
        """
        touched: dict[str, Event] = {}
        for _ in range(config.AUTO_RESOLVE_MAX_PASSES):
            conflicts = self.conflicts_for_day(user_id, day)
            if not conflicts:
                break
            conflict = conflicts[0]
            strategy: Strategy = ShiftLater(minutes=minutes)
            try:
                updated = resolve(conflict, strategy)
            except WouldCrossDayBoundary:
                logger.info(
                    "Shifting %s would cross midnight; moving it to the next day",
                    conflict.event_b.id,
                )
                strategy = MoveToNextDay()
                updated = resolve(conflict, strategy)
            self._write_resolution(conflict, updated, strategy)
            touched.update((e.id, e) for e in updated)

        remaining = self.conflicts_for_day(user_id, day)
        if remaining:
            logger.warning(
                "Auto-resolve for user %s on %s left %d conflict(s) after %d passes",
                user_id,
                day,
                len(remaining),
                config.AUTO_RESOLVE_MAX_PASSES,
            )
        return ScheduleResult(events=list(touched.values()), conflicts=remaining)

    def _current_conflict(self, user_id: str, event_a_id: str, event_b_id: str) -> Conflict:
        events = [self.get_event(event_a_id), self.get_event(event_b_id)]
        if any(e.user_id != user_id for e in events):
            raise EventNotFound(f"Events {event_a_id}, {event_b_id} not found for user {user_id}")
        conflict = conflict_between(events, event_a_id, event_b_id)
        if conflict is None:
            raise ConflictNotFound(f"Events {event_a_id} and {event_b_id} do not overlap")
        return conflict

    def _write_resolution(
        self, conflict: Conflict, updated: list[Event], strategy: Strategy
    ) -> list[date]:
        originals = {conflict.event_a.id: conflict.event_a, conflict.event_b.id: conflict.event_b}
        self.event_repo.put_many(
            updated, expected={e.id: originals[e.id].updated_at for e in updated}
        )
        days = sorted({conflict.event_a.date, *(e.date for e in updated)})
        self.bus.publish(
            ConflictResolved(
                user_id=conflict.event_a.user_id,
                event_ids=[e.id for e in updated],
                strategy=strategy.kind,
                days=days,
            )
        )
        return days

    # ------------------------------------------------------------------
    # Optimization
    # ------------------------------------------------------------------

    async def optimize_day(
        self,
        user_id: str,
        day: date,
        tasks: list[Task] | None = None,
        preferences: dict | None = None,
    ) -> ScheduleResult:
        """Ask the optimizer about a day and merge its answer if still current.

        Raises ``OptimizationUnavailable`` when the optimizer fails and
        ``StaleOptimization`` when an event it wants to change was modified
        while the call was pending; in both cases nothing is written.
        """
        events = self.event_repo.list_for_day(user_id, day)
        snapshot = snapshot_versions(events)
        request = build_request(events, tasks or [], preferences)

        try:
            suggestions = await self.optimizer(request)
        except OptimizationUnavailable:
            logger.warning("Optimization unavailable for user %s on %s", user_id, day)
            raise
        except Exception as exc:
            logger.exception("Optimizer failed for user %s on %s", user_id, day)
            raise OptimizationUnavailable(str(exc)) from exc

        overrides = overrides_from_response(suggestions)
        current = self.event_repo.list_for_day(user_id, day)
        try:
            ensure_current(snapshot, current, overrides)
        except StaleOptimization:
            logger.warning("Discarding stale optimization for user %s on %s", user_id, day)
            raise

        try:
            merged = merge_optimization(current, overrides)
        except (InvalidInterval, ValidationError) as exc:
            logger.warning("Rejecting invalid optimizer answer for user %s on %s", user_id, day)
            raise OptimizationUnavailable(f"Optimizer returned an invalid schedule: {exc}") from exc
        changed = [new for new, old in zip(merged, current) if new is not old]
        self.event_repo.put_many(changed, expected=snapshot)
        if changed:
            self.bus.publish(
                ScheduleOptimized(
                    user_id=user_id, day=day, event_ids=[e.id for e in changed]
                )
            )

        days = sorted({day, *(e.date for e in changed)})
        return ScheduleResult(
            events=changed,
            conflicts=[c for d in days for c in self.conflicts_for_day(user_id, d)],
        )
