"""Tests for the schedule pipeline: mutations, bus handlers, resolution and optimization."""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta, timezone

import pytest

from scheduler.domain.bus import EventBus
from scheduler.domain.errors import (
    ConflictNotFound,
    EventNotFound,
    OptimizationUnavailable,
    StaleOptimization,
    StaleWrite,
)
from scheduler.domain.events import ConflictsDetected
from scheduler.domain.handlers import HandlerRegistry
from scheduler.domain.models import (
    CreateEventRequest,
    ShiftLater,
    ShortenBoth,
    Task,
    TimelineEntryType,
    UpdateEventRequest,
)
from scheduler.repos.memory import EventRepository, TimelineRepository
from scheduler.services.scheduling import ScheduleService

_DAY = date(2026, 3, 2)
_MIDNIGHT = datetime(2026, 3, 2, tzinfo=timezone.utc)


def _at(hour: int, minute: int = 0) -> datetime:
    return _MIDNIGHT.replace(hour=hour, minute=minute)


class FakeOptimizer:
    """Async stand-in for the optimizer that records requests."""

    def __init__(self, answer=None, error: Exception | None = None, during=None):
        self.answer = answer or []
        self.error = error
        self.during = during
        self.requests = []

    async def __call__(self, request):
        self.requests.append(request)
        if self.during is not None:
            self.during()
        if self.error is not None:
            raise self.error
        return self.answer


@pytest.fixture()
def env():
    """Fresh bus + repos + registry + service for each test."""
    bus = EventBus()
    event_repo = EventRepository()
    timeline_repo = TimelineRepository()
    registry = HandlerRegistry(bus=bus, event_repo=event_repo, timeline_repo=timeline_repo)
    service = ScheduleService(bus=bus, event_repo=event_repo, optimizer=FakeOptimizer())

    class Env:
        pass

    e = Env()
    e.bus = bus
    e.event_repo = event_repo
    e.timeline_repo = timeline_repo
    e.registry = registry
    e.service = service
    e.detected = []
    bus.subscribe(ConflictsDetected, e.detected.append)
    return e


def _create(env, start: datetime, end: datetime, title: str = "Event", **fields):
    result = env.service.create_event(
        CreateEventRequest(user_id="user-1", title=title, start_time=start, end_time=end, **fields)
    )
    return result.events[0], result.conflicts


def _timeline_types(env, event_id: str) -> list[TimelineEntryType]:
    return [e.type for e in env.timeline_repo.list_for_event(event_id)]


# ---------------------------------------------------------------------------
# Create / update / delete
# ---------------------------------------------------------------------------


def test_create_without_overlap_reports_nothing(env):
    event, conflicts = _create(env, _at(9), _at(10))

    assert conflicts == []
    assert env.detected == []
    assert _timeline_types(env, event.id) == [TimelineEntryType.CREATED]


def test_create_overlapping_event_surfaces_conflict(env):
    first, _ = _create(env, _at(9), _at(9, 30), title="A")
    second, conflicts = _create(env, _at(9, 15), _at(10), title="B")

    assert [c.pair for c in conflicts] == [(first.id, second.id)]
    assert conflicts[0].overlap_minutes == 15
    assert len(env.detected) == 1
    assert TimelineEntryType.CONFLICT_DETECTED in _timeline_types(env, first.id)
    assert TimelineEntryType.CONFLICT_DETECTED in _timeline_types(env, second.id)


def test_standing_conflict_is_logged_once(env):
    first, _ = _create(env, _at(9), _at(10))
    second, _ = _create(env, _at(9, 30), _at(10, 30))

    env.service.update_event(second.id, UpdateEventRequest(title="Renamed"))

    entries = [
        t for t in _timeline_types(env, second.id) if t == TimelineEntryType.CONFLICT_DETECTED
    ]
    assert len(entries) == 1
    assert len(env.detected) == 2


def test_update_with_stale_version_is_rejected(env):
    event, _ = _create(env, _at(9), _at(10))
    stale_stamp = event.updated_at
    env.service.update_event(event.id, UpdateEventRequest(title="First edit"))

    with pytest.raises(StaleWrite):
        env.service.update_event(
            event.id,
            UpdateEventRequest(title="Second edit", expected_updated_at=stale_stamp),
        )

    assert env.event_repo.get(event.id).title == "First edit"


def test_update_with_current_version_succeeds(env):
    event, _ = _create(env, _at(9), _at(10))

    result = env.service.update_event(
        event.id,
        UpdateEventRequest(end_time=_at(11), expected_updated_at=event.updated_at),
    )

    assert result.events[0].end_time == _at(11)
    assert result.events[0].updated_at > event.updated_at


def test_moving_event_to_another_day_clears_conflict(env):
    first, _ = _create(env, _at(9), _at(10))
    second, _ = _create(env, _at(9, 30), _at(10, 30))

    result = env.service.update_event(
        second.id,
        UpdateEventRequest(
            start_time=_at(9, 30) + timedelta(days=1),
            end_time=_at(10, 30) + timedelta(days=1),
        ),
    )

    assert result.events[0].date == date(2026, 3, 3)
    assert env.service.conflicts_for_day("user-1", _DAY) == []
    assert _timeline_types(env, second.id)[-1] == TimelineEntryType.UPDATED


def test_delete_clears_conflict(env):
    first, _ = _create(env, _at(9), _at(10))
    second, _ = _create(env, _at(9, 30), _at(10, 30))

    remaining = env.service.delete_event(second.id)

    assert remaining == []
    assert env.event_repo.get(second.id) is None
    assert _timeline_types(env, second.id)[-1] == TimelineEntryType.DELETED


def test_resolved_conflict_is_forgotten(env):
    first, _ = _create(env, _at(9), _at(10))
    second, _ = _create(env, _at(9, 30), _at(10, 30))
    assert env.registry._reported == {("user-1", _DAY): {(first.id, second.id)}}

    env.service.delete_event(second.id)

    assert env.registry._reported == {}


def test_store_delete_of_unknown_id_raises():
    repo = EventRepository()

    with pytest.raises(EventNotFound):
        repo.delete("missing")


def test_missing_event_raises(env):
    with pytest.raises(EventNotFound):
        env.service.delete_event("missing")
    with pytest.raises(EventNotFound):
        env.service.update_event("missing", UpdateEventRequest(title="x"))


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


def test_resolve_conflict_persists_and_rechecks(env):
    first, _ = _create(env, _at(9), _at(9, 30))
    second, _ = _create(env, _at(9, 15), _at(10))

    result = env.service.resolve_conflict(
        "user-1", first.id, second.id, ShiftLater(minutes=15)
    )

    assert result.conflicts == []
    stored = env.event_repo.get(second.id)
    assert stored.start_time == _at(9, 30)
    assert stored.end_time == _at(10, 15)
    assert _timeline_types(env, second.id)[-1] == TimelineEntryType.RESOLVED

    with pytest.raises(ConflictNotFound):
        env.service.resolve_conflict("user-1", first.id, second.id, ShiftLater(minutes=15))


def test_resolve_reports_conflicts_it_introduces(env):
    a, _ = _create(env, _at(9), _at(10), title="A")
    b, _ = _create(env, _at(9, 30), _at(10), title="B")
    c, _ = _create(env, _at(10, 15), _at(11), title="C")

    result = env.service.resolve_conflict("user-1", a.id, b.id, ShiftLater(minutes=30))

    assert [x.pair for x in result.conflicts] == [(b.id, c.id)]


def test_shorten_both_writes_both_events(env):
    a, _ = _create(env, _at(9), _at(10))
    b, _ = _create(env, _at(9, 50), _at(10, 50))

    result = env.service.resolve_conflict("user-1", b.id, a.id, ShortenBoth())

    assert {e.id for e in result.events} == {a.id, b.id}
    assert env.event_repo.get(a.id).end_time == _at(9, 48)
    assert env.event_repo.get(b.id).end_time == _at(10, 38)
    assert result.conflicts == []


def test_resolve_other_users_events_is_not_found(env):
    a, _ = _create(env, _at(9), _at(10))
    b, _ = _create(env, _at(9, 30), _at(10, 30))

    with pytest.raises(EventNotFound):
        env.service.resolve_conflict("intruder", a.id, b.id, ShiftLater())


def test_auto_resolve_clears_the_day(env):
    _create(env, _at(9), _at(12), title="Workshop")
    _create(env, _at(9, 30), _at(10), title="Call")
    _create(env, _at(10, 30), _at(11), title="Review")

    result = env.service.auto_resolve("user-1", _DAY, minutes=30)

    assert result.conflicts == []
    assert env.service.conflicts_for_day("user-1", _DAY) == []
    assert result.events


def test_auto_resolve_moves_to_next_day_at_midnight(env):
    late, _ = _create(env, _at(23), _at(23, 50), title="Late call")
    later, _ = _create(env, _at(23, 30), _at(23, 55), title="Later call")

    result = env.service.auto_resolve("user-1", _DAY, minutes=30)

    assert result.conflicts == []
    moved = env.event_repo.get(later.id)
    assert moved.date == date(2026, 3, 3)
    assert moved.start_time == _at(23, 30) + timedelta(hours=24)
    assert env.event_repo.get(late.id).start_time == _at(23)


# ---------------------------------------------------------------------------
# Optimization
# ---------------------------------------------------------------------------


def test_optimize_day_merges_and_rechecks(env):
    a, _ = _create(env, _at(9), _at(9, 30), title="Standup")
    b, _ = _create(env, _at(9, 15), _at(10), title="Design review", priority="high")
    env.service.optimizer = FakeOptimizer(
        answer=[{"id": b.id, "start_time": _at(11), "end_time": _at(11, 30)}]
    )

    result = asyncio.run(
        env.service.optimize_day(
            "user-1",
            _DAY,
            tasks=[Task(title="Done", status="completed"), Task(title="Open")],
            preferences={"focus_hours": "morning"},
        )
    )

    assert result.conflicts == []
    stored = env.event_repo.get(b.id)
    assert (stored.start_time, stored.end_time) == (_at(11), _at(11, 30))
    assert stored.title == "Design review"
    assert stored.priority == "high"
    assert _timeline_types(env, b.id)[-1] == TimelineEntryType.OPTIMIZED
    [request] = env.service.optimizer.requests
    assert [t.title for t in request.tasks] == ["Open"]
    assert {e.id for e in request.events} == {a.id, b.id}


def test_optimize_day_output_can_conflict(env):
    a, _ = _create(env, _at(9), _at(10))
    b, _ = _create(env, _at(13), _at(14))
    env.service.optimizer = FakeOptimizer(
        answer=[{"id": b.id, "start_time": _at(9, 30), "end_time": _at(10, 30)}]
    )

    result = asyncio.run(env.service.optimize_day("user-1", _DAY))

    assert [c.pair for c in result.conflicts] == [(a.id, b.id)]


def test_optimize_day_failure_leaves_store_untouched(env):
    a, _ = _create(env, _at(9), _at(10))
    before = env.event_repo.list_for_day("user-1", _DAY)
    env.service.optimizer = FakeOptimizer(error=RuntimeError("connection reset"))

    with pytest.raises(OptimizationUnavailable):
        asyncio.run(env.service.optimize_day("user-1", _DAY))

    assert env.event_repo.list_for_day("user-1", _DAY) == before


@pytest.mark.parametrize(
    "suggestion",
    [
        {"start_time": _at(11), "end_time": _at(10)},
        {"start_time": None},
        {"title": ""},
    ],
)
def test_invalid_optimizer_answer_is_unavailable(env, suggestion):
    a, _ = _create(env, _at(9), _at(10), title="Planning")
    before = env.event_repo.list_for_day("user-1", _DAY)
    env.service.optimizer = FakeOptimizer(answer=[{"id": a.id, **suggestion}])

    with pytest.raises(OptimizationUnavailable, match="invalid schedule"):
        asyncio.run(env.service.optimize_day("user-1", _DAY))

    assert env.event_repo.list_for_day("user-1", _DAY) == before
    assert _timeline_types(env, a.id) == [TimelineEntryType.CREATED]


def test_late_optimization_result_is_discarded(env):
    a, _ = _create(env, _at(9), _at(10), title="Planning")

    def _user_edits_meanwhile():
        env.service.update_event(a.id, UpdateEventRequest(title="Planning (moved)"))

    env.service.optimizer = FakeOptimizer(
        answer=[{"id": a.id, "start_time": _at(14), "end_time": _at(15)}],
        during=_user_edits_meanwhile,
    )

    with pytest.raises(StaleOptimization):
        asyncio.run(env.service.optimize_day("user-1", _DAY))

    stored = env.event_repo.get(a.id)
    assert stored.title == "Planning (moved)"
    assert stored.start_time == _at(9)


def test_optimizer_suggestions_for_unknown_ids_are_ignored(env):
    a, _ = _create(env, _at(9), _at(10))
    env.service.optimizer = FakeOptimizer(
        answer=[{"id": "ghost", "start_time": _at(14), "end_time": _at(15)}]
    )

    result = asyncio.run(env.service.optimize_day("user-1", _DAY))

    assert result.events == []
    assert env.service.list_events("user-1", _DAY) == [a]
