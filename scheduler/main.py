"""FastAPI application — entry point for the schedule conflict service."""

from __future__ import annotations

import logging
from datetime import date

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from scheduler import config
from scheduler.domain.bus import EventBus
from scheduler.domain.errors import (
    ConflictNotFound,
    EventNotFound,
    InvalidFactor,
    InvalidInterval,
    OptimizationUnavailable,
    SchedulingError,
    StaleOptimization,
    StaleWrite,
    WouldCrossDayBoundary,
)
from scheduler.domain.handlers import HandlerRegistry
from scheduler.domain.models import (
    AutoResolveRequest,
    Conflict,
    ConflictReport,
    CreateEventRequest,
    Event,
    OptimizeScheduleRequest,
    ResolveConflictRequest,
    ScheduleResult,
    TimelineEntry,
    UpdateEventRequest,
)
from scheduler.repos.memory import EventRepository, TimelineRepository
from scheduler.services.scheduling import ScheduleService

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)

app = FastAPI(title="Schedule Conflict Service")

# ── Singletons (created at import time for simplicity) ────────────────
event_bus = EventBus()
event_repo = EventRepository()
timeline_repo = TimelineRepository()

handler_registry = HandlerRegistry(
    bus=event_bus,
    event_repo=event_repo,
    timeline_repo=timeline_repo,
)
schedule_service = ScheduleService(bus=event_bus, event_repo=event_repo)


# ── Error mapping ─────────────────────────────────────────────────────

_STATUS_BY_ERROR: dict[type[SchedulingError], int] = {
    EventNotFound: 404,
    ConflictNotFound: 404,
    InvalidInterval: 422,
    InvalidFactor: 422,
    WouldCrossDayBoundary: 422,
    StaleWrite: 409,
    StaleOptimization: 409,
    OptimizationUnavailable: 503,
}


@app.exception_handler(SchedulingError)
async def _scheduling_error(request: Request, exc: SchedulingError) -> JSONResponse:
    status = next(
        (code for kind, code in _STATUS_BY_ERROR.items() if isinstance(exc, kind)), 400
    )
    return JSONResponse(status_code=status, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
async def _validation_error(request: Request, exc: ValidationError) -> JSONResponse:
    # Raised when a patch produces an invalid event after the request itself parsed.
    return JSONResponse(
        status_code=422,
        content={
            "detail": exc.errors(
                include_url=False, include_context=False, include_input=False
            )
        },
    )


# ── Events ────────────────────────────────────────────────────────────


@app.post("/events", response_model=ScheduleResult, status_code=201)
def create_event(payload: CreateEventRequest) -> ScheduleResult:
    """Create an event and return it with the conflicts now on its day."""
    return schedule_service.create_event(payload)


@app.get("/events", response_model=list[Event])
def list_events(user_id: str, day: date) -> list[Event]:
    """Return a user's events for one day, ordered by start time."""
    return schedule_service.list_events(user_id, day)


@app.get("/events/{event_id}", response_model=Event)
def get_event(event_id: str) -> Event:
    return schedule_service.get_event(event_id)


@app.patch("/events/{event_id}", response_model=ScheduleResult)
def update_event(event_id: str, payload: UpdateEventRequest) -> ScheduleResult:
    """Apply a partial update; pass ``expected_updated_at`` to reject stale edits."""
    return schedule_service.update_event(event_id, payload)


@app.delete("/events/{event_id}", response_model=list[Conflict])
def delete_event(event_id: str) -> list[Conflict]:
    """Delete an event and return the conflicts remaining on its day."""
    return schedule_service.delete_event(event_id)


@app.get("/events/{event_id}/timeline", response_model=list[TimelineEntry])
def get_event_timeline(event_id: str) -> list[TimelineEntry]:
    return timeline_repo.list_for_event(event_id)


# ── Conflicts ─────────────────────────────────────────────────────────


@app.get("/conflicts", response_model=list[ConflictReport])
def list_conflicts(user_id: str, day: date) -> list[ConflictReport]:
    """Return the day's conflicts, each with the resolution options on offer."""
    return schedule_service.conflict_reports(user_id, day)


@app.post("/conflicts/resolve", response_model=ScheduleResult)
def resolve_conflict(payload: ResolveConflictRequest) -> ScheduleResult:
    """Apply the chosen strategy to one conflict and persist the result."""
    return schedule_service.resolve_conflict(
        payload.user_id, payload.event_a_id, payload.event_b_id, payload.strategy
    )


@app.post("/conflicts/auto-resolve", response_model=ScheduleResult)
def auto_resolve(payload: AutoResolveRequest) -> ScheduleResult:
    return schedule_service.auto_resolve(payload.user_id, payload.day, payload.minutes)


# ── Optimization ──────────────────────────────────────────────────────


@app.post("/schedule/optimize", response_model=ScheduleResult)
async def optimize_schedule(payload: OptimizeScheduleRequest) -> ScheduleResult:
    """Merge the optimizer's suggestions for a day.

    Responds 503 when the optimizer is unavailable and 409 when the day
    changed while it was thinking; the schedule is untouched in both cases.
    """
    return await schedule_service.optimize_day(
        payload.user_id, payload.day, payload.tasks, payload.preferences
    )
