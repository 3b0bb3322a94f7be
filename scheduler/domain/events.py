"""Domain events emitted when a user's schedule changes."""

from __future__ import annotations

from datetime import date

from pydantic import BaseModel, Field


class EventCreated(BaseModel):
    """Fired when a new Event is persisted."""

    event_id: str
    user_id: str
    day: date


class EventUpdated(BaseModel):
    """Fired when an Event is changed by the user."""

    event_id: str
    user_id: str
    day: date
    previous_day: date | None = None
    changed_fields: list[str] = Field(default_factory=list)


class EventDeleted(BaseModel):
    event_id: str
    user_id: str
    day: date


class ConflictResolved(BaseModel):
    """Fired after a resolver's output has been written back."""

    user_id: str
    event_ids: list[str]
    strategy: str
    days: list[date]


class ScheduleOptimized(BaseModel):
    """Fired after optimizer overrides have been merged and persisted."""

    user_id: str
    day: date
    event_ids: list[str]


class ConflictsDetected(BaseModel):
    """Fired when a detection pass over a day finds overlapping pairs."""

    user_id: str
    day: date
    pairs: list[tuple[str, str]]
    overlap_minutes: list[float]
