"""Domain models for the schedule conflict service."""

from __future__ import annotations

import uuid
from datetime import date as Day
from datetime import datetime, timedelta, timezone
from enum import StrEnum
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    field_validator,
    model_validator,
)

from scheduler import config
from scheduler.domain.errors import InvalidInterval
from scheduler.domain.intervals import as_utc, overlap_minutes


class EventType(StrEnum):
    MEETING = "meeting"
    TASK = "task"
    BREAK = "break"
    FOCUS = "focus"
    OTHER = "other"


class Priority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class TaskStatus(StrEnum):
    TODO = "todo"
    IN_PROGRESS = "in-progress"
    REVIEW = "review"
    COMPLETED = "completed"
    BLOCKED = "blocked"


class TaskPriority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TimelineEntryType(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"
    CONFLICT_DETECTED = "conflict_detected"
    RESOLVED = "resolved"
    OPTIMIZED = "optimized"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


# Fields an update, a resolver or the optimizer may never overwrite.
PROTECTED_FIELDS = {"id", "user_id", "created_at", "updated_at", "date"}


# ---------------------------------------------------------------------------
# Core domain models
# ---------------------------------------------------------------------------


class Event(BaseModel):
    id: str = Field(default_factory=_new_id)
    user_id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    description: str | None = None
    start_time: datetime
    end_time: datetime
    type: EventType = EventType.MEETING
    priority: Priority = Priority.MEDIUM
    attendees: list[str] = Field(default_factory=list)
    project_id: str | None = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    @field_validator("start_time", "end_time", "created_at", "updated_at")
    @classmethod
    def _normalize_utc(cls, value: datetime) -> datetime:
        return as_utc(value)

    @field_validator("attendees")
    @classmethod
    def _unique_attendees(cls, value: list[str]) -> list[str]:
        return list(dict.fromkeys(value))

    @model_validator(mode="after")
    def _start_before_end(self) -> Event:
        if self.start_time >= self.end_time:
            raise InvalidInterval(
                f"start_time {self.start_time.isoformat()} must be before "
                f"end_time {self.end_time.isoformat()}"
            )
        return self

    @computed_field
    @property
    def date(self) -> Day:
        """Calendar day the event is anchored to, always that of start_time."""
        return self.start_time.date()

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time

    def revise(self, now: datetime | None = None, **changes: Any) -> Event:
        """Return a validated copy with *changes* applied and updated_at refreshed.

        ``updated_at`` doubles as the version stamp for optimistic writes, so
        it is kept strictly increasing even when the clock has not moved.
        """
        data = self.model_dump(exclude={"date"})
        data.update(changes)
        stamp = as_utc(now) if now is not None else _utcnow()
        data["updated_at"] = max(stamp, self.updated_at + timedelta(microseconds=1))
        return Event.model_validate(data)


class Conflict(BaseModel):
    """Two events of the same day whose time ranges overlap."""

    event_a: Event
    event_b: Event
    overlap_minutes: float = Field(gt=0)

    @classmethod
    def of(cls, first: Event, second: Event) -> Conflict | None:
        """Build the conflict for a pair, or ``None`` if they do not overlap."""
        event_a, event_b = sorted((first, second), key=lambda e: (e.start_time, e.id))
        minutes = overlap_minutes(event_a, event_b)
        if minutes <= 0:
            return None
        return cls(event_a=event_a, event_b=event_b, overlap_minutes=minutes)

    @property
    def pair(self) -> tuple[str, str]:
        return self.event_a.id, self.event_b.id


class Task(BaseModel):
    id: str = Field(default_factory=_new_id)
    title: str = Field(min_length=1)
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM
    due_date: datetime | None = None
    estimated_minutes: int | None = Field(default=None, gt=0)
    project_id: str | None = None


class TimelineEntry(BaseModel):
    id: str = Field(default_factory=_new_id)
    event_id: str
    timestamp: datetime = Field(default_factory=_utcnow)
    type: TimelineEntryType
    payload: dict = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Resolution strategies
# ---------------------------------------------------------------------------


class ShiftLater(BaseModel):
    kind: Literal["shift_later"] = "shift_later"
    minutes: int = Field(default=config.DEFAULT_SHIFT_MINUTES, gt=0)

    @computed_field
    @property
    def label(self) -> str:
        if self.minutes % 60 == 0:
            hours = self.minutes // 60
            return f"{hours} hour{'s' if hours > 1 else ''} later"
        return f"{self.minutes} minutes later"


class MoveToNextDay(BaseModel):
    kind: Literal["move_to_next_day"] = "move_to_next_day"

    @computed_field
    @property
    def label(self) -> str:
        return "Move to tomorrow"


class ShortenBoth(BaseModel):
    kind: Literal["shorten_both"] = "shorten_both"
    # Range is checked by the resolver so that it raises InvalidFactor.
    factor: float = config.DEFAULT_SHORTEN_FACTOR

    @computed_field
    @property
    def label(self) -> str:
        return f"Shorten both events to {self.factor:.0%}"


Strategy = Annotated[
    Union[ShiftLater, MoveToNextDay, ShortenBoth], Field(discriminator="kind")
]


# ---------------------------------------------------------------------------
# Request / Response DTOs
# ---------------------------------------------------------------------------


class CreateEventRequest(BaseModel):
    user_id: str = Field(min_length=1)
    title: str = Field(min_length=1)
    description: str | None = None
    start_time: datetime
    end_time: datetime
    type: EventType = EventType.MEETING
    priority: Priority = Priority.MEDIUM
    attendees: list[str] = Field(default_factory=list)
    project_id: str | None = None


class EventPatch(BaseModel):
    """Partial event: only the fields that were explicitly set are applied."""

    model_config = ConfigDict(extra="ignore")

    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    type: EventType | None = None
    priority: Priority | None = None
    attendees: list[str] | None = None
    project_id: str | None = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True, exclude=PROTECTED_FIELDS)


class UpdateEventRequest(EventPatch):
    expected_updated_at: datetime | None = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(
            exclude_unset=True, exclude=PROTECTED_FIELDS | {"expected_updated_at"}
        )


class ResolveConflictRequest(BaseModel):
    user_id: str
    event_a_id: str
    event_b_id: str
    strategy: Strategy


class AutoResolveRequest(BaseModel):
    user_id: str
    day: Day
    minutes: int = Field(default=config.DEFAULT_SHIFT_MINUTES, gt=0)


class OptimizeScheduleRequest(BaseModel):
    user_id: str
    day: Day
    tasks: list[Task] = Field(default_factory=list)
    preferences: dict = Field(default_factory=dict)


class OptimizationRequest(BaseModel):
    """Payload handed to the external optimizer."""

    events: list[Event]
    tasks: list[Task] = Field(default_factory=list)
    preferences: dict = Field(default_factory=dict)


class ConflictReport(BaseModel):
    conflict: Conflict
    options: list[Strategy]


class ScheduleResult(BaseModel):
    events: list[Event]
    conflicts: list[Conflict] = Field(default_factory=list)
