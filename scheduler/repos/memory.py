"""In-memory repositories for events and their activity timeline."""

from __future__ import annotations

from datetime import date, datetime

from scheduler.domain.errors import EventNotFound, StaleWrite
from scheduler.domain.intervals import as_utc
from scheduler.domain.models import Event, TimelineEntry


class EventRepository:
    """Dict-backed store for Event instances, keyed by id.

    Writes are last-write-wins unless the caller passes the ``updated_at``
    it based its change on, in which case a newer stored version is rejected.
    """

    def __init__(self) -> None:
        self._store: dict[str, Event] = {}

    def add(self, event: Event) -> None:
        self._store[event.id] = event

    def get(self, event_id: str) -> Event | None:
        return self._store.get(event_id)

    def put(self, event: Event, expected_updated_at: datetime | None = None) -> Event:
        if expected_updated_at is not None:
            stored = self._store.get(event.id)
            if stored is not None and stored.updated_at != as_utc(expected_updated_at):
                raise StaleWrite(
                    f"Event {event.id} was modified at {stored.updated_at.isoformat()}"
                )
        self._store[event.id] = event
        return event

    def put_many(
        self, events: list[Event], expected: dict[str, datetime] | None = None
    ) -> list[Event]:
        """Write several events, checking every version before writing any."""
        expected = expected or {}
        for event in events:
            stored = self._store.get(event.id)
            base = expected.get(event.id)
            if base is not None and stored is not None and stored.updated_at != base:
                raise StaleWrite(
                    f"Event {event.id} was modified at {stored.updated_at.isoformat()}"
                )
        for event in events:
            self._store[event.id] = event
        return events

    def list_for_day(self, user_id: str, day: date) -> list[Event]:
        """Return a user's events anchored to *day*, ordered by start time."""
        return sorted(
            (e for e in self._store.values() if e.user_id == user_id and e.date == day),
            key=lambda e: (e.start_time, e.id),
        )

    def delete(self, event_id: str) -> None:
        if self._store.pop(event_id, None) is None:
            raise EventNotFound(f"Event {event_id} not found")


class TimelineRepository:
    """List-backed store for TimelineEntry instances."""

    def __init__(self) -> None:
        self._entries: list[TimelineEntry] = []

    def add(self, entry: TimelineEntry) -> None:
        self._entries.append(entry)

    def list_for_event(self, event_id: str) -> list[TimelineEntry]:
        return sorted(
            [e for e in self._entries if e.event_id == event_id],
            key=lambda e: e.timestamp,
        )
