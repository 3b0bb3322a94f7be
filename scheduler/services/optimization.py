"""Merging of externally computed per-event overrides into an event set."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable, Mapping

from scheduler.domain.errors import StaleOptimization
from scheduler.domain.models import PROTECTED_FIELDS, Event, EventPatch

logger = logging.getLogger(__name__)

Override = Mapping[str, Any] | EventPatch


def overrides_from_response(items: Iterable[Mapping[str, Any]]) -> dict[str, dict[str, Any]]:
    """Turn the optimizer's ``[{"id": ..., <fields>}]`` list into an id mapping."""
    overrides: dict[str, dict[str, Any]] = {}
    for item in items:
        event_id = item.get("id")
        if not event_id:
            logger.warning("Skipping optimizer suggestion without an id: %r", item)
            continue
        overrides[str(event_id)] = {k: v for k, v in item.items() if k != "id"}
    return overrides


def merge_optimization(
    events: Iterable[Event],
    overrides: Mapping[str, Override],
    now: datetime | None = None,
) -> list[Event]:
    """Apply *overrides* over matching events and return the merged set.

    Each override is a shallow merge: fields it does not name are kept. Ids
    with no matching event are logged and ignored; no event is added or
    removed. Every merged record is validated before anything is returned, so
    one bad override (e.g. an end before its start) rejects the whole batch.
    """
    events = list(events)
    known = {e.id for e in events}
    for event_id in overrides:
        if event_id not in known:
            logger.warning("Ignoring optimizer override for unknown event %s", event_id)

    merged: list[Event] = []
    for event in events:
        override = overrides.get(event.id)
        if override is None:
            merged.append(event)
            continue
        changes = _changes(override)
        if not changes:
            merged.append(event)
            continue
        merged.append(event.revise(now, **changes))
    return merged


def _changes(override: Override) -> dict[str, Any]:
    if isinstance(override, EventPatch):
        return override.changes()
    dropped = PROTECTED_FIELDS.intersection(override)
    if dropped:
        logger.debug("Dropping protected fields from override: %s", sorted(dropped))
    return {k: v for k, v in override.items() if k not in PROTECTED_FIELDS}


def snapshot_versions(events: Iterable[Event]) -> dict[str, datetime]:
    """Capture each event's version stamp when an optimization is requested."""
    return {e.id: e.updated_at for e in events}


def ensure_current(
    snapshot: Mapping[str, datetime],
    events: Iterable[Event],
    override_ids: Iterable[str],
) -> None:
    """Raise :class:`StaleOptimization` if a targeted event moved on since *snapshot*."""
    current = {e.id: e.updated_at for e in events}
    for event_id in override_ids:
        if event_id not in snapshot:
            continue
        if current.get(event_id) != snapshot[event_id]:
            raise StaleOptimization(
                f"Event {event_id} changed while the optimization was pending"
            )
