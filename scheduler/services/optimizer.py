"""Client for the external schedule optimizer.

The optimizer is advisory: it receives the day's events, open tasks and user
preferences, and answers with per-event field overrides. Nothing here mutates
events; the caller decides whether the answer is still applicable and merges it.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any

import dateparser

from scheduler import config
from scheduler.domain.errors import OptimizationUnavailable
from scheduler.domain.models import Event, OptimizationRequest, TaskStatus

logger = logging.getLogger(__name__)

_SYSTEM_PROMPT = """\
You are a productivity optimization assistant. You receive a JSON document with \
a user's calendar events for one day, their open tasks and their preferences. \
Suggest better start and end times for the events, considering:

1. Priority of events and tasks
2. Energy levels throughout the day
3. Meeting efficiency
4. Focus time blocks
5. Breaks and recovery time
6. Personal preferences and constraints

Respond with ONLY a JSON object of the form:

{
  "events": [
    {"id": "<id of an existing event>", "start_time": "<ISO 8601>", "end_time": "<ISO 8601>"}
  ]
}

Rules:
- Only include events whose times you want to change.
- Only use ids that appear in the input.
- Keep each event on its original day.
"""

# The web client speaks camelCase; accept either spelling in the answer.
_FIELD_ALIASES = {
    "startTime": "start_time",
    "endTime": "end_time",
    "projectId": "project_id",
}
_TIME_FIELDS = ("start_time", "end_time")


async def _request_completion(payload: str) -> dict:
    """Call OpenAI with the serialized request and return the decoded JSON answer."""
    from openai import AsyncOpenAI, OpenAIError

    if not config.OPENAI_API_KEY:
        raise OptimizationUnavailable("OPENAI_API_KEY is not configured")

    client = AsyncOpenAI(
        api_key=config.OPENAI_API_KEY, timeout=config.OPTIMIZER_TIMEOUT_SECONDS
    )
    try:
        response = await client.chat.completions.create(
            model=config.OPTIMIZER_MODEL,
            messages=[
                {"role": "system", "content": _SYSTEM_PROMPT},
                {"role": "user", "content": payload},
            ],
            temperature=0.3,
            response_format={"type": "json_object"},
        )
    except OpenAIError as exc:
        raise OptimizationUnavailable(f"Optimizer request failed: {exc}") from exc
    return json.loads(response.choices[0].message.content or "{}")


def build_request(
    events: list[Event], tasks: list, preferences: dict | None = None
) -> OptimizationRequest:
    """Assemble the optimizer payload; completed tasks are left out."""
    return OptimizationRequest(
        events=events,
        tasks=[t for t in tasks if t.status != TaskStatus.COMPLETED],
        preferences=preferences or {},
    )


async def optimize(request: OptimizationRequest) -> list[dict[str, Any]]:
    """Ask the optimizer for overrides and return them as ``[{"id": ..., ...}]``.

    Raises ``OptimizationUnavailable`` on timeout, transport errors, or an
    answer that cannot be interpreted.
    """
    payload = request.model_dump_json()
    try:
        answer = await asyncio.wait_for(
            _request_completion(payload), timeout=config.OPTIMIZER_TIMEOUT_SECONDS
        )
    except asyncio.TimeoutError as exc:
        raise OptimizationUnavailable("Optimizer timed out") from exc
    except json.JSONDecodeError as exc:
        raise OptimizationUnavailable("Optimizer returned invalid JSON") from exc

    items = answer.get("events") if isinstance(answer, dict) else None
    if not isinstance(items, list):
        raise OptimizationUnavailable("Optimizer answer has no 'events' list")

    anchors = {e.id: e.start_time for e in request.events}
    return [_normalize(item, anchors) for item in items if isinstance(item, dict)]


def _normalize(item: dict[str, Any], anchors: dict[str, datetime]) -> dict[str, Any]:
    normalized = {_FIELD_ALIASES.get(k, k): v for k, v in item.items()}
    anchor = anchors.get(str(normalized.get("id")))
    for field in _TIME_FIELDS:
        raw = normalized.get(field)
        if isinstance(raw, str):
            parsed = _parse_time(raw, anchor)
            if parsed is None:
                raise OptimizationUnavailable(
                    f"Optimizer returned an unreadable {field}: {raw!r}"
                )
            normalized[field] = parsed
    return normalized


def _parse_time(raw: str, anchor: datetime | None) -> datetime | None:
    """Parse a time string from the optimizer, resolving bare times against *anchor*'s day."""
    settings: dict[str, Any] = {
        "TIMEZONE": "UTC",
        "TO_TIMEZONE": "UTC",
        "RETURN_AS_TIMEZONE_AWARE": False,
    }
    if anchor is not None:
        settings["RELATIVE_BASE"] = anchor.astimezone(timezone.utc).replace(tzinfo=None)
    result = dateparser.parse(raw, settings=settings)
    if result is None:
        logger.debug("dateparser could not read %r", raw)
        return None
    return result.replace(tzinfo=timezone.utc)
