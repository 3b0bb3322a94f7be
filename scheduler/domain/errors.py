"""Errors raised by the scheduling core.

These derive from ``Exception`` rather than ``ValueError`` so that pydantic
validators let them propagate unchanged instead of wrapping them in a
``ValidationError``.
"""

from __future__ import annotations


class SchedulingError(Exception):
    """Base class for every error the scheduling core raises."""


class InvalidInterval(SchedulingError):
    """An event's start_time is not strictly before its end_time."""


class InvalidFactor(SchedulingError):
    """A shorten factor outside the open interval (0, 1)."""


class WouldCrossDayBoundary(SchedulingError):
    """Shifting the event would push its end past midnight of its day."""


class EventNotFound(SchedulingError):
    pass


class ConflictNotFound(SchedulingError):
    """The requested pair of events no longer overlaps."""


class StaleWrite(SchedulingError):
    """The stored event changed since the caller last read it."""


class OptimizationUnavailable(SchedulingError):
    """The external optimizer failed, timed out, or returned garbage."""


class StaleOptimization(SchedulingError):
    """An optimizer result arrived for an event set that has since changed."""
