"""Synchronous in-process bus for schedule domain events."""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Callable

from pydantic import BaseModel

logger = logging.getLogger(__name__)

Handler = Callable[[BaseModel], None]


class EventBus:
    """Publish/subscribe bus; handlers run in registration order, in the caller's thread.

    A handler error propagates to the publisher, so a failed follow-up step
    surfaces on the request that caused it.
    """

    def __init__(self) -> None:
        self._subscribers: dict[type, list[Handler]] = defaultdict(list)

    def subscribe(self, message_type: type, handler: Handler) -> None:
        self._subscribers[message_type].append(handler)

    def publish(self, message: BaseModel) -> None:
        handlers = self._subscribers.get(type(message), [])
        logger.debug("Publishing %s to %d handler(s)", type(message).__name__, len(handlers))
        for handler in handlers:
            handler(message)
