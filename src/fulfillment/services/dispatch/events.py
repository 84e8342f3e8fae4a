"""In-process event fan-out for assignment changes.

Delivery to courier and customer clients (sockets, push) is done by
subscribers living outside the engine.
"""

from __future__ import annotations

import logging
from threading import Lock
from typing import Callable

from ...models.domain import Assignment
from ...utils.serialization import to_jsonable

ASSIGNMENT_CREATED = "assignment.created"
ASSIGNMENT_STATUS_CHANGED = "assignment.status_changed"
ASSIGNMENT_CHAT_MESSAGE = "assignment.chat_message"

Subscriber = Callable[[str, dict], None]

logger = logging.getLogger(__name__)


class EventBus:
    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._lock = Lock()

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Register a subscriber; returns a callable that unsubscribes it."""

        with self._lock:
            self._subscribers.append(subscriber)

        def _unsubscribe() -> None:
            with self._lock:
                if subscriber in self._subscribers:
                    self._subscribers.remove(subscriber)

        return _unsubscribe

    def publish(self, event: str, assignment: Assignment) -> None:
        payload = to_jsonable(assignment)
        logger.debug("Event %s for assignment %s (%s)", event, assignment.assignment_id, payload["status"])
        with self._lock:
            subscribers = list(self._subscribers)
        for subscriber in subscribers:
            try:
                subscriber(event, payload)
            except Exception:
                logger.exception("Subscriber failed handling %s for assignment %s", event, assignment.assignment_id)
