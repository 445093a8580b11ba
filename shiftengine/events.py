"""Post-commit schedule update events.

Engine calls build a ScheduleEvent value; SchedulingService hands it to an
EventDispatcher only after the transaction committed.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)

EVENT_REGISTER = "register"
EVENT_UNREGISTER = "unregister"
EVENT_DROP = "drop"
EVENT_PICKUP = "pickup"


@dataclass(frozen=True)
class EventDelta:
    available_slots: int
    total_slots: int
    affected_users: Tuple[int, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "availableSlots": self.available_slots,
            "totalSlots": self.total_slots,
            "affectedUsers": list(self.affected_users),
        }


@dataclass(frozen=True)
class ScheduleEvent:
    type: str
    user_id: int
    period_id: int
    timestamp: datetime
    delta: EventDelta
    slot_id: Optional[int] = None
    occurrence_id: Optional[int] = None

    def to_dict(self) -> dict:
        """Wire shape consumed by the downstream broadcaster."""
        payload = {
            "type": self.type,
            "userId": self.user_id,
            "periodId": self.period_id,
            "timestamp": self.timestamp.isoformat(),
            "delta": self.delta.to_dict(),
        }
        if self.slot_id is not None:
            payload["slotId"] = self.slot_id
        if self.occurrence_id is not None:
            payload["occurrenceId"] = self.occurrence_id
        return payload


Subscriber = Callable[[ScheduleEvent], None]


class EventDispatcher:
    """Fan committed events out to subscribers (e.g. a websocket broadcaster)."""

    def __init__(self):
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """
        Register a subscriber.

        Returns:
            Callable that removes the subscriber again
        """
        with self._lock:
            self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            with self._lock:
                if subscriber in self._subscribers:
                    self._subscribers.remove(subscriber)

        return unsubscribe

    def publish(self, event: ScheduleEvent) -> None:
        # The operation already committed; a broken subscriber must not surface as its failure.
        with self._lock:
            subscribers = list(self._subscribers)
        for subscriber in subscribers:
            try:
                subscriber(event)
            except Exception:
                logger.exception("Event subscriber %r failed for %s event", subscriber, event.type)


class EventCollector:
    """Subscriber that keeps every event it receives."""

    def __init__(self):
        self.events: List[ScheduleEvent] = []

    def __call__(self, event: ScheduleEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> List[ScheduleEvent]:
        return [e for e in self.events if e.type == event_type]
