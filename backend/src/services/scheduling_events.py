"""
Scheduling event publishing.

The scheduling engine does not send notifications or write audit logs
itself. Services publish typed events after their transaction commits, and
the embedding application registers handlers (notifier, audit log, staff
review queue) with the module-level publisher.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from utils.datetime_utils import clinic_now

logger = logging.getLogger(__name__)


# Event types
APPOINTMENT_CREATED = "appointment.created"
APPOINTMENT_CANCELLED = "appointment.cancelled"
APPOINTMENT_COMPLETED = "appointment.completed"
APPOINTMENT_STATUS_CHANGED = "appointment.status_changed"
RESOURCE_LOW_STOCK = "resource.low_stock"
BOOKING_CONFLICT = "booking.conflict"
INVENTORY_ADJUSTED = "inventory.adjusted"
ROLE_ASSIGNED = "role.assigned"
ROLE_UNASSIGNED = "role.unassigned"

ALL_EVENT_TYPES = (
    APPOINTMENT_CREATED,
    APPOINTMENT_CANCELLED,
    APPOINTMENT_COMPLETED,
    APPOINTMENT_STATUS_CHANGED,
    RESOURCE_LOW_STOCK,
    BOOKING_CONFLICT,
    INVENTORY_ADJUSTED,
    ROLE_ASSIGNED,
    ROLE_UNASSIGNED,
)


@dataclass
class SchedulingEvent:
    """An event emitted by the scheduling engine."""
    event_type: str
    clinic_id: int
    payload: Dict[str, Any] = field(default_factory=dict)
    actor_id: Optional[int] = None  # Staff user who triggered the change, if known
    occurred_at: Any = field(default_factory=clinic_now)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format."""
        return {
            "event_type": self.event_type,
            "clinic_id": self.clinic_id,
            "actor_id": self.actor_id,
            "occurred_at": self.occurred_at.isoformat(),
            "payload": self.payload,
        }


EventHandler = Callable[[SchedulingEvent], None]


class SchedulingEventPublisher:
    """
    Fan-out of scheduling events to registered handlers.

    Handlers run synchronously in the publishing thread. A failing handler
    is logged and skipped; it never affects the committed change or the
    other handlers.
    """

    def __init__(self) -> None:
        self._handlers: Dict[str, List[EventHandler]] = {}
        self._lock = threading.Lock()

    def subscribe(self, event_type: str, handler: EventHandler) -> None:
        """
        Register a handler for one event type, or "*" for all events.

        Args:
            event_type: One of ALL_EVENT_TYPES or "*"
            handler: Callable receiving the SchedulingEvent
        """
        if event_type != "*" and event_type not in ALL_EVENT_TYPES:
            raise ValueError(f"Unknown scheduling event type: {event_type}")
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)

    def unsubscribe(self, event_type: str, handler: EventHandler) -> None:
        with self._lock:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

    def clear(self) -> None:
        """Remove every registered handler."""
        with self._lock:
            self._handlers.clear()

    def publish(self, event: SchedulingEvent) -> None:
        """Deliver an event to its handlers and to wildcard handlers."""
        logger.info(f"Scheduling event {event.event_type} for clinic {event.clinic_id}: {event.payload}")
        with self._lock:
            handlers = list(self._handlers.get(event.event_type, [])) + list(self._handlers.get("*", []))
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                logger.exception(f"Scheduling event handler failed for {event.event_type}: {e}")


# Application-wide publisher
event_publisher = SchedulingEventPublisher()


def publish_event(
    event_type: str,
    clinic_id: int,
    payload: Optional[Dict[str, Any]] = None,
    actor_id: Optional[int] = None,
) -> SchedulingEvent:
    """Build and publish an event on the application-wide publisher."""
    event = SchedulingEvent(event_type=event_type, clinic_id=clinic_id, payload=payload or {}, actor_id=actor_id)
    event_publisher.publish(event)
    return event
