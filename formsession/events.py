"""Event system for form sessions.

Every state transition and significant action on a session produces a typed
``SessionEvent``. Events are kept in the session's in-memory log and
dispatched to listeners, which is how the rendering layer learns about
things it has to show the user (a failed submit, a saved draft) without the
engine knowing anything about presentation.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .types import EventType, SessionStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionEvent:
    """A single event in a form session's lifecycle.

    Attributes:
        event_id: Unique event identifier (e.g., "evt_01H8...")
        type: Event type from EventType enum
        session_id: ID of the session this event relates to
        ts: UTC timestamp when the event occurred
        status: Session status after this event
        payload: Optional event-specific data (changed field, error message, ...)

    Examples:
        >>> from datetime import datetime, timezone
        >>> event = SessionEvent(
        ...     event_id="evt_001",
        ...     type=EventType.FIELD_UPDATED,
        ...     session_id="sess_001",
        ...     ts=datetime.now(timezone.utc),
        ...     status=SessionStatus.ACTIVE,
        ...     payload={"fieldCode": "name"},
        ... )
        >>> event.type.value
        'field.updated'
    """
    event_id: str
    type: EventType
    session_id: str
    ts: datetime
    status: SessionStatus
    payload: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        """Normalize string enum values."""
        if isinstance(self.status, str) and not isinstance(self.status, SessionStatus):
            object.__setattr__(self, "status", SessionStatus(self.status))
        if isinstance(self.type, str) and not isinstance(self.type, EventType):
            object.__setattr__(self, "type", EventType(self.type))

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for serialization.

        Timestamp is formatted as ISO 8601 string.
        """
        result: Dict[str, Any] = {
            "eventId": self.event_id,
            "type": self.type.value,
            "sessionId": self.session_id,
            "ts": self.ts.isoformat(),
            "status": self.status.value,
        }
        if self.payload is not None:
            result["payload"] = self.payload
        return result

    def to_jsonl(self) -> str:
        """Convert event to a single JSON line."""
        return json.dumps(self.to_dict(), separators=(',', ':'), default=str)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionEvent":
        """Create SessionEvent from dictionary (camelCase keys)."""
        ts = datetime.fromisoformat(data["ts"].replace('Z', '+00:00'))
        return cls(
            event_id=data["eventId"],
            type=EventType(data["type"]),
            session_id=data["sessionId"],
            ts=ts,
            status=SessionStatus(data["status"]),
            payload=data.get("payload"),
        )


EventListener = Callable[[SessionEvent], None]
"""Type alias for event listener callbacks.

Listeners are called synchronously when events are emitted and should return
quickly.
"""


class EventEmitter:
    """Event emitter for managing listeners and dispatching events.

    Features:
    - Type-specific subscriptions
    - Wildcard subscriptions (all events)
    - Synchronous dispatch in registration order
    - Error isolation: a failing listener is logged and does not affect other
      listeners or the caller

    Examples:
        >>> emitter = EventEmitter()
        >>> seen = []
        >>> emitter.on(EventType.DRAFT_SAVED, seen.append)
        >>> emitter.listener_count(EventType.DRAFT_SAVED)
        1
    """

    def __init__(self):
        self._listeners: Dict[EventType, List[EventListener]] = {}
        self._any_listeners: List[EventListener] = []

    def on(self, event_type: EventType, listener: EventListener) -> None:
        """Subscribe to a specific event type."""
        self._listeners.setdefault(event_type, []).append(listener)

    def on_any(self, listener: EventListener) -> None:
        """Subscribe to all event types."""
        self._any_listeners.append(listener)

    def off(self, event_type: EventType, listener: EventListener) -> None:
        """Unsubscribe from a specific event type. Unknown listeners are ignored."""
        listeners = self._listeners.get(event_type, [])
        if listener in listeners:
            listeners.remove(listener)

    def off_any(self, listener: EventListener) -> None:
        """Unsubscribe from the wildcard subscription. Unknown listeners are ignored."""
        if listener in self._any_listeners:
            self._any_listeners.remove(listener)

    def emit(self, event: SessionEvent) -> None:
        """Dispatch an event: type-specific listeners first, then wildcard ones."""
        for listener in list(self._listeners.get(event.type, [])) + list(self._any_listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("Listener %r failed on %s event", listener, event.type.value)

    def clear(self) -> None:
        """Remove all event listeners."""
        self._listeners.clear()
        self._any_listeners.clear()

    def listener_count(self, event_type: Optional[EventType] = None) -> int:
        """Count listeners for one type, or all listeners (wildcard included)."""
        if event_type is not None:
            return len(self._listeners.get(event_type, []))
        return len(self._any_listeners) + sum(len(items) for items in self._listeners.values())


__all__ = [
    "SessionEvent",
    "EventType",
    "EventListener",
    "EventEmitter",
]
