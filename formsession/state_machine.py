"""Session lifecycle state machine.

Tracks where a form-filling session is in its lifecycle and enforces which
moves are allowed:

- ``active`` is where all editing happens
- ``submitting`` holds while the final submit is in flight; a failed submit
  returns to ``active``
- ``submitted``, ``cancelled`` and ``discarded`` are terminal

The machine also keeps the session's event log. Every transition, and every
other action the session reports through ``record``, becomes a
``SessionEvent`` that is appended to the log and handed to the emitter.

Usage:
    >>> sm = SessionStateMachine(session_id="sess_123")
    >>> sm.status
    <SessionStatus.ACTIVE: 'active'>
    >>> sm.transition_to(SessionStatus.SUBMITTING)
    >>> sm.transition_to(SessionStatus.SUBMITTED)
    >>> sm.is_terminal()
    True
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from formsession.errors import FormSessionError
from formsession.events import EventEmitter, SessionEvent
from formsession.types import EventType, SessionStatus

logger = logging.getLogger(__name__)


class InvalidStateTransitionError(FormSessionError):
    """Raised when attempting a lifecycle transition that is not allowed.

    Attributes:
        current_status: Status before the attempted transition
        target_status: Status that was attempted
    """

    def __init__(self, current_status: SessionStatus, target_status: SessionStatus, message: str):
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(message)


# Event emitted when a transition lands on each status
STATUS_TO_EVENT_TYPE: Dict[SessionStatus, EventType] = {
    SessionStatus.ACTIVE: EventType.SUBMISSION_FAILED,
    SessionStatus.SUBMITTING: EventType.SUBMISSION_STARTED,
    SessionStatus.SUBMITTED: EventType.SUBMISSION_SUCCEEDED,
    SessionStatus.CANCELLED: EventType.SESSION_CANCELLED,
    SessionStatus.DISCARDED: EventType.SESSION_DISCARDED,
}


VALID_TRANSITIONS: Dict[SessionStatus, Set[SessionStatus]] = {
    SessionStatus.ACTIVE: {
        SessionStatus.SUBMITTING,
        SessionStatus.CANCELLED,
        SessionStatus.DISCARDED,
    },
    SessionStatus.SUBMITTING: {
        SessionStatus.ACTIVE,
        SessionStatus.SUBMITTED,
        SessionStatus.CANCELLED,
    },
    # Terminal states - no transitions allowed
    SessionStatus.SUBMITTED: set(),
    SessionStatus.CANCELLED: set(),
    SessionStatus.DISCARDED: set(),
}


@dataclass
class SessionStateMachine:
    """Lifecycle state machine and event log for one session.

    Attributes:
        session_id: Unique identifier of the session
        status: Current lifecycle status
        emitter: Optional emitter that receives every recorded event
    """

    session_id: str
    status: SessionStatus = SessionStatus.ACTIVE
    emitter: Optional[EventEmitter] = field(default=None, repr=False)
    _events: List[SessionEvent] = field(default_factory=list, init=False, repr=False)

    def can_transition_to(self, target_status: SessionStatus) -> bool:
        return target_status in VALID_TRANSITIONS.get(self.status, set())

    def transition_to(self, target_status: SessionStatus, payload: Optional[Dict[str, Any]] = None) -> None:
        """Move to a new status and record the matching event.

        Raises:
            InvalidStateTransitionError: If the transition is not allowed
        """
        if not self.can_transition_to(target_status):
            valid = VALID_TRANSITIONS[self.status]
            if valid:
                message = (
                    f"Invalid state transition: cannot transition from "
                    f"'{self.status.value}' to '{target_status.value}'. "
                    f"Valid transitions from '{self.status.value}' are: "
                    f"{', '.join(sorted(s.value for s in valid))}"
                )
            else:
                message = (
                    f"Invalid state transition: '{self.status.value}' is a terminal state, "
                    f"no transitions are allowed."
                )
            raise InvalidStateTransitionError(self.status, target_status, message)

        old_status = self.status
        self.status = target_status
        logger.debug("Session %s: %s -> %s", self.session_id, old_status.value, target_status.value)

        event_payload = {"fromStatus": old_status.value, "toStatus": target_status.value}
        if payload:
            event_payload.update(payload)
        self.record(STATUS_TO_EVENT_TYPE[target_status], event_payload)

    def is_terminal(self) -> bool:
        return len(VALID_TRANSITIONS[self.status]) == 0

    def record(self, event_type: EventType, payload: Optional[Dict[str, Any]] = None) -> SessionEvent:
        """Append an event to the log and dispatch it."""
        event = SessionEvent(
            event_id=f"evt_{uuid.uuid4().hex[:16]}",
            type=event_type,
            session_id=self.session_id,
            ts=datetime.now(timezone.utc),
            status=self.status,
            payload=payload,
        )
        self._events.append(event)
        if self.emitter is not None:
            self.emitter.emit(event)
        return event

    def get_events(self) -> List[SessionEvent]:
        """All recorded events in chronological order."""
        return list(self._events)

    def to_dict(self) -> Dict[str, Any]:
        return {"sessionId": self.session_id, "status": self.status.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionStateMachine":
        status = data["status"]
        if isinstance(status, str):
            status = SessionStatus(status)
        return cls(session_id=data["sessionId"], status=status)


__all__ = [
    "SessionStateMachine",
    "InvalidStateTransitionError",
    "VALID_TRANSITIONS",
    "STATUS_TO_EVENT_TYPE",
]
