"""Unit tests for the event system.

Tests cover:
- SessionEvent creation and string enum normalization
- Event serialization (to_dict, to_jsonl) and deserialization (from_dict)
- EventEmitter subscriptions and dispatching
- Event emission from state machine transitions
"""

import json
import logging
from dataclasses import FrozenInstanceError
from datetime import datetime, timezone

import pytest

from formsession.events import EventEmitter, SessionEvent
from formsession.state_machine import SessionStateMachine
from formsession.types import EventType, SessionStatus


def make_event(event_id="evt_001", event_type=EventType.FIELD_UPDATED, payload=None):
    return SessionEvent(
        event_id=event_id,
        type=event_type,
        session_id="sess_001",
        ts=datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc),
        status=SessionStatus.ACTIVE,
        payload=payload,
    )


class TestSessionEventCreation:
    """Test SessionEvent creation."""

    def test_create_event_with_required_fields(self):
        """Should create event with all required fields and no payload."""
        event = make_event()
        assert event.event_id == "evt_001"
        assert event.type == EventType.FIELD_UPDATED
        assert event.status == SessionStatus.ACTIVE
        assert event.payload is None

    def test_create_event_with_string_enums(self):
        """Should normalize string type and status to enums."""
        event = SessionEvent(
            event_id="evt_002",
            type="draft.saved",
            session_id="sess_001",
            ts=datetime.now(timezone.utc),
            status="submitting",
        )
        assert event.type == EventType.DRAFT_SAVED
        assert event.status == SessionStatus.SUBMITTING

    def test_event_is_immutable(self):
        """Should not allow modification after creation."""
        event = make_event()
        with pytest.raises(FrozenInstanceError):
            event.event_id = "evt_999"


class TestSessionEventSerialization:
    """Test SessionEvent serialization."""

    def test_to_dict(self):
        """Should use camelCase keys and an ISO timestamp."""
        event = make_event(payload={"fieldCode": "name"})
        assert event.to_dict() == {
            "eventId": "evt_001",
            "type": "field.updated",
            "sessionId": "sess_001",
            "ts": "2024-01-15T10:30:00+00:00",
            "status": "active",
            "payload": {"fieldCode": "name"},
        }

    def test_to_dict_without_payload(self):
        """Should omit the payload key when there is none."""
        assert "payload" not in make_event().to_dict()

    def test_to_jsonl_is_single_compact_line(self):
        """Should serialize an event as one compact JSON line."""
        line = make_event(payload={"fieldCode": "name"}).to_jsonl()
        assert "\n" not in line
        assert ", " not in line
        assert json.loads(line)["payload"] == {"fieldCode": "name"}

    def test_from_dict_handles_z_timezone(self):
        """Should parse timestamps ending in Z."""
        event = SessionEvent.from_dict({
            "eventId": "evt_003",
            "type": "submission.failed",
            "sessionId": "sess_003",
            "ts": "2024-01-15T10:30:00Z",
            "status": "active",
        })
        assert event.type == EventType.SUBMISSION_FAILED
        assert event.ts.tzinfo is not None
        assert event.payload is None


class TestEventEmitter:
    """Test EventEmitter subscriptions and dispatch."""

    def test_subscribe_to_specific_event_type(self):
        """Should only call listeners of the emitted type."""
        emitter = EventEmitter()
        calls = []
        emitter.on(EventType.FIELD_UPDATED, lambda e: calls.append(e.event_id))

        emitter.emit(make_event("evt_010"))
        emitter.emit(make_event("evt_011", EventType.DRAFT_SAVED))

        assert calls == ["evt_010"]

    def test_type_specific_listeners_run_before_wildcard(self):
        """Should call typed listeners before wildcard ones."""
        emitter = EventEmitter()
        calls = []
        emitter.on_any(lambda e: calls.append("any"))
        emitter.on(EventType.FIELD_UPDATED, lambda e: calls.append("specific"))

        emitter.emit(make_event())

        assert calls == ["specific", "any"]

    def test_unsubscribe(self):
        """Should stop calling an unsubscribed listener."""
        emitter = EventEmitter()
        calls = []

        def listener(event):
            calls.append(event.event_id)

        emitter.on(EventType.FIELD_UPDATED, listener)
        emitter.on_any(listener)
        emitter.off(EventType.FIELD_UPDATED, listener)
        emitter.off_any(listener)
        emitter.off(EventType.DRAFT_SAVED, listener)

        emitter.emit(make_event())

        assert calls == []
        assert emitter.listener_count() == 0

    def test_listener_exceptions_are_isolated_and_logged(self, caplog):
        """A failing listener is logged and the others still run."""
        emitter = EventEmitter()
        calls = []

        def failing_listener(event):
            raise ValueError("Listener error")

        emitter.on(EventType.FIELD_UPDATED, failing_listener)
        emitter.on(EventType.FIELD_UPDATED, lambda e: calls.append(e.event_id))

        with caplog.at_level(logging.ERROR, logger="formsession.events"):
            emitter.emit(make_event("evt_022"))

        assert calls == ["evt_022"]
        assert "Listener error" in caplog.text

    def test_clear_removes_all_listeners(self):
        """Should drop every listener on clear."""
        emitter = EventEmitter()
        emitter.on(EventType.FIELD_UPDATED, print)
        emitter.on_any(print)
        assert emitter.listener_count() == 2
        assert emitter.listener_count(EventType.FIELD_UPDATED) == 1

        emitter.clear()

        assert emitter.listener_count() == 0


class TestStateMachineEmission:
    """Test that state machine transitions reach the emitter."""

    def test_transition_events_are_emitted(self):
        """Should emit lifecycle transitions through the emitter."""
        emitter = EventEmitter()
        received = []
        emitter.on_any(received.append)
        sm = SessionStateMachine(session_id="sess_100", emitter=emitter)

        sm.transition_to(SessionStatus.SUBMITTING)
        sm.transition_to(SessionStatus.ACTIVE, {"error": "offline"})

        assert [e.type for e in received] == [EventType.SUBMISSION_STARTED, EventType.SUBMISSION_FAILED]
        assert received[1].payload == {"fromStatus": "submitting", "toStatus": "active", "error": "offline"}
        assert received[1].status == SessionStatus.ACTIVE
        assert sm.get_events() == received
