"""Integration tests for complete form-filling sessions.

Tests cover end-to-end scenarios combining:
- Template loading from a template source
- Visibility gates, wizard navigation and repeatable sections
- Validation with touched-gated errors
- Draft saves, autosave and the final submit
- The session event log
"""

import asyncio

import pytest

from formsession import FormSession, load_template
from formsession.collaborators import ContextData, TemplateSource
from formsession.conditions import is_empty_value, is_not_empty_value
from formsession.config import SessionConfig
from formsession.errors import RepeatLimitError, SessionClosedError, TemplateError
from formsession.types import EventType, SessionStatus
from tests.fakes import FakePersistence, field

INCIDENT_REPORT = {
    "id": "tpl_incident",
    "name": "Incident Report",
    "form_code": "incident_report",
    "version": 2,
    "sections": [
        {
            "id": "s_person",
            "title": "Injured person",
            "order_index": 0,
            "fields": [
                field("f_name", "name", "Name", required=True),
                field("f_age", "age", "Age", "number", order_index=1, validation_rules={"min_value": 18}),
                field("f_vehicle", "hasVehicle", "Vehicle involved", "checkbox", order_index=2),
                field("f_days", "days_lost", "Days lost", "number", order_index=3),
            ],
        },
        {
            "id": "s_vehicle",
            "title": "Vehicle",
            "order_index": 1,
            "conditional_logic": {"field_id": "f_vehicle", "operator": "equals", "value": True},
            "fields": [field("f_plate", "plate", "Plate", required=True)],
        },
        {
            "id": "s_return",
            "title": "Return to work",
            "order_index": 2,
            "conditional_logic": {"field_id": "f_days", "operator": "is_empty"},
            "fields": [field("f_return", "return_date", "Return date", "date")],
        },
        {
            "id": "s_witnesses",
            "title": "Witnesses",
            "order_index": 3,
            "is_repeatable": True,
            "min_repeats": 1,
            "max_repeats": 3,
            "fields": [
                field("f_witness", "witness", "Witness", "worker_select", required=True),
                field("f_statement", "statement", "Statement", "textarea", order_index=1),
            ],
        },
    ],
}

WORKERS = [{"id": "w1", "first_name": "Ada", "last_name": "Byron"}, {"id": "w2", "first_name": "Bo"}]


class DictTemplateSource:
    """Template source backed by a dict of raw template rows."""

    def __init__(self, templates):
        self.templates = templates

    def get_template(self, template_id):
        return self.templates.get(template_id)


def start_session(persistence=None, **kwargs):
    template = load_template(DictTemplateSource({"tpl_incident": INCIDENT_REPORT}), "tpl_incident")
    return FormSession(
        template,
        persistence=persistence,
        context=ContextData(company_id="acme", workers=WORKERS),
        **kwargs,
    )


class TestTemplateSource:
    """Test loading through a template source."""

    def test_source_matches_protocol(self):
        """Should accept any object with get_template as a source."""
        assert isinstance(DictTemplateSource({}), TemplateSource)

    def test_missing_template(self):
        """Should raise when the source has no such template."""
        with pytest.raises(TemplateError):
            load_template(DictTemplateSource({}), "tpl_missing")


class TestScenarios:
    """The reference scenarios, run through a full session."""

    def test_number_below_minimum(self):
        """Scenario A: a number typed as text below its minimum."""
        session = start_session(initial_data={"name": "Ann"})
        session.set_value("age", "17")
        session.set_touched("age")
        session.validate()
        assert session.visible_errors == {"age": "Age must be at least 18"}

    def test_vehicle_section_gated(self):
        """Scenario B: the vehicle section stays hidden while the checkbox is off."""
        session = start_session()
        assert [s.id for s in session.visible_sections] == ["s_person", "s_return", "s_witnesses"]
        session.set_value("hasVehicle", True)
        assert "s_vehicle" in [s.id for s in session.visible_sections]

    def test_wizard_step_clamped(self):
        """Scenario C: hiding a section under the current step pulls the step back."""
        session = start_session(initial_data={"hasVehicle": True})
        assert session.total_steps == 4
        assert session.is_wizard_mode is True

        session.go_to_step(3)
        session.set_value("days_lost", 3)
        session.set_value("hasVehicle", False)
        assert session.total_steps == 2
        assert session.current_step == 1
        assert session.current_section.id == "s_witnesses"

    def test_repeat_cap(self):
        """Scenario D: the fourth witness is rejected."""
        session = start_session()
        session.add_instance("s_witnesses")
        session.add_instance("s_witnesses")
        with pytest.raises(RepeatLimitError):
            session.add_instance("s_witnesses")

    def test_zero_is_an_answer(self):
        """Scenario E: zero days lost is not empty, so the return section hides."""
        assert is_empty_value(0) is False
        assert is_not_empty_value(0) is False

        session = start_session()
        session.set_value("days_lost", 0)
        assert "s_return" not in [s.id for s in session.visible_sections]


class TestFullLifecycle:
    """Test a session from first keystroke to submission."""

    def test_fill_save_and_submit(self):
        """Should autosave, reject invalid attempts and submit once valid."""
        persistence = FakePersistence()
        session = start_session(
            persistence,
            config=SessionConfig(autosave_interval=0.01),
            jobsite_id="js_7",
            gps_coordinates={"lat": 51.05, "lng": -114.07, "accuracy": 8.0},
        )
        witness = session.instances("s_witnesses")[0]

        async def _run():
            scheduler = session.start_autosave()
            session.set_value("name", "Ann")
            session.set_value("hasVehicle", True)
            await asyncio.sleep(0.05)

            # First attempt: plate and witness missing
            assert await session.submit() is False
            assert set(session.visible_errors) == {"plate", f"{witness.instance_id}.witness"}

            session.set_value("plate", "ABC-123")
            session.set_instance_value("s_witnesses", witness.instance_id, "witness", "w9")
            assert await session.submit() is False
            assert session.errors == {f"{witness.instance_id}.witness": "Please select a valid Witness"}

            session.set_instance_value("s_witnesses", witness.instance_id, "witness", "w1")
            assert await session.submit() is True
            return scheduler

        scheduler = asyncio.run(_run())

        assert scheduler.is_running is False
        assert session.status == SessionStatus.SUBMITTED
        assert persistence.drafts
        assert all(d.form_data["hasVehicle"] is True for d in persistence.drafts)

        payload = persistence.submissions[0].to_dict()
        assert payload["form_template_id"] == "tpl_incident"
        assert payload["form_data"]["plate"] == "ABC-123"
        assert payload["jobsite_id"] == "js_7"
        assert payload["section_instances"]["s_witnesses"][0]["values"]["witness"] == "w1"

        types = [e.type for e in session.events]
        assert types[0] == EventType.SESSION_STARTED
        assert EventType.DRAFT_SAVED in types
        assert types.count(EventType.VALIDATION_FAILED) == 2
        assert types[-3:] == [EventType.VALIDATION_PASSED, EventType.SUBMISSION_STARTED, EventType.SUBMISSION_SUCCEEDED]

        with pytest.raises(SessionClosedError):
            session.add_instance("s_witnesses")

    def test_failed_submit_then_cancel(self):
        """Should keep instance values after a failed submit until cancel."""
        persistence = FakePersistence(fail_submit=True)
        session = start_session(persistence, initial_data={"name": "Ann"})
        witness = session.instances("s_witnesses")[0]
        session.set_instance_value("s_witnesses", witness.instance_id, "witness", "w2")

        assert asyncio.run(session.submit()) is False
        assert session.last_error == "Failed to submit form. Please try again."
        assert session.instances("s_witnesses")[0].values["witness"] == "w2"

        asyncio.run(session.cancel())
        assert session.status == SessionStatus.CANCELLED
        assert [e.type for e in session.events][-2:] == [EventType.SUBMISSION_FAILED, EventType.SESSION_CANCELLED]
