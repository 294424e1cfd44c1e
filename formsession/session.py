"""FormSession orchestrator.

This module provides the FormSession class that coordinates the immutable form
state, the visibility resolver, the validation engine, the lifecycle state
machine and the autosave scheduler for a single form-filling session.

Every mutation replaces the session's ``FormState`` through a pure transition
from ``formsession.form_state`` and reports a ``SessionEvent``. Persistence is
delegated to a ``PersistenceCollaborator``; all calls to it go through one
``asyncio.Lock`` so a draft save and a submit are never in flight together.

Usage:
    >>> from formsession.schema import FormTemplate
    >>> template = FormTemplate.from_dict({
    ...     "id": "t1", "name": "Toolbox Talk", "form_code": "toolbox_talk",
    ...     "sections": [{"id": "s1", "fields": [{
    ...         "id": "f1", "field_code": "topic", "label": "Topic",
    ...         "field_type": "text", "validation_rules": {"required": True},
    ...     }]}],
    ... })
    >>> session = FormSession(template)
    >>> session.set_value("topic", "Ladder safety")
    >>> session.is_dirty
    True
    >>> session.completion_percentage
    100
"""

import asyncio
import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

from formsession import form_state as fs
from formsession.attachments import SubmissionPayload, collect_attachments, collect_instance_attachments
from formsession.autosave import AutosaveScheduler
from formsession.coercion import has_value
from formsession.collaborators import ContextData, PersistenceCollaborator
from formsession.config import SessionConfig
from formsession.errors import (
    FormSessionError,
    SessionClosedError,
    SubmissionInProgressError,
    TemplateError,
)
from formsession.events import EventEmitter, SessionEvent
from formsession.field_types import initialize_form_values
from formsession.form_state import FormState
from formsession.library import AutoPopulateResult, auto_populate
from formsession.schema import FormField, FormSection, FormTemplate, SectionInstance
from formsession.state_machine import SessionStateMachine
from formsession.types import EventType, FieldValue, FormValues, SessionStatus, SubmissionStatus
from formsession.validation import FormValidator, ValidationResult, completion_percentage
from formsession.visibility import get_visible_section_fields, get_visible_sections, iter_visible_fields

logger = logging.getLogger(__name__)

SUBMIT_FAILED_MESSAGE = "Failed to submit form. Please try again."
MANUAL_SAVE_SOURCE = "manual"


class FormSession:
    """Orchestrator for one form-filling session.

    Attributes:
        template: The loaded, read-only template
        persistence: Collaborator that stores drafts and submissions
        context: Reference lists for lookup validation and library selections
        config: Autosave and wizard tunables
        session_id: Unique identifier of this session
        jobsite_id: Optional jobsite the submission belongs to
        gps_coordinates: Optional device position sent with the submission

    Examples:
        >>> session = FormSession(template)  # doctest: +SKIP
        >>> session.session_id  # doctest: +SKIP
        'sess_...'
    """

    def __init__(
        self,
        template: FormTemplate,
        persistence: Optional[PersistenceCollaborator] = None,
        context: Optional[ContextData] = None,
        initial_data: Optional[FormValues] = None,
        initial_instances: Optional[Mapping[str, Iterable[SectionInstance]]] = None,
        config: Optional[SessionConfig] = None,
        session_id: Optional[str] = None,
        jobsite_id: Optional[str] = None,
        gps_coordinates: Optional[Dict[str, float]] = None,
        emitter: Optional[EventEmitter] = None,
    ):
        """Start a session with defaults resolved per field type.

        Args:
            template: Template to fill
            persistence: Optional persistence collaborator; without one, saves
                and submits fail
            context: Optional context data for lookup fields
            initial_data: Values that override the field defaults (a resumed draft)
            initial_instances: Repeatable section instances of a resumed draft;
                sections not listed start with ``min_repeats`` fresh instances
            config: Session tunables (defaults from ``formsession.config``)
            session_id: Explicit identifier, generated when omitted
            jobsite_id: Jobsite context for the submission
            gps_coordinates: Device position for the submission
            emitter: Event emitter to report to; a private one is created when omitted
        """
        self.template = template
        self.persistence = persistence
        self.context = context
        self.config = config or SessionConfig()
        self.session_id = session_id or f"sess_{uuid.uuid4().hex[:16]}"
        self.jobsite_id = jobsite_id
        self.gps_coordinates = gps_coordinates
        self.emitter = emitter or EventEmitter()

        self._machine = SessionStateMachine(session_id=self.session_id, emitter=self.emitter)
        self._validator = FormValidator(template, context)
        self._writer_lock: Optional[asyncio.Lock] = None
        self._autosave: Optional[AutosaveScheduler] = None
        self.last_validation: Optional[ValidationResult] = None

        top_level = [f for s in template.sections if not s.is_repeatable for f in s.fields]
        values = initialize_form_values(top_level)
        if initial_data:
            values.update(initial_data)

        instances: fs.Instances = {}
        resumed = initial_instances or {}
        for section in template.sections:
            if not section.is_repeatable:
                continue
            if section.id in resumed:
                instances[section.id] = tuple(resumed[section.id])
            else:
                instances[section.id] = tuple(
                    replace(SectionInstance.create(section.id, i), values=initialize_form_values(section.fields))
                    for i in range(section.min_repeats)
                )

        self._state = FormState.initial(values, instances)
        self._state = fs.clamp_step(self._state, self.total_steps)
        self._machine.record(
            EventType.SESSION_STARTED,
            {"templateId": template.id, "formCode": template.form_code, "version": template.version},
        )

    # ------------------------------------------------------------------
    # State accessors
    # ------------------------------------------------------------------

    @property
    def state(self) -> FormState:
        """Current immutable state snapshot."""
        return self._state

    @property
    def status(self) -> SessionStatus:
        return self._machine.status

    @property
    def is_closed(self) -> bool:
        """True once the session was submitted, cancelled or discarded."""
        return self._machine.is_terminal()

    @property
    def values(self) -> FormValues:
        return dict(self._state.values)

    @property
    def errors(self) -> Dict[str, str]:
        return dict(self._state.errors)

    @property
    def touched(self) -> Dict[str, bool]:
        return dict(self._state.touched)

    @property
    def visible_errors(self) -> Dict[str, str]:
        """Errors of fields the user has touched (all of them after a submit attempt)."""
        return {key: message for key, message in self._state.errors.items() if self._state.touched.get(key)}

    @property
    def current_step(self) -> int:
        return self._state.current_step

    @property
    def is_submitting(self) -> bool:
        return self._state.is_submitting

    @property
    def last_saved_at(self) -> Optional[datetime]:
        return self._state.last_saved_at

    @property
    def last_error(self) -> Optional[str]:
        return self._state.last_error

    @property
    def is_dirty(self) -> bool:
        return fs.is_dirty(self._state)

    @property
    def events(self) -> List[SessionEvent]:
        """The session's event log in chronological order."""
        return self._machine.get_events()

    def instances(self, section_id: str) -> List[SectionInstance]:
        return list(self._state.instances_for(section_id))

    def record_event(self, event_type: EventType, payload: Optional[Dict[str, Any]] = None) -> SessionEvent:
        """Report an event on behalf of a component working for this session."""
        return self._machine.record(event_type, payload)

    # ------------------------------------------------------------------
    # Visibility, wizard and completion
    # ------------------------------------------------------------------

    @property
    def visible_sections(self) -> List[FormSection]:
        return get_visible_sections(self.template.sections, self._state.values, self.template.field_id_to_code)

    def visible_fields(self, section: FormSection) -> List[FormField]:
        """Fields of a section the user should see (empty when the section is hidden)."""
        return get_visible_section_fields(section, self._state.values, self.template.field_id_to_code)

    @property
    def total_steps(self) -> int:
        return len(self.visible_sections)

    @property
    def is_wizard_mode(self) -> bool:
        return self.total_steps >= self.config.wizard_threshold

    @property
    def current_section(self) -> Optional[FormSection]:
        sections = self.visible_sections
        if not sections:
            return None
        return sections[min(self._state.current_step, len(sections) - 1)]

    @property
    def completion_percentage(self) -> int:
        """Share of visible required fields that hold a value, instances included."""
        values = self._state.values
        lookup = self.template.field_id_to_code
        completed = total = 0

        for section, form_field in iter_visible_fields(self.template.sections, values, lookup):
            if section.is_repeatable or not form_field.is_required:
                continue
            total += 1
            completed += has_value(values.get(form_field.field_code))

        for section in self.visible_sections:
            if not section.is_repeatable:
                continue
            for instance in self._state.instances_for(section.id):
                scoped = dict(values)
                scoped.update(instance.values)
                for form_field in get_visible_section_fields(section, scoped, lookup):
                    if form_field.is_required:
                        total += 1
                        completed += has_value(instance.values.get(form_field.field_code))

        return completion_percentage(completed, total)

    def go_to_step(self, step: int) -> None:
        """Jump to a wizard step; out-of-range steps are ignored."""
        self._ensure_open()
        self._change_step(fs.go_to_step(self._state, step, self.total_steps))

    def next_step(self) -> None:
        self._ensure_open()
        self._change_step(fs.next_step(self._state, self.total_steps))

    def prev_step(self) -> None:
        self._ensure_open()
        self._change_step(fs.prev_step(self._state, self.total_steps))

    def _change_step(self, state: FormState) -> None:
        previous = self._state.current_step
        self._state = state
        if state.current_step != previous:
            self._machine.record(EventType.STEP_CHANGED, {"from": previous, "to": state.current_step})

    def _after_values_changed(self) -> None:
        """Keep the wizard position inside the (possibly shrunk) visible sections."""
        self._change_step(fs.clamp_step(self._state, self.total_steps))

    # ------------------------------------------------------------------
    # Values
    # ------------------------------------------------------------------

    def set_value(self, field_code: str, value: FieldValue) -> None:
        """Assign a value. The field is neither touched nor revalidated."""
        self._ensure_open()
        if self.template.get_field(field_code) is None:
            logger.debug("Session %s: value for unknown field %r kept as is", self.session_id, field_code)
        self._state = fs.set_value(self._state, field_code, value)
        self._machine.record(EventType.FIELD_UPDATED, {"fieldCode": field_code})
        self._after_values_changed()

    def set_values(self, values: FormValues) -> None:
        """Replace the whole value bag."""
        self._ensure_open()
        self._state = fs.set_values(self._state, values)
        self._machine.record(EventType.FIELD_UPDATED, {"fieldCodes": sorted(values)})
        self._after_values_changed()

    def set_touched(self, field_key: str) -> None:
        """Mark a field (or ``instance_id.field_code``) as interacted with."""
        self._ensure_open()
        if self._state.touched.get(field_key):
            return
        self._state = fs.set_touched(self._state, field_key)
        self._machine.record(EventType.FIELD_TOUCHED, {"fieldCode": field_key})

    def apply_library_selection(
        self, field_code: str, item: Mapping[str, Any], overwrite_existing: bool = False
    ) -> AutoPopulateResult:
        """Select a library item for a lookup field and fill the bound sibling fields.

        Raises:
            ValueError: If the field does not exist or the item has no id
        """
        self._ensure_open()
        form_field = self.template.get_field(field_code)
        if form_field is None:
            raise ValueError(f"Field '{field_code}' not found in template '{self.template.form_code}'")
        if "id" not in item:
            raise ValueError(f"Library item selected for '{field_code}' has no id")

        result = AutoPopulateResult()
        if form_field.library is not None:
            result = auto_populate(item, form_field.library, self._state.values, overwrite_existing)

        self.set_value(field_code, item["id"])
        if result.populated_fields:
            self._state = fs.merge_values(self._state, result.values)
            self._machine.record(
                EventType.FIELDS_POPULATED,
                {"sourceField": field_code, "populatedFields": list(result.populated_fields)},
            )
            self._after_values_changed()
        return result

    def reset(self) -> None:
        """Restore the starting values and instances; errors, touched flags and step are cleared."""
        self._ensure_open()
        self._state = fs.reset(self._state)
        self.last_validation = None
        self._machine.record(EventType.SESSION_RESET)
        self._after_values_changed()

    # ------------------------------------------------------------------
    # Repeatable sections
    # ------------------------------------------------------------------

    def _repeatable_section(self, section_id: str) -> FormSection:
        section = self.template.get_section(section_id)
        if section is None:
            raise TemplateError(f"Section '{section_id}' not found in template '{self.template.form_code}'")
        if not section.is_repeatable:
            raise TemplateError(f"Section '{section_id}' is not repeatable")
        return section

    def add_instance(self, section_id: str) -> SectionInstance:
        """Append an instance with default values.

        Raises:
            TemplateError: If the section is unknown or not repeatable
            RepeatLimitError: If the section already holds ``max_repeats`` instances
        """
        self._ensure_open()
        section = self._repeatable_section(section_id)
        self._state, instance = fs.add_instance(self._state, section, initialize_form_values(section.fields))
        self._machine.record(
            EventType.INSTANCE_ADDED,
            {"sectionId": section_id, "instanceId": instance.instance_id, "index": instance.index},
        )
        return instance

    def remove_instance(self, section_id: str, instance_id: str) -> None:
        """Remove an instance; siblings keep their ordinals.

        Raises:
            TemplateError: If the section is unknown or not repeatable
            RepeatLimitError: If removal would go below ``min_repeats``
            ValueError: If the instance is not part of the section
        """
        self._ensure_open()
        section = self._repeatable_section(section_id)
        self._state = fs.remove_instance(self._state, section, instance_id)
        touched = {k: v for k, v in self._state.touched.items() if not k.startswith(f"{instance_id}.")}
        self._state = replace(self._state, touched=touched)
        self._machine.record(EventType.INSTANCE_REMOVED, {"sectionId": section_id, "instanceId": instance_id})

    def set_instance_value(self, section_id: str, instance_id: str, field_code: str, value: FieldValue) -> None:
        """Assign a value inside one instance.

        Raises:
            TemplateError: If the section is unknown or not repeatable
            ValueError: If the instance is not part of the section
        """
        self._ensure_open()
        self._repeatable_section(section_id)
        self._state = fs.set_instance_value(self._state, section_id, instance_id, field_code, value)
        self._machine.record(
            EventType.INSTANCE_UPDATED,
            {"sectionId": section_id, "instanceId": instance_id, "fieldCode": field_code},
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> bool:
        """Validate the visible fields and instances, replacing the stored errors."""
        self._ensure_open()
        result = self._validator.validate(self._state.values, self._state.instances)
        self.last_validation = result
        self._state = fs.replace_errors(self._state, result.error_map)
        if result.is_valid:
            self._machine.record(EventType.VALIDATION_PASSED)
        else:
            self._machine.record(
                EventType.VALIDATION_FAILED,
                {"errorCount": len(result.errors), "fields": [e.key for e in result.errors]},
            )
        return result.is_valid

    def _visible_field_keys(self) -> List[str]:
        values = self._state.values
        lookup = self.template.field_id_to_code
        keys = [
            form_field.field_code
            for section, form_field in iter_visible_fields(self.template.sections, values, lookup)
            if not section.is_repeatable
        ]
        for section in self.visible_sections:
            if not section.is_repeatable:
                continue
            for instance in self._state.instances_for(section.id):
                scoped = dict(values)
                scoped.update(instance.values)
                keys.extend(
                    f"{instance.instance_id}.{f.field_code}" for f in get_visible_section_fields(section, scoped, lookup)
                )
        return keys

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _lock(self) -> asyncio.Lock:
        # Created on first use so the lock belongs to the running loop.
        if self._writer_lock is None:
            self._writer_lock = asyncio.Lock()
        return self._writer_lock

    def build_payload(self, status: SubmissionStatus = SubmissionStatus.SUBMITTED) -> SubmissionPayload:
        """Snapshot the values, instances and attachments for a draft save or a final submit."""
        values = dict(self._state.values)
        instances = {section_id: list(items) for section_id, items in self._state.instances.items() if items}
        attachments = collect_attachments(self.template.fields, values)
        collect_instance_attachments(self.template.sections, instances, attachments)
        return SubmissionPayload(
            form_template_id=self.template.id,
            form_data=values,
            attachments=attachments,
            section_instances=instances,
            status=status,
            gps_coordinates=self.gps_coordinates,
            jobsite_id=self.jobsite_id,
        )

    async def save_draft(self, source: str = MANUAL_SAVE_SOURCE) -> bool:
        """Persist the values and section instances as a draft payload.

        Failures are logged and reported as ``draft.save_failed``; they never
        raise and leave ``last_saved_at`` untouched. A save that finds the
        session submitting or closed once it holds the writer lock is dropped.

        Returns:
            True when the collaborator stored the draft

        Raises:
            SessionClosedError: If the session is already closed
        """
        self._ensure_open()
        if self.persistence is None:
            logger.debug("Session %s has no persistence collaborator, draft not saved", self.session_id)
            return False

        async with self._lock():
            if self.status != SessionStatus.ACTIVE or self._state.is_submitting:
                logger.debug("Session %s is %s, dropping %s draft save", self.session_id, self.status.value, source)
                return False
            try:
                await self.persistence.save_draft(self.build_payload(SubmissionStatus.DRAFT))
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.exception("Draft save failed for session %s", self.session_id)
                self._machine.record(EventType.DRAFT_SAVE_FAILED, {"source": source, "error": str(exc)})
                return False

            if self.is_closed:
                return True
            saved_at = datetime.now(timezone.utc)
            self._state = fs.mark_saved(self._state, saved_at)
            self._machine.record(EventType.DRAFT_SAVED, {"source": source, "savedAt": saved_at.isoformat()})
            return True

    async def submit(self) -> bool:
        """Validate and hand the final submission to the persistence collaborator.

        Invalid forms are not submitted: every visible field is marked touched
        so all errors show. A failed submit brings the session back to
        ``active`` with ``last_error`` set and the values left as they were.

        Returns:
            True when the submission was stored

        Raises:
            SessionClosedError: If the session is already closed
            SubmissionInProgressError: If another submit is in flight
        """
        self._ensure_open()
        if self._state.is_submitting or self.status == SessionStatus.SUBMITTING:
            raise SubmissionInProgressError(f"Session {self.session_id} is already submitting")

        if not self.validate():
            self._state = fs.touch_all(self._state, self._visible_field_keys())
            return False

        self._state = fs.begin_submit(self._state)
        self._machine.transition_to(SessionStatus.SUBMITTING)
        payload = self.build_payload()

        try:
            async with self._lock():
                if self.persistence is None:
                    raise FormSessionError(f"Session {self.session_id} has no persistence collaborator")
                await self.persistence.submit(payload)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Submit failed for session %s", self.session_id)
            if self.status == SessionStatus.SUBMITTING:
                self._state = fs.end_submit(self._state, SUBMIT_FAILED_MESSAGE)
                self._machine.transition_to(SessionStatus.ACTIVE, {"error": str(exc)})
            return False

        if self.status != SessionStatus.SUBMITTING:
            logger.warning("Session %s was %s while its submit was in flight", self.session_id, self.status.value)
            return True

        self._state = fs.end_submit(self._state)
        self._machine.transition_to(SessionStatus.SUBMITTED, {"templateId": self.template.id})
        await self.stop_autosave()
        return True

    # ------------------------------------------------------------------
    # Autosave and lifecycle
    # ------------------------------------------------------------------

    def start_autosave(self) -> Optional[AutosaveScheduler]:
        """Start the autosave scheduler when enabled. Needs a running event loop."""
        self._ensure_open()
        if not self.config.autosave_enabled or self.persistence is None:
            return None
        if self._autosave is None:
            self._autosave = AutosaveScheduler(self, interval=self.config.autosave_interval)
        self._autosave.start()
        return self._autosave

    async def stop_autosave(self) -> None:
        if self._autosave is not None:
            await self._autosave.stop()
            self._autosave = None

    async def cancel(self) -> None:
        """Abandon the session: stop autosave and drop the in-memory state."""
        await self._close(SessionStatus.CANCELLED)

    async def discard(self) -> None:
        """Throw the draft away: same as cancel, reported as ``session.discarded``."""
        await self._close(SessionStatus.DISCARDED)

    async def close(self) -> None:
        """Release the session; an open session is cancelled, a closed one only stops autosave."""
        if self.is_closed:
            await self.stop_autosave()
            return
        await self.cancel()

    async def _close(self, status: SessionStatus) -> None:
        self._ensure_open()
        self._machine.transition_to(status)
        await self.stop_autosave()
        self._state = FormState.initial({})
        self.last_validation = None

    def _ensure_open(self) -> None:
        if self.is_closed:
            raise SessionClosedError(f"Session {self.session_id} is {self.status.value}")


__all__ = [
    "FormSession",
    "SUBMIT_FAILED_MESSAGE",
    "MANUAL_SAVE_SOURCE",
]
