"""Core type definitions for the formsession engine.

This module defines the closed vocabularies used throughout the engine:
- FieldType: The complete set of field type tags a template may use
- ConditionOperator: Operators available to visibility gates
- FieldWidth: Display width hints carried through for the rendering layer
- LibrarySource: External catalogs that lookup fields draw options from
- PopulateTransform: Value transforms applied during library auto-populate
- SessionStatus: Lifecycle states of a form-filling session
- EventType: Event types emitted on the session event stream
- FieldErrorCode: Validation error codes for individual fields
- SubmissionStatus: Status attached to payloads handed to persistence

Every enum subclasses ``str`` so that values read from template JSON compare
and serialize naturally.
"""

from enum import Enum
from typing import Any, Dict, List, Union

from typing_extensions import TypeAlias


FieldValue: TypeAlias = Union[str, int, float, bool, List[Any], Dict[str, Any], None]
"""A single stored field value."""

FormValues: TypeAlias = Dict[str, FieldValue]
"""Mapping from field_code to its current value."""


class FieldType(str, Enum):
    """All supported field type tags.

    The set is closed: template data naming any other tag is rejected at load
    time, and every dispatch table in ``formsession.field_types`` must cover
    each member.
    """
    TEXT = "text"
    TEXTAREA = "textarea"
    NUMBER = "number"
    DATE = "date"
    TIME = "time"
    DATETIME = "datetime"
    DROPDOWN = "dropdown"
    RADIO = "radio"
    CHECKBOX = "checkbox"
    MULTISELECT = "multiselect"
    SIGNATURE = "signature"
    MULTI_SIGNATURE = "multi_signature"
    PHOTO = "photo"
    FILE = "file"
    GPS = "gps"
    WORKER_SELECT = "worker_select"
    JOBSITE_SELECT = "jobsite_select"
    EQUIPMENT_SELECT = "equipment_select"
    HAZARD_SELECT = "hazard_select"
    HAZARD_MULTISELECT = "hazard_multiselect"
    TASK_SELECT = "task_select"
    RATING = "rating"
    SLIDER = "slider"
    YES_NO = "yes_no"
    YES_NO_NA = "yes_no_na"
    EMAIL = "email"
    PHONE = "phone"
    CURRENCY = "currency"
    BODY_DIAGRAM = "body_diagram"
    WEATHER = "weather"
    TEMPERATURE = "temperature"
    HIDDEN = "hidden"


class ConditionOperator(str, Enum):
    """Operators for conditional visibility gates."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"


class FieldWidth(str, Enum):
    """Display width hint for a field."""
    FULL = "full"
    HALF = "half"
    THIRD = "third"
    QUARTER = "quarter"


class LibrarySource(str, Enum):
    """External catalogs a lookup field can draw its options from."""
    HAZARDS = "hazards"
    EQUIPMENT = "equipment"
    TASKS = "tasks"
    WORKERS = "workers"
    JOBSITES = "jobsites"
    SDS = "sds"
    LEGISLATION = "legislation"


class PopulateTransform(str, Enum):
    """Transforms applied to a library value before it is auto-populated."""
    JOIN = "join"
    FIRST = "first"
    COUNT = "count"
    SUM = "sum"
    JSON = "json"


class SessionStatus(str, Enum):
    """Form session lifecycle states.

    Terminal states: submitted, cancelled, discarded.
    """
    ACTIVE = "active"
    SUBMITTING = "submitting"
    SUBMITTED = "submitted"
    CANCELLED = "cancelled"
    DISCARDED = "discarded"


class EventType(str, Enum):
    """Event types for the session event stream."""
    SESSION_STARTED = "session.started"
    SESSION_RESET = "session.reset"
    SESSION_CANCELLED = "session.cancelled"
    SESSION_DISCARDED = "session.discarded"
    FIELD_UPDATED = "field.updated"
    FIELD_TOUCHED = "field.touched"
    FIELDS_POPULATED = "field.populated"
    VALIDATION_PASSED = "validation.passed"
    VALIDATION_FAILED = "validation.failed"
    STEP_CHANGED = "wizard.step_changed"
    INSTANCE_ADDED = "instance.added"
    INSTANCE_REMOVED = "instance.removed"
    INSTANCE_UPDATED = "instance.updated"
    DRAFT_SAVED = "draft.saved"
    DRAFT_SAVE_FAILED = "draft.save_failed"
    AUTOSAVE_SKIPPED = "autosave.skipped"
    SUBMISSION_STARTED = "submission.started"
    SUBMISSION_SUCCEEDED = "submission.succeeded"
    SUBMISSION_FAILED = "submission.failed"


class FieldErrorCode(str, Enum):
    """Validation error codes for individual field failures."""
    REQUIRED = "required"
    TOO_SHORT = "too_short"
    TOO_LONG = "too_long"
    TOO_SMALL = "too_small"
    TOO_LARGE = "too_large"
    PATTERN_MISMATCH = "pattern_mismatch"
    DATE_TOO_EARLY = "date_too_early"
    DATE_TOO_LATE = "date_too_late"
    INVALID_FORMAT = "invalid_format"
    FILE_WRONG_TYPE = "file_wrong_type"
    FILE_TOO_LARGE = "file_too_large"
    INVALID_OPTION = "invalid_option"


class SubmissionStatus(str, Enum):
    """Status carried on a payload handed to the persistence collaborator."""
    DRAFT = "draft"
    SUBMITTED = "submitted"


__all__ = [
    "FieldValue",
    "FormValues",
    "FieldType",
    "ConditionOperator",
    "FieldWidth",
    "LibrarySource",
    "PopulateTransform",
    "SessionStatus",
    "EventType",
    "FieldErrorCode",
    "SubmissionStatus",
]
