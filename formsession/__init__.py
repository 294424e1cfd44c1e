"""formsession: form schema evaluation and session state engine.

formsession drives a single form-filling session over a declarative template:
- Template model with sections, fields, validation rules and visibility gates
- Condition evaluator and visibility resolver for sections and fields
- Validation engine with one structured error per field
- Immutable session state with wizard navigation, completion and dirty tracking
- Repeatable sections with bounded instances
- Dirty-gated autosave serialized against the final submit
- Session event stream for the rendering layer and audit

Rendering, storage and uploads are external collaborators reached through the
protocols in ``formsession.collaborators``.

Basic usage:
    >>> from formsession import FormSession, FormTemplate
    >>> template = FormTemplate.from_dict({
    ...     "id": "t1", "name": "Daily Log", "form_code": "daily_log",
    ...     "sections": [{"id": "s1", "fields": [{
    ...         "id": "f1", "field_code": "notes", "label": "Notes", "field_type": "textarea",
    ...     }]}],
    ... })
    >>> session = FormSession(template)
    >>> print(session.status.value)
    active
"""

__version__ = "0.1.0"
__author__ = "formsession developers"

# Version info
VERSION = (0, 1, 0)

# Core exports
from formsession.collaborators import ContextData
from formsession.config import SessionConfig
from formsession.errors import (
    FormSessionError,
    RepeatLimitError,
    SessionClosedError,
    SubmissionInProgressError,
    TemplateError,
)
from formsession.schema import FormTemplate, load_template
from formsession.session import FormSession
from formsession.state_machine import InvalidStateTransitionError

# Package metadata
__all__ = [
    "__version__",
    "VERSION",
    "FormSession",
    "FormTemplate",
    "load_template",
    "SessionConfig",
    "ContextData",
    "FormSessionError",
    "TemplateError",
    "RepeatLimitError",
    "SessionClosedError",
    "SubmissionInProgressError",
    "InvalidStateTransitionError",
]
