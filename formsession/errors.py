"""Structured error types and exceptions for the formsession engine.

Two kinds of things live here:

- Result records (``FieldError``, ``TemplateIssue``): frozen dataclasses that
  describe an expected, recoverable problem. Validation never raises; it
  returns these.
- Exceptions (``FormSessionError`` and subclasses): raised for programming or
  configuration mistakes the caller has to handle, such as loading a malformed
  template or mutating a session that has already ended.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from formsession.types import FieldErrorCode


@dataclass(frozen=True)
class FieldError:
    """Per-field validation error details.

    Attributes:
        field_code: Key of the field that failed (the value-bag key)
        code: Specific validation error code
        message: Human-readable message shown next to the field
        instance_id: Optional - repeatable section instance the field belongs to

    Examples:
        >>> err = FieldError(
        ...     field_code="age",
        ...     code=FieldErrorCode.TOO_SMALL,
        ...     message="Age must be at least 18",
        ... )
        >>> err.key
        'age'
    """
    field_code: str
    code: FieldErrorCode
    message: str
    instance_id: Optional[str] = None

    @property
    def key(self) -> str:
        """Key under which this error is stored in an errors map."""
        if self.instance_id:
            return f"{self.instance_id}.{self.field_code}"
        return self.field_code

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {
            "fieldCode": self.field_code,
            "code": self.code.value if isinstance(self.code, FieldErrorCode) else self.code,
            "message": self.message,
        }
        if self.instance_id is not None:
            result["instanceId"] = self.instance_id
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldError":
        """Create FieldError from dict."""
        code = data["code"]
        if isinstance(code, str):
            code = FieldErrorCode(code)
        return cls(
            field_code=data["fieldCode"],
            code=code,
            message=data["message"],
            instance_id=data.get("instanceId"),
        )


@dataclass(frozen=True)
class TemplateIssue:
    """A non-fatal problem found while loading a template.

    Issues are meant for template authors, not for the person filling the
    form. The runtime keeps working around them.

    Attributes:
        owner_id: Id of the section or field carrying the problem
        owner_kind: Either "section" or "field"
        message: Description of the problem
        reference: Optional - the unresolved reference, if any
    """
    owner_id: str
    owner_kind: str
    message: str
    reference: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {
            "ownerId": self.owner_id,
            "ownerKind": self.owner_kind,
            "message": self.message,
        }
        if self.reference is not None:
            result["reference"] = self.reference
        return result


class FormSessionError(Exception):
    """Base class for all exceptions raised by the engine."""


class TemplateError(FormSessionError):
    """Raised when template data cannot be turned into a usable schema.

    Attributes:
        problems: Every problem found, so authors can fix them in one pass
    """

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        self.problems = list(problems or [])
        if self.problems:
            message = f"{message}: " + "; ".join(self.problems)
        super().__init__(message)


class RepeatLimitError(FormSessionError):
    """Raised when a repeatable section would leave its min/max bounds."""

    def __init__(self, section_id: str, limit: int, message: str):
        self.section_id = section_id
        self.limit = limit
        super().__init__(message)


class SessionClosedError(FormSessionError):
    """Raised when mutating a session that was submitted, cancelled or discarded."""


class SubmissionInProgressError(FormSessionError):
    """Raised when a second submit is attempted while one is in flight."""


__all__ = [
    "FieldError",
    "TemplateIssue",
    "FormSessionError",
    "TemplateError",
    "RepeatLimitError",
    "SessionClosedError",
    "SubmissionInProgressError",
]
