"""Validation engine for form values.

This module checks field values against their ``ValidationRules`` and type
format, one error per field at most, and aggregates those checks over the
visible part of a template.

Checks run in a fixed order and stop at the first failure:

1. required
2. early exit for an optional field without a value
3. min/max length of the value's text
4. min/max numeric value (skipped when the value is not numeric)
5. regular-expression pattern
6. date bounds (date and datetime fields only)
7. type format (email, phone)
8. attachment type and size (file and photo fields)

A rule's ``custom_message`` replaces the default message of any failing check.

A pattern that does not compile is a template configuration problem, not a
user error: it is logged once and the pattern check is skipped, so no
exception ever leaves the validator.
"""

import functools
import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from dateutil import parser as date_parser

from formsession.attachments import is_file_descriptor
from formsession.coercion import format_bound, has_value, is_absent, to_number, to_text
from formsession.collaborators import ContextData
from formsession.errors import FieldError
from formsession.field_types import get_lookup_source, traits_for
from formsession.schema import FormField, FormSection, FormTemplate, SectionInstance
from formsession.types import FieldErrorCode, FieldType, FormValues
from formsession.visibility import (
    get_visible_fields,
    get_visible_section_fields,
    get_visible_sections,
    iter_visible_fields,
)

logger = logging.getLogger(__name__)

_DATE_FIELD_TYPES = (FieldType.DATE, FieldType.DATETIME)
_UPLOAD_FIELD_TYPES = (FieldType.FILE, FieldType.PHOTO)
_BYTES_PER_MB = 1024 * 1024


@dataclass(frozen=True)
class ValidationResult:
    """Result of validating a value bag.

    Attributes:
        is_valid: Whether every visible field passed
        errors: One FieldError per failing field
        missing_fields: Keys of fields that failed the required check
        invalid_fields: Keys of fields that failed any other check

    Examples:
        >>> result = ValidationResult(is_valid=True, errors=[])
        >>> result.error_map
        {}
    """
    is_valid: bool
    errors: List[FieldError]
    missing_fields: Optional[List[str]] = None
    invalid_fields: Optional[List[str]] = None

    @property
    def error_map(self) -> Dict[str, str]:
        """Errors keyed by field code (or ``instance_id.field_code``)."""
        return {e.key: e.message for e in self.errors}

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {
            "isValid": self.is_valid,
            "errors": [e.to_dict() for e in self.errors],
        }
        if self.missing_fields is not None:
            result["missingFields"] = self.missing_fields
        if self.invalid_fields is not None:
            result["invalidFields"] = self.invalid_fields
        return result

    @classmethod
    def from_errors(cls, errors: List[FieldError]) -> "ValidationResult":
        return cls(
            is_valid=not errors,
            errors=errors,
            missing_fields=[e.key for e in errors if e.code == FieldErrorCode.REQUIRED],
            invalid_fields=[e.key for e in errors if e.code != FieldErrorCode.REQUIRED],
        )


@functools.lru_cache(maxsize=256)
def compile_pattern(pattern: str) -> Optional["re.Pattern[str]"]:
    """Compile a rule pattern, or return None (and log) when it is invalid."""
    try:
        return re.compile(pattern)
    except re.error as exc:
        logger.warning("Skipping invalid validation pattern %r: %s", pattern, exc)
        return None


def parse_date(value: Any) -> Optional[datetime]:
    """Parse a date/datetime string into a naive UTC datetime, or None."""
    if isinstance(value, datetime):
        parsed = value
    else:
        text = to_text(value).strip()
        if not text:
            return None
        try:
            parsed = date_parser.parse(text)
        except (ValueError, OverflowError):
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def _iter_uploads(value: Any) -> Iterable[Mapping[str, Any]]:
    items = value if isinstance(value, list) else [value]
    return [item for item in items if is_file_descriptor(item)]


def _extension_of(name: str) -> str:
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[1].lower()


def check_field(
    form_field: FormField,
    value: Any,
    all_values: Optional[FormValues] = None,
    instance_id: Optional[str] = None,
) -> Optional[FieldError]:
    """Validate one value against its field, returning a structured error.

    Args:
        form_field: The field definition
        value: The value to check
        all_values: The whole value bag (reserved for cross-field rules)
        instance_id: Repeatable section instance the value belongs to, if any

    Returns:
        The first failing check as a FieldError, or None when valid
    """
    rules = form_field.validation_rules
    label = form_field.label

    def fail(code: FieldErrorCode, default_message: str) -> FieldError:
        return FieldError(
            field_code=form_field.field_code,
            code=code,
            message=rules.custom_message or default_message,
            instance_id=instance_id,
        )

    if rules.required and not has_value(value):
        return fail(FieldErrorCode.REQUIRED, f"{label} is required")

    if is_absent(value):
        return None

    text = to_text(value)

    if rules.min_length is not None and len(text) < rules.min_length:
        return fail(FieldErrorCode.TOO_SHORT, f"{label} must be at least {rules.min_length} characters")

    if rules.max_length is not None and len(text) > rules.max_length:
        return fail(FieldErrorCode.TOO_LONG, f"{label} must be no more than {rules.max_length} characters")

    if rules.min_value is not None or rules.max_value is not None:
        number = to_number(value)
        if not math.isnan(number):
            if rules.min_value is not None and number < rules.min_value:
                return fail(FieldErrorCode.TOO_SMALL, f"{label} must be at least {format_bound(rules.min_value)}")
            if rules.max_value is not None and number > rules.max_value:
                return fail(
                    FieldErrorCode.TOO_LARGE, f"{label} must be no more than {format_bound(rules.max_value)}"
                )

    if rules.pattern:
        compiled = compile_pattern(rules.pattern)
        if compiled is not None and not compiled.search(text):
            return fail(FieldErrorCode.PATTERN_MISMATCH, f"{label} format is invalid")

    if form_field.field_type in _DATE_FIELD_TYPES and (rules.min_date or rules.max_date):
        entered = parse_date(value)
        if entered is not None:
            lower = parse_date(rules.min_date) if rules.min_date else None
            if lower is not None and entered < lower:
                return fail(FieldErrorCode.DATE_TOO_EARLY, f"{label} must be on or after {rules.min_date}")
            upper = parse_date(rules.max_date) if rules.max_date else None
            if upper is not None and entered > upper:
                return fail(FieldErrorCode.DATE_TOO_LATE, f"{label} must be on or before {rules.max_date}")

    format_check = traits_for(form_field.field_type).format_check
    if format_check is not None and text and not format_check.matches(text):
        return fail(FieldErrorCode.INVALID_FORMAT, format_check.message)

    if form_field.field_type in _UPLOAD_FIELD_TYPES:
        for upload in _iter_uploads(value):
            if rules.allowed_extensions:
                allowed = {ext.lower().lstrip(".") for ext in rules.allowed_extensions}
                if _extension_of(str(upload["name"])) not in allowed:
                    return fail(
                        FieldErrorCode.FILE_WRONG_TYPE,
                        f"{label} must be one of: {', '.join(sorted(allowed))}",
                    )
            if rules.max_file_size_mb is not None:
                size = to_number(upload["size"])
                if not math.isnan(size) and size > rules.max_file_size_mb * _BYTES_PER_MB:
                    return fail(
                        FieldErrorCode.FILE_TOO_LARGE,
                        f"{label} must be smaller than {format_bound(rules.max_file_size_mb)} MB",
                    )

    return None


def validate_field(form_field: FormField, value: Any, all_values: Optional[FormValues] = None) -> Optional[str]:
    """Validate one value, returning the error message or None.

    Examples:
        >>> from formsession.schema import FormField, ValidationRules
        >>> age = FormField("f1", "age", "Age", FieldType.NUMBER,
        ...                 validation_rules=ValidationRules(min_value=18))
        >>> validate_field(age, "17", {})
        'Age must be at least 18'
        >>> validate_field(age, "", {}) is None
        True
    """
    error = check_field(form_field, value, all_values)
    return error.message if error else None


def validate_lookup_value(
    form_field: FormField,
    value: Any,
    context: Optional[ContextData],
    instance_id: Optional[str] = None,
) -> Optional[FieldError]:
    """Check that a lookup field's selected id(s) exist in the context lists.

    Fields without a lookup source, empty values and missing context data all
    pass.
    """
    source = get_lookup_source(form_field)
    if source is None or context is None or is_absent(value):
        return None
    known = context.ids_for(source)
    selected = value if isinstance(value, list) else [value]
    for item in selected:
        item_id = item.get("id") if isinstance(item, Mapping) else item
        if str(item_id) not in known:
            return FieldError(
                field_code=form_field.field_code,
                code=FieldErrorCode.INVALID_OPTION,
                message=form_field.validation_rules.custom_message or f"Please select a valid {form_field.label}",
                instance_id=instance_id,
            )
    return None


def validate_form(
    fields: Iterable[FormField], values: FormValues, field_id_to_code: Mapping[str, str]
) -> Dict[str, str]:
    """Validate the visible fields of a flat field list.

    Hidden fields are never reported, whatever their rules say.
    """
    errors: Dict[str, str] = {}
    for form_field in get_visible_fields(fields, values, field_id_to_code):
        message = validate_field(form_field, values.get(form_field.field_code), values)
        if message:
            errors[form_field.field_code] = message
    return errors


def is_form_valid(
    fields: Iterable[FormField], values: FormValues, field_id_to_code: Mapping[str, str]
) -> bool:
    return not validate_form(fields, values, field_id_to_code)


def get_completed_fields_count(
    fields: Iterable[FormField], values: FormValues, field_id_to_code: Mapping[str, str]
) -> Tuple[int, int]:
    """Count answered vs total visible required fields."""
    required = [f for f in get_visible_fields(fields, values, field_id_to_code) if f.is_required]
    completed = sum(1 for f in required if has_value(values.get(f.field_code)))
    return completed, len(required)


def completion_percentage(completed: int, total: int) -> int:
    """Whole-number percentage, halves rounded up; 100 when nothing is required."""
    if total == 0:
        return 100
    return int(math.floor(100 * completed / total + 0.5))


def calculate_completion_percentage(
    fields: Iterable[FormField], values: FormValues, field_id_to_code: Mapping[str, str]
) -> int:
    """Percentage of visible required fields that hold a value.

    Examples:
        >>> calculate_completion_percentage([], {}, {})
        100
    """
    completed, total = get_completed_fields_count(fields, values, field_id_to_code)
    return completion_percentage(completed, total)


class FormValidator:
    """Template-wide validation with section and field gating.

    Applies the section gate before the field gate, validates every instance of
    visible repeatable sections against the instance's own values, and checks
    lookup selections when context data is available. The fields of a
    repeatable section are only a template for its instances and are not
    validated against the top-level values.

    Examples:
        >>> template = FormTemplate.from_dict({
        ...     "id": "t1", "name": "T", "form_code": "t",
        ...     "sections": [{"id": "s1", "fields": [{
        ...         "id": "f1", "field_code": "name", "label": "Name",
        ...         "field_type": "text", "validation_rules": {"required": True},
        ...     }]}],
        ... })
        >>> FormValidator(template).validate({"name": ""}).error_map
        {'name': 'Name is required'}
    """

    def __init__(self, template: FormTemplate, context: Optional[ContextData] = None) -> None:
        self.template = template
        self.context = context

    def validate(
        self,
        values: FormValues,
        instances: Optional[Mapping[str, Iterable[SectionInstance]]] = None,
    ) -> ValidationResult:
        lookup = self.template.field_id_to_code
        errors: List[FieldError] = []

        for section, form_field in iter_visible_fields(self.template.sections, values, lookup):
            if section.is_repeatable:
                continue
            error = self._check(form_field, values.get(form_field.field_code), values)
            if error is not None:
                errors.append(error)

        for section in get_visible_sections(self.template.sections, values, lookup):
            if not section.is_repeatable:
                continue
            for instance in (instances or {}).get(section.id, ()):
                errors.extend(self.validate_instance(section, instance, values))

        return ValidationResult.from_errors(errors)

    def validate_instance(
        self, section: FormSection, instance: SectionInstance, values: FormValues
    ) -> List[FieldError]:
        """Validate one repeatable section instance.

        Instance values are laid over the form values so that gates inside the
        instance can refer to sibling fields of the same instance.
        """
        scoped = dict(values)
        scoped.update(instance.values)
        errors: List[FieldError] = []
        for form_field in get_visible_section_fields(section, scoped, self.template.field_id_to_code):
            error = self._check(form_field, instance.values.get(form_field.field_code), scoped, instance.instance_id)
            if error is not None:
                errors.append(error)
        return errors

    def _check(
        self,
        form_field: FormField,
        value: Any,
        values: FormValues,
        instance_id: Optional[str] = None,
    ) -> Optional[FieldError]:
        error = check_field(form_field, value, values, instance_id=instance_id)
        if error is None:
            error = validate_lookup_value(form_field, value, self.context, instance_id=instance_id)
        return error


__all__ = [
    "ValidationResult",
    "FormValidator",
    "compile_pattern",
    "parse_date",
    "check_field",
    "validate_field",
    "validate_lookup_value",
    "validate_form",
    "is_form_valid",
    "get_completed_fields_count",
    "completion_percentage",
    "calculate_completion_percentage",
]
