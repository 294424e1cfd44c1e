"""Per-field-type behaviour, dispatched over the closed ``FieldType`` set.

Each ``FieldType`` member maps to exactly one ``FieldTypeTraits`` record that
says how the type resolves its default value, which format check it carries,
and how it is classified (attachment, selection, lookup). The table is checked
for completeness at import time, so adding a member to ``FieldType`` without
describing it here fails immediately instead of silently falling through.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Optional

from formsession.coercion import to_number
from formsession.schema import FormField
from formsession.types import FieldType, FieldValue, FormValues, LibrarySource

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^[\d\s\-+()]{10,}$")


@dataclass(frozen=True)
class FormatCheck:
    """A type-level format rule: the value's text must match ``pattern``."""
    pattern: "re.Pattern[str]"
    message: str

    def matches(self, text: str) -> bool:
        return bool(self.pattern.search(text))


@dataclass(frozen=True)
class FieldTypeTraits:
    """Behaviour of one field type.

    Attributes:
        empty_default: Value used when the author gave no default
        parse_default: Turns the authored (string) default into a stored value
        input_type: HTML-style input hint for the rendering layer
        format_check: Optional type-level format rule
        is_attachment: Value is an opaque payload reference (photo/file/signature)
        is_selection: Value is chosen from the field's option list
        lookup_source: Catalog the value's ids must come from, if any
    """
    empty_default: Callable[[], FieldValue]
    parse_default: Callable[[Any], FieldValue]
    input_type: str = "text"
    format_check: Optional[FormatCheck] = None
    is_attachment: bool = False
    is_selection: bool = False
    lookup_source: Optional[LibrarySource] = None


def _empty_string() -> FieldValue:
    return ""


def _empty_list() -> FieldValue:
    return []


def _as_is(raw: Any) -> FieldValue:
    return raw


def _parse_number(raw: Any) -> FieldValue:
    number = to_number(raw)
    if number == number and number.is_integer():
        return int(number)
    return number


def _parse_checkbox(raw: Any) -> FieldValue:
    if isinstance(raw, bool):
        return raw
    return raw == "true"


def _parse_list(raw: Any) -> FieldValue:
    if isinstance(raw, list):
        return list(raw)
    try:
        parsed = json.loads(raw)
    except (TypeError, ValueError):
        return []
    return parsed if isinstance(parsed, list) else []


_TEXT = FieldTypeTraits(empty_default=_empty_string, parse_default=_as_is)
_NUMERIC = FieldTypeTraits(empty_default=_empty_string, parse_default=_parse_number, input_type="number")


FIELD_TYPE_TRAITS: Dict[FieldType, FieldTypeTraits] = {
    FieldType.TEXT: _TEXT,
    FieldType.TEXTAREA: _TEXT,
    FieldType.HIDDEN: _TEXT,
    FieldType.BODY_DIAGRAM: _TEXT,
    FieldType.WEATHER: _TEXT,
    FieldType.TEMPERATURE: _TEXT,
    FieldType.GPS: _TEXT,
    FieldType.NUMBER: _NUMERIC,
    FieldType.CURRENCY: _NUMERIC,
    FieldType.SLIDER: _NUMERIC,
    FieldType.RATING: FieldTypeTraits(
        empty_default=lambda: 0, parse_default=_parse_number, input_type="number"
    ),
    FieldType.DATE: FieldTypeTraits(empty_default=_empty_string, parse_default=_as_is, input_type="date"),
    FieldType.TIME: FieldTypeTraits(empty_default=_empty_string, parse_default=_as_is, input_type="time"),
    FieldType.DATETIME: FieldTypeTraits(
        empty_default=_empty_string, parse_default=_as_is, input_type="datetime-local"
    ),
    FieldType.EMAIL: FieldTypeTraits(
        empty_default=_empty_string,
        parse_default=_as_is,
        input_type="email",
        format_check=FormatCheck(EMAIL_PATTERN, "Please enter a valid email address"),
    ),
    FieldType.PHONE: FieldTypeTraits(
        empty_default=_empty_string,
        parse_default=_as_is,
        input_type="tel",
        format_check=FormatCheck(PHONE_PATTERN, "Please enter a valid phone number"),
    ),
    FieldType.DROPDOWN: FieldTypeTraits(empty_default=_empty_string, parse_default=_as_is, is_selection=True),
    FieldType.RADIO: FieldTypeTraits(empty_default=_empty_string, parse_default=_as_is, is_selection=True),
    FieldType.CHECKBOX: FieldTypeTraits(
        empty_default=lambda: False, parse_default=_parse_checkbox, is_selection=True
    ),
    FieldType.MULTISELECT: FieldTypeTraits(
        empty_default=_empty_list, parse_default=_parse_list, is_selection=True
    ),
    FieldType.YES_NO: FieldTypeTraits(empty_default=lambda: None, parse_default=_as_is, is_selection=True),
    FieldType.YES_NO_NA: FieldTypeTraits(empty_default=lambda: None, parse_default=_as_is, is_selection=True),
    FieldType.SIGNATURE: FieldTypeTraits(empty_default=_empty_string, parse_default=_as_is, is_attachment=True),
    FieldType.MULTI_SIGNATURE: FieldTypeTraits(empty_default=_empty_string, parse_default=_as_is),
    FieldType.PHOTO: FieldTypeTraits(empty_default=_empty_string, parse_default=_as_is, is_attachment=True),
    FieldType.FILE: FieldTypeTraits(empty_default=_empty_string, parse_default=_as_is, is_attachment=True),
    FieldType.WORKER_SELECT: FieldTypeTraits(
        empty_default=_empty_string, parse_default=_as_is, lookup_source=LibrarySource.WORKERS
    ),
    FieldType.JOBSITE_SELECT: FieldTypeTraits(
        empty_default=_empty_string, parse_default=_as_is, lookup_source=LibrarySource.JOBSITES
    ),
    FieldType.EQUIPMENT_SELECT: FieldTypeTraits(
        empty_default=_empty_string, parse_default=_as_is, lookup_source=LibrarySource.EQUIPMENT
    ),
    FieldType.HAZARD_SELECT: FieldTypeTraits(
        empty_default=_empty_string, parse_default=_as_is, lookup_source=LibrarySource.HAZARDS
    ),
    FieldType.HAZARD_MULTISELECT: FieldTypeTraits(
        empty_default=_empty_list, parse_default=_parse_list, lookup_source=LibrarySource.HAZARDS
    ),
    FieldType.TASK_SELECT: FieldTypeTraits(
        empty_default=_empty_string, parse_default=_as_is, lookup_source=LibrarySource.TASKS
    ),
}


def _check_exhaustive(table: Dict[FieldType, Any], name: str) -> None:
    missing = set(FieldType) - set(table)
    if missing:
        raise RuntimeError(
            f"{name} does not cover field types: {', '.join(sorted(t.value for t in missing))}"
        )


_check_exhaustive(FIELD_TYPE_TRAITS, "FIELD_TYPE_TRAITS")


def traits_for(field_type: FieldType) -> FieldTypeTraits:
    """Return the traits of a field type."""
    return FIELD_TYPE_TRAITS[FieldType(field_type)]


def get_default_value(form_field: FormField) -> FieldValue:
    """Resolve the initial value of a field.

    An authored default is parsed according to the field type; otherwise the
    type's empty value is used.

    Examples:
        >>> from formsession.schema import FormField
        >>> get_default_value(FormField("f1", "qty", "Qty", FieldType.NUMBER, default_value="5"))
        5
        >>> get_default_value(FormField("f2", "ok", "OK", FieldType.CHECKBOX))
        False
    """
    traits = traits_for(form_field.field_type)
    if form_field.default_value is not None:
        return traits.parse_default(form_field.default_value)
    return traits.empty_default()


def initialize_form_values(fields: Iterable[FormField]) -> FormValues:
    """Build the starting value bag for a set of fields."""
    return {f.field_code: get_default_value(f) for f in fields}


def is_attachment_field(field_type: FieldType) -> bool:
    return traits_for(field_type).is_attachment


def is_selection_field(field_type: FieldType) -> bool:
    return traits_for(field_type).is_selection


def get_input_type(field_type: FieldType) -> str:
    return traits_for(field_type).input_type


def get_lookup_source(form_field: FormField) -> Optional[LibrarySource]:
    """Catalog a field's value must come from: its library binding, else its type."""
    if form_field.library is not None:
        return form_field.library.source
    return traits_for(form_field.field_type).lookup_source


__all__ = [
    "EMAIL_PATTERN",
    "PHONE_PATTERN",
    "FormatCheck",
    "FieldTypeTraits",
    "FIELD_TYPE_TRAITS",
    "traits_for",
    "get_default_value",
    "initialize_form_values",
    "is_attachment_field",
    "is_selection_field",
    "get_input_type",
    "get_lookup_source",
]
