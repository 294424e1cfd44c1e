"""Visibility resolution over sections and fields.

Fields and sections are gated independently: a field's own gate says nothing
about whether its section is shown. Callers that render or validate must apply
both checks; ``get_visible_section_fields`` and ``iter_visible_fields`` do that
for them.
"""

from typing import Iterable, Iterator, List, Mapping, Tuple

from formsession.conditions import evaluate_condition
from formsession.schema import FormField, FormSection
from formsession.types import FormValues


def is_field_visible(form_field: FormField, values: FormValues, field_id_to_code: Mapping[str, str]) -> bool:
    return evaluate_condition(form_field.conditional_logic, values, field_id_to_code)


def is_section_visible(section: FormSection, values: FormValues, field_id_to_code: Mapping[str, str]) -> bool:
    return evaluate_condition(section.conditional_logic, values, field_id_to_code)


def get_visible_fields(
    fields: Iterable[FormField], values: FormValues, field_id_to_code: Mapping[str, str]
) -> List[FormField]:
    """Filter fields by their own gates only."""
    return [f for f in fields if is_field_visible(f, values, field_id_to_code)]


def get_visible_sections(
    sections: Iterable[FormSection], values: FormValues, field_id_to_code: Mapping[str, str]
) -> List[FormSection]:
    """Filter sections by their own gates only."""
    return [s for s in sections if is_section_visible(s, values, field_id_to_code)]


def get_visible_section_fields(
    section: FormSection, values: FormValues, field_id_to_code: Mapping[str, str]
) -> List[FormField]:
    """Visible fields of one section; empty when the section itself is hidden."""
    if not is_section_visible(section, values, field_id_to_code):
        return []
    return get_visible_fields(section.fields, values, field_id_to_code)


def iter_visible_fields(
    sections: Iterable[FormSection], values: FormValues, field_id_to_code: Mapping[str, str]
) -> Iterator[Tuple[FormSection, FormField]]:
    """Yield ``(section, field)`` for every field passing both gates."""
    for section in get_visible_sections(sections, values, field_id_to_code):
        for form_field in get_visible_fields(section.fields, values, field_id_to_code):
            yield section, form_field


__all__ = [
    "is_field_visible",
    "is_section_visible",
    "get_visible_fields",
    "get_visible_sections",
    "get_visible_section_fields",
    "iter_visible_fields",
]
