"""Immutable form state and its transition functions.

``FormState`` is a snapshot of everything a form-filling session tracks:
values, errors, touched flags, wizard position, submit/save bookkeeping and
repeatable-section instances. Every transition below is a pure function that
returns a new state and leaves its input untouched, which keeps concurrent
autosave and submit paths easy to reason about: each one works on the
snapshot it was handed.

Usage:
    >>> state = FormState.initial({"name": ""})
    >>> state = set_value(state, "name", "Alice")
    >>> is_dirty(state)
    True
    >>> is_dirty(reset(state))
    False
"""

import json
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Iterable, Optional, Tuple

from formsession.errors import RepeatLimitError, TemplateError
from formsession.schema import FormSection, SectionInstance
from formsession.types import FieldValue, FormValues

Instances = Dict[str, Tuple[SectionInstance, ...]]


@dataclass(frozen=True)
class FormState:
    """Snapshot of a form-filling session.

    Attributes:
        values: Current value bag keyed by field_code
        initial_values: Baseline the dirty check compares against
        errors: Current errors keyed by field_code (or instance_id.field_code)
        touched: Fields the user has interacted with
        current_step: Wizard position (index into the visible sections)
        is_submitting: True while a submit is in flight
        last_saved_at: When a draft was last persisted successfully
        instances: Repeatable section instances by section id
        initial_instances: Baseline instances for the dirty check and reset
        last_error: User-facing message of the last failed submit
    """
    values: FormValues
    initial_values: FormValues
    errors: Dict[str, str] = field(default_factory=dict)
    touched: Dict[str, bool] = field(default_factory=dict)
    current_step: int = 0
    is_submitting: bool = False
    last_saved_at: Optional[datetime] = None
    instances: Instances = field(default_factory=dict)
    initial_instances: Instances = field(default_factory=dict)
    last_error: Optional[str] = None

    @classmethod
    def initial(cls, values: FormValues, instances: Optional[Instances] = None) -> "FormState":
        """Start a state whose baseline equals its current values."""
        instances = dict(instances or {})
        return cls(
            values=dict(values),
            initial_values=dict(values),
            instances=instances,
            initial_instances=dict(instances),
        )

    def instances_for(self, section_id: str) -> Tuple[SectionInstance, ...]:
        return self.instances.get(section_id, ())


def _canonical(data: Any) -> str:
    return json.dumps(data, sort_keys=True, default=str)


def _instances_to_dict(instances: Instances) -> Dict[str, Any]:
    return {section_id: [i.to_dict() for i in items] for section_id, items in instances.items() if items}


def is_dirty(state: FormState) -> bool:
    """Structural comparison of current vs baseline values and instances.

    The comparison is type-sensitive (``1`` differs from ``True``) and ignores
    key order.
    """
    if _canonical(state.values) != _canonical(state.initial_values):
        return True
    return _canonical(_instances_to_dict(state.instances)) != _canonical(
        _instances_to_dict(state.initial_instances)
    )


def set_value(state: FormState, field_code: str, value: FieldValue) -> FormState:
    """Assign one value. Does not touch the field or revalidate."""
    values = dict(state.values)
    values[field_code] = value
    return replace(state, values=values)


def set_values(state: FormState, values: FormValues) -> FormState:
    """Replace the whole value bag."""
    return replace(state, values=dict(values))


def merge_values(state: FormState, updates: FormValues) -> FormState:
    """Assign several values at once."""
    values = dict(state.values)
    values.update(updates)
    return replace(state, values=values)


def set_touched(state: FormState, field_code: str) -> FormState:
    if state.touched.get(field_code):
        return state
    touched = dict(state.touched)
    touched[field_code] = True
    return replace(state, touched=touched)


def touch_all(state: FormState, field_codes: Iterable[str]) -> FormState:
    touched = dict(state.touched)
    touched.update({code: True for code in field_codes})
    return replace(state, touched=touched)


def replace_errors(state: FormState, errors: Dict[str, str]) -> FormState:
    return replace(state, errors=dict(errors))


def reset(state: FormState) -> FormState:
    """Back to the baseline: values and instances restored, errors and touched cleared, step 0."""
    return replace(
        state,
        values=dict(state.initial_values),
        instances=dict(state.initial_instances),
        errors={},
        touched={},
        current_step=0,
        last_error=None,
    )


def clamp_step(state: FormState, total_steps: int) -> FormState:
    """Pull the wizard position back into ``[0, total_steps)``.

    Used after visibility changes, which can shrink the step count under the
    current position.
    """
    if total_steps <= 0:
        step = 0
    else:
        step = min(max(state.current_step, 0), total_steps - 1)
    if step == state.current_step:
        return state
    return replace(state, current_step=step)


def go_to_step(state: FormState, step: int, total_steps: int) -> FormState:
    """Jump to a step; out-of-range targets are ignored."""
    if 0 <= step < total_steps:
        return replace(state, current_step=step)
    return state


def next_step(state: FormState, total_steps: int) -> FormState:
    state = clamp_step(state, total_steps)
    if state.current_step < total_steps - 1:
        return replace(state, current_step=state.current_step + 1)
    return state


def prev_step(state: FormState, total_steps: int) -> FormState:
    state = clamp_step(state, total_steps)
    if state.current_step > 0:
        return replace(state, current_step=state.current_step - 1)
    return state


def begin_submit(state: FormState) -> FormState:
    return replace(state, is_submitting=True, last_error=None)


def end_submit(state: FormState, error: Optional[str] = None) -> FormState:
    return replace(state, is_submitting=False, last_error=error)


def mark_saved(state: FormState, saved_at: datetime) -> FormState:
    return replace(state, last_saved_at=saved_at)


def add_instance(
    state: FormState,
    section: FormSection,
    values: Optional[FormValues] = None,
) -> Tuple[FormState, SectionInstance]:
    """Append a new instance to a repeatable section.

    The ordinal is one past the highest ordinal in use (0 for the first), so
    it is never shared with a live sibling and never recomputed.

    Raises:
        TemplateError: If the section is not repeatable
        RepeatLimitError: If the section already holds ``max_repeats`` instances
    """
    if not section.is_repeatable:
        raise TemplateError(f"Section '{section.id}' is not repeatable")

    existing = state.instances_for(section.id)
    if len(existing) >= section.max_repeats:
        raise RepeatLimitError(
            section_id=section.id,
            limit=section.max_repeats,
            message=(
                f"Section '{section.title or section.id}' allows at most "
                f"{section.max_repeats} entries"
            ),
        )

    index = max((i.index for i in existing), default=-1) + 1
    instance = SectionInstance.create(section.id, index)
    if values:
        instance = replace(instance, values=dict(values))

    instances = dict(state.instances)
    instances[section.id] = existing + (instance,)
    return replace(state, instances=instances), instance


def remove_instance(state: FormState, section: FormSection, instance_id: str) -> FormState:
    """Remove an instance; remaining ordinals are left as they are.

    Raises:
        ValueError: If the instance does not belong to the section
        RepeatLimitError: If removal would go below ``min_repeats``
    """
    existing = state.instances_for(section.id)
    remaining = tuple(i for i in existing if i.instance_id != instance_id)
    if len(remaining) == len(existing):
        raise ValueError(f"Instance {instance_id} not found in section {section.id}")
    if len(remaining) < section.min_repeats:
        raise RepeatLimitError(
            section_id=section.id,
            limit=section.min_repeats,
            message=(
                f"Section '{section.title or section.id}' needs at least "
                f"{section.min_repeats} entries"
            ),
        )

    instances = dict(state.instances)
    instances[section.id] = remaining
    errors = {k: v for k, v in state.errors.items() if not k.startswith(f"{instance_id}.")}
    return replace(state, instances=instances, errors=errors)


def set_instance_value(
    state: FormState, section_id: str, instance_id: str, field_code: str, value: FieldValue
) -> FormState:
    """Assign a value inside one repeatable section instance.

    Raises:
        ValueError: If the instance does not exist
    """
    existing = state.instances_for(section_id)
    updated = []
    found = False
    for instance in existing:
        if instance.instance_id == instance_id:
            instance = instance.with_value(field_code, value)
            found = True
        updated.append(instance)
    if not found:
        raise ValueError(f"Instance {instance_id} not found in section {section_id}")

    instances = dict(state.instances)
    instances[section_id] = tuple(updated)
    return replace(state, instances=instances)


__all__ = [
    "FormState",
    "is_dirty",
    "set_value",
    "set_values",
    "merge_values",
    "set_touched",
    "touch_all",
    "replace_errors",
    "reset",
    "clamp_step",
    "go_to_step",
    "next_step",
    "prev_step",
    "begin_submit",
    "end_submit",
    "mark_saved",
    "add_instance",
    "remove_instance",
    "set_instance_value",
]
