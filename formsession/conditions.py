"""Conditional visibility evaluation.

``evaluate_condition`` decides whether a gated field or section is visible for
the current value bag. It is a pure function: the same inputs always produce
the same answer and nothing is mutated, so visibility resolution, validation,
completion and wizard step counting can all call it freely.
"""

import math
from typing import Any, Mapping, Optional

from formsession.coercion import is_truthy, strict_equals, to_number, to_text
from formsession.schema import ConditionalLogic
from formsession.types import ConditionOperator, FormValues


def resolve_field_code(field_id: str, field_id_to_code: Mapping[str, str]) -> str:
    """Map a gate's field reference to the value-bag key.

    References that are not field ids are used as codes directly. Templates
    that rely on this are flagged when loaded (see ``FormTemplate.issues``).
    """
    return field_id_to_code.get(field_id, field_id)


def is_empty_value(value: Any) -> bool:
    """``is_empty`` semantics: absent, blank string, or empty list.

    Zero and False are answers, not emptiness.
    """
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, str):
        return value.strip() == ""
    if isinstance(value, (list, tuple)):
        return len(value) == 0
    return False


def is_not_empty_value(value: Any) -> bool:
    """``is_not_empty`` semantics, checked independently of ``is_empty_value``.

    A value must be truthy, and strings must hold non-blank text and lists must
    hold items. Falsy answers such as ``0`` and ``False`` are therefore neither
    empty nor not-empty.
    """
    if not is_truthy(value):
        return False
    if isinstance(value, str) and value.strip() == "":
        return False
    if isinstance(value, (list, tuple)) and len(value) == 0:
        return False
    return True


def _contains(target: Any, expected: Any) -> Optional[bool]:
    """Containment test; None when the target cannot contain anything."""
    needle = to_text(expected)
    if isinstance(target, str):
        return needle in target
    if isinstance(target, (list, tuple)):
        return needle in [to_text(item) for item in target]
    return None


def evaluate_condition(
    logic: Optional[ConditionalLogic],
    values: FormValues,
    field_id_to_code: Mapping[str, str],
) -> bool:
    """Evaluate a visibility gate against the current values.

    Args:
        logic: The gate, or None for "always visible"
        values: Current value bag keyed by field_code
        field_id_to_code: Lookup table built once per template load

    Returns:
        True when the gated entity is visible

    Examples:
        >>> gate = ConditionalLogic(field_id="f1", operator=ConditionOperator.EQUALS, value=True)
        >>> evaluate_condition(gate, {"has_vehicle": True}, {"f1": "has_vehicle"})
        True
        >>> evaluate_condition(gate, {"has_vehicle": False}, {"f1": "has_vehicle"})
        False
        >>> evaluate_condition(None, {}, {})
        True
    """
    if logic is None:
        return True

    field_code = resolve_field_code(logic.field_id, field_id_to_code)
    actual = values.get(field_code)
    operator = logic.operator

    if operator == ConditionOperator.EQUALS:
        return strict_equals(actual, logic.value)

    if operator == ConditionOperator.NOT_EQUALS:
        return not strict_equals(actual, logic.value)

    if operator == ConditionOperator.CONTAINS:
        found = _contains(actual, logic.value)
        return bool(found)

    if operator == ConditionOperator.NOT_CONTAINS:
        found = _contains(actual, logic.value)
        return True if found is None else not found

    if operator == ConditionOperator.GREATER_THAN:
        # NaN on either side makes the comparison False.
        return to_number(actual) > to_number(logic.value)

    if operator == ConditionOperator.LESS_THAN:
        return to_number(actual) < to_number(logic.value)

    if operator == ConditionOperator.IS_EMPTY:
        return is_empty_value(actual)

    if operator == ConditionOperator.IS_NOT_EMPTY:
        return is_not_empty_value(actual)

    # Unknown operators fail open.
    return True


__all__ = [
    "resolve_field_code",
    "is_empty_value",
    "is_not_empty_value",
    "evaluate_condition",
]
