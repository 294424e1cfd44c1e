"""Loose value coercion shared by the condition evaluator and validator.

Stored values arrive from input widgets as strings, numbers, booleans, lists
or small dicts. Comparisons against rules and gates need predictable
numeric/string views of them; these helpers provide those views without ever
raising.
"""

import json
import math
from typing import Any

NAN = float("nan")


def to_number(value: Any) -> float:
    """Coerce a value to a float, returning NaN when it is not numeric.

    Booleans count as 1/0, blank strings as 0, numeric strings parse after
    trimming. ``None``, lists and dicts are not numeric.

    Examples:
        >>> to_number("17")
        17.0
        >>> to_number(True)
        1.0
        >>> math.isnan(to_number("abc"))
        True
    """
    if isinstance(value, bool):
        return 1.0 if value else 0.0
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return 0.0
        try:
            number = float(text)
        except ValueError:
            return NAN
        # float() accepts "inf"/"nan" spellings; those are not user numbers.
        if math.isinf(number) and text.lstrip("+-").lower() != "infinity":
            return NAN
        return number
    return NAN


def to_text(value: Any) -> str:
    """Render a value the way it is measured for length and pattern checks.

    Examples:
        >>> to_text(True)
        'true'
        >>> to_text(18.0)
        '18'
        >>> to_text(["a", "b"])
        'a,b'
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        if math.isnan(value):
            return "NaN"
        if value.is_integer():
            return str(int(value))
        return repr(value)
    if isinstance(value, (list, tuple)):
        return ",".join(to_text(item) for item in value)
    if isinstance(value, dict):
        return json.dumps(value, sort_keys=True, default=str)
    return str(value)


def strict_equals(left: Any, right: Any) -> bool:
    """Type-sensitive equality.

    Numbers compare by value (``1 == 1.0``) but never equal booleans or
    numeric strings.

    Examples:
        >>> strict_equals("3", 3)
        False
        >>> strict_equals(True, 1)
        False
        >>> strict_equals(2, 2.0)
        True
    """
    if isinstance(left, bool) or isinstance(right, bool):
        return isinstance(left, bool) and isinstance(right, bool) and left is right
    if isinstance(left, (int, float)) and isinstance(right, (int, float)):
        return left == right
    if left is None or right is None:
        return left is None and right is None
    if type(left) is not type(right):
        return False
    return left == right


def is_truthy(value: Any) -> bool:
    """Loose truthiness: empty strings, zero, NaN, False and None are falsy.

    Empty lists and dicts are truthy, matching how the value bag was produced.
    """
    if value is None or value is False:
        return False
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return value != 0 and not math.isnan(value)
    if isinstance(value, str):
        return value != ""
    return True


def is_absent(value: Any) -> bool:
    """True when a value carries no user input at all.

    ``0`` and ``False`` are real answers and therefore never absent.
    """
    if value is None:
        return True
    if isinstance(value, bool):
        return False
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, str):
        return value == ""
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def has_value(value: Any) -> bool:
    """True when a required field counts as answered.

    A value is answered when it is not None, not the empty string and, for
    lists, not empty.
    """
    if value is None:
        return False
    if isinstance(value, str) and value == "":
        return False
    if isinstance(value, (list, tuple)) and len(value) == 0:
        return False
    return True


def format_bound(value: Any) -> str:
    """Render a rule bound for a message (``18.0`` reads as ``18``)."""
    return to_text(value)


__all__ = [
    "NAN",
    "to_number",
    "to_text",
    "strict_equals",
    "is_truthy",
    "is_absent",
    "has_value",
    "format_bound",
]
