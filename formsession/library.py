"""Library selection auto-populate.

When the user picks an item from a library catalog (a worker, a jobsite, a
piece of equipment), sibling fields named by the field's ``LibraryBinding``
can be filled from that item. Values come from explicit mappings first
(a dotted path into the item, optionally transformed) and then from the
item key matching the target field code.

Usage:
    >>> binding = LibraryBinding(source=LibrarySource.WORKERS, auto_populate_fields=("full_name",))
    >>> result = auto_populate({"id": "w1", "first_name": "Ada", "last_name": "Byron"}, binding, {})
    >>> result.values
    {'full_name': 'Ada Byron'}
"""

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from formsession.coercion import is_absent, to_number
from formsession.schema import LibraryBinding
from formsession.types import FormValues, LibrarySource, PopulateTransform

logger = logging.getLogger(__name__)


def _join(value: Any) -> Any:
    return ", ".join(str(v) for v in value) if isinstance(value, list) else value


def _first(value: Any) -> Any:
    if isinstance(value, list):
        return value[0] if value else None
    return value


def _count(value: Any) -> Any:
    return len(value) if isinstance(value, list) else 0


def _sum(value: Any) -> Any:
    """Add up the numeric items of a list; items that are not numbers are skipped."""
    if not isinstance(value, list):
        return value
    total: Any = 0
    for item in value:
        if isinstance(item, (int, float)) and not isinstance(item, bool):
            number = item
        else:
            number = to_number(item)
        if not math.isnan(number):
            total += number
    return total


def _json(value: Any) -> Any:
    return json.dumps(value, separators=(",", ":"), default=str)


TRANSFORMS: Dict[PopulateTransform, Callable[[Any], Any]] = {
    PopulateTransform.JOIN: _join,
    PopulateTransform.FIRST: _first,
    PopulateTransform.COUNT: _count,
    PopulateTransform.SUM: _sum,
    PopulateTransform.JSON: _json,
}


def _full_name(item: Mapping[str, Any]) -> Optional[str]:
    if "first_name" in item and "last_name" in item:
        return f"{item['first_name']} {item['last_name']}"
    return None


def _make_model(item: Mapping[str, Any]) -> Optional[str]:
    if "make" in item and "model" in item:
        return " ".join(str(p) for p in (item["make"], item["model"]) if p) or None
    return None


# Target codes whose value is derived from several item keys
COMPUTED_FIELDS: Dict[str, Callable[[Mapping[str, Any]], Any]] = {
    "full_name": _full_name,
    "make_model": _make_model,
}


def get_nested_value(item: Any, path: str) -> Any:
    """Follow a dotted path into nested mappings; None when any step is missing.

    Examples:
        >>> get_nested_value({"site": {"address": "1 Main St"}}, "site.address")
        '1 Main St'
        >>> get_nested_value({"site": None}, "site.address") is None
        True
    """
    current = item
    for key in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def apply_transform(transform: Optional[PopulateTransform], value: Any) -> Any:
    """Apply a named transform to a copied value (no transform returns it unchanged)."""
    if transform is None:
        return value
    return TRANSFORMS[PopulateTransform(transform)](value)


def get_auto_populate_values(item: Mapping[str, Any], binding: LibraryBinding) -> Dict[str, Any]:
    """Resolve the value each target field would receive from ``item``.

    Mappings are applied first; targets without a mapping fall back to a
    computed value or the item key with the same name. Targets the item has
    nothing for are left out.
    """
    targets = binding.target_fields
    result: Dict[str, Any] = {}

    for mapping in binding.auto_populate_mappings:
        if mapping.target_field in targets:
            value = get_nested_value(item, mapping.source_field) if mapping.source_field else None
            result[mapping.target_field] = apply_transform(mapping.transform, value)

    for field_code in targets:
        if result.get(field_code) is not None:
            continue
        compute = COMPUTED_FIELDS.get(field_code)
        if compute is not None:
            result[field_code] = compute(item)
        elif field_code in item:
            result[field_code] = item[field_code]

    return result


@dataclass
class AutoPopulateResult:
    """Outcome of auto-populating from one library item.

    Attributes:
        populated_fields: Field codes that received a value, in binding order
        values: The values to write
        warnings: Targets that could not be filled from the item
    """
    populated_fields: List[str] = field(default_factory=list)
    values: FormValues = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "populatedFields": list(self.populated_fields),
            "values": dict(self.values),
            "warnings": list(self.warnings),
        }


def auto_populate(
    item: Mapping[str, Any],
    binding: LibraryBinding,
    current_values: FormValues,
    overwrite_existing: bool = False,
) -> AutoPopulateResult:
    """Compute the sibling values to write for a library selection.

    A target is skipped when the item has no value for it, or when it already
    holds a value and ``overwrite_existing`` is False.
    """
    result = AutoPopulateResult()
    resolved = get_auto_populate_values(item, binding)

    for field_code in binding.target_fields:
        value = resolved.get(field_code)
        if value is None:
            result.warnings.append(
                f"No value for '{field_code}' in {LibrarySource(binding.source).value} item {item.get('id')!r}"
            )
            continue
        if not overwrite_existing and not is_absent(current_values.get(field_code)):
            continue
        result.values[field_code] = value
        result.populated_fields.append(field_code)

    if result.warnings:
        logger.debug("Auto-populate from %s: %s", binding.source, "; ".join(result.warnings))
    return result


__all__ = [
    "TRANSFORMS",
    "COMPUTED_FIELDS",
    "AutoPopulateResult",
    "get_nested_value",
    "apply_transform",
    "get_auto_populate_values",
    "auto_populate",
]
