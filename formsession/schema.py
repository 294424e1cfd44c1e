"""Form template schema model.

This module holds the immutable description of a form: the template, its
sections and fields, their validation rules and visibility gates, and the
repeatable-section instance record used at runtime.

Template data arrives from the template source as plain dicts (the snake_case
shape of the form-builder tables). ``FormTemplate.from_dict`` checks that shape
with ``jsonschema`` before building anything, so a malformed template fails
once, at load time, with every problem listed. Problems the runtime can work
around, such as a visibility gate pointing at a field that does not exist, are
recorded as ``TemplateIssue`` entries and logged instead of raised.

Usage:
    >>> template = FormTemplate.from_dict({
    ...     "id": "tpl_1",
    ...     "name": "Site Inspection",
    ...     "form_code": "site_inspection",
    ...     "sections": [{
    ...         "id": "sec_1",
    ...         "title": "General",
    ...         "order_index": 0,
    ...         "fields": [{
    ...             "id": "fld_1",
    ...             "field_code": "inspector",
    ...             "label": "Inspector",
    ...             "field_type": "text",
    ...             "order_index": 0,
    ...         }],
    ...     }],
    ... })
    >>> template.get_field("inspector").label
    'Inspector'
"""

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from jsonschema import Draft7Validator

from formsession.errors import TemplateError, TemplateIssue
from formsession.types import (
    ConditionOperator,
    FieldType,
    FieldValue,
    FieldWidth,
    LibrarySource,
    PopulateTransform,
)

logger = logging.getLogger(__name__)

FORM_CODE_PATTERN = r"^[a-z][a-z0-9_]*$"

# Repeat bounds used when a repeatable section does not set its own
DEFAULT_MIN_REPEATS = 1
DEFAULT_MAX_REPEATS = 10

_CONDITION_SCHEMA: Dict[str, Any] = {
    "type": ["object", "null"],
    "properties": {
        "field_id": {"type": "string", "minLength": 1},
        "operator": {"type": "string"},
        "value": {},
    },
    "required": ["field_id", "operator"],
}

_RULES_SCHEMA: Dict[str, Any] = {
    "type": ["object", "null"],
    "properties": {
        "required": {"type": "boolean"},
        "min_length": {"type": "integer", "minimum": 0},
        "max_length": {"type": "integer", "minimum": 0},
        "min_value": {"type": "number"},
        "max_value": {"type": "number"},
        "pattern": {"type": "string"},
        "min_date": {"type": "string"},
        "max_date": {"type": "string"},
        "allowed_extensions": {"type": "array", "items": {"type": "string"}},
        "max_file_size_mb": {"type": "number", "exclusiveMinimum": 0},
        "custom_message": {"type": "string"},
    },
}

_FIELD_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "field_code": {"type": "string", "minLength": 1},
        "label": {"type": "string"},
        "field_type": {"enum": [t.value for t in FieldType]},
        "width": {"enum": [w.value for w in FieldWidth] + [None]},
        "order_index": {"type": "number"},
        "options": {"type": ["array", "null"]},
        "validation_rules": _RULES_SCHEMA,
        "conditional_logic": _CONDITION_SCHEMA,
        "library_source": {"enum": [s.value for s in LibrarySource] + [None]},
        "auto_populate_fields": {"type": ["array", "null"], "items": {"type": "string"}},
        "auto_populate_mappings": {
            "type": ["array", "null"],
            "items": {
                "type": "object",
                "properties": {
                    "source_field": {"type": "string"},
                    "target_field": {"type": "string"},
                    "transform": {"enum": [t.value for t in PopulateTransform] + [None]},
                },
                "required": ["source_field", "target_field"],
            },
        },
    },
    "required": ["id", "field_code", "label", "field_type"],
}

_SECTION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "title": {"type": ["string", "null"]},
        "order_index": {"type": "number"},
        "is_repeatable": {"type": "boolean"},
        "min_repeats": {"type": "integer", "minimum": 0},
        "max_repeats": {"type": "integer", "minimum": 1},
        "conditional_logic": _CONDITION_SCHEMA,
        "fields": {"type": "array", "items": _FIELD_SCHEMA},
        "form_fields": {"type": "array", "items": _FIELD_SCHEMA},
    },
    "required": ["id"],
}

TEMPLATE_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "name": {"type": "string"},
        "form_code": {"type": "string", "pattern": FORM_CODE_PATTERN},
        "version": {"type": "integer", "minimum": 1},
        "is_active": {"type": "boolean"},
        "sections": {"type": "array", "items": _SECTION_SCHEMA},
        "form_sections": {"type": "array", "items": _SECTION_SCHEMA},
    },
    "required": ["id", "name", "form_code"],
}

_TEMPLATE_VALIDATOR = Draft7Validator(TEMPLATE_SCHEMA)


@dataclass(frozen=True)
class FieldOption:
    """One choice offered by a dropdown, radio, checkbox or multiselect field."""
    value: str
    label: str
    icon: Optional[str] = None
    disabled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"value": self.value, "label": self.label}
        if self.icon is not None:
            result["icon"] = self.icon
        if self.disabled:
            result["disabled"] = True
        return result


def normalize_options(options: Any) -> Tuple[FieldOption, ...]:
    """Normalize authored options to ``FieldOption`` records.

    Bare strings become value == label; dicts fall back between ``value`` and
    ``label`` and finally to the position; anything else is labelled by its
    text with the position as value.

    Examples:
        >>> normalize_options(["Yes", "No"])[1]
        FieldOption(value='No', label='No', icon=None, disabled=False)
        >>> normalize_options(None)
        ()
    """
    if not options or not isinstance(options, (list, tuple)):
        return ()

    normalized: List[FieldOption] = []
    for index, option in enumerate(options):
        if isinstance(option, FieldOption):
            normalized.append(option)
        elif isinstance(option, str):
            normalized.append(FieldOption(value=option, label=option))
        elif isinstance(option, dict):
            value = option.get("value")
            label = option.get("label")
            if value is None:
                value = label if label is not None else index
            if label is None:
                label = option.get("value", index)
            icon = option.get("icon")
            normalized.append(
                FieldOption(
                    value=str(value),
                    label=str(label),
                    icon=str(icon) if icon else None,
                    disabled=bool(option.get("disabled")),
                )
            )
        else:
            normalized.append(FieldOption(value=str(index), label=str(option)))
    return tuple(normalized)


@dataclass(frozen=True)
class ValidationRules:
    """Constraints checked by the validation engine. ``None`` means no constraint."""
    required: bool = False
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    min_value: Optional[float] = None
    max_value: Optional[float] = None
    pattern: Optional[str] = None
    min_date: Optional[str] = None
    max_date: Optional[str] = None
    allowed_extensions: Optional[Tuple[str, ...]] = None
    max_file_size_mb: Optional[float] = None
    custom_message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict, leaving out unset constraints."""
        result: Dict[str, Any] = {}
        if self.required:
            result["required"] = True
        for name in (
            "min_length", "max_length", "min_value", "max_value", "pattern",
            "min_date", "max_date", "max_file_size_mb", "custom_message",
        ):
            value = getattr(self, name)
            if value is not None:
                result[name] = value
        if self.allowed_extensions is not None:
            result["allowed_extensions"] = list(self.allowed_extensions)
        return result

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "ValidationRules":
        if not data:
            return cls()
        extensions = data.get("allowed_extensions")
        return cls(
            required=bool(data.get("required", False)),
            min_length=data.get("min_length"),
            max_length=data.get("max_length"),
            min_value=data.get("min_value"),
            max_value=data.get("max_value"),
            pattern=data.get("pattern") or None,
            min_date=data.get("min_date") or None,
            max_date=data.get("max_date") or None,
            allowed_extensions=tuple(extensions) if extensions is not None else None,
            max_file_size_mb=data.get("max_file_size_mb"),
            custom_message=data.get("custom_message") or None,
        )


@dataclass(frozen=True)
class ConditionalLogic:
    """Visibility gate attached to a field or section.

    ``operator`` is kept as the raw string when it is not a known
    ``ConditionOperator``, so that an unknown operator fails open at
    evaluation time instead of breaking the load.
    """
    field_id: str
    operator: Union[ConditionOperator, str]
    value: Any = None

    def to_dict(self) -> Dict[str, Any]:
        operator = self.operator.value if isinstance(self.operator, ConditionOperator) else self.operator
        return {"field_id": self.field_id, "operator": operator, "value": self.value}

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> Optional["ConditionalLogic"]:
        if not data:
            return None
        operator: Union[ConditionOperator, str] = data["operator"]
        try:
            operator = ConditionOperator(operator)
        except ValueError:
            logger.warning("Unknown condition operator %r on reference %r", operator, data["field_id"])
        return cls(field_id=data["field_id"], operator=operator, value=data.get("value"))


@dataclass(frozen=True)
class AutoPopulateMapping:
    """Copy ``source_field`` (dotted path in a library item) into ``target_field``."""
    source_field: str
    target_field: str
    transform: Optional[PopulateTransform] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "source_field": self.source_field,
            "target_field": self.target_field,
        }
        if self.transform is not None:
            result["transform"] = self.transform.value
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AutoPopulateMapping":
        transform = data.get("transform")
        return cls(
            source_field=data["source_field"],
            target_field=data["target_field"],
            transform=PopulateTransform(transform) if transform else None,
        )


@dataclass(frozen=True)
class LibraryBinding:
    """How a lookup field fetches options and fills sibling fields."""
    source: LibrarySource
    filters: Dict[str, Any] = field(default_factory=dict)
    auto_populate_fields: Tuple[str, ...] = ()
    auto_populate_mappings: Tuple[AutoPopulateMapping, ...] = ()
    allow_quick_add: bool = False
    use_search_mode: bool = False
    search_mode_threshold: Optional[int] = None

    @property
    def target_fields(self) -> Tuple[str, ...]:
        """Field codes this binding may write to."""
        if self.auto_populate_fields:
            return self.auto_populate_fields
        return tuple(m.target_field for m in self.auto_populate_mappings)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"library_source": self.source.value}
        if self.filters:
            result["library_filters"] = dict(self.filters)
        if self.auto_populate_fields:
            result["auto_populate_fields"] = list(self.auto_populate_fields)
        if self.auto_populate_mappings:
            result["auto_populate_mappings"] = [m.to_dict() for m in self.auto_populate_mappings]
        if self.allow_quick_add:
            result["allow_quick_add"] = True
        if self.use_search_mode:
            result["use_search_mode"] = True
        if self.search_mode_threshold is not None:
            result["search_mode_threshold"] = self.search_mode_threshold
        return result

    @classmethod
    def from_field_dict(cls, data: Mapping[str, Any]) -> Optional["LibraryBinding"]:
        """Build a binding from the library columns of a field row, if any."""
        source = data.get("library_source")
        if not source:
            return None
        return cls(
            source=LibrarySource(source),
            filters=dict(data.get("library_filters") or {}),
            auto_populate_fields=tuple(data.get("auto_populate_fields") or ()),
            auto_populate_mappings=tuple(
                AutoPopulateMapping.from_dict(m) for m in data.get("auto_populate_mappings") or ()
            ),
            allow_quick_add=bool(data.get("allow_quick_add", False)),
            use_search_mode=bool(data.get("use_search_mode", False)),
            search_mode_threshold=data.get("search_mode_threshold"),
        )


@dataclass(frozen=True)
class FormField:
    """A single input in a section.

    ``id`` is the database identity; ``field_code`` is the key the value is
    stored under. Visibility gates may reference either.
    """
    id: str
    field_code: str
    label: str
    field_type: FieldType
    section_id: Optional[str] = None
    placeholder: Optional[str] = None
    help_text: Optional[str] = None
    default_value: Any = None
    width: FieldWidth = FieldWidth.FULL
    options: Tuple[FieldOption, ...] = ()
    validation_rules: ValidationRules = field(default_factory=ValidationRules)
    conditional_logic: Optional[ConditionalLogic] = None
    order_index: float = 0
    library: Optional[LibraryBinding] = None

    @property
    def is_required(self) -> bool:
        return self.validation_rules.required

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "id": self.id,
            "field_code": self.field_code,
            "label": self.label,
            "field_type": self.field_type.value,
            "placeholder": self.placeholder,
            "help_text": self.help_text,
            "default_value": self.default_value,
            "width": self.width.value,
            "options": [o.to_dict() for o in self.options] if self.options else None,
            "validation_rules": self.validation_rules.to_dict(),
            "conditional_logic": self.conditional_logic.to_dict() if self.conditional_logic else None,
            "order_index": self.order_index,
        }
        if self.section_id is not None:
            result["form_section_id"] = self.section_id
        if self.library is not None:
            result.update(self.library.to_dict())
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], section_id: Optional[str] = None) -> "FormField":
        return cls(
            id=data["id"],
            field_code=data["field_code"],
            label=data["label"],
            field_type=FieldType(data["field_type"]),
            section_id=section_id or data.get("form_section_id"),
            placeholder=data.get("placeholder"),
            help_text=data.get("help_text"),
            default_value=data.get("default_value"),
            width=FieldWidth(data.get("width") or FieldWidth.FULL.value),
            options=normalize_options(data.get("options")),
            validation_rules=ValidationRules.from_dict(data.get("validation_rules")),
            conditional_logic=ConditionalLogic.from_dict(data.get("conditional_logic")),
            order_index=data.get("order_index", 0),
            library=LibraryBinding.from_field_dict(data),
        )


@dataclass(frozen=True)
class FormSection:
    """An ordered group of fields, optionally repeatable and optionally gated."""
    id: str
    title: str = ""
    description: Optional[str] = None
    order_index: float = 0
    is_repeatable: bool = False
    min_repeats: int = DEFAULT_MIN_REPEATS
    max_repeats: int = DEFAULT_MAX_REPEATS
    conditional_logic: Optional[ConditionalLogic] = None
    fields: Tuple[FormField, ...] = ()

    def get_field(self, field_code: str) -> Optional[FormField]:
        for form_field in self.fields:
            if form_field.field_code == field_code:
                return form_field
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "order_index": self.order_index,
            "is_repeatable": self.is_repeatable,
            "min_repeats": self.min_repeats,
            "max_repeats": self.max_repeats,
            "conditional_logic": self.conditional_logic.to_dict() if self.conditional_logic else None,
            "fields": [f.to_dict() for f in self.fields],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FormSection":
        raw_fields = data.get("fields")
        if raw_fields is None:
            raw_fields = data.get("form_fields") or []
        fields = sort_by_order([FormField.from_dict(f, section_id=data["id"]) for f in raw_fields])
        return cls(
            id=data["id"],
            title=data.get("title") or "",
            description=data.get("description"),
            order_index=data.get("order_index", 0),
            is_repeatable=bool(data.get("is_repeatable", False)),
            min_repeats=_bound(data.get("min_repeats"), DEFAULT_MIN_REPEATS),
            max_repeats=_bound(data.get("max_repeats"), DEFAULT_MAX_REPEATS),
            conditional_logic=ConditionalLogic.from_dict(data.get("conditional_logic")),
            fields=tuple(fields),
        )


@dataclass(frozen=True)
class SectionInstance:
    """One repetition of a repeatable section.

    ``index`` is assigned when the instance is created and never recomputed,
    so an instance keeps its identity when earlier siblings are removed.
    """
    instance_id: str
    section_id: str
    index: int
    values: Dict[str, FieldValue] = field(default_factory=dict)

    @classmethod
    def create(cls, section_id: str, index: int) -> "SectionInstance":
        return cls(instance_id=f"inst_{uuid.uuid4().hex[:16]}", section_id=section_id, index=index)

    def with_value(self, field_code: str, value: FieldValue) -> "SectionInstance":
        values = dict(self.values)
        values[field_code] = value
        return SectionInstance(self.instance_id, self.section_id, self.index, values)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "instanceId": self.instance_id,
            "sectionId": self.section_id,
            "index": self.index,
            "values": dict(self.values),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SectionInstance":
        return cls(
            instance_id=data["instanceId"],
            section_id=data["sectionId"],
            index=data["index"],
            values=dict(data.get("values") or {}),
        )


@dataclass(frozen=True)
class FormTemplate:
    """A loaded, immutable form template.

    Sections are sorted by ``order_index`` and so are the fields within each
    section. The field id to code lookup table and any load-time issues are
    computed once on construction.

    Attributes:
        id: Template identity
        name: Human name
        form_code: Unique machine code (lowercase/underscore)
        sections: Ordered sections
        workflow: Routing/notification/approval settings, opaque to the engine
        version: Template version number
        is_active: Whether the template accepts new sessions
        description: Optional description
        metadata: Any other template columns, passed through untouched
    """
    id: str
    name: str
    form_code: str
    sections: Tuple[FormSection, ...] = ()
    workflow: Dict[str, Any] = field(default_factory=dict)
    version: int = 1
    is_active: bool = True
    description: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    field_id_to_code: Dict[str, str] = field(init=False, repr=False, compare=False)
    issues: Tuple[TemplateIssue, ...] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        """Build the lookup table and check cross references."""
        fields = [f for section in self.sections for f in section.fields]
        problems: List[str] = []
        seen: Dict[str, str] = {}
        for form_field in fields:
            if form_field.field_code in seen:
                problems.append(
                    f"field_code '{form_field.field_code}' is used by fields "
                    f"'{seen[form_field.field_code]}' and '{form_field.id}'"
                )
            else:
                seen[form_field.field_code] = form_field.id
        for section in self.sections:
            if section.is_repeatable and section.min_repeats > section.max_repeats:
                problems.append(
                    f"section '{section.id}' has min_repeats {section.min_repeats} "
                    f"above max_repeats {section.max_repeats}"
                )
        if problems:
            raise TemplateError(f"Template '{self.id}' is invalid", problems)

        lookup = create_field_id_to_code_map(fields)
        object.__setattr__(self, "field_id_to_code", lookup)
        object.__setattr__(self, "issues", tuple(_find_dangling_references(self.sections, lookup)))

    @property
    def fields(self) -> List[FormField]:
        """All fields across sections, in display order."""
        return [f for section in self.sections for f in section.fields]

    def get_field(self, field_code: str) -> Optional[FormField]:
        for section in self.sections:
            form_field = section.get_field(field_code)
            if form_field is not None:
                return form_field
        return None

    def get_section(self, section_id: str) -> Optional[FormSection]:
        for section in self.sections:
            if section.id == section_id:
                return section
        return None

    def section_of(self, field_code: str) -> Optional[FormSection]:
        for section in self.sections:
            if section.get_field(field_code) is not None:
                return section
        return None

    def to_dict(self) -> Dict[str, Any]:
        result = dict(self.metadata)
        result.update({
            "id": self.id,
            "name": self.name,
            "form_code": self.form_code,
            "description": self.description,
            "version": self.version,
            "is_active": self.is_active,
            "workflow": dict(self.workflow),
            "sections": [s.to_dict() for s in self.sections],
        })
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "FormTemplate":
        """Build a template from raw template-source data.

        Raises:
            TemplateError: If the data does not match ``TEMPLATE_SCHEMA``, a
                field_code is duplicated, or repeat bounds are inverted
        """
        errors = sorted(_TEMPLATE_VALIDATOR.iter_errors(data), key=lambda e: list(e.absolute_path))
        if errors:
            raise TemplateError(
                f"Template '{data.get('id', '?')}' does not match the template schema",
                [_describe_schema_error(e) for e in errors],
            )

        raw_sections = data.get("sections")
        if raw_sections is None:
            raw_sections = data.get("form_sections") or []
        sections = sort_by_order([FormSection.from_dict(s) for s in raw_sections])

        workflow = data.get("workflow")
        if workflow is None:
            workflows = data.get("form_workflows") or []
            workflow = workflows[0] if workflows else {}

        known = {
            "id", "name", "form_code", "description", "version", "is_active",
            "workflow", "form_workflows", "sections", "form_sections",
        }
        template = cls(
            id=data["id"],
            name=data["name"],
            form_code=data["form_code"],
            sections=tuple(sections),
            workflow=dict(workflow),
            version=data.get("version", 1),
            is_active=data.get("is_active", True),
            description=data.get("description"),
            metadata={k: v for k, v in data.items() if k not in known},
        )
        for issue in template.issues:
            logger.warning(
                "Template %s: %s %s: %s", template.form_code, issue.owner_kind, issue.owner_id, issue.message
            )
        return template


def sort_by_order(items: List[Any]) -> List[Any]:
    """Return items sorted by ``order_index`` (stable for ties)."""
    return sorted(items, key=lambda item: item.order_index)


def _bound(value: Any, default: int) -> int:
    # Absent bounds fall back; an explicit 0 minimum is kept.
    return default if value is None else int(value)


def create_field_id_to_code_map(fields: List[FormField]) -> Dict[str, str]:
    """Map each field's database identity to its field_code."""
    return {f.id: f.field_code for f in fields}


def load_template(source: Any, template_id: str) -> FormTemplate:
    """Fetch raw template data from a template source and hydrate it.

    Args:
        source: Object with ``get_template(template_id) -> Mapping``
        template_id: Identifier understood by the source

    Raises:
        TemplateError: If the source has no such template or the data is invalid
    """
    data = source.get_template(template_id)
    if not data:
        raise TemplateError(f"Form template '{template_id}' not found")
    if isinstance(data, FormTemplate):
        return data
    return FormTemplate.from_dict(data)


def _find_dangling_references(
    sections: Tuple[FormSection, ...], lookup: Dict[str, str]
) -> List[TemplateIssue]:
    codes = set(lookup.values())
    issues: List[TemplateIssue] = []

    def check(owner_id: str, owner_kind: str, logic: Optional[ConditionalLogic]) -> None:
        if logic is None or logic.field_id in lookup:
            return
        if logic.field_id in codes:
            message = "visibility gate references a field_code instead of a field id"
        else:
            message = "visibility gate references a field that does not exist"
        issues.append(TemplateIssue(owner_id, owner_kind, message, reference=logic.field_id))

    for section in sections:
        check(section.id, "section", section.conditional_logic)
        for form_field in section.fields:
            check(form_field.id, "field", form_field.conditional_logic)
    return issues


def _describe_schema_error(error: Any) -> str:
    path = ".".join(str(p) for p in error.absolute_path)
    return f"{path or '<root>'}: {error.message}"


__all__ = [
    "TEMPLATE_SCHEMA",
    "FORM_CODE_PATTERN",
    "DEFAULT_MIN_REPEATS",
    "DEFAULT_MAX_REPEATS",
    "FieldOption",
    "normalize_options",
    "ValidationRules",
    "ConditionalLogic",
    "AutoPopulateMapping",
    "LibraryBinding",
    "FormField",
    "FormSection",
    "SectionInstance",
    "FormTemplate",
    "sort_by_order",
    "create_field_id_to_code_map",
    "load_template",
]
