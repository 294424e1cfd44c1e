"""Unit tests for the validation engine.

Tests cover:
- Rule checks and their fixed order
- Optional fields without a value
- Type format checks and upload checks
- Lookup checks against context data
- Visibility-gated form validation and completion
- Repeatable section instances
"""

import logging

import pytest

from formsession.collaborators import ContextData
from formsession.schema import ConditionalLogic, FormField, FormTemplate, SectionInstance, ValidationRules
from formsession.types import ConditionOperator, FieldErrorCode, FieldType
from formsession.validation import (
    FormValidator,
    ValidationResult,
    calculate_completion_percentage,
    check_field,
    compile_pattern,
    completion_percentage,
    get_completed_fields_count,
    validate_field,
    validate_form,
    validate_lookup_value,
)


def make_field(code="name", label="Name", field_type=FieldType.TEXT, field_id=None, logic=None, **rules):
    return FormField(
        id=field_id or f"f_{code}",
        field_code=code,
        label=label,
        field_type=field_type,
        validation_rules=ValidationRules(**rules),
        conditional_logic=logic,
    )


class TestRequired:
    """Test the required check."""

    def test_required_empty_string(self):
        """Should report '<label> is required'."""
        assert validate_field(make_field(required=True), "", {}) == "Name is required"

    def test_required_empty_list(self):
        """Should treat an empty list as unanswered."""
        field = make_field("hazards", "Hazards", FieldType.MULTISELECT, required=True)
        assert validate_field(field, [], {}) == "Hazards is required"

    def test_required_none(self):
        """Should treat None as unanswered."""
        assert validate_field(make_field(required=True), None, {}) == "Name is required"

    def test_required_zero_is_answered(self):
        """Should accept zero as an answer."""
        field = make_field("count", "Count", FieldType.NUMBER, required=True)
        assert validate_field(field, 0, {}) is None

    def test_custom_message(self):
        """Should prefer the authored message."""
        field = make_field(required=True, custom_message="Tell us who you are")
        assert validate_field(field, "", {}) == "Tell us who you are"


class TestOptionalAbsent:
    """An optional field without a value passes every rule."""

    @pytest.mark.parametrize("value", [None, "", []])
    def test_absent_value_passes(self, value):
        """Should skip rules for an empty optional field."""
        field = make_field(min_length=3, max_length=5, min_value=1, pattern=r"^\d+$")
        assert validate_field(field, value, {}) is None


class TestLengthAndRange:
    """Test length and numeric range checks."""

    def test_min_length(self):
        """Should reject text shorter than min_length."""
        assert validate_field(make_field(min_length=3), "ab", {}) == "Name must be at least 3 characters"

    def test_max_length(self):
        """Should reject text longer than max_length."""
        assert validate_field(make_field(max_length=3), "abcd", {}) == "Name must be no more than 3 characters"

    def test_min_value_numeric_string(self):
        """Scenario: an age of '17' against a minimum of 18."""
        age = make_field("age", "Age", FieldType.NUMBER, min_value=18)
        assert validate_field(age, "17", {}) == "Age must be at least 18"

    def test_max_value(self):
        """Should reject numbers above max_value."""
        age = make_field("age", "Age", FieldType.NUMBER, max_value=100)
        assert validate_field(age, 120, {}) == "Age must be no more than 100"

    def test_non_numeric_value_skips_range(self):
        """Should skip range checks for non-numeric text."""
        age = make_field("age", "Age", FieldType.NUMBER, min_value=18)
        assert validate_field(age, "abc", {}) is None

    def test_fractional_bound_in_message(self):
        """Should print fractional bounds as written."""
        temp = make_field("temp", "Temp", FieldType.NUMBER, min_value=1.5)
        assert validate_field(temp, 1, {}) == "Temp must be at least 1.5"

    def test_length_checked_before_range(self):
        """Should report length before range."""
        field = make_field("code", "Code", FieldType.NUMBER, min_length=3, min_value=100)
        error = check_field(field, "12")
        assert error.code == FieldErrorCode.TOO_SHORT


class TestPattern:
    """Test regular-expression rules."""

    def test_pattern_mismatch(self):
        """Should reject text that does not match the pattern."""
        field = make_field("code", "Code", pattern=r"^\d{3}$")
        assert validate_field(field, "12a", {}) == "Code format is invalid"
        assert validate_field(field, "123", {}) is None

    def test_invalid_pattern_is_skipped_and_logged(self, caplog):
        """A broken pattern is a template problem: logged, never raised."""
        compile_pattern.cache_clear()
        field = make_field("code", "Code", pattern="(unclosed[")
        with caplog.at_level(logging.WARNING, logger="formsession.validation"):
            assert validate_field(field, "anything", {}) is None
        assert "invalid validation pattern" in caplog.text


class TestDates:
    """Test date bounds."""

    def test_before_min_date(self):
        """Should reject dates before min_date."""
        field = make_field("date", "Date", FieldType.DATE, min_date="2024-01-01")
        assert validate_field(field, "2023-12-31", {}) == "Date must be on or after 2024-01-01"

    def test_after_max_date(self):
        """Should reject dates after max_date."""
        field = make_field("date", "Date", FieldType.DATE, max_date="2024-01-01")
        assert validate_field(field, "2024-01-02", {}) == "Date must be on or before 2024-01-01"

    def test_within_bounds(self):
        """Should accept dates inside the bounds."""
        field = make_field("date", "Date", FieldType.DATETIME, min_date="2024-01-01", max_date="2024-12-31")
        assert validate_field(field, "2024-06-01T10:00", {}) is None

    def test_unparsable_date_passes(self):
        """Should skip date bounds for unreadable dates."""
        field = make_field("date", "Date", FieldType.DATE, min_date="2024-01-01")
        assert validate_field(field, "not a date", {}) is None


class TestFormats:
    """Test the type-level format checks."""

    def test_invalid_email(self):
        """Should reject a malformed email."""
        field = make_field("email", "Email", FieldType.EMAIL)
        assert validate_field(field, "bob@", {}) == "Please enter a valid email address"
        assert validate_field(field, "bob@example.com", {}) is None

    def test_invalid_phone(self):
        """Should reject a malformed phone number."""
        field = make_field("phone", "Phone", FieldType.PHONE)
        assert validate_field(field, "123", {}) == "Please enter a valid phone number"
        assert validate_field(field, "(555) 123-4567", {}) is None


class TestUploads:
    """Test file type and size rules on file and photo fields."""

    def test_wrong_extension(self):
        """Should reject files with a disallowed extension."""
        field = make_field("doc", "Attachment", FieldType.FILE, allowed_extensions=("pdf",))
        value = [{"name": "run.exe", "type": "application/octet-stream", "size": 10}]
        error = check_field(field, value)
        assert error.code == FieldErrorCode.FILE_WRONG_TYPE
        assert error.message == "Attachment must be one of: pdf"

    def test_too_large(self):
        """Should reject files above the size limit."""
        field = make_field("doc", "Attachment", FieldType.FILE, max_file_size_mb=1)
        value = [{"name": "big.pdf", "type": "application/pdf", "size": 2 * 1024 * 1024}]
        assert validate_field(field, value, {}) == "Attachment must be smaller than 1 MB"

    def test_acceptable_upload(self):
        """Should accept an allowed file under the limit."""
        field = make_field("doc", "Attachment", FieldType.FILE, allowed_extensions=(".PDF",), max_file_size_mb=1)
        value = [{"name": "ok.pdf", "type": "application/pdf", "size": 100}]
        assert validate_field(field, value, {}) is None


class TestLookup:
    """Test lookup fields against context data."""

    context = ContextData(company_id="c1", workers=[{"id": "w1"}, {"id": "w2"}])

    def test_unknown_id(self):
        """Should reject an id missing from the context."""
        field = make_field("supervisor", "Supervisor", FieldType.WORKER_SELECT)
        error = validate_lookup_value(field, "w9", self.context)
        assert error.code == FieldErrorCode.INVALID_OPTION
        assert error.message == "Please select a valid Supervisor"

    def test_known_id(self):
        """Should accept an id present in the context."""
        field = make_field("supervisor", "Supervisor", FieldType.WORKER_SELECT)
        assert validate_lookup_value(field, "w1", self.context) is None

    def test_without_context(self):
        """Should skip lookup checks without context data."""
        field = make_field("supervisor", "Supervisor", FieldType.WORKER_SELECT)
        assert validate_lookup_value(field, "w9", None) is None


class TestFormValidation:
    """Test visibility-gated validation over a field list."""

    def test_hidden_field_never_reported(self):
        """A hidden required field is not validated."""
        toggle = make_field("has_vehicle", "Has vehicle", FieldType.CHECKBOX, field_id="f_toggle")
        plate = make_field(
            "plate", "Plate", required=True,
            logic=ConditionalLogic("f_toggle", ConditionOperator.EQUALS, True),
        )
        lookup = {"f_toggle": "has_vehicle", "f_plate": "plate"}
        assert validate_form([toggle, plate], {"has_vehicle": False, "plate": ""}, lookup) == {}
        assert validate_form([toggle, plate], {"has_vehicle": True, "plate": ""}, lookup) == {
            "plate": "Plate is required"
        }


class TestCompletion:
    """Test completion percentage."""

    def test_nothing_required_is_complete(self):
        """Should report 100 when nothing is required."""
        assert calculate_completion_percentage([], {}, {}) == 100
        assert calculate_completion_percentage([make_field()], {}, {}) == 100

    def test_partial(self):
        """Should report the answered share."""
        fields = [make_field(c, c, required=True) for c in ("a", "b", "c")]
        assert get_completed_fields_count(fields, {"a": "x"}, {}) == (1, 3)
        assert calculate_completion_percentage(fields, {"a": "x"}, {}) == 33
        assert calculate_completion_percentage(fields, {"a": "x", "b": "y"}, {}) == 67

    def test_halves_round_up(self):
        """Should round halves up."""
        assert completion_percentage(1, 8) == 13
        assert completion_percentage(1, 2) == 50


def _template_with_repeat():
    return FormTemplate.from_dict({
        "id": "t1",
        "name": "Crew",
        "form_code": "crew",
        "sections": [
            {"id": "s1", "title": "Main", "fields": [
                {"id": "f_lead", "field_code": "lead", "label": "Lead", "field_type": "text",
                 "validation_rules": {"required": True}},
            ]},
            {"id": "s2", "title": "Crew", "order_index": 1, "is_repeatable": True,
             "min_repeats": 0, "max_repeats": 5, "fields": [
                {"id": "f_worker", "field_code": "worker", "label": "Worker", "field_type": "text",
                 "validation_rules": {"required": True}},
            ]},
        ],
    })


class TestFormValidator:
    """Test template-wide validation."""

    def test_repeatable_fields_not_validated_at_top_level(self):
        """Should not validate repeatable fields as top-level values."""
        result = FormValidator(_template_with_repeat()).validate({"lead": "Ann"})
        assert result.is_valid is True

    def test_instance_errors_are_keyed_by_instance(self):
        """Should key instance errors by instance id."""
        instance = SectionInstance(instance_id="inst_1", section_id="s2", index=0, values={"worker": ""})
        result = FormValidator(_template_with_repeat()).validate({"lead": ""}, {"s2": [instance]})
        assert result.error_map == {"lead": "Lead is required", "inst_1.worker": "Worker is required"}
        assert result.missing_fields == ["lead", "inst_1.worker"]
        assert result.errors[1].instance_id == "inst_1"

    def test_result_to_dict(self):
        """Should serialize the result."""
        result = ValidationResult.from_errors([])
        assert result.to_dict() == {"isValid": True, "errors": [], "missingFields": [], "invalidFields": []}
