"""Unit tests for DataTransformer and the compatibility matrix."""

from __future__ import annotations

import re

import pytest

from src.suitecrm_sync.crm.schemas import CrmFieldDefinition
from src.suitecrm_sync.mappings.schemas import FieldMapping, QuestionInfo
from src.suitecrm_sync.transform.compatibility import (
    get_compatibility_warning,
    get_compatible_field_types,
    is_compatible,
    question_type_name,
)
from src.suitecrm_sync.transform.engine import DataTransformer
from src.suitecrm_sync.transform.rules import TransformContext

UUID4 = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-4[0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$")


# ── Helpers ────────────────────────────────────────────────────────────────


def _field(name: str = "field", type: str = "varchar", **overrides) -> CrmFieldDefinition:
    defaults = {"name": name, "module": "Leads", "type": type, "db_type": type, "label": name.title()}
    defaults.update(overrides)
    return CrmFieldDefinition(**defaults)


def _mapping(question_id: int, field: str, module: str = "Leads", rule: str | None = None) -> FieldMapping:
    return FieldMapping(
        survey_id=1,
        question_id=question_id,
        crm_module=module,
        crm_field_name=field,
        transform_rule=rule,
    )


@pytest.fixture
def transformer() -> DataTransformer:
    return DataTransformer()


# ── transform_value ────────────────────────────────────────────────────────


class TestTransformValue:
    @pytest.mark.parametrize("raw", ["Y", "Yes", "yes", "1", "true", "TRUE", "on", True])
    def test_bool_truthy(self, transformer, raw):
        assert transformer.transform_value(raw, "Y", _field(type="bool")) is True

    @pytest.mark.parametrize("raw", ["N", "no", "0", "false", "off", False])
    def test_bool_falsy(self, transformer, raw):
        assert transformer.transform_value(raw, "Y", _field(type="bool")) is False

    def test_integer(self, transformer):
        assert transformer.transform_value("42", "N", _field(type="int")) == 42
        assert transformer.transform_value("42.9", "N", _field(type="integer")) == 42
        assert transformer.transform_value("forty", "N", _field(type="int")) is None

    @pytest.mark.parametrize("field_type", ["float", "decimal", "currency"])
    def test_float_family(self, transformer, field_type):
        assert transformer.transform_value("19.95", "N", _field(type=field_type)) == pytest.approx(19.95)
        assert transformer.transform_value("n/a", "N", _field(type=field_type)) is None

    @pytest.mark.parametrize("raw", ["nan", "NaN", "inf", "-Infinity", "1e999"])
    @pytest.mark.parametrize("field_type", ["float", "currency", "int"])
    def test_non_finite_numbers_rejected(self, transformer, raw, field_type):
        assert transformer.transform_value(raw, "N", _field(type=field_type)) is None

    def test_date_parsing(self, transformer):
        assert transformer.transform_value("2026-02-01", "D", _field(type="date")) == "2026-02-01"
        assert transformer.transform_value("March 5, 2026", "D", _field(type="date")) == "2026-03-05"
        assert transformer.transform_value("not a date", "D", _field(type="date")) is None

    def test_datetime_parsing(self, transformer):
        value = transformer.transform_value("2026-02-01 13:45", "D", _field(type="datetime"))
        assert value == "2026-02-01 13:45:00"

    def test_multienum_from_list_and_pipe_string(self, transformer):
        field = _field(type="multienum")
        assert transformer.transform_value(["a", "b"], "M", field) == "^a^,^b^"
        assert transformer.transform_value("a|b|c", "M", field) == "^a^,^b^,^c^"

    def test_email(self, transformer):
        field = _field(type="email")
        assert transformer.transform_value("  jane@acme.io ", "S", field) == "jane@acme.io"
        assert transformer.transform_value("not-an-email", "S", field) is None

    def test_display_name_email_rejected(self, transformer):
        field = _field(type="email")
        assert transformer.transform_value("Jane Doe <jane@x.com>", "S", field) is None
        assert transformer.validate_value("Jane Doe <jane@x.com>", field).valid is False

    def test_string_truncated_to_max_length(self, transformer):
        field = _field(max_length=5)
        assert transformer.transform_value("abcdefgh", "S", field) == "abcde"

    def test_string_without_limit(self, transformer):
        assert transformer.transform_value(12, "N", _field()) == "12"

    def test_list_joined_for_text(self, transformer):
        assert transformer.transform_value(["x", "y"], "M", _field(type="text")) == "x, y"

    def test_empty_uses_field_default(self, transformer):
        field = _field(type="bool", default="0")
        assert transformer.transform_value("", "Y", field) == "0"
        assert transformer.transform_value(None, "S", _field()) is None

    def test_incompatible_types_still_converted(self, transformer):
        # Short text into an int field is only a warning
        assert transformer.transform_value("7", "S", _field(type="int")) == 7


# ── validate_value ─────────────────────────────────────────────────────────


class TestValidateValue:
    def test_required_missing(self, transformer):
        result = transformer.validate_value(None, _field(name="last_name", required=True, label="Last Name"))
        assert result.valid is False
        assert result.errors == ["Field 'Last Name' is required"]

    def test_length_overflow(self, transformer):
        result = transformer.validate_value("abcdef", _field(label="Title", max_length=3))
        assert result.errors == ["Field 'Title' exceeds maximum length of 3"]

    def test_malformed_email(self, transformer):
        result = transformer.validate_value("nope", _field(type="email", label="Email"))
        assert result.errors == ["Field 'Email' must be a valid email address"]

    def test_valid_value(self, transformer):
        result = transformer.validate_value("ok", _field(required=True, max_length=10))
        assert result.valid is True
        assert result.errors == []

    def test_does_not_mutate(self, transformer):
        value = ["a", "b"]
        transformer.validate_value(value, _field())
        assert value == ["a", "b"]

    def test_label_falls_back_to_name(self, transformer):
        result = transformer.validate_value("", _field(name="account_name", label="", required=True))
        assert result.errors == ["Field 'account_name' is required"]

    def test_non_finite_answer_reported_not_sent(self, transformer):
        field = _field(name="budget_c", type="float", label="Budget")

        value, errors = transformer.transform("NaN", None, "N", field)

        assert value is None
        assert errors == ["Field 'Budget' could not be converted to float"]

    def test_list_answer_rule_then_text(self, transformer):
        assert transformer.transform(["sq001", "sq003"], "uppercase", "M", _field()) == ("SQ001, SQ003", [])


# ── transform_response ─────────────────────────────────────────────────────


class TestTransformResponse:
    def _questions(self) -> dict[int, QuestionInfo]:
        return {
            10: QuestionInfo(qid=10, code="firstName", type="S"),
            11: QuestionInfo(qid=11, code="lastName", type="S"),
            12: QuestionInfo(qid=12, code="email", type="S"),
            13: QuestionInfo(qid=13, code="fullName", type="S"),
            14: QuestionInfo(qid=14, code="unanswered", type="S"),
        }

    def _crm_fields(self) -> dict[str, dict[str, CrmFieldDefinition]]:
        return {
            "Leads": {
                "first_name": _field("first_name", max_length=100, label="First Name"),
                "last_name": _field("last_name", max_length=100, required=True, label="Last Name"),
                "email1": _field("email1", type="email", label="Email Address"),
                "refered_by": _field("refered_by", max_length=100),
                "title": _field("title", max_length=3, label="Title"),
            },
        }

    def test_basic_lead(self, transformer):
        response = {"firstName": "Jane", "lastName": "Doe", "email": "jane@x.com"}
        mappings = {
            10: [_mapping(10, "first_name")],
            11: [_mapping(11, "last_name")],
            12: [_mapping(12, "email1")],
        }

        result = transformer.transform_response(
            response, mappings, self._questions(), self._crm_fields(), TransformContext(survey_id=1, response_id=5)
        )

        assert result.data["Leads"] == {"first_name": "Jane", "last_name": "Doe", "email1": "jane@x.com"}
        assert result.errors == []
        assert result.valid is True

    def test_one_question_fans_out(self, transformer):
        response = {"fullName": "John A. Doe"}
        mappings = {
            13: [
                _mapping(13, "first_name", rule="split_first"),
                _mapping(13, "last_name", rule="split_last"),
                _mapping(13, "name", module="Cases", rule="uppercase"),
            ]
        }

        result = transformer.transform_response(response, mappings, self._questions(), self._crm_fields())

        assert result.data["Leads"] == {"first_name": "John", "last_name": "Doe"}
        assert result.data["Cases"] == {"name": "JOHN A. DOE"}

    def test_auto_rule_runs_without_answer(self, transformer):
        mappings = {
            14: [
                _mapping(14, "first_name", rule="auto_uuid"),
                _mapping(14, "refered_by", rule="auto_survey_ref"),
            ]
        }

        result = transformer.transform_response(
            {}, mappings, self._questions(), self._crm_fields(), TransformContext(survey_id=7, response_id=9)
        )

        assert UUID4.match(result.data["Leads"]["first_name"])
        assert result.data["Leads"]["refered_by"] == "LS-7-9"

    def test_regular_rule_skips_empty_answer(self, transformer):
        response = {"firstName": "", "lastName": "Doe"}
        mappings = {10: [_mapping(10, "first_name")], 11: [_mapping(11, "last_name")]}

        result = transformer.transform_response(response, mappings, self._questions(), self._crm_fields())

        assert result.data["Leads"] == {"last_name": "Doe"}
        assert result.errors == []

    def test_invalid_field_excluded_and_reported(self, transformer):
        response = {"firstName": "Jane", "email": "broken-address"}
        mappings = {10: [_mapping(10, "first_name")], 12: [_mapping(12, "email1")]}

        result = transformer.transform_response(response, mappings, self._questions(), self._crm_fields())

        assert result.data["Leads"] == {"first_name": "Jane"}
        assert result.errors == ["Field 'Email Address' must be a valid email address"]
        assert result.field_errors == {"Leads": result.errors}
        assert result.valid is False

    def test_unknown_field_treated_as_varchar(self, transformer):
        response = {"firstName": "Jane"}
        mappings = {10: [_mapping(10, "custom_field_c")]}

        result = transformer.transform_response(response, mappings, self._questions(), self._crm_fields())

        assert result.data["Leads"] == {"custom_field_c": "Jane"}

    def test_unknown_question_only_runs_auto_rules(self, transformer):
        mappings = {
            99: [_mapping(99, "first_name"), _mapping(99, "refered_by", rule="auto_date")],
        }

        result = transformer.transform_response({"x": "y"}, mappings, self._questions(), self._crm_fields())

        assert list(result.data["Leads"]) == ["refered_by"]


# ── Compatibility matrix ──────────────────────────────────────────────────


class TestCompatibility:
    def test_short_text(self):
        assert get_compatible_field_types("S") == ["varchar", "text", "email", "phone", "url", "name"]
        assert is_compatible("S", "email")
        assert not is_compatible("S", "bool")

    def test_unknown_type_defaults(self):
        assert get_compatible_field_types("~") == ["varchar", "text"]
        assert question_type_name("~") == "Type ~"

    def test_warning_text(self):
        warning = get_compatibility_warning("Y", "date")
        assert warning == (
            "Question type 'Yes/No' may not be compatible with CRM field type 'date'. "
            "Recommended types: bool, varchar, enum"
        )

    def test_no_warning_when_compatible(self):
        assert get_compatibility_warning("D", "date") is None

    def test_text_display_accepts_nothing(self):
        assert get_compatible_field_types("X") == []
        assert not is_compatible("X", "varchar")
