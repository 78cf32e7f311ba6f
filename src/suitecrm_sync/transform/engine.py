"""Data transformer -- survey answers to CRM-compatible attribute values.

Pure functions, no I/O. The full per-answer pipeline is

    transform_value(apply_transform_rule(raw, rule, ctx), question_type, field_def)

followed by validate_value(). transform_response() runs that pipeline for
every mapping of a response and groups the results by CRM module.
"""

from __future__ import annotations

import math
from collections.abc import Mapping, Sequence
from datetime import date, datetime
from typing import Any

import structlog
from dateutil import parser as date_parser
from email_validator import EmailNotValidError, validate_email
from pydantic import BaseModel, Field

from src.suitecrm_sync.crm.schemas import CrmFieldDefinition
from src.suitecrm_sync.mappings.schemas import FieldMapping, QuestionInfo
from src.suitecrm_sync.transform.rules import (
    TransformContext,
    apply_transform_rule,
    is_auto_generate_rule,
)

logger = structlog.get_logger(__name__)

TRUTHY_TOKENS: frozenset[str] = frozenset({"y", "yes", "1", "true", "on"})


# ── Result Models ───────────────────────────────────────────────────────────


class ValidationResult(BaseModel):
    """Outcome of validate_value()."""

    valid: bool
    errors: list[str] = Field(default_factory=list)


class TransformResult(BaseModel):
    """Outcome of transform_response().

    ``data`` only holds values that passed validation; every rejected
    field contributes a message to ``errors`` and to its module's entry
    in ``field_errors``.
    """

    data: dict[str, dict[str, Any]] = Field(default_factory=dict)
    errors: list[str] = Field(default_factory=list)
    field_errors: dict[str, list[str]] = Field(default_factory=dict)

    @property
    def valid(self) -> bool:
        return not self.errors


# ── Helpers ─────────────────────────────────────────────────────────────────


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def is_valid_email(value: str) -> bool:
    """Bare addresses only; the ``Name <addr>`` display form is rejected."""
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        return False
    return True


def _label(field_def: CrmFieldDefinition) -> str:
    return field_def.label or field_def.name


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in TRUTHY_TOKENS


def _to_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return int(value)
    try:
        return int(str(value).strip())
    except ValueError:
        pass
    number = _to_float(value)
    return int(number) if number is not None else None


def _to_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return float(value)
    try:
        number = float(str(value).strip())
    except ValueError:
        return None
    # nan/inf parse as floats but are not JSON-serializable
    return number if math.isfinite(number) else None


def _to_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    try:
        return date_parser.parse(str(value).strip())
    except (ValueError, OverflowError, TypeError):
        return None


def _to_multienum(value: Any) -> str:
    if isinstance(value, (list, tuple, set)):
        tokens = [str(v).strip() for v in value]
    else:
        tokens = [t.strip() for t in str(value).split("|")]
    tokens = [t for t in tokens if t]
    return ",".join(f"^{t}^" for t in tokens)


def _to_string(value: Any, max_length: int | None) -> str:
    if isinstance(value, (list, tuple)):
        text = ", ".join(str(v) for v in value)
    elif isinstance(value, bool):
        text = "1" if value else "0"
    else:
        text = str(value)
    if max_length and max_length > 0 and len(text) > max_length:
        text = text[:max_length]
    return text


# ── Transformer ─────────────────────────────────────────────────────────────


class DataTransformer:
    """Converts raw survey answers into values a CRM field accepts."""

    def transform_value(
        self,
        value: Any,
        question_type: str,
        field_def: CrmFieldDefinition,
    ) -> Any:
        """Coerce ``value`` to the target field's declared type.

        Empty input short-circuits to the field default (or None). Values
        that cannot be coerced (non-numeric for a number field, unparsable
        dates, malformed emails) become None.

        Args:
            value: Answer after its transform rule has been applied.
            question_type: Source question type code (advisory only).
            field_def: Target CRM field definition.
        """
        if _is_empty(value):
            return field_def.default if not _is_empty(field_def.default) else None

        field_type = (field_def.type or "varchar").lower()

        if field_type == "bool":
            return _to_bool(value)
        if field_type in ("int", "integer"):
            return _to_int(value)
        if field_type in ("float", "decimal", "currency"):
            return _to_float(value)
        if field_type == "date":
            parsed = _to_datetime(value)
            return parsed.strftime("%Y-%m-%d") if parsed else None
        if field_type == "datetime":
            parsed = _to_datetime(value)
            return parsed.strftime("%Y-%m-%d %H:%M:%S") if parsed else None
        if field_type == "multienum":
            return _to_multienum(value)
        if field_type == "email":
            text = str(value).strip()
            return text if is_valid_email(text) else None

        return _to_string(value, field_def.max_length)

    def validate_value(self, value: Any, field_def: CrmFieldDefinition) -> ValidationResult:
        """Check ``value`` against the field's constraints without changing it."""
        errors: list[str] = []
        label = _label(field_def)

        if field_def.required and _is_empty(value):
            errors.append(f"Field '{label}' is required")
            return ValidationResult(valid=False, errors=errors)

        if (
            isinstance(value, str)
            and field_def.max_length
            and len(value) > field_def.max_length
        ):
            errors.append(f"Field '{label}' exceeds maximum length of {field_def.max_length}")

        if (
            (field_def.type or "").lower() == "email"
            and not _is_empty(value)
            and not is_valid_email(str(value))
        ):
            errors.append(f"Field '{label}' must be a valid email address")

        return ValidationResult(valid=not errors, errors=errors)

    def transform(
        self,
        raw: Any,
        rule: str | None,
        question_type: str,
        field_def: CrmFieldDefinition,
        context: TransformContext | None = None,
    ) -> tuple[Any, list[str]]:
        """Run rule, coercion and validation for one answer.

        Returns:
            Tuple of (value, errors). A non-empty answer that coerces to
            None is reported as an error rather than sent as null.
        """
        value = apply_transform_rule(raw, rule, context)
        transformed = self.transform_value(value, question_type, field_def)

        if transformed is None and not _is_empty(value):
            field_type = (field_def.type or "varchar").lower()
            if field_type == "email":
                return None, [f"Field '{_label(field_def)}' must be a valid email address"]
            return None, [f"Field '{_label(field_def)}' could not be converted to {field_type}"]

        validation = self.validate_value(transformed, field_def)
        return transformed, validation.errors

    def transform_response(
        self,
        response: Mapping[str, Any],
        mappings: Mapping[int, Sequence[FieldMapping]],
        questions: Mapping[int, QuestionInfo],
        crm_fields: Mapping[str, Mapping[str, CrmFieldDefinition]],
        context: TransformContext | None = None,
    ) -> TransformResult:
        """Transform a completed response into per-module attribute sets.

        Args:
            response: Question code -> answer.
            mappings: Question id -> its field mappings.
            questions: Question id -> question metadata (code, type).
            crm_fields: Module -> field name -> definition. Fields missing
                here are treated as plain varchar.
            context: Survey/response ids for auto-generate rules.

        Returns:
            TransformResult with data grouped as {module: {field: value}}.
        """
        result = TransformResult()

        for question_id, mapping_list in mappings.items():
            question = questions.get(int(question_id))
            question_type = question.type if question and question.type else "S"
            answer = None
            if question is not None:
                answer = response.get(question.code)

            for mapping in mapping_list:
                module = mapping.crm_module
                field_name = mapping.crm_field_name
                rule = mapping.transform_rule

                if not is_auto_generate_rule(rule) and _is_empty(answer):
                    continue

                field_def = crm_fields.get(module, {}).get(field_name) or CrmFieldDefinition(
                    name=field_name,
                    module=module,
                    type=mapping.crm_field_type or "varchar",
                    label=mapping.crm_field_label or field_name,
                )

                value, errors = self.transform(answer, rule, question_type, field_def, context)
                if errors:
                    result.errors.extend(errors)
                    result.field_errors.setdefault(module, []).extend(errors)
                    logger.debug(
                        "transform.field_rejected",
                        module=module,
                        field=field_name,
                        question_id=question_id,
                        errors=errors,
                    )
                    continue
                if value is None:
                    continue

                result.data.setdefault(module, {})[field_name] = value

        return result
