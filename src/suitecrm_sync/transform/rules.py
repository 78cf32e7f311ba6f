"""Transformation and auto-generation rules for mapped answers.

Two disjoint rule families:
- value rules reshape a non-empty answer (split a full name, change case,
  pick apart an email address); empty input passes through untouched
- auto-generate rules ignore the answer and always produce a value
  (UUIDs, reference numbers, timestamps, survey references)

Unknown rules, an empty rule and "none" are pass-through.
"""

from __future__ import annotations

import random
import re
import time
import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel

# ── Rule catalogue ──────────────────────────────────────────────────────────

TRANSFORM_RULES: dict[str, str] = {
    "none": "No transformation",
    "split_first": "First word (e.g., first name from full name)",
    "split_last": "Last word (e.g., last name from full name)",
    "split_middle": "Middle words (e.g., middle name)",
    "uppercase": "Convert to UPPERCASE",
    "lowercase": "Convert to lowercase",
    "trim": "Remove leading/trailing whitespace",
    "email_domain": "Extract domain from email",
    "email_local": "Extract local part from email",
    "auto_uuid": "Auto-generate UUID",
    "auto_number": "Auto-generate sequential number",
    "auto_date": "Current date (Y-m-d)",
    "auto_datetime": "Current date and time",
    "auto_timestamp": "Current Unix timestamp",
    "auto_survey_ref": "Survey reference (LS-{surveyId}-{responseId})",
}

AUTO_GENERATE_RULES: frozenset[str] = frozenset(
    {
        "auto_uuid",
        "auto_number",
        "auto_date",
        "auto_datetime",
        "auto_timestamp",
        "auto_survey_ref",
    }
)

SURVEY_REF_PREFIX = "LS"

_NAME_SEPARATORS = re.compile(r"[\s,]+")
_WHITESPACE = re.compile(r"\s+")


class TransformContext(BaseModel):
    """Per-invocation identifiers used by auto-generate rules."""

    survey_id: int | str | None = None
    response_id: int | str | None = None


def get_transform_rules() -> dict[str, str]:
    """Return the rule -> description catalogue (for admin UIs)."""
    return dict(TRANSFORM_RULES)


def is_auto_generate_rule(rule: str | None) -> bool:
    """True when ``rule`` produces its value without reading the answer."""
    return bool(rule) and rule in AUTO_GENERATE_RULES


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == []


def _tokens(value: str, pattern: re.Pattern[str]) -> list[str]:
    return [part for part in pattern.split(value.strip()) if part]


def _auto_value(rule: str, context: TransformContext, now: datetime) -> str | int:
    if rule == "auto_uuid":
        return str(uuid.uuid4())
    if rule == "auto_number":
        return now.strftime("%Y%m%d-%H%M%S") + "-" + f"{random.randint(1000, 9999)}"
    if rule == "auto_date":
        return now.strftime("%Y-%m-%d")
    if rule == "auto_datetime":
        return now.strftime("%Y-%m-%d %H:%M:%S")
    if rule == "auto_timestamp":
        return int(now.timestamp())
    # auto_survey_ref
    survey_id = context.survey_id if not _is_empty(context.survey_id) else "S"
    response_id = context.response_id if not _is_empty(context.response_id) else int(time.time())
    return f"{SURVEY_REF_PREFIX}-{survey_id}-{response_id}"


def apply_transform_rule(
    value: Any,
    rule: str | None,
    context: TransformContext | None = None,
    now: datetime | None = None,
) -> Any:
    """Apply a transformation or auto-generation rule to an answer.

    Args:
        value: Raw answer. Lists (multiple choice) are transformed per element.
        rule: Rule name from TRANSFORM_RULES; None/""/"none" is a no-op.
        context: Survey/response ids for auto_survey_ref.
        now: Clock override for the time-based auto rules.

    Returns:
        The transformed value. Auto rules never return None or "".
    """
    if not rule or rule == "none":
        return value

    if rule in AUTO_GENERATE_RULES:
        return _auto_value(rule, context or TransformContext(), now or datetime.now())

    if _is_empty(value):
        return value

    if rule not in TRANSFORM_RULES:
        return value

    if isinstance(value, (list, tuple)):
        # multiple-choice answers: apply per selected option
        return [apply_transform_rule(v, rule, context, now) for v in value]

    text = value if isinstance(value, str) else str(value)

    if rule == "split_first":
        parts = _tokens(text, _NAME_SEPARATORS)
        return parts[0] if parts else text
    if rule == "split_last":
        parts = _tokens(text, _NAME_SEPARATORS)
        return parts[-1] if parts else text
    if rule == "split_middle":
        parts = _tokens(text, _WHITESPACE)
        if len(parts) <= 2:
            return ""
        return " ".join(parts[1:-1])
    if rule == "uppercase":
        return text.upper()
    if rule == "lowercase":
        return text.lower()
    if rule == "trim":
        return text.strip()
    if rule == "email_domain":
        return text.split("@", 1)[1] if "@" in text else text
    if rule == "email_local":
        return text.split("@", 1)[0] if "@" in text else text

    return value
