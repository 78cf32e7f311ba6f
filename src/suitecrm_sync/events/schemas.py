"""Event schemas for notifications coming from the survey engine.

The host engine calls one handler per event with a small payload; the
full response is fetched separately, never embedded in the event.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class EventKind(str, Enum):
    """Kinds of survey-engine notifications the integration handles."""

    SURVEY_COMPLETE = "survey.complete"
    QUESTION_SAVED = "question.saved"


class SurveyEvent(BaseModel):
    """Common envelope fields."""

    kind: EventKind
    survey_id: int
    received_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SurveyCompleteEvent(SurveyEvent):
    """A respondent submitted ``response_id``."""

    kind: EventKind = EventKind.SURVEY_COMPLETE
    response_id: int


class QuestionSavedEvent(SurveyEvent):
    """A question's mapping JSON attribute was saved in the editor.

    Attributes:
        question_id: The saved question.
        mappings_json: Raw attribute value (JSON list, "" or "[]" to clear).
    """

    kind: EventKind = EventKind.QUESTION_SAVED
    question_id: int
    mappings_json: str | list[dict[str, Any]] | None = None
