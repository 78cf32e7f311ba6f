"""Survey-engine notifications and the handler registry.

Exports:
    EventKind: Enum of handled notification kinds.
    SurveyCompleteEvent: A respondent completed a survey.
    QuestionSavedEvent: A question's mapping JSON was saved.
    EventRegistry: Explicit EventKind -> handler table.
"""

from __future__ import annotations

from src.suitecrm_sync.events.registry import EventRegistry
from src.suitecrm_sync.events.schemas import (
    EventKind,
    QuestionSavedEvent,
    SurveyCompleteEvent,
    SurveyEvent,
)

__all__ = [
    "EventKind",
    "EventRegistry",
    "QuestionSavedEvent",
    "SurveyCompleteEvent",
    "SurveyEvent",
]
