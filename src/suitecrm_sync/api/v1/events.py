"""Webhook endpoints the survey engine calls on completion and question save.

Survey completion always answers 202: the sync outcome is observable via
the sync log, not the webhook response.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request, status

from src.suitecrm_sync.api.deps import get_integration, raise_for_sync_error, require_api_key
from src.suitecrm_sync.errors import SuiteCRMSyncError
from src.suitecrm_sync.events.schemas import QuestionSavedEvent, SurveyCompleteEvent
from src.suitecrm_sync.mappings.schemas import FieldMapping

router = APIRouter(prefix="/events", tags=["events"], dependencies=[Depends(require_api_key)])


@router.post("/survey-complete", status_code=status.HTTP_202_ACCEPTED)
async def survey_complete(event: SurveyCompleteEvent, request: Request) -> dict[str, Any]:
    service = get_integration(request)
    outcome = await service.handle(event)
    return outcome.model_dump(mode="json")


@router.post("/question-saved", response_model=list[FieldMapping])
async def question_saved(event: QuestionSavedEvent, request: Request) -> list[FieldMapping]:
    service = get_integration(request)
    try:
        return await service.handle(event)
    except SuiteCRMSyncError as exc:
        raise_for_sync_error(exc)
