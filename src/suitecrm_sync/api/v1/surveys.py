"""REST endpoints for per-survey mappings, sync logs and statistics."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel, Field

from src.suitecrm_sync.api.deps import get_integration, raise_for_sync_error, require_api_key
from src.suitecrm_sync.errors import SuiteCRMSyncError
from src.suitecrm_sync.mappings.schemas import (
    FieldMapping,
    FieldMappingCreate,
    SyncLogEntry,
    SyncStats,
    SyncStatus,
)

router = APIRouter(tags=["surveys"], dependencies=[Depends(require_api_key)])


class MappingsUpdate(BaseModel):
    """Full replacement set for one question (empty list clears it)."""

    mappings: list[FieldMappingCreate] = Field(default_factory=list)


class SurveyMappingsResponse(BaseModel):
    survey_id: int
    questions: dict[int, list[FieldMapping]]


@router.get("/surveys/{survey_id}/mappings", response_model=SurveyMappingsResponse)
async def get_survey_mappings(survey_id: int, request: Request) -> SurveyMappingsResponse:
    service = get_integration(request)
    grouped = await service.repository.get_mappings_for_survey(survey_id)
    return SurveyMappingsResponse(survey_id=survey_id, questions=grouped)


@router.get("/questions/{question_id}/mappings", response_model=list[FieldMapping])
async def get_question_mappings(question_id: int, request: Request) -> list[FieldMapping]:
    service = get_integration(request)
    return await service.repository.get_mappings(question_id)


@router.put(
    "/surveys/{survey_id}/questions/{question_id}/mappings",
    response_model=list[FieldMapping],
)
async def replace_question_mappings(
    survey_id: int,
    question_id: int,
    body: MappingsUpdate,
    request: Request,
) -> list[FieldMapping]:
    service = get_integration(request)
    try:
        return await service.repository.save_mappings(survey_id, question_id, body.mappings)
    except SuiteCRMSyncError as exc:
        raise_for_sync_error(exc)


@router.get("/surveys/{survey_id}/sync-logs", response_model=list[SyncLogEntry])
async def get_sync_logs(
    survey_id: int,
    request: Request,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    status: SyncStatus | None = Query(default=None),
) -> list[SyncLogEntry]:
    service = get_integration(request)
    return await service.repository.get_sync_logs(survey_id, limit=limit, offset=offset, status=status)


@router.get("/surveys/{survey_id}/sync-stats", response_model=SyncStats)
async def get_sync_stats(survey_id: int, request: Request) -> SyncStats:
    service = get_integration(request)
    return await service.repository.get_sync_stats(survey_id)


@router.put("/surveys/{survey_id}/enabled")
async def set_survey_enabled(
    survey_id: int,
    request: Request,
    enabled: bool = Query(),
) -> dict[str, Any]:
    """Per-survey switch (``survey_enabled``)."""
    service = get_integration(request)
    await service.store.set("survey_enabled", "1" if enabled else "0", scope="Survey", scope_id=survey_id)
    return {"survey_id": survey_id, "enabled": enabled}
