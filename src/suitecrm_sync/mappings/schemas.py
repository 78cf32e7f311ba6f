"""Pydantic schemas for field mappings, survey questions and the sync log.

FieldMappingCreate accepts both the editor's JSON keys (module, field,
label, type, transformRule) and the column names (crm_module,
crm_field_name, ...), so a question attribute blob can be validated
directly.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class SyncStatus(str, Enum):
    """Outcome of one (response, module) sync attempt."""

    success = "success"
    failed = "failed"
    partial = "partial"


class QuestionInfo(BaseModel):
    """Survey question metadata needed to read and convert an answer."""

    qid: int
    code: str
    type: str = "S"
    text: str = ""


# ── Field Mappings ──────────────────────────────────────────────────────────


class FieldMappingCreate(BaseModel):
    """One question -> CRM field target, as submitted by the mapping editor."""

    model_config = ConfigDict(populate_by_name=True)

    crm_module: str = Field(
        min_length=1,
        max_length=100,
        validation_alias=AliasChoices("crm_module", "module"),
    )
    crm_field_name: str = Field(
        min_length=1,
        max_length=100,
        validation_alias=AliasChoices("crm_field_name", "field"),
    )
    crm_field_label: str | None = Field(
        default=None,
        max_length=255,
        validation_alias=AliasChoices("crm_field_label", "label"),
    )
    crm_field_type: str | None = Field(
        default=None,
        max_length=50,
        validation_alias=AliasChoices("crm_field_type", "type"),
    )
    transform_rule: str | None = Field(
        default=None,
        max_length=100,
        validation_alias=AliasChoices("transform_rule", "transformRule"),
    )

    @field_validator("crm_field_label", "crm_field_type", "transform_rule", mode="before")
    @classmethod
    def _blank_to_none(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v


class FieldMapping(BaseModel):
    """A persisted field mapping row."""

    id: int | None = None
    survey_id: int
    question_id: int
    crm_module: str
    crm_field_name: str
    crm_field_label: str | None = None
    crm_field_type: str | None = None
    transform_rule: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_json_entry(self) -> dict[str, Any]:
        """Editor-format dict ({module, field, label, type, transformRule})."""
        return {
            "module": self.crm_module,
            "field": self.crm_field_name,
            "label": self.crm_field_label or "",
            "type": self.crm_field_type or "",
            "transformRule": self.transform_rule or "",
        }


# ── Sync Log ────────────────────────────────────────────────────────────────


class SyncLogCreate(BaseModel):
    """Fields written for one sync attempt."""

    response_id: int
    survey_id: int
    crm_module: str
    status: SyncStatus
    crm_record_id: str | None = None
    request_payload: dict[str, Any] | None = None
    response_data: dict[str, Any] | None = None
    error_message: str | None = None
    field_mappings_used: list[dict[str, Any]] | None = None


class SyncLogEntry(SyncLogCreate):
    """A persisted, immutable sync log row."""

    id: int
    synced_at: datetime | None = None


class SyncStats(BaseModel):
    """Per-survey sync counters."""

    total: int = 0
    success: int = 0
    failed: int = 0
    partial: int = 0
    last_sync: datetime | None = None
