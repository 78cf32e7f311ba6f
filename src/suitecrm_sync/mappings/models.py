"""Persistence models for field mappings and the sync audit log.

- FieldMappingModel: one row per question -> CRM module field target,
  unique on (question_id, crm_module, crm_field_name)
- SyncLogModel: append-only record of each (response, module) attempt

Column types are kept portable (generic JSON, Integer keys) so the same
models run on PostgreSQL, MySQL and SQLite.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from src.suitecrm_sync.core.database import Base

MAPPINGS_TABLE = "survey_crm_mappings"
SYNC_LOG_TABLE = "survey_crm_sync_log"
MAPPING_UNIQUE_KEY = "unique_question_field_mapping"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FieldMappingModel(Base):
    """Question -> CRM field mapping (denormalized projection of the editor JSON)."""

    __tablename__ = MAPPINGS_TABLE
    __table_args__ = (
        UniqueConstraint(
            "question_id",
            "crm_module",
            "crm_field_name",
            name=MAPPING_UNIQUE_KEY,
        ),
        Index("idx_survey", "survey_id"),
        Index("idx_module", "crm_module"),
        Index("idx_question", "question_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    survey_id: Mapped[int] = mapped_column(Integer, nullable=False)
    question_id: Mapped[int] = mapped_column(Integer, nullable=False)
    crm_module: Mapped[str] = mapped_column(String(100), nullable=False)
    crm_field_name: Mapped[str] = mapped_column(String(100), nullable=False)
    crm_field_label: Mapped[str | None] = mapped_column(String(255), nullable=True)
    crm_field_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    transform_rule: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
        onupdate=_utcnow,
    )


class SyncLogModel(Base):
    """One CRM record-creation attempt. Never updated after insert."""

    __tablename__ = SYNC_LOG_TABLE
    __table_args__ = (
        Index("idx_response", "response_id"),
        Index("idx_log_survey", "survey_id"),
        Index("idx_status", "sync_status"),
        Index("idx_synced_at", "synced_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    response_id: Mapped[int] = mapped_column(Integer, nullable=False)
    survey_id: Mapped[int] = mapped_column(Integer, nullable=False)
    crm_module: Mapped[str] = mapped_column(String(100), nullable=False)
    crm_record_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    sync_status: Mapped[str] = mapped_column(String(20), nullable=False)
    request_payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    response_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    field_mappings_used: Mapped[list | None] = mapped_column(JSON, nullable=True)
    synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        server_default=func.now(),
    )
