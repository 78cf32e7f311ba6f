"""Mapping & sync-log repository -- async CRUD over the integration tables.

Provides MappingRepository with the session_factory callable pattern.
Mappings for a question are replaced wholesale inside one transaction;
the sync log is append-only (no update or delete paths exist).
"""

from __future__ import annotations

import json
from collections.abc import AsyncGenerator, Callable, Sequence
from typing import Any

import structlog
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.suitecrm_sync.errors import PersistenceError, ValidationError
from src.suitecrm_sync.mappings.models import FieldMappingModel, SyncLogModel
from src.suitecrm_sync.mappings.schemas import (
    FieldMapping,
    FieldMappingCreate,
    SyncLogCreate,
    SyncLogEntry,
    SyncStats,
    SyncStatus,
)

logger = structlog.get_logger(__name__)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_mapping(model: FieldMappingModel) -> FieldMapping:
    """Convert FieldMappingModel to FieldMapping schema."""
    return FieldMapping(
        id=model.id,
        survey_id=model.survey_id,
        question_id=model.question_id,
        crm_module=model.crm_module,
        crm_field_name=model.crm_field_name,
        crm_field_label=model.crm_field_label,
        crm_field_type=model.crm_field_type,
        transform_rule=model.transform_rule,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _model_to_log(model: SyncLogModel) -> SyncLogEntry:
    """Convert SyncLogModel to SyncLogEntry schema."""
    return SyncLogEntry(
        id=model.id,
        response_id=model.response_id,
        survey_id=model.survey_id,
        crm_module=model.crm_module,
        crm_record_id=model.crm_record_id,
        status=SyncStatus(model.sync_status),
        request_payload=model.request_payload,
        response_data=model.response_data,
        error_message=model.error_message,
        field_mappings_used=model.field_mappings_used,
        synced_at=model.synced_at,
    )


def parse_mappings_json(raw: str | list | None) -> list[FieldMappingCreate]:
    """Parse the editor's JSON mapping list.

    Empty input, "" and "[]" all mean "no mappings". Entries without a
    module or field are ignored.

    Raises:
        ValidationError: If the payload is not a JSON list.
    """
    if raw is None:
        return []
    if isinstance(raw, str):
        if not raw.strip():
            return []
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ValidationError([f"Invalid mapping JSON: {exc.msg}"]) from exc
    if not isinstance(raw, list):
        raise ValidationError(["Mapping JSON must be a list"])

    parsed: list[FieldMappingCreate] = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        try:
            parsed.append(FieldMappingCreate.model_validate(entry))
        except PydanticValidationError:
            logger.warning("mappings.json_entry_skipped", entry=entry)
    return parsed


# ── Repository ──────────────────────────────────────────────────────────────


class MappingRepository:
    """Async persistence for field mappings and the sync audit log.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Mappings: writes ────────────────────────────────────────────────────

    async def save_mapping(
        self, survey_id: int, question_id: int, mapping: FieldMappingCreate
    ) -> FieldMapping:
        """Insert or update a single mapping keyed by (question, module, field)."""
        async for session in self._session_factory():
            try:
                stmt = select(FieldMappingModel).where(
                    FieldMappingModel.question_id == question_id,
                    FieldMappingModel.crm_module == mapping.crm_module,
                    FieldMappingModel.crm_field_name == mapping.crm_field_name,
                )
                model = (await session.execute(stmt)).scalar_one_or_none()
                if model is None:
                    model = FieldMappingModel(
                        survey_id=survey_id,
                        question_id=question_id,
                        crm_module=mapping.crm_module,
                        crm_field_name=mapping.crm_field_name,
                    )
                    session.add(model)
                model.survey_id = survey_id
                model.crm_field_label = mapping.crm_field_label
                model.crm_field_type = mapping.crm_field_type
                model.transform_rule = mapping.transform_rule
                await session.commit()
                await session.refresh(model)
            except SQLAlchemyError as exc:
                await session.rollback()
                logger.error("mappings.save_failed", question_id=question_id, error=str(exc))
                raise PersistenceError(f"Failed to save mapping: {exc}") from exc
            return _model_to_mapping(model)

    async def save_mappings(
        self,
        survey_id: int,
        question_id: int,
        mappings: Sequence[FieldMappingCreate],
    ) -> list[FieldMapping]:
        """Replace every mapping of a question in one transaction.

        An empty ``mappings`` list deletes the question's mappings.

        Raises:
            PersistenceError: If any statement fails; nothing is changed.
        """
        if not mappings:
            await self.delete_mapping(question_id)
            return []

        async for session in self._session_factory():
            try:
                async with session.begin():
                    await session.execute(
                        delete(FieldMappingModel).where(
                            FieldMappingModel.question_id == question_id
                        )
                    )
                    models = [
                        FieldMappingModel(
                            survey_id=survey_id,
                            question_id=question_id,
                            crm_module=m.crm_module,
                            crm_field_name=m.crm_field_name,
                            crm_field_label=m.crm_field_label,
                            crm_field_type=m.crm_field_type,
                            transform_rule=m.transform_rule,
                        )
                        for m in mappings
                    ]
                    session.add_all(models)
                    await session.flush()
            except SQLAlchemyError as exc:
                logger.error(
                    "mappings.replace_failed",
                    survey_id=survey_id,
                    question_id=question_id,
                    error=str(exc),
                )
                raise PersistenceError(
                    f"Failed to save mappings for question {question_id}: {exc}"
                ) from exc

            logger.info(
                "mappings.replaced",
                survey_id=survey_id,
                question_id=question_id,
                count=len(models),
            )
            return [_model_to_mapping(m) for m in models]

    async def delete_mapping(self, question_id: int) -> int:
        """Delete all mappings of a question. Returns the number of rows removed."""
        async for session in self._session_factory():
            try:
                result = await session.execute(
                    delete(FieldMappingModel).where(
                        FieldMappingModel.question_id == question_id
                    )
                )
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceError(f"Failed to delete mappings: {exc}") from exc
            return result.rowcount or 0

    async def delete_single_mapping(
        self, question_id: int, crm_module: str, crm_field_name: str
    ) -> bool:
        """Delete one (question, module, field) mapping. True if a row was removed."""
        async for session in self._session_factory():
            try:
                result = await session.execute(
                    delete(FieldMappingModel).where(
                        FieldMappingModel.question_id == question_id,
                        FieldMappingModel.crm_module == crm_module,
                        FieldMappingModel.crm_field_name == crm_field_name,
                    )
                )
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceError(f"Failed to delete mapping: {exc}") from exc
            return bool(result.rowcount)

    async def sync_from_json(
        self, survey_id: int, question_id: int, mappings_json: str | list | None
    ) -> list[FieldMapping]:
        """Project a question's editor JSON onto the relational table."""
        mappings = parse_mappings_json(mappings_json)
        return await self.save_mappings(survey_id, question_id, mappings)

    # ── Mappings: reads ─────────────────────────────────────────────────────

    async def get_mappings(self, question_id: int) -> list[FieldMapping]:
        """All mappings of a question, in insertion order."""
        async for session in self._session_factory():
            stmt = (
                select(FieldMappingModel)
                .where(FieldMappingModel.question_id == question_id)
                .order_by(FieldMappingModel.id)
            )
            result = await session.execute(stmt)
            return [_model_to_mapping(m) for m in result.scalars().all()]

    async def get_mapping(self, question_id: int) -> FieldMapping | None:
        """First mapping of a question, or None."""
        mappings = await self.get_mappings(question_id)
        return mappings[0] if mappings else None

    async def get_mappings_for_survey_flat(self, survey_id: int) -> list[FieldMapping]:
        async for session in self._session_factory():
            stmt = (
                select(FieldMappingModel)
                .where(FieldMappingModel.survey_id == survey_id)
                .order_by(FieldMappingModel.question_id, FieldMappingModel.id)
            )
            result = await session.execute(stmt)
            return [_model_to_mapping(m) for m in result.scalars().all()]

    async def get_mappings_for_survey(self, survey_id: int) -> dict[int, list[FieldMapping]]:
        """Survey mappings grouped by question id."""
        grouped: dict[int, list[FieldMapping]] = {}
        for mapping in await self.get_mappings_for_survey_flat(survey_id):
            grouped.setdefault(mapping.question_id, []).append(mapping)
        return grouped

    async def get_mappings_grouped_by_module(
        self, survey_id: int
    ) -> dict[str, dict[int, list[FieldMapping]]]:
        """Survey mappings as {module: {question_id: [mappings]}}."""
        grouped: dict[str, dict[int, list[FieldMapping]]] = {}
        for mapping in await self.get_mappings_for_survey_flat(survey_id):
            grouped.setdefault(mapping.crm_module, {}).setdefault(
                mapping.question_id, []
            ).append(mapping)
        return grouped

    # ── Sync log ────────────────────────────────────────────────────────────

    async def log_sync(self, entry: SyncLogCreate) -> int:
        """Append one sync log row and return its id."""
        async for session in self._session_factory():
            model = SyncLogModel(
                response_id=entry.response_id,
                survey_id=entry.survey_id,
                crm_module=entry.crm_module,
                crm_record_id=entry.crm_record_id,
                sync_status=entry.status.value,
                request_payload=entry.request_payload,
                response_data=entry.response_data,
                error_message=entry.error_message,
                field_mappings_used=entry.field_mappings_used,
            )
            try:
                session.add(model)
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                raise PersistenceError(f"Failed to write sync log: {exc}") from exc
            return model.id

    async def get_sync_logs(
        self,
        survey_id: int,
        limit: int = 50,
        offset: int = 0,
        status: SyncStatus | None = None,
    ) -> list[SyncLogEntry]:
        """Most recent sync attempts for a survey, newest first."""
        async for session in self._session_factory():
            stmt = select(SyncLogModel).where(SyncLogModel.survey_id == survey_id)
            if status is not None:
                stmt = stmt.where(SyncLogModel.sync_status == status.value)
            stmt = (
                stmt.order_by(SyncLogModel.synced_at.desc(), SyncLogModel.id.desc())
                .limit(limit)
                .offset(offset)
            )
            result = await session.execute(stmt)
            return [_model_to_log(m) for m in result.scalars().all()]

    async def get_sync_stats(self, survey_id: int) -> SyncStats:
        """Per-status counts and the latest attempt time (zeros when empty)."""
        async for session in self._session_factory():
            counts_stmt = (
                select(SyncLogModel.sync_status, func.count())
                .where(SyncLogModel.survey_id == survey_id)
                .group_by(SyncLogModel.sync_status)
            )
            counts: dict[str, Any] = {
                status: count for status, count in (await session.execute(counts_stmt)).all()
            }
            last_sync = (
                await session.execute(
                    select(func.max(SyncLogModel.synced_at)).where(
                        SyncLogModel.survey_id == survey_id
                    )
                )
            ).scalar_one_or_none()

            return SyncStats(
                total=sum(counts.values()),
                success=counts.get(SyncStatus.success.value, 0),
                failed=counts.get(SyncStatus.failed.value, 0),
                partial=counts.get(SyncStatus.partial.value, 0),
                last_sync=last_sync,
            )
