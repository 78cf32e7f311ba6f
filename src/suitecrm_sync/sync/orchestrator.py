"""Survey-completion orchestrator -- mappings in, CRM records and log rows out.

Per completed response:

    CheckEnabled -> LoadMappings -> ResolveQuestions -> per module:
        authenticate -> field definitions -> transform/validate
        -> create_record -> sync log row

Failure boundaries:
- loading mappings, questions or the response aborts the whole response
  (one ``failed`` row under module "Unknown")
- a module failure (auth, metadata, create_record) is logged as a
  ``failed`` row for that module and the next module still runs
- field-level transform/validation errors only drop the affected field;
  the record is created from the rest and logged as ``partial``
- a failing sync-log write is reported to the diagnostic log and dropped

The handler never raises.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

import structlog
from pydantic import BaseModel, Field

from src.suitecrm_sync.config import IntegrationConfig, as_flag
from src.suitecrm_sync.crm.client import SuiteCRMClient
from src.suitecrm_sync.crm.field_cache import FieldCacheManager
from src.suitecrm_sync.errors import SuiteCRMSyncError
from src.suitecrm_sync.events.registry import EventRegistry
from src.suitecrm_sync.events.schemas import (
    EventKind,
    QuestionSavedEvent,
    SurveyCompleteEvent,
)
from src.suitecrm_sync.mappings.repository import MappingRepository
from src.suitecrm_sync.mappings.schemas import (
    FieldMapping,
    QuestionInfo,
    SyncLogCreate,
    SyncStatus,
)
from src.suitecrm_sync.settings_store import SettingsStore
from src.suitecrm_sync.survey.engine import SurveyEngine, collapse_multiple_choice
from src.suitecrm_sync.transform.engine import DataTransformer
from src.suitecrm_sync.transform.rules import TransformContext

logger = structlog.get_logger(__name__)

UNKNOWN_MODULE = "Unknown"
SURVEY_SCOPE = "Survey"


class ModuleSyncResult(BaseModel):
    """What happened to one CRM module for one response."""

    module: str
    status: SyncStatus | None = None  # None: nothing to send, nothing logged
    record_id: str | None = None
    errors: list[str] = Field(default_factory=list)
    log_id: int | None = None


class SyncOutcome(BaseModel):
    """Summary of one survey-completion run."""

    survey_id: int
    response_id: int
    skipped_reason: str | None = None
    modules: list[ModuleSyncResult] = Field(default_factory=list)
    errors: list[str] = Field(default_factory=list)


def _mappings_used(mappings: Mapping[int, Sequence[FieldMapping]]) -> list[dict[str, Any]]:
    used: list[dict[str, Any]] = []
    for question_id, mapping_list in mappings.items():
        for mapping in mapping_list:
            used.append({"question_id": question_id, **mapping.to_json_entry()})
    return used


class SurveySyncOrchestrator:
    """Drives one completed response through the sync pipeline.

    Args:
        config: Integration options in effect for this run.
        store: Settings store (per-survey enablement).
        repository: Mapping & sync-log store.
        survey_engine: Source of responses and question metadata.
        client: SuiteCRM API client.
        field_cache: Field definition cache in front of ``client``.
        transformer: Answer -> CRM value converter.
    """

    def __init__(
        self,
        config: IntegrationConfig,
        store: SettingsStore,
        repository: MappingRepository,
        survey_engine: SurveyEngine,
        client: SuiteCRMClient,
        field_cache: FieldCacheManager,
        transformer: DataTransformer | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._repository = repository
        self._survey_engine = survey_engine
        self._client = client
        self._field_cache = field_cache
        self._transformer = transformer or DataTransformer()

    def register_handlers(self, registry: EventRegistry) -> None:
        registry.register(EventKind.SURVEY_COMPLETE, self.on_survey_complete)
        registry.register(EventKind.QUESTION_SAVED, self.on_question_saved)

    async def is_enabled_for_survey(self, survey_id: int) -> bool:
        """Global switch and the survey's own ``survey_enabled`` flag must both be on."""
        if not self._config.enabled:
            return False
        value = await self._store.get(
            "survey_enabled", scope=SURVEY_SCOPE, scope_id=survey_id, default=None
        )
        return as_flag(value)

    # ── Question editor ─────────────────────────────────────────────────────

    async def on_question_saved(self, event: QuestionSavedEvent) -> list[FieldMapping]:
        """Replace the question's relational mappings with its saved JSON.

        Raises:
            ValidationError: Mapping JSON is not a list.
            PersistenceError: The replace transaction failed.
        """
        mappings = await self._repository.sync_from_json(
            event.survey_id, event.question_id, event.mappings_json
        )
        logger.info(
            "sync.question_mappings_synced",
            survey_id=event.survey_id,
            question_id=event.question_id,
            count=len(mappings),
        )
        return mappings

    # ── Survey completion ───────────────────────────────────────────────────

    async def on_survey_complete(self, event: SurveyCompleteEvent) -> SyncOutcome:
        survey_id, response_id = event.survey_id, event.response_id
        outcome = SyncOutcome(survey_id=survey_id, response_id=response_id)
        log = logger.bind(survey_id=survey_id, response_id=response_id)

        try:
            if not await self.is_enabled_for_survey(survey_id):
                outcome.skipped_reason = "disabled"
                log.debug("sync.skipped_disabled")
                return outcome

            by_module = await self._repository.get_mappings_grouped_by_module(survey_id)
            if not by_module:
                outcome.skipped_reason = "no_mappings"
                log.debug("sync.skipped_no_mappings")
                return outcome

            questions = await self._survey_engine.get_questions(survey_id)
            response = await self._survey_engine.get_response(survey_id, response_id)
            response = collapse_multiple_choice(response, questions)
        except Exception as exc:
            message = exc.message if isinstance(exc, SuiteCRMSyncError) else str(exc)
            log.exception("sync.response_aborted")
            outcome.errors.append(message)
            await self._write_log(
                SyncLogCreate(
                    response_id=response_id,
                    survey_id=survey_id,
                    crm_module=UNKNOWN_MODULE,
                    status=SyncStatus.failed,
                    error_message=message,
                )
            )
            return outcome

        context = TransformContext(survey_id=survey_id, response_id=response_id)
        for module, module_mappings in by_module.items():
            result = await self._sync_module(
                module, module_mappings, response, questions, context, survey_id, response_id
            )
            outcome.modules.append(result)
            outcome.errors.extend(result.errors)

        log.info(
            "sync.response_processed",
            modules={r.module: (r.status.value if r.status else "skipped") for r in outcome.modules},
            error_count=len(outcome.errors),
        )
        return outcome

    async def _sync_module(
        self,
        module: str,
        mappings: Mapping[int, Sequence[FieldMapping]],
        response: Mapping[str, Any],
        questions: Mapping[int, QuestionInfo],
        context: TransformContext,
        survey_id: int,
        response_id: int,
    ) -> ModuleSyncResult:
        result = ModuleSyncResult(module=module)
        used = _mappings_used(mappings)
        log = logger.bind(survey_id=survey_id, response_id=response_id, module=module)

        def _entry(status: SyncStatus, **kwargs: Any) -> SyncLogCreate:
            return SyncLogCreate(
                response_id=response_id,
                survey_id=survey_id,
                crm_module=module,
                status=status,
                field_mappings_used=used,
                **kwargs,
            )

        try:
            await self._client.ensure_authenticated()
            fields = await self._field_cache.get_fields(module)
        except Exception as exc:
            message = exc.message if isinstance(exc, SuiteCRMSyncError) else str(exc)
            log.warning("sync.module_metadata_failed", error=message)
            result.status = SyncStatus.failed
            result.errors.append(message)
            result.log_id = await self._write_log(_entry(SyncStatus.failed, error_message=message))
            return result

        transformed = self._transformer.transform_response(
            response, mappings, questions, {module: fields}, context
        )
        attributes = transformed.data.get(module, {})
        field_errors = transformed.field_errors.get(module, [])
        result.errors.extend(field_errors)

        if not attributes:
            if not field_errors:
                log.debug("sync.module_nothing_to_send")
                return result
            result.status = SyncStatus.failed
            result.log_id = await self._write_log(
                _entry(SyncStatus.failed, error_message="; ".join(field_errors))
            )
            log.warning("sync.module_all_fields_invalid", errors=field_errors)
            return result

        try:
            created = await self._client.create_record(module, attributes)
        except Exception as exc:
            message = exc.message if isinstance(exc, SuiteCRMSyncError) else str(exc)
            log.warning("sync.module_failed", error=message)
            result.status = SyncStatus.failed
            result.errors.append(message)
            result.log_id = await self._write_log(
                _entry(
                    SyncStatus.failed,
                    request_payload=attributes,
                    error_message="; ".join([message, *field_errors]),
                )
            )
            return result

        result.status = SyncStatus.partial if field_errors else SyncStatus.success
        result.record_id = created.id
        result.log_id = await self._write_log(
            _entry(
                result.status,
                crm_record_id=created.id,
                request_payload=attributes,
                response_data=created.model_dump(mode="json"),
                error_message="; ".join(field_errors) or None,
            )
        )
        log.info("sync.module_synced", status=result.status.value, record_id=created.id)
        return result

    async def _write_log(self, entry: SyncLogCreate) -> int | None:
        """Append a sync log row; failures are reported, never raised."""
        try:
            return await self._repository.log_sync(entry)
        except Exception:
            logger.exception(
                "sync.log_write_failed",
                survey_id=entry.survey_id,
                response_id=entry.response_id,
                module=entry.crm_module,
                status=entry.status.value,
            )
            return None
