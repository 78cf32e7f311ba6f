"""Integration service -- wires configuration into the sync components.

IntegrationService is the single object the HTTP layer and the event
webhooks talk to. Configuration is re-read from the settings store on
every call, so option changes apply to the next event. The SuiteCRM
client is reused while its connection options are unchanged, which
keeps its bearer token cached across events.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from typing import Any

import httpx
import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from src.suitecrm_sync.api.middleware.logging import configure_structlog
from src.suitecrm_sync.config import IntegrationConfig, Settings, get_settings
from src.suitecrm_sync.crm.client import SuiteCRMClient
from src.suitecrm_sync.crm.field_cache import FieldCacheManager
from src.suitecrm_sync.crm.provisioning import OAuthClientProvisioner
from src.suitecrm_sync.errors import SuiteCRMSyncError
from src.suitecrm_sync.events.registry import EventRegistry
from src.suitecrm_sync.events.schemas import SurveyEvent
from src.suitecrm_sync.mappings.repository import MappingRepository
from src.suitecrm_sync.mappings.schema_manager import SchemaManager
from src.suitecrm_sync.settings_store import SettingsStore
from src.suitecrm_sync.survey.engine import SurveyEngine
from src.suitecrm_sync.sync.orchestrator import SurveySyncOrchestrator
from src.suitecrm_sync.transform.engine import DataTransformer

logger = structlog.get_logger(__name__)


class IntegrationService:
    """Builds and holds the sync pipeline for the running application.

    Args:
        store: Settings store with the integration options.
        session_factory: Session generator for the mapping repository.
        engine: Engine hosting the mapping/log tables (schema install).
        survey_engine: Source of responses and questions.
        settings: Process settings (defaults to get_settings()).
        provisioner: OAuth2 client provisioner (built on demand if omitted).
        crm_transport: httpx transport for the SuiteCRM client (tests).
    """

    def __init__(
        self,
        store: SettingsStore,
        session_factory: Callable[..., AsyncGenerator[AsyncSession, None]],
        engine: AsyncEngine,
        survey_engine: SurveyEngine,
        settings: Settings | None = None,
        provisioner: OAuthClientProvisioner | None = None,
        crm_transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.store = store
        self.repository = MappingRepository(session_factory)
        self.schema = SchemaManager(engine)
        self.survey_engine = survey_engine
        self.settings = settings or get_settings()
        self.transformer = DataTransformer()
        self._provisioner = provisioner or OAuthClientProvisioner(store)
        self._crm_transport = crm_transport
        self._client: SuiteCRMClient | None = None
        self._client_key: tuple | None = None
        self._debug_mode: bool | None = None

    @property
    def supported_modules(self) -> list[str]:
        return self.settings.get_supported_modules()

    async def load_config(self) -> IntegrationConfig:
        config = await IntegrationConfig.load(self.store, self.settings)
        if config.debug_mode != self._debug_mode:
            if self._debug_mode is not None or config.debug_mode:
                configure_structlog(self.settings, debug_mode=config.debug_mode)
            self._debug_mode = config.debug_mode
        return config

    def client_for(self, config: IntegrationConfig) -> SuiteCRMClient:
        """Reuse the current client unless connection options changed."""
        key = (
            config.suitecrm_url,
            config.oauth_client_id,
            config.oauth_client_secret,
            config.suitecrm_admin_user,
            config.suitecrm_admin_password,
        )
        if self._client is None or key != self._client_key:
            self._client = SuiteCRMClient(
                base_url=config.suitecrm_url,
                client_id=config.oauth_client_id,
                client_secret=config.oauth_client_secret,
                username=config.suitecrm_admin_user,
                password=config.suitecrm_admin_password,
                debug_mode=config.debug_mode,
                timeout=self.settings.CRM_TIMEOUT,
                transport=self._crm_transport,
            )
            self._client_key = key
        else:
            self._client.set_debug_mode(config.debug_mode)
        return self._client

    async def field_cache(self, config: IntegrationConfig | None = None) -> FieldCacheManager:
        config = config or await self.load_config()
        return FieldCacheManager(self.client_for(config), self.store, config.cache_ttl_hours)

    async def build_orchestrator(self) -> SurveySyncOrchestrator:
        config = await self.load_config()
        client = self.client_for(config)
        return SurveySyncOrchestrator(
            config=config,
            store=self.store,
            repository=self.repository,
            survey_engine=self.survey_engine,
            client=client,
            field_cache=FieldCacheManager(client, self.store, config.cache_ttl_hours),
            transformer=self.transformer,
        )

    async def handle(self, event: SurveyEvent) -> Any:
        """Dispatch one survey-engine event through a freshly wired registry."""
        registry = EventRegistry()
        orchestrator = await self.build_orchestrator()
        orchestrator.register_handlers(registry)
        return await registry.dispatch(event)

    # ── Lifecycle ───────────────────────────────────────────────────────────

    async def activate(self) -> dict:
        """Install the schema and register the OAuth2 client if needed.

        Provisioning problems (e.g. missing SuiteCRM DB settings) are
        reported in the result rather than raised, as activation must
        still succeed for a manually configured client.
        """
        result: dict[str, Any] = {"schema": await self.schema.install()}
        config = await self.load_config()
        try:
            result["oauth_client"] = await self._provisioner.provision(config)
        except SuiteCRMSyncError as exc:
            logger.warning("integration.provisioning_skipped", reason=exc.message)
            result["oauth_client"] = {"created": False, "error": exc.message}
        return result

    async def reinitialize(self) -> dict:
        """Drop the cached token and field caches, then re-test the connection."""
        config = await self.load_config()
        client = self.client_for(config)
        client.reset()
        cache = FieldCacheManager(client, self.store, config.cache_ttl_hours)
        await cache.clear_all_caches(self.supported_modules)
        status = await client.test_connection()
        logger.info("integration.reinitialized", connected=status.success)
        return status.model_dump()
