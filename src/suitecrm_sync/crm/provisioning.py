"""OAuth2 client provisioning in the SuiteCRM database.

The password grant needs a row in SuiteCRM's ``oauth2clients`` table.
OAuthClientProvisioner registers one directly in the CRM's MySQL
database (async SQLAlchemy over aiomysql) and stores the generated
client id and plain secret in the settings store. SuiteCRM keeps only
the sha256 of the secret.
"""

from __future__ import annotations

import hashlib
import secrets
import time
from datetime import datetime, timezone

import structlog
from sqlalchemy import DateTime, bindparam, text
from sqlalchemy.engine import URL
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from src.suitecrm_sync.config import IntegrationConfig
from src.suitecrm_sync.errors import ConfigurationError, PersistenceError
from src.suitecrm_sync.settings_store import SettingsStore

logger = structlog.get_logger(__name__)

CLIENT_NAME = "LimeSurvey Integration"


def generate_client_id() -> str:
    """``limesurvey-`` followed by a time-ordered unique suffix."""
    return f"limesurvey-{int(time.time() * 1_000_000):x}"


def generate_client_secret() -> str:
    """64 hex characters."""
    return secrets.token_hex(32)


def hash_secret(secret: str) -> str:
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def build_crm_database_url(config: IntegrationConfig) -> URL:
    """Async SQLAlchemy URL for the SuiteCRM MySQL database.

    Raises:
        ConfigurationError: If host, database name or user is missing.
    """
    if not config.has_db_config:
        raise ConfigurationError("SuiteCRM database configuration is incomplete")
    return URL.create(
        "mysql+aiomysql",
        username=config.suitecrm_db_user,
        password=config.suitecrm_db_password or None,
        host=config.suitecrm_db_host,
        port=config.suitecrm_db_port,
        database=config.suitecrm_db_name,
    )


class OAuthClientProvisioner:
    """Registers the integration's OAuth2 client with SuiteCRM.

    Args:
        store: Settings store receiving oauth_client_id / oauth_client_secret.
        engine: Engine for the SuiteCRM database. When omitted one is built
            from the config's suitecrm_db_* options and disposed after use.
    """

    def __init__(self, store: SettingsStore, engine: AsyncEngine | None = None) -> None:
        self._store = store
        self._engine = engine

    async def provision(self, config: IntegrationConfig) -> dict:
        """Ensure an OAuth2 client exists and its credentials are stored.

        Returns:
            {"created": bool, "client_id": str | None}

        Raises:
            ConfigurationError: SuiteCRM database settings incomplete.
            PersistenceError: The CRM database rejected the statements.
        """
        if config.oauth_client_id and config.oauth_client_secret:
            return {"created": False, "client_id": config.oauth_client_id}

        engine = self._engine
        owns_engine = engine is None
        if engine is None:
            engine = create_async_engine(build_crm_database_url(config), pool_pre_ping=True)

        try:
            return await self._provision(engine)
        except SQLAlchemyError as exc:
            logger.error("provisioning.failed", error=str(exc))
            raise PersistenceError(f"Failed to register OAuth2 client: {exc}") from exc
        finally:
            if owns_engine:
                await engine.dispose()

    async def _provision(self, engine: AsyncEngine) -> dict:
        async with engine.begin() as conn:
            existing = (
                await conn.execute(
                    text("SELECT id FROM oauth2clients WHERE name = :name AND deleted = 0"),
                    {"name": CLIENT_NAME},
                )
            ).first()
            if existing is not None:
                # Secret is only stored hashed on the CRM side; nothing to recover
                logger.warning("provisioning.client_exists", client_id=existing[0])
                return {"created": False, "client_id": existing[0]}

            client_id = generate_client_id()
            secret = generate_client_secret()
            now = datetime.now(timezone.utc).replace(tzinfo=None)
            await conn.execute(
                text(
                    "INSERT INTO oauth2clients (id, name, date_entered, date_modified, "
                    "created_by, deleted, secret, is_confidential, allowed_grant_type, "
                    "duration_value, duration_amount, duration_unit) VALUES "
                    "(:id, :name, :now, :now, '1', 0, :secret, 1, 'password', "
                    "3600, 1, 'hour')"
                ).bindparams(bindparam("now", type_=DateTime)),
                {"id": client_id, "name": CLIENT_NAME, "now": now, "secret": hash_secret(secret)},
            )

        await self._store.set("oauth_client_id", client_id)
        await self._store.set("oauth_client_secret", secret)
        logger.info("provisioning.client_created", client_id=client_id)
        return {"created": True, "client_id": client_id}
