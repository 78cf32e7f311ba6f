"""Install, migrate and uninstall the mapping and sync-log tables.

Migrations are additive and detected from the live schema with the
SQLAlchemy inspector, then applied through Alembic's programmatic
Operations API. No revision table and no CLI step are involved, so
running install() on every startup is safe: once the schema is current
it is a no-op.

Applied migrations:
- add the transform_rule column to older mapping tables
- replace the legacy one-mapping-per-question unique key with the
  composite (question_id, crm_module, crm_field_name) key
- add the idx_question lookup index
"""

from __future__ import annotations

import structlog
from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import Column, Connection, String, inspect
from sqlalchemy.ext.asyncio import AsyncEngine

from src.suitecrm_sync.mappings.models import (
    MAPPING_UNIQUE_KEY,
    MAPPINGS_TABLE,
    SYNC_LOG_TABLE,
    FieldMappingModel,
    SyncLogModel,
)

logger = structlog.get_logger(__name__)

LEGACY_UNIQUE_KEY = "unique_question_mapping"
QUESTION_INDEX = "idx_question"

_TABLES = [FieldMappingModel.__table__, SyncLogModel.__table__]


def _migrate_sync(conn: Connection) -> list[str]:
    """Apply pending additive migrations on a sync connection."""
    inspector = inspect(conn)
    if not inspector.has_table(MAPPINGS_TABLE):
        return []

    op = Operations(MigrationContext.configure(conn))
    applied: list[str] = []

    columns = {c["name"] for c in inspector.get_columns(MAPPINGS_TABLE)}
    if "transform_rule" not in columns:
        op.add_column(MAPPINGS_TABLE, Column("transform_rule", String(100), nullable=True))
        applied.append("added transform_rule column")

    indexes = {i["name"] for i in inspector.get_indexes(MAPPINGS_TABLE)}
    uniques = {u["name"] for u in inspector.get_unique_constraints(MAPPINGS_TABLE)}

    if LEGACY_UNIQUE_KEY in uniques:
        with op.batch_alter_table(MAPPINGS_TABLE) as batch:
            batch.drop_constraint(LEGACY_UNIQUE_KEY, type_="unique")
        applied.append(f"dropped {LEGACY_UNIQUE_KEY}")
    elif LEGACY_UNIQUE_KEY in indexes:
        op.drop_index(LEGACY_UNIQUE_KEY, table_name=MAPPINGS_TABLE)
        applied.append(f"dropped {LEGACY_UNIQUE_KEY}")

    if MAPPING_UNIQUE_KEY not in indexes | uniques:
        op.create_index(
            MAPPING_UNIQUE_KEY,
            MAPPINGS_TABLE,
            ["question_id", "crm_module", "crm_field_name"],
            unique=True,
        )
        applied.append(f"added {MAPPING_UNIQUE_KEY}")

    if QUESTION_INDEX not in indexes:
        op.create_index(QUESTION_INDEX, MAPPINGS_TABLE, ["question_id"])
        applied.append(f"added {QUESTION_INDEX}")

    return applied


class SchemaManager:
    """Owns the lifecycle of the integration's two tables.

    Args:
        engine: Async engine for the database holding the tables.
    """

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def is_installed(self) -> bool:
        async with self._engine.connect() as conn:
            return await conn.run_sync(
                lambda c: all(inspect(c).has_table(t) for t in (MAPPINGS_TABLE, SYNC_LOG_TABLE))
            )

    async def migrate(self) -> str:
        """Apply pending migrations.

        Returns:
            "Schema already up to date" or "Migrated: <steps>".
        """
        async with self._engine.begin() as conn:
            applied = await conn.run_sync(_migrate_sync)
        if not applied:
            return "Schema already up to date"
        logger.info("schema.migrated", steps=applied)
        return "Migrated: " + ", ".join(applied)

    async def install(self) -> dict:
        """Create missing tables, then migrate existing ones.

        Returns:
            {"success": bool, "details": [str]}.
        """
        details: list[str] = []
        try:
            async with self._engine.begin() as conn:
                existing = await conn.run_sync(
                    lambda c: {t.name for t in _TABLES if inspect(c).has_table(t.name)}
                )
                await conn.run_sync(
                    lambda c: FieldMappingModel.metadata.create_all(c, tables=_TABLES)
                )
            for table in _TABLES:
                if table.name in existing:
                    details.append(f"Table {table.name} already exists")
                else:
                    details.append(f"Created table {table.name}")
            details.append(await self.migrate())
        except Exception as exc:
            logger.exception("schema.install_failed")
            details.append(f"Error: {exc}")
            return {"success": False, "details": details}

        logger.info("schema.installed", details=details)
        return {"success": True, "details": details}

    async def uninstall(self) -> dict:
        """Drop both tables (sync log first)."""
        async with self._engine.begin() as conn:
            await conn.run_sync(
                lambda c: FieldMappingModel.metadata.drop_all(c, tables=list(reversed(_TABLES)))
            )
        logger.info("schema.uninstalled")
        return {"success": True, "details": [f"Dropped table {t.name}" for t in reversed(_TABLES)]}
