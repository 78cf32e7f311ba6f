"""Scoped key-value settings store.

The host survey engine persists plugin settings as (key, scope, scope_id)
-> value. This module models that contract so plugin configuration and
the CRM field cache can share one injected store:

- SettingsStore: abstract get/set interface
- InMemorySettingsStore: dict-backed, for tests and single-process use
- DatabaseSettingsStore: plugin_settings table via async SQLAlchemy

Setting a key to None removes it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator, Callable
from typing import Any

import structlog
from sqlalchemy import JSON, Integer, String, UniqueConstraint, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Mapped, mapped_column

from src.suitecrm_sync.core.database import Base

logger = structlog.get_logger(__name__)

# Matches the host's plugin_settings.key column width
MAX_KEY_LENGTH = 50

_GLOBAL_SCOPE = ""


class SettingsStore(ABC):
    """Abstract scoped key-value store."""

    @abstractmethod
    async def get(
        self,
        key: str,
        scope: str | None = None,
        scope_id: int | str | None = None,
        default: Any = None,
    ) -> Any:
        """Return the stored value or ``default``."""
        ...

    @abstractmethod
    async def set(
        self,
        key: str,
        value: Any,
        scope: str | None = None,
        scope_id: int | str | None = None,
    ) -> None:
        """Store ``value`` (None deletes the entry)."""
        ...


def _check_key(key: str) -> None:
    if len(key) > MAX_KEY_LENGTH:
        raise ValueError(f"Setting key '{key}' exceeds {MAX_KEY_LENGTH} characters")


def _scope_parts(scope: str | None, scope_id: int | str | None) -> tuple[str, str]:
    return (scope or _GLOBAL_SCOPE, "" if scope_id is None else str(scope_id))


class InMemorySettingsStore(SettingsStore):
    """Dict-backed store. Values are kept as given (no serialization)."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data: dict[tuple[str, str, str], Any] = {}
        for key, value in (initial or {}).items():
            self._data[(key, _GLOBAL_SCOPE, "")] = value

    async def get(self, key, scope=None, scope_id=None, default=None):
        return self._data.get((key, *_scope_parts(scope, scope_id)), default)

    async def set(self, key, value, scope=None, scope_id=None):
        _check_key(key)
        full_key = (key, *_scope_parts(scope, scope_id))
        if value is None:
            self._data.pop(full_key, None)
        else:
            self._data[full_key] = value


# ── Database-backed store ───────────────────────────────────────────────────


class PluginSettingModel(Base):
    """One plugin setting value; ``value`` is stored as JSON."""

    __tablename__ = "plugin_settings"
    __table_args__ = (
        UniqueConstraint("key", "scope", "scope_id", name="uq_plugin_setting_scope"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    key: Mapped[str] = mapped_column(String(MAX_KEY_LENGTH), nullable=False)
    scope: Mapped[str] = mapped_column(String(50), nullable=False, default=_GLOBAL_SCOPE)
    scope_id: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    value: Mapped[Any] = mapped_column(JSON, nullable=True)


class DatabaseSettingsStore(SettingsStore):
    """Settings persisted in the plugin_settings table.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    @staticmethod
    def _lookup(key: str, scope: str, scope_id: str):
        return select(PluginSettingModel).where(
            PluginSettingModel.key == key,
            PluginSettingModel.scope == scope,
            PluginSettingModel.scope_id == scope_id,
        )

    async def get(self, key, scope=None, scope_id=None, default=None):
        scope_name, scope_ref = _scope_parts(scope, scope_id)
        async for session in self._session_factory():
            result = await session.execute(self._lookup(key, scope_name, scope_ref))
            model = result.scalar_one_or_none()
            if model is None or model.value is None:
                return default
            return model.value

    async def set(self, key, value, scope=None, scope_id=None):
        _check_key(key)
        scope_name, scope_ref = _scope_parts(scope, scope_id)
        async for session in self._session_factory():
            result = await session.execute(self._lookup(key, scope_name, scope_ref))
            model = result.scalar_one_or_none()
            if value is None:
                if model is not None:
                    await session.delete(model)
            elif model is None:
                session.add(
                    PluginSettingModel(key=key, scope=scope_name, scope_id=scope_ref, value=value)
                )
            else:
                model.value = value
            await session.commit()
            logger.debug("settings.stored", key=key, scope=scope_name, deleted=value is None)
