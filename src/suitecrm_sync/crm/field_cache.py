"""Time-bounded cache of CRM module field definitions.

Payloads live under ``scf_<module>`` in the settings store; their
timestamps live together under ``scf_meta`` so freshness can be checked
without loading the payload. Both are written only after a successful
fetch, and cleared together.
"""

from __future__ import annotations

import hashlib
import json
import time
from collections.abc import Callable, Iterable
from typing import Any

import structlog
from pydantic import ValidationError as PydanticValidationError

from src.suitecrm_sync.crm.client import SuiteCRMClient
from src.suitecrm_sync.crm.schemas import CacheRefreshStatus, CacheStatus, CrmFieldDefinition
from src.suitecrm_sync.errors import SuiteCRMSyncError
from src.suitecrm_sync.settings_store import MAX_KEY_LENGTH, SettingsStore

logger = structlog.get_logger(__name__)

CACHE_PREFIX = "scf_"
META_KEY = "scf_meta"


def cache_key(module: str) -> str:
    """Deterministic store key for a module's payload.

    Names that would overflow the store's key column keep a readable
    prefix and end in a short digest of the full name.
    """
    key = CACHE_PREFIX + module.lower()
    if len(key) <= MAX_KEY_LENGTH:
        return key
    digest = hashlib.sha1(module.lower().encode("utf-8")).hexdigest()[:8]
    return key[: MAX_KEY_LENGTH - len(digest) - 1] + "_" + digest


class FieldCacheManager:
    """Serves field definitions from the store, fetching on miss or expiry.

    Args:
        client: SuiteCRM client used on cache misses.
        store: Settings store backing the cache.
        cache_ttl_hours: Validity window of a cached payload.
        clock: Time source (seconds since epoch).
    """

    def __init__(
        self,
        client: SuiteCRMClient,
        store: SettingsStore,
        cache_ttl_hours: int = 24,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._store = store
        self._ttl_seconds = max(int(cache_ttl_hours), 1) * 3600
        self._clock = clock

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    # ── Store access ────────────────────────────────────────────────────────

    async def _load_meta(self) -> dict[str, dict[str, Any]]:
        meta = await self._store.get(META_KEY, default=None)
        return meta if isinstance(meta, dict) else {}

    async def _load_payload(self, module: str) -> dict[str, CrmFieldDefinition] | None:
        raw = await self._store.get(cache_key(module), default=None)
        if not isinstance(raw, dict):
            return None
        try:
            return {name: CrmFieldDefinition.model_validate(d) for name, d in raw.items()}
        except PydanticValidationError:
            logger.warning("field_cache.corrupt_payload", module=module)
            return None

    def _is_fresh(self, entry: dict[str, Any] | None) -> bool:
        if not entry:
            return False
        cached_at = entry.get("cached_at")
        if not isinstance(cached_at, (int, float)):
            return False
        return self._clock() - cached_at < self._ttl_seconds

    async def _write(self, module: str, fields: dict[str, CrmFieldDefinition]) -> float:
        now = self._clock()
        key = cache_key(module)
        await self._store.set(key, {name: f.model_dump(mode="json") for name, f in fields.items()})
        meta = await self._load_meta()
        meta[key] = {"cached_at": now}
        await self._store.set(META_KEY, meta)
        return now

    # ── Reads ───────────────────────────────────────────────────────────────

    async def get_fields(
        self, module: str, force_refresh: bool = False
    ) -> dict[str, CrmFieldDefinition]:
        """Field definitions for ``module``.

        Raises:
            SuiteCRMSyncError: When a fetch is needed and the API call fails;
                the cache is left untouched.
        """
        if not force_refresh:
            meta = await self._load_meta()
            if self._is_fresh(meta.get(cache_key(module))):
                cached = await self._load_payload(module)
                if cached is not None:
                    logger.debug("field_cache.hit", module=module)
                    return cached

        fields = await self._client.get_module_fields(module)
        await self._write(module, fields)
        logger.info(
            "field_cache.refreshed",
            module=module,
            field_count=len(fields),
            forced=force_refresh,
        )
        return fields

    async def get_fields_for_modules(
        self, modules: Iterable[str], force_refresh: bool = False
    ) -> dict[str, dict[str, Any]]:
        """Fields for several modules; a failing module yields an error entry."""
        results: dict[str, dict[str, Any]] = {}
        for module in modules:
            try:
                fields = await self.get_fields(module, force_refresh)
            except SuiteCRMSyncError as exc:
                logger.warning("field_cache.module_failed", module=module, error=exc.message)
                results[module] = {"error": True, "message": exc.message}
                continue
            results[module] = {name: f.model_dump(mode="json") for name, f in fields.items()}
        return results

    async def get_fields_for_dropdown(self, modules: Iterable[str]) -> dict[str, str]:
        """Options for a mapping editor: JSON key -> "Module: Label[ *]"."""
        options: dict[str, str] = {}
        for module in modules:
            try:
                fields = await self.get_fields(module)
            except SuiteCRMSyncError as exc:
                logger.warning("field_cache.module_failed", module=module, error=exc.message)
                continue
            for name, field in fields.items():
                key = json.dumps(
                    {"module": module, "field": name, "label": field.label, "type": field.type},
                    separators=(",", ":"),
                )
                label = f"{module}: {field.label}" + (" *" if field.required else "")
                options[key] = label
        return options

    # ── Maintenance ─────────────────────────────────────────────────────────

    async def refresh_all_caches(self, modules: Iterable[str]) -> dict[str, CacheRefreshStatus]:
        """Force-refresh every module; one failure never stops the others."""
        report: dict[str, CacheRefreshStatus] = {}
        for module in modules:
            try:
                fields = await self.get_fields(module, force_refresh=True)
            except SuiteCRMSyncError as exc:
                report[module] = CacheRefreshStatus(success=False, error=exc.message)
                continue
            report[module] = CacheRefreshStatus(
                success=True,
                field_count=len(fields),
                refreshed_at=self._clock(),
            )
        return report

    async def clear_cache(self, module: str) -> None:
        """Remove a module's payload and its timestamp."""
        key = cache_key(module)
        await self._store.set(key, None)
        meta = await self._load_meta()
        if key in meta:
            del meta[key]
            await self._store.set(META_KEY, meta or None)
        logger.info("field_cache.cleared", module=module)

    async def clear_all_caches(self, modules: Iterable[str]) -> None:
        for module in modules:
            await self.clear_cache(module)

    async def get_cache_status(self, modules: Iterable[str]) -> dict[str, CacheStatus]:
        meta = await self._load_meta()
        status: dict[str, CacheStatus] = {}
        for module in modules:
            entry = meta.get(cache_key(module))
            payload = await self._load_payload(module)
            if not entry or payload is None:
                status[module] = CacheStatus(cached=False)
                continue
            cached_at = float(entry.get("cached_at", 0))
            status[module] = CacheStatus(
                cached=True,
                field_count=len(payload),
                cached_at=cached_at,
                expires_at=cached_at + self._ttl_seconds,
                is_valid=self._is_fresh(entry),
            )
        return status
