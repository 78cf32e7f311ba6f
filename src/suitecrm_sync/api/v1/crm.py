"""REST endpoints for SuiteCRM connectivity, metadata and the field cache.

Backs the plugin's admin screens: module/field listings for the mapping
editor, connection test, re-initialization, cache refresh/status, and
the transform-rule and compatibility catalogues.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from src.suitecrm_sync.api.deps import get_integration, raise_for_sync_error, require_api_key
from src.suitecrm_sync.crm.schemas import CacheRefreshStatus, CacheStatus, ConnectionStatus
from src.suitecrm_sync.errors import SuiteCRMSyncError
from src.suitecrm_sync.transform.compatibility import (
    get_compatibility_warning,
    get_compatible_field_types,
    question_type_name,
)
from src.suitecrm_sync.transform.rules import AUTO_GENERATE_RULES, get_transform_rules

router = APIRouter(tags=["crm"], dependencies=[Depends(require_api_key)])


# ── Response Schemas ─────────────────────────────────────────────────────────


class ModulesResponse(BaseModel):
    modules: list[str]


class TransformRulesResponse(BaseModel):
    rules: dict[str, str]
    auto_generate: list[str]


class CompatibilityResponse(BaseModel):
    question_type: str
    question_type_name: str
    compatible_types: list[str]
    crm_type: str | None = None
    compatible: bool | None = None
    warning: str | None = None


# ── CRM metadata ─────────────────────────────────────────────────────────────


@router.get("/crm/modules", response_model=ModulesResponse)
async def list_modules(request: Request) -> ModulesResponse:
    """Modules records can be created in."""
    service = get_integration(request)
    return ModulesResponse(modules=service.supported_modules)


@router.get("/crm/modules/{module}/fields")
async def get_module_fields(
    module: str,
    request: Request,
    refresh: bool = Query(default=False),
) -> dict[str, Any]:
    service = get_integration(request)
    cache = await service.field_cache()
    try:
        fields = await cache.get_fields(module, force_refresh=refresh)
    except SuiteCRMSyncError as exc:
        raise_for_sync_error(exc)
    return {"module": module, "fields": {n: f.model_dump() for n, f in fields.items()}}


@router.get("/crm/fields")
async def get_all_fields(
    request: Request,
    view: str = Query(default="full", pattern="^(full|dropdown)$"),
) -> dict[str, Any]:
    """Fields of every supported module; ``view=dropdown`` for editor options."""
    service = get_integration(request)
    cache = await service.field_cache()
    if view == "dropdown":
        return {"options": await cache.get_fields_for_dropdown(service.supported_modules)}
    return {"modules": await cache.get_fields_for_modules(service.supported_modules)}


# ── Connection ───────────────────────────────────────────────────────────────


@router.post("/crm/test-connection", response_model=ConnectionStatus)
async def test_connection(request: Request) -> ConnectionStatus:
    service = get_integration(request)
    config = await service.load_config()
    return await service.client_for(config).test_connection()


@router.post("/crm/reinitialize")
async def reinitialize(request: Request) -> dict[str, Any]:
    """Forget the token and cached fields, then re-test the connection."""
    service = get_integration(request)
    return await service.reinitialize()


@router.post("/activate")
async def activate(request: Request) -> dict[str, Any]:
    """Install/migrate the schema and register the OAuth2 client."""
    service = get_integration(request)
    return await service.activate()


# ── Field cache ──────────────────────────────────────────────────────────────


@router.post("/crm/cache/refresh", response_model=dict[str, CacheRefreshStatus])
async def refresh_cache(request: Request) -> dict[str, CacheRefreshStatus]:
    service = get_integration(request)
    cache = await service.field_cache()
    return await cache.refresh_all_caches(service.supported_modules)


@router.get("/crm/cache/status", response_model=dict[str, CacheStatus])
async def cache_status(request: Request) -> dict[str, CacheStatus]:
    service = get_integration(request)
    cache = await service.field_cache()
    return await cache.get_cache_status(service.supported_modules)


@router.delete("/crm/cache")
async def clear_cache(request: Request) -> dict[str, Any]:
    service = get_integration(request)
    cache = await service.field_cache()
    await cache.clear_all_caches(service.supported_modules)
    return {"cleared": service.supported_modules}


# ── Catalogues ───────────────────────────────────────────────────────────────


@router.get("/transform-rules", response_model=TransformRulesResponse)
async def transform_rules() -> TransformRulesResponse:
    return TransformRulesResponse(
        rules=get_transform_rules(),
        auto_generate=sorted(AUTO_GENERATE_RULES),
    )


@router.get("/compatibility", response_model=CompatibilityResponse)
async def compatibility(
    question_type: str = Query(min_length=1, max_length=1),
    crm_type: str | None = Query(default=None),
) -> CompatibilityResponse:
    """Compatible CRM types for a question type, with an optional mismatch check."""
    response = CompatibilityResponse(
        question_type=question_type,
        question_type_name=question_type_name(question_type),
        compatible_types=get_compatible_field_types(question_type),
    )
    if crm_type:
        warning = get_compatibility_warning(question_type, crm_type)
        response.crm_type = crm_type
        response.compatible = warning is None
        response.warning = warning
    return response
