"""Pydantic schemas for SuiteCRM metadata and API results."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field


class CrmFieldDefinition(BaseModel):
    """Normalized definition of one CRM module field.

    Built from /Api/V8/meta/fields/{module}; cached by FieldCacheManager
    as its JSON dump.
    """

    name: str
    module: str
    type: str = "varchar"
    db_type: str = "varchar"
    label: str = ""
    required: bool = False
    max_length: int | None = None
    options: dict[str, Any] | list[Any] | None = None
    default: Any = None
    comment: str = ""


class CreateRecordResult(BaseModel):
    """Outcome of POST /Api/V8/module."""

    success: bool = True
    id: str | None = None
    type: str | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)


class ConnectionStatus(BaseModel):
    """Result of SuiteCRMClient.test_connection()."""

    success: bool
    message: str
    modules_count: int | None = None
    modules: list[str] | None = None


class CacheRefreshStatus(BaseModel):
    """Per-module report from FieldCacheManager.refresh_all_caches()."""

    success: bool
    field_count: int | None = None
    refreshed_at: float | None = None
    error: str | None = None


class CacheStatus(BaseModel):
    """Per-module report from FieldCacheManager.get_cache_status()."""

    cached: bool
    field_count: int = 0
    cached_at: float | None = None
    expires_at: float | None = None
    is_valid: bool = False
