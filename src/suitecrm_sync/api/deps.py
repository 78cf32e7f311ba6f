"""Shared FastAPI dependencies.

- get_integration(): IntegrationService from app.state, 503 if missing
- require_api_key(): X-API-Key check, active only when ADMIN_API_KEY is set
- raise_for_sync_error(): map the error taxonomy onto HTTP status codes
"""

from __future__ import annotations

import secrets
from typing import NoReturn

from fastapi import Header, HTTPException, Request, status

from src.suitecrm_sync.config import get_settings
from src.suitecrm_sync.errors import (
    AuthenticationError,
    ConfigurationError,
    CrmApiError,
    SuiteCRMSyncError,
    TransportError,
    ValidationError,
)
from src.suitecrm_sync.sync.service import IntegrationService


def get_integration(request: Request) -> IntegrationService:
    """Retrieve IntegrationService from app.state, 503 if not available."""
    service = getattr(request.app.state, "integration", None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="SuiteCRM integration not initialized",
        )
    return service


async def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
    expected = get_settings().ADMIN_API_KEY
    if not expected:
        return
    if not x_api_key or not secrets.compare_digest(x_api_key, expected):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
        )


def raise_for_sync_error(exc: SuiteCRMSyncError) -> NoReturn:
    """Translate a package error into an HTTPException."""
    if isinstance(exc, ConfigurationError):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    elif isinstance(exc, (AuthenticationError, TransportError, CrmApiError)):
        code = status.HTTP_502_BAD_GATEWAY
    elif isinstance(exc, ValidationError):
        code = status.HTTP_400_BAD_REQUEST
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR
    raise HTTPException(status_code=code, detail=exc.message) from exc
