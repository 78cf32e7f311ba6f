"""Health check endpoints.

/health is a plain liveness probe; /health/ready also checks the
database and reports whether the integration tables are installed.
"""

from __future__ import annotations

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from src.suitecrm_sync.config import get_settings
from src.suitecrm_sync.core.database import get_engine
from src.suitecrm_sync.mappings.schema_manager import SchemaManager

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Basic liveness check, no dependencies touched."""
    settings = get_settings()
    return {"status": "ok", "environment": settings.ENVIRONMENT.value}


@router.get("/health/ready")
async def readiness_check():
    """Readiness: database reachable and schema installed."""
    checks: dict = {"database": "ok", "schema": "ok"}
    try:
        engine = get_engine()
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        if not await SchemaManager(engine).is_installed():
            checks["schema"] = "missing"
    except Exception as e:
        checks["database"] = "error"
        checks["database_error"] = str(e)

    healthy = checks["database"] == "ok" and checks["schema"] == "ok"
    return JSONResponse(
        status_code=status.HTTP_200_OK if healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"status": "ready" if healthy else "degraded", "checks": checks},
    )
