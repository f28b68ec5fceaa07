"""Health check and cache diagnostics endpoints."""

from fastapi import APIRouter, Depends

from orgbase import __version__
from orgbase.api.dependencies import get_backend, get_settings
from orgbase.config import Settings
from orgbase.multitenancy.backend import DataBackend

router = APIRouter(tags=["health"])


@router.get("/api/health")
async def health_check(
    backend: DataBackend = Depends(get_backend),
    app_settings: Settings = Depends(get_settings),
) -> dict:
    report = await backend.health()
    return {
        "status": "ok" if report["database"] == "ok" else "degraded",
        "version": __version__,
        "environment": app_settings.ENVIRONMENT,
        **report,
    }


@router.get("/api/cache/stats", tags=["cache"])
async def cache_stats(backend: DataBackend = Depends(get_backend)) -> dict:
    """Number of cached tenant handles and their tenant ids."""
    return backend.cache_stats().to_dict()
