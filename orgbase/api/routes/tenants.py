"""Operator endpoints for registering and managing tenants."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from orgbase.api.dependencies import get_backend
from orgbase.multitenancy.backend import DataBackend
from orgbase.multitenancy.context import TenantContext
from orgbase.multitenancy.errors import TenantNotFoundError
from orgbase.multitenancy.provisioning import collect_usage, register_and_bootstrap
from orgbase.multitenancy.tenant import TenantPlan, TenantStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tenants", tags=["tenants"])


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class TenantCreate(BaseModel):
    name: str
    slug: str
    domain: str | None = None
    plan: TenantPlan = TenantPlan.BASIC


class AdminUser(BaseModel):
    email: str = Field(min_length=3)
    name: str | None = None


class TenantBootstrap(TenantCreate):
    model_config = ConfigDict(populate_by_name=True)

    admin_user: AdminUser = Field(alias="adminUser")


class TenantUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str | None = None
    domain: str | None = None
    status: TenantStatus | None = None
    plan: TenantPlan | None = None
    settings: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("", status_code=201)
async def create_tenant(
    payload: TenantCreate,
    backend: DataBackend = Depends(get_backend),
) -> dict:
    tenant = await backend.registry.create(
        payload.name, payload.slug, domain=payload.domain, plan=payload.plan
    )
    return {"tenant": tenant.to_dict()}


@router.post("/bootstrap", status_code=201)
async def bootstrap_tenant(
    payload: TenantBootstrap,
    backend: DataBackend = Depends(get_backend),
) -> dict:
    """Register a tenant and seed its admin user and default categories."""
    tenant, result = await register_and_bootstrap(
        backend,
        payload.name,
        payload.slug,
        admin_email=payload.admin_user.email,
        admin_name=payload.admin_user.name,
        domain=payload.domain,
        plan=payload.plan,
    )
    return {
        "tenant": tenant.to_dict(),
        "bootstrap": result.to_dict(),
        "message": "Tenant created and bootstrapped successfully",
    }


@router.get("")
async def list_tenants(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    backend: DataBackend = Depends(get_backend),
) -> dict:
    result = await backend.registry.list(page=page, page_size=limit)
    return result.to_dict()


@router.get("/{slug}")
async def get_tenant(slug: str, backend: DataBackend = Depends(get_backend)) -> dict:
    """Tenant details plus usage counts.

    Counts are reported for inactive tenants too, but their handle is
    evicted afterwards since they cannot serve traffic.
    """
    tenant = await backend.registry.get_by_slug(slug)
    if tenant is None:
        raise TenantNotFoundError(f"Tenant with slug '{slug}' not found")

    context = TenantContext(tenant_id=tenant.id, tenant_slug=tenant.slug)
    async with backend.accessor(context) as data:
        stats = await collect_usage(data)
    if not tenant.is_active:
        await backend.evict(tenant.id)
    return {"tenant": tenant.to_dict(), "stats": stats}


@router.patch("/{tenant_id}")
async def update_tenant(
    tenant_id: str,
    payload: TenantUpdate,
    backend: DataBackend = Depends(get_backend),
) -> dict:
    tenant = await backend.registry.update(tenant_id, **payload.model_dump(exclude_unset=True))
    # Settings (and possibly the database target) changed; drop the stale handle.
    if await backend.evict(tenant_id):
        logger.info(f"Evicted cached handle for updated tenant {tenant_id}")
    return {"tenant": tenant.to_dict(), "message": "Tenant updated successfully"}


@router.delete("/{tenant_id}", status_code=204)
async def delete_tenant(tenant_id: str, backend: DataBackend = Depends(get_backend)) -> None:
    await backend.registry.delete(tenant_id)
    await backend.evict(tenant_id)
