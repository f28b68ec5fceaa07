"""
Multi-tenant resolution and data access for orgbase.

This package turns an inbound request into a tenant and a tenant into a
live, cached data-store handle whose every query is scoped to that
tenant:

- Tenant records, plans and plan defaults
- A registry of tenants with slug and domain uniqueness
- A resolver applying the header / route / subdomain / domain chain
- A per-tenant connection cache with idle eviction
- Scoped repositories that pin ``org_id`` on reads and writes
- A degraded backend for running without a database

Key Components:
    - TenantRecord: Immutable snapshot of a registered tenant
    - SqlTenantRegistry: Registry over the ``organizations`` table
    - TenantResolver: Request descriptor -> tenant
    - ConnectionCache: One cached handle per tenant id
    - ScopedDataAccessor: Per-request repositories for one tenant
    - SqlBackend / DegradedBackend: What the web layer and CLI talk to

Example:
    from orgbase.multitenancy import (
        RequestDescriptor, TenantResolver, select_backend,
    )

    backend = await select_backend(settings)
    resolver = TenantResolver(backend.registry)

    resolution = await resolver.resolve(
        RequestDescriptor(headers={"x-tenant-slug": "acme"})
    )
    async with backend.accessor(resolution.context) as data:
        await data.projects.list()
"""

from orgbase.multitenancy.errors import (
    ConflictError,
    ConnectivityError,
    DegradedModeError,
    InactiveTenantError,
    NotFoundError,
    ResolutionError,
    TenancyError,
    TenantNotFoundError,
    TenantNotSpecifiedError,
    ValidationError,
)
from orgbase.multitenancy.tenant import (
    TenantPlan,
    TenantRecord,
    TenantStatus,
    default_settings,
)
from orgbase.multitenancy.context import (
    TenantContext,
    get_current_tenant,
    require_tenant,
    set_current_tenant,
    tenant_scope,
)
from orgbase.multitenancy.registry import SqlTenantRegistry, TenantPage, TenantRegistry
from orgbase.multitenancy.resolver import (
    RequestDescriptor,
    ResolverConfig,
    TenantResolution,
    TenantResolver,
)
from orgbase.multitenancy.handles import EngineHandleFactory, TenantHandle
from orgbase.multitenancy.cache import CacheStats, ConnectionCache
from orgbase.multitenancy.scoped import ScopedDataAccessor, ScopedRepository
from orgbase.multitenancy.degraded import DegradedDataAccessor, DegradedTenantRegistry
from orgbase.multitenancy.backend import (
    BackendMode,
    DataBackend,
    DegradedBackend,
    SqlBackend,
    select_backend,
)

__all__ = [
    # Errors
    "ConflictError",
    "ConnectivityError",
    "DegradedModeError",
    "InactiveTenantError",
    "NotFoundError",
    "ResolutionError",
    "TenancyError",
    "TenantNotFoundError",
    "TenantNotSpecifiedError",
    "ValidationError",
    # Tenant records
    "TenantPlan",
    "TenantRecord",
    "TenantStatus",
    "default_settings",
    # Context
    "TenantContext",
    "get_current_tenant",
    "require_tenant",
    "set_current_tenant",
    "tenant_scope",
    # Registry
    "SqlTenantRegistry",
    "TenantPage",
    "TenantRegistry",
    # Resolution
    "RequestDescriptor",
    "ResolverConfig",
    "TenantResolution",
    "TenantResolver",
    # Connection cache
    "CacheStats",
    "ConnectionCache",
    "EngineHandleFactory",
    "TenantHandle",
    # Scoped access
    "ScopedDataAccessor",
    "ScopedRepository",
    # Backends
    "BackendMode",
    "DataBackend",
    "DegradedBackend",
    "DegradedDataAccessor",
    "DegradedTenantRegistry",
    "SqlBackend",
    "select_backend",
]
